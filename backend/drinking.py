"""Per-game drinking rules, scaled by the room's drinking intensity."""
from __future__ import annotations

import math
from typing import Dict, Iterable, List

from pydantic import BaseModel, ConfigDict, Field

from models import DrinkIntensity


class DrinkingRule(BaseModel):
    id: str
    trigger: str
    action: str
    drinks: int = 1
    is_custom: bool = Field(default=False, alias="isCustom")

    model_config = ConfigDict(populate_by_name=True)


def _rules(prefix: str, *rows) -> List[DrinkingRule]:
    return [
        DrinkingRule(id=f"{prefix}-{i}", trigger=trigger, action=action, drinks=drinks)
        for i, (trigger, action, drinks) in enumerate(rows, start=1)
    ]


DEFAULT_RULES: Dict[str, List[DrinkingRule]] = {
    "up-shitz-creek": _rules(
        "usc",
        ("Land on a hazard space", "Take a drink", 1),
        ("Get sent back 3+ spaces", "Take 2 drinks", 2),
        ("Use a paddle card", "Give a drink", 1),
        ("Land on another player", "Both drink", 1),
        ("Roll doubles", "Waterfall (everyone drinks until you stop)", 3),
        ("Win the game", "Everyone else finishes their drink", 0),
        ("Last place after a round", "Take a shot", 3),
    ),
    "let-that-shit-go": _rules(
        "ltsg",
        ('Draw a "Let It Go" card', "Take a drink and share a confession", 1),
        ("Someone calls you out", "Take 2 drinks", 2),
        ("Refuse to answer", "Finish your drink", 4),
        ("Make someone laugh", "Give out 2 drinks", 0),
        ("Get emotional", "Everyone takes a sympathy drink", 1),
        ("Win a challenge", "Give out 3 drinks", 0),
        ("Tell the best story", "Become drink master for next round", 0),
    ),
    "o-craps": _rules(
        "oc",
        ("Roll snake eyes (1-1)", "Take 2 drinks", 2),
        ("Roll boxcars (6-6)", "Give out 4 drinks", 0),
        ("Crap out (2, 3, or 12)", "Finish your drink", 4),
        ("Hit your point", "Give out drinks equal to point value", 0),
        ("Roll a 7 after point", "Take a shot", 3),
        ("Win 3 in a row", "Become the bartender", 0),
        ("Natural (7 or 11 on come-out)", "Everyone else drinks", 0),
    ),
    "shito": _rules(
        "sh",
        ("Mark a space", "Take a sip", 1),
        ("Miss a call (had the icon)", "Take 2 drinks", 2),
        ("Complete a row/column", "Give out 3 drinks", 0),
        ("False SHITO call", "Finish your drink", 4),
        ("Win SHITO", "Everyone else takes a shot", 0),
        ("Get the FREE space called", "Social drink (everyone)", 1),
        ("Same icon called twice", "Waterfall", 3),
    ),
    "slanging-shit": _rules(
        "ss",
        ("Team fails to guess", "Team takes 2 drinks each", 2),
        ("Use a forbidden word", "Take a shot", 3),
        ("Guess in under 10 seconds", "Other team drinks", 2),
        ("Act out something embarrassing", "Take a drink for courage", 1),
        ("Win a round", "Give out drinks equal to points earned", 0),
        ("Time runs out", "Acting player finishes their drink", 4),
        ("Perfect round (all guesses)", "Other team does a waterfall", 0),
    ),
}

INTENSITY_MULTIPLIERS: Dict[str, float] = {
    "light": 0.5,
    "medium": 1.0,
    "heavy": 2.0,
}


def scale_drinks(drinks: int, intensity: DrinkIntensity) -> int:
    # half rounds up, and every rule costs at least one drink
    return max(1, math.floor(drinks * INTENSITY_MULTIPLIERS[intensity] + 0.5))


def rules_for_game(
    game_type: str,
    intensity: DrinkIntensity = "medium",
    custom_rules: Iterable[DrinkingRule] = (),
) -> List[DrinkingRule]:
    rules = [*DEFAULT_RULES.get(game_type, []), *custom_rules]
    return [rule.model_copy(update={"drinks": scale_drinks(rule.drinks, intensity)}) for rule in rules]


def find_rule(game_type: str, rule_id: str):
    for rule in DEFAULT_RULES.get(game_type, []):
        if rule.id == rule_id:
            return rule
    return None
