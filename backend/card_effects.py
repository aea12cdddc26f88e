"""
Free-text shit-pile card effects -> structured actions.

Card effects are stored as English sentences ("Move back 2 spaces",
"Steal a paddle from any player"). ``CARD_RULES`` is an ordered table: the
first rule whose predicate accepts the normalised text decides the action
kind. Add new wording by inserting a rule, earlier rules win.

Unknown wording never raises; it becomes a ``no_effect`` action that still
carries the original text for display.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from models import ParsedCardAction

NUMBER_WORDS = {
    "ONE": 1, "TWO": 2, "THREE": 3, "FOUR": 4, "FIVE": 5,
    "SIX": 6, "SEVEN": 7, "EIGHT": 8, "NINE": 9, "TEN": 10,
}
_NUMBER_RE = re.compile(r"\b(\d+|" + "|".join(NUMBER_WORDS) + r")\b")

# first hit wins, so longer / more specific wording goes first
SPACE_KEYWORDS: List[Tuple[str, str]] = [
    ("SHIT PILE", "shit_pile"),
    ("YELLOW", "shit_pile"),
    ("SHITFACED", "shitfaced"),
    ("SEWER", "sewer"),
    ("PADDLE SHOP", "paddle_shop"),
    ("TO PADDLE", "paddle_shop"),
    ("SHOP", "paddle_shop"),
    ("DOG POO", "dog_poo"),
    ("CLEAN DOG", "dog_poo"),
    ("CROSSING", "crossing"),
    ("BLUE", "blue"),
    ("GREEN", "green"),
    ("START", "start"),
]

Predicate = Callable[[str], bool]


def _all(*words: str) -> Predicate:
    return lambda e: all(w in e for w in words)


def _any(*words: str) -> Predicate:
    return lambda e: any(w in e for w in words)


def _exact(*options: str) -> Predicate:
    return lambda e: e in options


def _either(*preds: Predicate) -> Predicate:
    return lambda e: any(p(e) for p in preds)


def _unless(pred: Predicate, *words: str) -> Predicate:
    return lambda e: pred(e) and not any(w in e for w in words)


@dataclass(frozen=True)
class CardRule:
    kind: str
    matches: Predicate
    default_value: Optional[int] = None
    target_space: Optional[str] = None
    space_from_text: bool = False
    needs_player_select: bool = False


CARD_RULES: List[CardRule] = [
    CardRule("draw_again", _any("DRAW AGAIN", "DRAW ANOTHER")),
    CardRule("extra_turn", _any("TAKE ANOTHER TURN", "EXTRA TURN", "ROLL AGAIN")),
    CardRule("skip_yellow", _either(_all("SKIP", "YELLOW"), _all("SKIP", "SHIT PILE"))),
    CardRule("lose_turn", _any("LOSE TURN", "LOSE A TURN", "LOSE YOUR NEXT TURN", "MISS A TURN", "SKIP YOUR NEXT TURN")),
    CardRule("go_back_with_player", _any("GO BACK WITH"), default_value=3),
    CardRule("behind_leader", _any("BEHIND LEADER", "BEHIND THE LEADER"), default_value=3),
    CardRule("move_player_behind_last", _any("MOVE A PLAYER BEHIND", "BEHIND LAST", "BEHIND THE LAST"),
             needs_player_select=True),
    CardRule("move_both_to_space", _any("YOU AND ANOTHER"), space_from_text=True, needs_player_select=True),
    CardRule("send_player_to", _any("SEND", "ANOTHER PLAYER TO", "ANOTHER TO"), space_from_text=True,
             needs_player_select=True),
    CardRule("bring_all_players", _any("BRING ALL", "BRING EVERYONE")),
    CardRule("bring_player", _any("BRING"), needs_player_select=True),
    CardRule("paddle_steal", _either(_all("STEAL", "PADDLE"), _any("TAKE A PADDLE FROM"), _exact("TAKE A PADDLE")),
             needs_player_select=True),
    CardRule("paddle_gift_right", _either(_all("GIFT", "PADDLE", "RIGHT"), _all("GIVE", "PADDLE", "RIGHT"))),
    CardRule("paddle_gift_choose", _either(_all("GIFT", "PADDLE"), _all("GIVE", "PADDLE")),
             needs_player_select=True),
    CardRule("go_to_space_and_gain_paddle", _all("SHOP", "GET A PADDLE"), target_space="paddle_shop"),
    CardRule("paddle_lose", _either(_all("LOSE", "PADDLE"), _any("PUT PADDLE BACK", "RETURN A PADDLE"))),
    CardRule("paddle_gain", _either(_any("GET A PADDLE", "FREE PADDLE", "FOUND", "EXTRA PADDLE"), _all("GAIN", "PADDLE"))),
    CardRule("take_lead", _any("TAKE A LEAD", "TAKE THE LEAD", "MOVE TO THE LEAD", "AHEAD OF EVERYONE")),
    CardRule("move_ahead_of_player", _any("AHEAD OF ANY PLAYER", "AHEAD OF A PLAYER", "AHEAD OF ANOTHER"),
             needs_player_select=True),
    CardRule("go_to_space", _unless(_any("GO ", "MOVE ", "RETURN", "CLOSEST", "NEXT", "HEAD "), "SPACES BACK"),
             space_from_text=True),
    CardRule("move_back", _any("BACK"), default_value=2),
    CardRule("move_forward", _any("AHEAD", "FORWARD", "ADVANCE"), default_value=2),
]


def normalize_effect(text: str) -> str:
    return " ".join(text.upper().split())


def extract_number(e: str) -> Optional[int]:
    match = _NUMBER_RE.search(e)
    if not match:
        return None
    token = match.group(1)
    return int(token) if token.isdigit() else NUMBER_WORDS[token]


def space_from_text(e: str) -> Optional[str]:
    for keyword, space_type in SPACE_KEYWORDS:
        if keyword in e:
            return space_type
    return None


def parse_card_effect(effect_text: Optional[str]) -> ParsedCardAction:
    original = effect_text if isinstance(effect_text, str) else ""
    e = normalize_effect(original)
    if not e:
        return ParsedCardAction(type="no_effect", text=original)

    for rule in CARD_RULES:
        if not rule.matches(e):
            continue
        target = rule.target_space
        if rule.space_from_text:
            target = space_from_text(e)
            if target is None:
                continue
        value = None
        if rule.default_value is not None:
            value = extract_number(e) or rule.default_value
        return ParsedCardAction(
            type=rule.kind,
            value=value,
            target_space=target,
            needs_player_select=rule.needs_player_select,
            text=original,
        )

    return ParsedCardAction(type="no_effect", text=original)
