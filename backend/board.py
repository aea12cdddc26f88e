"""Static board layout for Up Shitz Creek."""
from __future__ import annotations

from typing import List

from models import SpaceEffect, SpaceType


def _space(type_: str, text: str, emoji: str, space_type: str, name: str, value=None) -> SpaceEffect:
    return SpaceEffect(type=type_, value=value, text=text, emoji=emoji, space_type=space_type, space_name=name)


SPACE_EFFECTS: List[SpaceEffect] = [
    _space("none", "Start! Begin your journey up Shitz Creek!", "🚀", "start", "START"),
    _space("paddle_gain", "Paddle Shop! +1 Paddle", "🏪", "paddle_shop", "PADDLE SHOP", 1),
    _space("none", "Blue space - Safe waters!", "🔵", "blue", "BLUE"),
    _space("draw_card", "Shit Pile! Draw a card!", "💩", "shit_pile", "SHIT PILE"),
    _space("move_back", "Dog Poo! Go back 2!", "🐕", "dog_poo", "DOG POO", 2),
    _space("none", "Green space - Smooth sailing!", "🟢", "green", "GREEN"),
    _space("extra_roll", "Blue space - Roll again!", "🔵", "blue", "BLUE"),
    _space("draw_card", "Shit Pile! Draw a card!", "💩", "shit_pile", "SHIT PILE"),
    _space("none", "Crossing - Safe checkpoint!", "🚧", "crossing", "CROSSING"),
    _space("paddle_lose", "Red space - Lost a paddle! -1", "🔴", "red", "RED", 1),
    _space("skip_turn", "Sewer! Skip next turn!", "🕳️", "sewer", "SEWER"),
    _space("draw_card", "Shit Pile! Draw a card!", "💩", "shit_pile", "SHIT PILE"),
    _space("move_forward", "Green space - Forward 2!", "🟢", "green", "GREEN", 2),
    _space("move_back", "Shitfaced! Go back 3!", "🥴", "shitfaced", "SHITFACED", 3),
    _space("paddle_gain", "Blue space - Found a paddle! +1", "🔵", "blue", "BLUE", 1),
    _space("draw_card", "Shit Pile! Draw a card!", "💩", "shit_pile", "SHIT PILE"),
    _space("none", "Green space - Rest here.", "🟢", "green", "GREEN"),
    _space("swap_random", "Red - Swap with a random player!", "🔴", "red", "RED"),
    _space("paddle_gain", "Paddle Shop! +1 Paddle", "🏪", "paddle_shop", "PADDLE SHOP", 1),
    _space("draw_card", "Shit Pile! Draw a card!", "💩", "shit_pile", "SHIT PILE"),
    _space("none", "Crossing - Safe checkpoint!", "🚧", "crossing", "CROSSING"),
    _space("move_back", "Dog Poo! Go back 2!", "🐕", "dog_poo", "DOG POO", 2),
    _space("none", "Blue space - Calm waters.", "🔵", "blue", "BLUE"),
    _space("draw_card", "Shit Pile! Draw a card!", "💩", "shit_pile", "SHIT PILE"),
    _space("extra_roll", "Blue space - Final push! Roll again!", "🔵", "blue", "BLUE"),
    _space("none", "Finish! Need 2 paddles to win!", "🏁", "finish", "FINISH"),
]

TOTAL_SPACES = len(SPACE_EFFECTS)
FINISH_SPACE = TOTAL_SPACES - 1

UNKNOWN_SPACE = SpaceEffect(type="none", text="Unknown space", emoji="❓", space_type="safe")


def space_effect(index: int) -> SpaceEffect:
    if index < 0 or index >= TOTAL_SPACES:
        return UNKNOWN_SPACE
    return SPACE_EFFECTS[index]


def space_name(index: int, fallback: str = "") -> str:
    effect = space_effect(index)
    return effect.space_name or fallback


def find_next_space_of_type(from_index: int, space_type: SpaceType) -> int:
    """Next matching space ahead, wrapping to the start; stays put if none."""
    for i in range(from_index + 1, TOTAL_SPACES):
        if SPACE_EFFECTS[i].space_type == space_type:
            return i
    for i in range(0, min(from_index, FINISH_SPACE) + 1):
        if SPACE_EFFECTS[i].space_type == space_type:
            return i
    return from_index


def find_closest_space_of_type(from_index: int, space_type: SpaceType) -> int:
    """Nearest other matching space in either direction; ties go to the lower index."""
    closest = -1
    closest_dist = None
    for i, effect in enumerate(SPACE_EFFECTS):
        if i == from_index or effect.space_type != space_type:
            continue
        dist = abs(i - from_index)
        if closest_dist is None or dist < closest_dist:
            closest, closest_dist = i, dist
    return closest if closest >= 0 else from_index
