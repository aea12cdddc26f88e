"""
Persistent draw/discard deck for the board-race game.

Cards are tracked like a physical deck instead of being drawn with
replacement. The state lives inside the room's ``game_data["deckState"]``.

Shuffles are uniform Fisher-Yates permutations from ``random`` and are not
reproducible unless the caller passes its own ``random.Random``.

A drawn card belongs to neither pile until the caller resolves it and hands
it back through ``discard``.
"""
from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from models import DeckState

logger = logging.getLogger(__name__)


def shuffle_cards(card_ids: Sequence[str], rng: Optional[random.Random] = None) -> List[str]:
    shuffled = list(card_ids)
    (rng or random).shuffle(shuffled)
    return shuffled


def initialize_deck(card_ids: Iterable[str], rng: Optional[random.Random] = None) -> DeckState:
    ids = list(card_ids)
    return DeckState(
        draw_pile=shuffle_cards(ids, rng),
        discard_pile=[],
        total_cards=len(ids),
        last_shuffled=time.time(),
        reshuffle_count=0,
    )


@dataclass
class DrawResult:
    card_id: Optional[str]
    deck_state: DeckState
    reshuffled: bool = False


def draw_from_deck(deck: DeckState, rng: Optional[random.Random] = None) -> DrawResult:
    draw_pile = list(deck.draw_pile)
    discard_pile = list(deck.discard_pile)
    reshuffled = False
    last_shuffled = deck.last_shuffled
    reshuffle_count = deck.reshuffle_count

    if not draw_pile:
        if not discard_pile:
            return DrawResult(card_id=None, deck_state=deck.model_copy(deep=True), reshuffled=False)
        draw_pile = shuffle_cards(discard_pile, rng)
        discard_pile = []
        reshuffled = True
        last_shuffled = time.time()
        reshuffle_count += 1
        logger.info("Discard pile reshuffled into a new draw pile (%s cards)", len(draw_pile))

    card_id = draw_pile.pop(0)
    return DrawResult(
        card_id=card_id,
        deck_state=DeckState(
            draw_pile=draw_pile,
            discard_pile=discard_pile,
            total_cards=deck.total_cards,
            last_shuffled=last_shuffled,
            reshuffle_count=reshuffle_count,
        ),
        reshuffled=reshuffled,
    )


def discard(deck: DeckState, card_id: str) -> DeckState:
    if card_id in deck.discard_pile or card_id in deck.draw_pile:
        return deck
    return deck.model_copy(update={"discard_pile": [*deck.discard_pile, card_id]})


def is_deck_empty(deck: DeckState) -> bool:
    return not deck.draw_pile


def cards_remaining(deck: DeckState) -> int:
    return len(deck.draw_pile)


def cards_discarded(deck: DeckState) -> int:
    return len(deck.discard_pile)
