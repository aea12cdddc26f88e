"""
Pure transitions over the shared ``CardGameState`` document.

Each function takes the current state and returns a new one, or ``None``
when the move is not possible (card not in hand, deck too short). Nothing
here talks to the store or the hub; ``lobby.LobbySession`` wraps these with
broadcast + persist.

Every card instance lives in exactly one place: the deck, the discard pile,
the table, or one player's hand. ``check_ownership`` verifies that.
"""
from __future__ import annotations

import random
import time
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Sequence, TypeVar

from models import CardAction, CardGameState, SyncedCard

T = TypeVar("T")


class CardOwnershipError(ValueError):
    pass


def seeded_shuffle(items: Sequence[T], seed: int) -> List[T]:
    """Reproducible permutation: the same seed always yields the same order."""
    shuffled = list(items)
    random.Random(seed).shuffle(shuffled)
    return shuffled


def new_seed() -> int:
    return int(time.time() * 1000)


def _renumber(cards: Iterable[SyncedCard]) -> List[SyncedCard]:
    return [card.model_copy(update={"position": i}) for i, card in enumerate(cards)]


def build_card_state(
    cards: Sequence[Dict[str, Any]],
    seed: Optional[int] = None,
    *,
    player_id: Optional[str] = None,
) -> CardGameState:
    """
    ``cards`` are catalog rows (at least an ``id``). Instance ids are
    ``<card id>-<index>`` so the same catalog card may appear twice.
    """
    shuffle_seed = seed if seed is not None else new_seed()
    synced = [
        SyncedCard(
            id=f"{card['id']}-{idx}",
            card_id=card["id"],
            location="deck",
            position=idx,
            metadata={"cardType": card.get("card_type"), "cardName": card.get("card_name")},
        )
        for idx, card in enumerate(cards)
    ]
    action = None
    if player_id:
        action = CardAction(type="shuffle", player_id=player_id, card_ids=[], timestamp=time.time())
    return CardGameState(
        deck_cards=_renumber(seeded_shuffle(synced, shuffle_seed)),
        shuffle_seed=shuffle_seed,
        last_action=action,
    )


def _hand(state: CardGameState, player_id: str) -> List[SyncedCard]:
    return list(state.player_hands.get(player_id, []))


def draw_cards(state: CardGameState, player_id: str, count: int = 1) -> Optional[CardGameState]:
    if count < 1 or len(state.deck_cards) < count:
        return None
    drawn = [
        card.model_copy(update={"owner_id": player_id, "location": "hand", "is_flipped": True})
        for card in state.deck_cards[:count]
    ]
    hands = dict(state.player_hands)
    hands[player_id] = _hand(state, player_id) + drawn
    return state.model_copy(
        update={
            "deck_cards": _renumber(state.deck_cards[count:]),
            "player_hands": hands,
            "current_drawer": player_id,
            "last_action": CardAction(
                type="draw",
                player_id=player_id,
                card_ids=[c.id for c in drawn],
                from_="deck",
                to="hand",
                timestamp=time.time(),
            ),
        }
    )


def _take_from_hand(state: CardGameState, player_id: str, card_id: str):
    hand = _hand(state, player_id)
    for idx, card in enumerate(hand):
        if card.id == card_id:
            return card, hand[:idx] + hand[idx + 1:]
    return None, hand


def discard_card(state: CardGameState, player_id: str, card_id: str) -> Optional[CardGameState]:
    card, rest = _take_from_hand(state, player_id, card_id)
    if card is None:
        return None
    discarded = card.model_copy(update={"owner_id": None, "location": "discard", "is_flipped": True})
    hands = dict(state.player_hands)
    hands[player_id] = rest
    # most recent first
    return state.model_copy(
        update={
            "discard_pile": _renumber([discarded, *state.discard_pile]),
            "player_hands": hands,
            "last_action": CardAction(
                type="discard",
                player_id=player_id,
                card_ids=[card_id],
                from_="hand",
                to="discard",
                timestamp=time.time(),
            ),
        }
    )


def play_card(state: CardGameState, player_id: str, card_id: str) -> Optional[CardGameState]:
    card, rest = _take_from_hand(state, player_id, card_id)
    if card is None:
        return None
    played = card.model_copy(update={"location": "table", "is_flipped": True})
    hands = dict(state.player_hands)
    hands[player_id] = rest
    return state.model_copy(
        update={
            "table_cards": _renumber([*state.table_cards, played]),
            "player_hands": hands,
            "last_action": CardAction(
                type="play",
                player_id=player_id,
                card_ids=[card_id],
                from_="hand",
                to="table",
                timestamp=time.time(),
            ),
        }
    )


def reshuffle_discard(
    state: CardGameState,
    player_id: str,
    seed: Optional[int] = None,
) -> Optional[CardGameState]:
    """Shuffle the discard pile and put it under the remaining deck."""
    if not state.discard_pile:
        return None
    shuffle_seed = seed if seed is not None else new_seed()
    recycled = [
        card.model_copy(update={"owner_id": None, "location": "deck", "is_flipped": False})
        for card in seeded_shuffle(state.discard_pile, shuffle_seed)
    ]
    return state.model_copy(
        update={
            "deck_cards": _renumber([*state.deck_cards, *recycled]),
            "discard_pile": [],
            "shuffle_seed": shuffle_seed,
            "last_action": CardAction(
                type="shuffle",
                player_id=player_id,
                card_ids=[c.id for c in recycled],
                timestamp=time.time(),
            ),
        }
    )


def all_card_ids(state: CardGameState) -> List[str]:
    ids = [c.id for c in state.deck_cards]
    ids += [c.id for c in state.discard_pile]
    ids += [c.id for c in state.table_cards]
    for hand in state.player_hands.values():
        ids += [c.id for c in hand]
    return ids


def check_ownership(state: CardGameState, expected: Optional[Iterable[str]] = None) -> None:
    """Raise ``CardOwnershipError`` if a card sits in two places or went missing."""
    ids = all_card_ids(state)
    dupes = sorted(card_id for card_id, n in Counter(ids).items() if n > 1)
    if dupes:
        raise CardOwnershipError(f"cards in more than one location: {', '.join(dupes)}")
    for owner, hand in state.player_hands.items():
        strays = [c.id for c in hand if c.owner_id != owner]
        if strays:
            raise CardOwnershipError(f"hand of {owner} holds cards owned elsewhere: {', '.join(strays)}")
    if expected is not None:
        missing = sorted(set(expected) - set(ids))
        if missing:
            raise CardOwnershipError(f"cards lost: {', '.join(missing)}")
