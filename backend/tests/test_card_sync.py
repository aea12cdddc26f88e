import pytest

import card_sync
from card_sync import CardOwnershipError, build_card_state, check_ownership, seeded_shuffle

CATALOG = [{"id": f"card{i}", "card_type": "shit", "card_name": f"Card {i}"} for i in range(25)]


def instance_ids(state):
    return sorted(card_sync.all_card_ids(state))


@pytest.fixture
def state():
    return build_card_state(CATALOG, 42, player_id="alice")


def test_build_puts_every_card_in_the_deck(state):
    assert len(state.deck_cards) == 25
    assert state.discard_pile == []
    assert state.player_hands == {}
    assert state.shuffle_seed == 42
    assert [c.position for c in state.deck_cards] == list(range(25))
    assert all(c.location == "deck" and c.owner_id is None for c in state.deck_cards)
    assert state.last_action.type == "shuffle"


def test_same_seed_gives_same_order():
    first = build_card_state(CATALOG, 42)
    second = build_card_state(CATALOG, 42)
    other = build_card_state(CATALOG, 43)

    assert [c.id for c in first.deck_cards] == [c.id for c in second.deck_cards]
    assert [c.id for c in first.deck_cards] != [c.id for c in other.deck_cards]


def test_seeded_shuffle_is_a_permutation():
    items = list(range(50))
    shuffled = seeded_shuffle(items, 9)
    assert sorted(shuffled) == items
    assert items == list(range(50))


def test_duplicate_catalog_cards_get_distinct_instances():
    state = build_card_state([{"id": "x"}, {"id": "x"}], 1)
    assert sorted(c.id for c in state.deck_cards) == ["x-0", "x-1"]
    assert {c.card_id for c in state.deck_cards} == {"x"}


def test_draw_moves_top_card_to_hand(state):
    top = state.deck_cards[0].id
    after = card_sync.draw_cards(state, "alice")

    assert len(after.deck_cards) == 24
    assert [c.id for c in after.player_hands["alice"]] == [top]
    drawn = after.player_hands["alice"][0]
    assert drawn.owner_id == "alice" and drawn.location == "hand" and drawn.is_flipped
    assert after.current_drawer == "alice"
    assert after.last_action.type == "draw"
    assert after.last_action.card_ids == [top]
    # input untouched
    assert len(state.deck_cards) == 25


def test_draw_more_than_deck_is_rejected():
    state = build_card_state(CATALOG[:2], 1)
    assert card_sync.draw_cards(state, "alice", 3) is None
    assert card_sync.draw_cards(state, "alice", 0) is None
    assert len(card_sync.draw_cards(state, "alice", 2).player_hands["alice"]) == 2


def test_discard_puts_most_recent_first(state):
    state = card_sync.draw_cards(state, "alice", 2)
    first, second = [c.id for c in state.player_hands["alice"]]

    state = card_sync.discard_card(state, "alice", first)
    state = card_sync.discard_card(state, "alice", second)

    assert [c.id for c in state.discard_pile] == [second, first]
    assert all(c.owner_id is None and c.location == "discard" for c in state.discard_pile)
    assert state.player_hands["alice"] == []


def test_cannot_discard_someone_elses_card(state):
    state = card_sync.draw_cards(state, "alice")
    card_id = state.player_hands["alice"][0].id
    assert card_sync.discard_card(state, "bob", card_id) is None
    assert card_sync.play_card(state, "bob", card_id) is None


def test_play_moves_card_to_table(state):
    state = card_sync.draw_cards(state, "alice")
    card_id = state.player_hands["alice"][0].id
    state = card_sync.play_card(state, "alice", card_id)

    assert [c.id for c in state.table_cards] == [card_id]
    assert state.table_cards[0].location == "table"
    assert state.last_action.to == "table"


def test_reshuffle_returns_discards_under_the_deck(state):
    state = card_sync.draw_cards(state, "alice", 3)
    for card in list(state.player_hands["alice"]):
        state = card_sync.discard_card(state, "alice", card.id)
    remaining = [c.id for c in state.deck_cards]

    state = card_sync.reshuffle_discard(state, "alice", seed=5)

    assert state.discard_pile == []
    assert len(state.deck_cards) == 25
    assert [c.id for c in state.deck_cards[:22]] == remaining
    assert all(c.location == "deck" and not c.is_flipped for c in state.deck_cards)
    assert state.shuffle_seed == 5


def test_reshuffle_with_empty_discard_is_rejected(state):
    assert card_sync.reshuffle_discard(state, "alice") is None


def test_cards_are_never_lost_or_duplicated(state):
    expected = instance_ids(state)
    state = card_sync.draw_cards(state, "alice", 3)
    state = card_sync.draw_cards(state, "bob", 2)
    state = card_sync.discard_card(state, "alice", state.player_hands["alice"][0].id)
    state = card_sync.play_card(state, "bob", state.player_hands["bob"][0].id)
    state = card_sync.reshuffle_discard(state, "bob", seed=3)

    check_ownership(state, expected)
    assert instance_ids(state) == expected


def test_check_ownership_flags_duplicates(state):
    state = card_sync.draw_cards(state, "alice")
    broken = state.model_copy(update={"deck_cards": [*state.deck_cards, state.player_hands["alice"][0]]})
    with pytest.raises(CardOwnershipError):
        check_ownership(broken)


def test_check_ownership_flags_missing_cards(state):
    expected = instance_ids(state)
    broken = state.model_copy(update={"deck_cards": state.deck_cards[1:]})
    with pytest.raises(CardOwnershipError, match="lost"):
        check_ownership(broken, expected)


def test_payload_uses_camel_case(state):
    payload = card_sync.draw_cards(state, "alice").to_payload()
    assert set(payload) >= {"deckCards", "discardPile", "tableCards", "playerHands", "currentDrawer", "shuffleSeed"}
    assert payload["lastAction"]["from"] == "deck"
    assert "cardId" in payload["deckCards"][0]
