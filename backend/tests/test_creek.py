import copy
import logging
import random

from board import FINISH_SPACE
from creek import (
    MAX_DRAWS,
    apply_card_action,
    auto_select_target,
    execute_turn,
    pick_closest_behind,
    pick_furthest_ahead,
    _Board,
)
from card_effects import parse_card_effect
from models import CatalogCard, TurnPlayer

SHIT_PILE = 3
EXTRA_ROLL_SPACE = 6

PLAYERS = [
    TurnPlayer(player_id="a", player_name="Alice"),
    TurnPlayer(player_id="b", player_name="Bob"),
    TurnPlayer(player_id="c", player_name="Cara"),
]


def card(card_id, effect):
    return CatalogCard(id=card_id, game_id="shitz-creek", card_type="shit_pile", card_effect=effect)


def deck_of(*card_ids):
    return {
        "drawPile": list(card_ids),
        "discardPile": [],
        "totalCards": len(card_ids),
        "lastShuffled": 0.0,
        "reshuffleCount": 0,
    }


def turn(game_data, cards=(), roll=1, current_turn=0, actor="a"):
    return execute_turn(game_data, actor, PLAYERS, list(cards), current_turn, roll=roll, rng=random.Random(7))


def test_landing_on_finish_without_paddles_does_not_win():
    result = turn({"positions": {"a": 20}, "paddles": {"a": 1}}, roll=6)

    assert result.winner is None
    assert result.game_data["positions"]["a"] == FINISH_SPACE
    assert result.game_data.get("winner") is None
    assert result.game_data["currentTurn"] == 1
    assert any("needs 2 paddles" in m for m in result.messages)


def test_landing_on_finish_with_paddles_wins_before_any_card():
    cards = [card("c1", "Lose a paddle")]
    result = turn(
        {"positions": {"a": 22}, "paddles": {"a": 2}, "deckState": deck_of("c1")},
        cards=cards,
        roll=5,
    )

    assert result.winner == "a"
    assert result.game_data["winner"] == "a"
    assert result.draws == 0
    assert result.drawn_card is None
    assert result.game_data["deckState"]["drawPile"] == ["c1"]
    assert result.game_data["paddles"]["a"] == 2


def test_winner_declared_after_card_moves_player_to_finish():
    cards = [card("c1", "Take the lead")]
    game_data = {
        "positions": {"a": 0, "b": FINISH_SPACE - 1},
        "paddles": {"a": 2},
        "deckState": deck_of("c1"),
    }
    result = turn(game_data, cards=cards, roll=SHIT_PILE)

    assert result.winner == "a"
    assert result.draws == 1
    assert result.drawn_card.parsed_action.type == "take_lead"
    assert result.game_data["positions"]["a"] == FINISH_SPACE
    assert result.game_data["lastCard"] == {"text": "Take the lead", "type": "take_lead"}


def test_draw_again_chain_stops_after_three_draws():
    cards = [card(f"c{i}", "Draw again") for i in range(5)]
    result = turn({"positions": {"a": 0}}, cards=cards, roll=SHIT_PILE)

    assert result.draws == MAX_DRAWS == 3
    deck = result.game_data["deckState"]
    assert len(deck["drawPile"]) == 2
    assert len(deck["discardPile"]) == 3
    assert sorted(deck["drawPile"] + deck["discardPile"]) == sorted(c.id for c in cards)
    assert result.game_data["currentTurn"] == 1


def test_input_game_data_is_not_mutated():
    cards = [card("c1", "Move back 2 spaces")]
    game_data = {"positions": {"a": 0, "b": 4}, "paddles": {"a": 1}, "deckState": deck_of("c1")}
    before = copy.deepcopy(game_data)

    turn(game_data, cards=cards, roll=SHIT_PILE)

    assert game_data == before


def test_pending_skip_consumes_the_turn():
    result = turn({"positions": {"a": 5}, "skipTurn": {"a": True}}, roll=4)

    assert result.game_data["positions"]["a"] == 5
    assert result.game_data["skipTurn"]["a"] is False
    assert result.game_data["currentTurn"] == 1
    assert "dice" not in result.game_data


def test_extra_roll_space_keeps_the_turn():
    result = turn({"positions": {"a": 0}}, roll=EXTRA_ROLL_SPACE, current_turn=0)

    assert result.extra_roll is True
    assert result.game_data["currentTurn"] == 0
    assert result.game_data["dice"] == EXTRA_ROLL_SPACE


def test_extra_turn_card_keeps_the_turn():
    cards = [card("c1", "Take another turn")]
    result = turn({"positions": {"a": 0}, "deckState": deck_of("c1")}, cards=cards, roll=SHIT_PILE, current_turn=0)

    assert result.extra_roll is True
    assert result.game_data["currentTurn"] == 0
    assert result.game_data["extraRoll"]["a"] is False


def test_turn_wraps_around_the_player_order():
    result = turn({"positions": {"c": 0}}, roll=1, current_turn=2, actor="c")
    assert result.game_data["currentTurn"] == 0


def test_skip_yellow_token_cancels_shit_pile():
    cards = [card("c1", "Move back 2 spaces")]
    result = turn(
        {"positions": {"a": 0}, "skipYellow": {"a": True}, "deckState": deck_of("c1")},
        cards=cards,
        roll=SHIT_PILE,
    )

    assert result.draws == 0
    assert result.game_data["skipYellow"]["a"] is False
    assert result.game_data["positions"]["a"] == SHIT_PILE
    assert result.game_data["deckState"]["drawPile"] == ["c1"]


def test_card_missing_from_catalog_is_discarded_and_logged(caplog):
    cards = [card("c1", "Move back 2 spaces")]
    with caplog.at_level(logging.WARNING, logger="creek"):
        result = turn({"positions": {"a": 0}, "deckState": deck_of("ghost")}, cards=cards, roll=SHIT_PILE)

    assert result.drawn_card is None
    assert result.game_data["positions"]["a"] == SHIT_PILE
    assert result.game_data["deckState"]["discardPile"] == ["ghost"]
    assert any("wasn't found" in m for m in result.messages)
    assert "ghost" in caplog.text


def test_deck_is_built_on_first_draw_when_missing():
    cards = [card("c1", "Lose a paddle"), card("c2", "Lose a paddle")]
    result = turn({"positions": {"a": 0}, "paddles": {"a": 1}}, cards=cards, roll=SHIT_PILE)

    deck = result.game_data["deckState"]
    assert deck["totalCards"] == 2
    assert len(deck["drawPile"]) == 1
    assert len(deck["discardPile"]) == 1
    assert result.game_data["paddles"]["a"] == 0


def test_shit_pile_without_cards_or_deck_is_harmless():
    result = turn({"positions": {"a": 0}}, roll=SHIT_PILE)

    assert result.draws == 0
    assert result.game_data["deckState"] is None
    assert any("no cards are loaded" in m for m in result.messages)


def test_furthest_ahead_breaks_ties_by_player_order():
    positions = {"a": 0, "b": 5, "c": 5}
    assert pick_furthest_ahead("a", positions, PLAYERS) == "b"


def test_closest_behind_prefers_players_at_or_behind_actor():
    assert pick_closest_behind("a", {"a": 10, "b": 4, "c": 8}, PLAYERS) == "c"
    # nobody behind: fall back to the nearest player overall
    assert pick_closest_behind("a", {"a": 0, "b": 5, "c": 3}, PLAYERS) == "c"


def test_auto_target_depends_on_action_kind():
    positions = {"a": 10, "b": 4, "c": 12}
    steal = parse_card_effect("Steal a paddle from any player")
    gift = parse_card_effect("Gift a paddle to any player")
    solo = parse_card_effect("Move back 2 spaces")

    assert auto_select_target(steal, "a", positions, PLAYERS) == "c"
    assert auto_select_target(gift, "a", positions, PLAYERS) == "b"
    assert auto_select_target(solo, "a", positions, PLAYERS) is None
    # same inputs, same answer
    assert auto_select_target(steal, "a", positions, PLAYERS) == auto_select_target(steal, "a", positions, PLAYERS)


def test_steal_from_player_without_paddle_entry_uses_starting_count():
    board = _Board.from_game_data({"positions": {"a": 0, "b": 3}, "paddles": {"a": 1}}, PLAYERS)
    draw_again, _ = apply_card_action(parse_card_effect("Steal a paddle"), "a", "b", board)

    assert draw_again is False
    assert board.paddles == {"a": 2, "b": 0}


def test_gift_right_wraps_to_first_player():
    board = _Board.from_game_data({"paddles": {"c": 2}}, PLAYERS)
    apply_card_action(parse_card_effect("Give a paddle to the player on your right"), "c", None, board)

    assert board.paddles["c"] == 1
    assert board.paddles["a"] == 2


def test_send_player_to_space_moves_target_only():
    board = _Board.from_game_data({"positions": {"a": 8, "b": 12}}, PLAYERS)
    apply_card_action(parse_card_effect("Send another player to the Sewer"), "a", "b", board)

    assert board.positions["b"] == 10
    assert board.positions["a"] == 8
