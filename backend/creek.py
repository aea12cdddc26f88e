"""
Turn resolution for Up Shitz Creek.

``execute_turn`` takes the room's ``game_data`` and returns a new one; the
input is never mutated. One turn runs:

1. skip check (a pending skip consumes the turn, no roll);
2. roll and move, clamped at the finish;
3. win check before any card: finish + at least ``PADDLES_TO_WIN``;
4. landing-space effect (a skip-hazard token cancels a shit pile);
5. card draws from the persistent deck, ``draw again`` capped at
   ``MAX_DRAWS``;
6. win check after the cards;
7. turn advance unless an extra roll was granted.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from board import FINISH_SPACE, find_closest_space_of_type, find_next_space_of_type, space_effect, space_name
from card_effects import parse_card_effect
from deck import discard, draw_from_deck, initialize_deck
from catalog import CardCatalog
from lobby import LobbySession
from models import CatalogCard, DeckState, ParsedCardAction, TurnPlayer

logger = logging.getLogger(__name__)

MAX_DRAWS = 3
PADDLES_TO_WIN = 2
STARTING_PADDLES = 1

# actions that help the chosen player; everything else targets the leader
GIFT_ACTIONS = {"paddle_gift_choose", "bring_player"}


# ----------------------------------------------------------------------
# Target selection
# ----------------------------------------------------------------------
def pick_furthest_ahead(actor_id: str, positions: Dict[str, int], players: Sequence[TurnPlayer]) -> Optional[str]:
    best: Optional[str] = None
    best_pos = -1
    for p in players:
        if p.player_id == actor_id:
            continue
        pos = positions.get(p.player_id, 0)
        if pos > best_pos:
            best, best_pos = p.player_id, pos
    return best


def pick_closest_behind(actor_id: str, positions: Dict[str, int], players: Sequence[TurnPlayer]) -> Optional[str]:
    actor_pos = positions.get(actor_id, 0)
    best: Optional[str] = None
    best_dist: Optional[int] = None
    for p in players:
        if p.player_id == actor_id:
            continue
        pos = positions.get(p.player_id, 0)
        if pos <= actor_pos and (best_dist is None or actor_pos - pos < best_dist):
            best, best_dist = p.player_id, actor_pos - pos
    if best is not None:
        return best
    return pick_closest(actor_id, positions, players)


def pick_closest(actor_id: str, positions: Dict[str, int], players: Sequence[TurnPlayer]) -> Optional[str]:
    actor_pos = positions.get(actor_id, 0)
    best: Optional[str] = None
    best_dist: Optional[int] = None
    for p in players:
        if p.player_id == actor_id:
            continue
        dist = abs(positions.get(p.player_id, 0) - actor_pos)
        if best_dist is None or dist < best_dist:
            best, best_dist = p.player_id, dist
    return best


def player_to_right(actor_id: str, players: Sequence[TurnPlayer]) -> Optional[str]:
    ids = [p.player_id for p in players]
    if actor_id not in ids or len(ids) < 2:
        return None
    return ids[(ids.index(actor_id) + 1) % len(ids)]


def auto_select_target(
    action: ParsedCardAction,
    actor_id: str,
    positions: Dict[str, int],
    players: Sequence[TurnPlayer],
) -> Optional[str]:
    if not action.needs_player_select:
        return None
    if action.type in GIFT_ACTIONS:
        return pick_closest_behind(actor_id, positions, players)
    return pick_furthest_ahead(actor_id, positions, players)


# ----------------------------------------------------------------------
# Mutable per-turn state
# ----------------------------------------------------------------------
@dataclass
class _Board:
    positions: Dict[str, int]
    paddles: Dict[str, int]
    skip_turn: Dict[str, bool]
    extra_roll: Dict[str, bool]
    skip_yellow: Dict[str, bool]
    players: Sequence[TurnPlayer]

    @classmethod
    def from_game_data(cls, game_data: Dict[str, Any], players: Sequence[TurnPlayer]) -> "_Board":
        return cls(
            positions={k: int(v) for k, v in (game_data.get("positions") or {}).items()},
            paddles={k: int(v) for k, v in (game_data.get("paddles") or {}).items()},
            skip_turn=dict(game_data.get("skipTurn") or {}),
            extra_roll=dict(game_data.get("extraRoll") or {}),
            skip_yellow=dict(game_data.get("skipYellow") or {}),
            players=players,
        )

    def name(self, player_id: Optional[str]) -> str:
        for p in self.players:
            if p.player_id == player_id:
                return p.player_name
        return "someone"

    def pos(self, player_id: str) -> int:
        return self.positions.get(player_id, 0)

    def leader_pos(self) -> int:
        return max(self.positions.values(), default=0)

    def last_pos(self) -> int:
        return min(self.positions.values(), default=0)

    def has_won(self, player_id: str) -> bool:
        return self.pos(player_id) >= FINISH_SPACE and self.paddles.get(player_id, 0) >= PADDLES_TO_WIN

    def dump(self) -> Dict[str, Any]:
        return {
            "positions": self.positions,
            "paddles": self.paddles,
            "skipTurn": self.skip_turn,
            "extraRoll": self.extra_roll,
            "skipYellow": self.skip_yellow,
        }


@dataclass
class DrawnCard:
    card: CatalogCard
    parsed_action: ParsedCardAction
    target_player_id: Optional[str] = None


@dataclass
class TurnResult:
    game_data: Dict[str, Any]
    messages: List[str] = field(default_factory=list)
    drawn_card: Optional[DrawnCard] = None
    extra_roll: bool = False
    winner: Optional[str] = None
    draws: int = 0


# ----------------------------------------------------------------------
# Card application
# ----------------------------------------------------------------------
def apply_card_action(
    action: ParsedCardAction,
    actor_id: str,
    target_id: Optional[str],
    board: _Board,
) -> tuple[bool, str]:
    """Mutates ``board``. Returns (draw_again, narration)."""
    pos = board.positions
    pad = board.paddles
    actor = board.name(actor_id)
    my_pos = board.pos(actor_id)
    pad.setdefault(actor_id, STARTING_PADDLES)
    amount = action.value or 2
    message = action.text or f"{actor} drew a card with no effect"

    kind = action.type
    if kind == "move_back":
        pos[actor_id] = max(0, my_pos - amount)
        message = f"{actor} moved back {amount} spaces"
    elif kind == "move_forward":
        pos[actor_id] = min(FINISH_SPACE, my_pos + amount)
        message = f"{actor} moved forward {amount} spaces"
    elif kind == "paddle_gain":
        pad[actor_id] += 1
        message = f"{actor} gained a paddle! +1"
    elif kind == "paddle_lose":
        pad[actor_id] = max(0, pad[actor_id] - 1)
        message = f"{actor} lost a paddle! -1"
    elif kind == "paddle_steal":
        if target_id and pad.get(target_id, STARTING_PADDLES) > 0:
            pad.setdefault(target_id, STARTING_PADDLES)
            pad[target_id] -= 1
            pad[actor_id] += 1
            message = f"{actor} stole a paddle from {board.name(target_id)}!"
        else:
            message = f"{actor} tried to steal but the target has no paddles"
    elif kind in ("paddle_gift_right", "paddle_gift_choose"):
        receiver = player_to_right(actor_id, board.players) if kind == "paddle_gift_right" else target_id
        if receiver and pad[actor_id] > 0:
            pad[actor_id] -= 1
            pad[receiver] = pad.get(receiver, STARTING_PADDLES) + 1
            message = f"{actor} gifted a paddle to {board.name(receiver)}"
    elif kind == "lose_turn":
        board.skip_turn[actor_id] = True
        message = f"{actor} loses the next turn!"
    elif kind == "extra_turn":
        board.extra_roll[actor_id] = True
        message = f"{actor} gets another turn!"
    elif kind == "draw_again":
        return True, f"{actor} draws again!"
    elif kind == "go_to_space" and action.target_space:
        if action.target_space == "shit_pile":
            target = find_closest_space_of_type(my_pos, action.target_space)
        else:
            target = find_next_space_of_type(my_pos, action.target_space)
        pos[actor_id] = target
        message = f"{actor} moved to {space_name(target, action.target_space)} (space {target})"
    elif kind == "go_to_space_and_gain_paddle" and action.target_space:
        pos[actor_id] = find_closest_space_of_type(my_pos, action.target_space)
        pad[actor_id] += 1
        message = f"{actor} moved to the Paddle Shop and got a free paddle!"
    elif kind == "take_lead":
        leader = board.leader_pos()
        if leader > my_pos:
            pos[actor_id] = min(leader + 1, FINISH_SPACE)
        message = f"{actor} took the lead!"
    elif kind == "move_ahead_of_player":
        if target_id:
            pos[actor_id] = min(board.pos(target_id) + 1, FINISH_SPACE)
            message = f"{actor} moved ahead of {board.name(target_id)}!"
    elif kind == "behind_leader":
        back = action.value or 3
        pos[actor_id] = max(0, board.leader_pos() - back)
        message = f"{actor} moved to {back} spaces behind the leader"
    elif kind == "send_player_to":
        if target_id and action.target_space:
            target = find_closest_space_of_type(board.pos(target_id), action.target_space)
            pos[target_id] = target
            message = f"{actor} sent {board.name(target_id)} to {space_name(target, action.target_space)}!"
    elif kind == "bring_player":
        if target_id:
            pos[target_id] = my_pos
            message = f"{actor} brought {board.name(target_id)} to their space!"
    elif kind == "bring_all_players":
        for p in board.players:
            pos[p.player_id] = my_pos
        message = f"{actor} brought all players to their space!"
    elif kind == "go_back_with_player":
        back = action.value or 3
        closest = pick_closest(actor_id, pos, board.players)
        pos[actor_id] = max(0, my_pos - back)
        if closest:
            pos[closest] = max(0, board.pos(closest) - back)
            message = f"{actor} and {board.name(closest)} went back {back} spaces!"
        else:
            message = f"{actor} went back {back} spaces!"
    elif kind == "move_player_behind_last":
        if target_id:
            pos[target_id] = max(0, board.last_pos() - 1)
            message = f"{actor} moved {board.name(target_id)} behind last place!"
    elif kind == "skip_yellow":
        board.skip_yellow[actor_id] = True
        message = f"{actor} got a Skip Yellow Space token!"
    elif kind == "move_both_to_space" and action.target_space:
        target = find_closest_space_of_type(my_pos, action.target_space)
        pos[actor_id] = target
        if target_id:
            pos[target_id] = target
            message = f"{actor} and {board.name(target_id)} moved to {space_name(target, action.target_space)}!"
    return False, message


def _apply_space_effect(
    landing: int,
    actor_id: str,
    board: _Board,
    rng: random.Random,
    messages: List[str],
) -> tuple[bool, bool]:
    """Returns (needs_card, extra_roll)."""
    effect = space_effect(landing)
    if effect.type == "none":
        return False, False

    actor = board.name(actor_id)
    pos = board.positions
    pad = board.paddles
    messages.append(f"Space {landing}: {effect.text}")

    if effect.space_type == "shit_pile" and board.skip_yellow.get(actor_id):
        board.skip_yellow[actor_id] = False
        messages.append(f"{actor} used a Skip Yellow token to avoid the Shit Pile!")
        return False, False

    if effect.type == "paddle_gain":
        pad[actor_id] = pad.get(actor_id, STARTING_PADDLES) + (effect.value or 1)
        messages.append(f"{actor} gained {effect.value or 1} paddle(s)! Now has {pad[actor_id]}.")
    elif effect.type == "paddle_lose":
        pad[actor_id] = max(0, pad.get(actor_id, STARTING_PADDLES) - (effect.value or 1))
        messages.append(f"{actor} lost {effect.value or 1} paddle(s)! Now has {pad[actor_id]}.")
    elif effect.type == "move_forward":
        pos[actor_id] = min(FINISH_SPACE, landing + (effect.value or 2))
        messages.append(f"{actor} moved forward {effect.value or 2} extra spaces to space {pos[actor_id]}.")
    elif effect.type == "move_back":
        pos[actor_id] = max(0, landing - (effect.value or 2))
        messages.append(f"{actor} moved back {effect.value or 2} spaces to space {pos[actor_id]}.")
    elif effect.type == "go_to_start":
        pos[actor_id] = 0
        messages.append(f"{actor} was sent back to Start!")
    elif effect.type == "take_lead":
        leader = board.leader_pos()
        if leader > board.pos(actor_id):
            pos[actor_id] = min(leader + 1, FINISH_SPACE)
            messages.append(f"{actor} took the lead at space {pos[actor_id]}!")
    elif effect.type == "skip_turn":
        board.skip_turn[actor_id] = True
        messages.append(f"{actor} must skip their next turn!")
    elif effect.type == "extra_roll":
        messages.append(f"{actor} gets to roll again!")
        return False, True
    elif effect.type == "swap_random":
        others = [p for p in board.players if p.player_id != actor_id]
        if others:
            other = rng.choice(others)
            mine, theirs = board.pos(actor_id), board.pos(other.player_id)
            pos[actor_id], pos[other.player_id] = theirs, mine
            messages.append(f"{actor} swapped positions with {other.player_name}!")
    elif effect.type == "draw_card":
        return True, False
    return False, False


# ----------------------------------------------------------------------
# Full turn
# ----------------------------------------------------------------------
def execute_turn(
    game_data: Dict[str, Any],
    actor_id: str,
    players: Sequence[TurnPlayer],
    cards: Sequence[CatalogCard],
    current_turn: int,
    *,
    roll: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> TurnResult:
    rng = rng or random.Random()
    messages: List[str] = []
    board = _Board.from_game_data(game_data, players)
    board.paddles.setdefault(actor_id, STARTING_PADDLES)
    actor = board.name(actor_id) if any(p.player_id == actor_id for p in players) else "Bot"
    player_count = max(1, len(players))
    card_map = {card.id: card for card in cards}

    deck_state = None
    if game_data.get("deckState"):
        deck_state = DeckState.model_validate(game_data["deckState"])
    elif cards:
        deck_state = initialize_deck([card.id for card in cards], rng)
        messages.append("Deck initialised for this turn.")

    def finish(**extra: Any) -> Dict[str, Any]:
        data = {**game_data, **board.dump(), **extra}
        data["deckState"] = deck_state.model_dump(by_alias=True) if deck_state else None
        return data

    # 1. skip check
    if board.skip_turn.get(actor_id):
        board.skip_turn[actor_id] = False
        messages.append(f"{actor} skipped their turn.")
        next_turn = (current_turn + 1) % player_count
        return TurnResult(game_data=finish(currentTurn=next_turn), messages=messages)

    # 2. roll and move
    if roll is None:
        roll = rng.randint(1, 6)
    landing = min(board.pos(actor_id) + roll, FINISH_SPACE)
    board.positions[actor_id] = landing
    messages.append(f"{actor} rolled a {roll} and moved to space {landing}.")

    # 3. win check before any card is drawn
    if board.has_won(actor_id):
        messages.append(f"{actor} reached the finish with {board.paddles[actor_id]} paddles and WINS!")
        return TurnResult(
            game_data=finish(dice=roll, winner=actor_id),
            messages=messages,
            winner=actor_id,
        )
    if landing >= FINISH_SPACE:
        messages.append(
            f"{actor} reached the finish but needs {PADDLES_TO_WIN} paddles "
            f"(has {board.paddles.get(actor_id, 0)}). Must collect more!"
        )

    # 4. space effect
    needs_card, grant_extra_roll = _apply_space_effect(landing, actor_id, board, rng, messages)

    # 5. card draws
    drawn: Optional[DrawnCard] = None
    draws = 0
    if needs_card and deck_state is None:
        messages.append(f"{actor} landed on a Shit Pile but no cards are loaded!")
    elif needs_card:
        draw_again = True
        while draw_again and draws < MAX_DRAWS:
            draw_again = False
            draws += 1
            result = draw_from_deck(deck_state, rng)
            deck_state = result.deck_state
            if result.card_id is None:
                messages.append(f"{actor} tried to draw but the deck is completely empty!")
                break
            if result.reshuffled:
                messages.append(
                    f"Deck was empty, discard pile reshuffled back in! ({len(deck_state.draw_pile) + 1} cards)"
                )

            card = card_map.get(result.card_id)
            deck_state = discard(deck_state, result.card_id)
            if card is None:
                logger.warning("Drawn card %s is missing from the local catalog", result.card_id)
                messages.append(f"{actor} drew card ID {result.card_id} but it wasn't found in local data.")
                continue

            action = parse_card_effect(card.card_effect)
            messages.append(
                f'{actor} drew: "{card.card_effect}" ({action.type.replace("_", " ")}) '
                f"[{len(deck_state.draw_pile)} cards left]"
            )
            target = auto_select_target(action, actor_id, board.positions, players)
            if target:
                messages.append(f"{actor} targets {board.name(target)}")

            draw_again, narration = apply_card_action(action, actor_id, target, board)
            messages.append(narration)
            if drawn is None:
                drawn = DrawnCard(card=card, parsed_action=action, target_player_id=target)

    last_card = (
        {"text": drawn.parsed_action.text, "type": drawn.parsed_action.type} if drawn else None
    )

    # 6. win check after the cards
    if board.has_won(actor_id):
        messages.append(f"{actor} reached the finish with {board.paddles[actor_id]} paddles and WINS!")
        return TurnResult(
            game_data=finish(dice=roll, winner=actor_id, lastCard=last_card or game_data.get("lastCard")),
            messages=messages,
            drawn_card=drawn,
            winner=actor_id,
            draws=draws,
        )

    # 7. turn advance
    extra = grant_extra_roll or bool(board.extra_roll.get(actor_id))
    if extra:
        board.extra_roll[actor_id] = False
        next_turn = current_turn
    else:
        next_turn = (current_turn + 1) % player_count

    return TurnResult(
        game_data=finish(dice=roll, currentTurn=next_turn, lastCard=last_card),
        messages=messages,
        drawn_card=drawn,
        extra_roll=extra,
        draws=draws,
    )


# ----------------------------------------------------------------------
# Room service
# ----------------------------------------------------------------------
class CreekGame:
    """Runs Up Shitz Creek turns against a room through a player's session."""

    GAME_ID = "shitz-creek"

    def __init__(self, catalog: CardCatalog, game_id: str = GAME_ID, card_type: Optional[str] = None):
        self.catalog = catalog
        self.game_id = game_id
        self.card_type = card_type

    async def take_turn(
        self,
        session: LobbySession,
        *,
        roll: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ) -> Optional[TurnResult]:
        """
        Resolve the turn of whoever ``current_turn`` points at. The caller
        must be that player, or the host when the current player is a bot.
        """
        if not session.can_play or session.current_room.status != "playing":
            return None

        rows = await session.store.select("room_players", order_by=("player_order",), room_id=session.room_id)
        if not rows:
            return None
        players = [TurnPlayer(player_id=r["player_id"], player_name=r["player_name"]) for r in rows]
        bots = {r["player_id"] for r in rows if (r["player_data"] or {}).get("is_bot")}
        cards = await self.catalog.fetch_cards(self.game_id, self.card_type)

        outcome: Dict[str, TurnResult] = {}

        def resolve(room: Dict[str, Any]) -> Optional[Dict[str, Any]]:
            if room["status"] != "playing":
                return None
            current_turn = room["current_turn"] % len(players)
            actor_id = players[current_turn].player_id
            allowed = actor_id == session.player_id or (actor_id in bots and session.is_host)
            if not allowed:
                logger.debug("Creek: %s tried to play %s's turn", session.player_id, actor_id)
                return None
            result = execute_turn(
                room["game_data"] or {}, actor_id, players, cards, current_turn, roll=roll, rng=rng
            )
            outcome["result"] = result
            return result.game_data

        await session.apply_game_update(resolve)
        result = outcome.get("result")
        if result is None:
            return None
        if result.winner:
            paddles = result.game_data.get("paddles") or {}
            await session.end_game(result.winner, {pid: int(n) for pid, n in paddles.items()})
        return result
