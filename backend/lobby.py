"""
Room sessions.

A ``LobbySession`` is one participant's view of one room: the cached room
row, roster, chat and card state, plus the realtime subscription and the
presence heartbeat that keep that cache fresh. The server keeps one session
per player id; nothing here is global.

Writes follow two rules:

* shared room fields (``game_data``, ``current_turn``, ``settings``) are
  fetched, merged and written back while holding the room lock, never
  written from the cached copy;
* card moves are broadcast to the room first and persisted second, and
  every session replaces its card state whenever the stored room row
  changes, the writer's own session included.

Blocking transitions (create/join/spectate/invite) report failure through
``last_error`` and a falsy return. Permission violations are ignored.
Transient store errors on best-effort paths end up in ``notices``.
"""
from __future__ import annotations

import asyncio
import logging
import random
import string
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

import card_sync
from app.models import utcnow
from app.settings import Settings, get_settings
from drinking import find_rule, scale_drinks
from models import (
    CardAction,
    CardGameState,
    ChatMessage,
    DrinkIntensity,
    DrinkingModeSettings,
    GameRoom,
    MessageType,
    RoomPlayer,
    RoomSpectator,
)
from realtime import ChangeFilter, RealtimeHub, Subscription, room_topic
from stats import StatsRecorder
from store import RoomStore

logger = logging.getLogger(__name__)

ROOMS = "game_rooms"
PLAYERS = "room_players"
SPECTATORS = "room_spectators"
MESSAGES = "chat_messages"
INVITES = "game_invites"

CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_CODE_LENGTH = 6
INVITE_CODE_LENGTH = 12

SYSTEM_ID = "system"


def generate_room_code() -> str:
    return "".join(random.choices(CODE_ALPHABET, k=ROOM_CODE_LENGTH))


def generate_invite_code() -> str:
    return "".join(random.choices(CODE_ALPHABET, k=INVITE_CODE_LENGTH))


class LobbyError(Exception):
    def __init__(self, code: str, message: str = ""):
        super().__init__(message or code)
        self.code = code
        self.message = message or code


class RoomConnection:
    """Realtime subscription and presence heartbeat, released together."""

    def __init__(self, subscription: Subscription, heartbeat: asyncio.Task):
        self.subscription = subscription
        self.heartbeat = heartbeat

    @property
    def closed(self) -> bool:
        return self.subscription.closed and self.heartbeat.done()

    def close(self) -> None:
        self.heartbeat.cancel()
        self.subscription.close()


class LobbySession:
    def __init__(
        self,
        store: RoomStore,
        hub: RealtimeHub,
        player_id: str,
        player_name: str = "",
        *,
        user_id: Optional[str] = None,
        stats: Optional[StatsRecorder] = None,
        config: Optional[Settings] = None,
    ):
        self.store = store
        self.hub = hub
        self.player_id = player_id
        self.player_name = player_name
        self.user_id = user_id
        self.stats = stats
        self.config = config or get_settings()

        self.current_room: Optional[GameRoom] = None
        self.players: List[RoomPlayer] = []
        self.spectators: List[RoomSpectator] = []
        self.messages: List[ChatMessage] = []
        self.card_game_state: Optional[CardGameState] = None
        self.is_spectator = False
        self.is_loading = False
        self.drinking_mode = DrinkingModeSettings()
        self.drink_events: List[Dict[str, Any]] = []
        self.game_started_at: Optional[datetime] = None

        self.last_error: Optional[LobbyError] = None
        self.notices: List[str] = []
        self.connection: Optional[RoomConnection] = None
        self._pending: Set[asyncio.Task] = set()
        self._stats_recorded: Set[str] = set()

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------
    @property
    def room_id(self) -> Optional[str]:
        return self.current_room.id if self.current_room else None

    @property
    def is_host(self) -> bool:
        return self.current_room is not None and self.current_room.host_id == self.player_id

    @property
    def can_play(self) -> bool:
        return self.current_room is not None and not self.is_spectator and self.me() is not None

    def me(self) -> Optional[RoomPlayer]:
        for p in self.players:
            if p.player_id == self.player_id:
                return p
        return None

    def connected_players(self, now: Optional[datetime] = None) -> List[RoomPlayer]:
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self.config.stale_after_sec)
        return [
            p for p in self.players
            if p.is_connected and p.last_seen_at is not None and p.last_seen_at >= cutoff
        ]

    def snapshot(self) -> Dict[str, Any]:
        return {
            "playerId": self.player_id,
            "room": self.current_room.model_dump(mode="json") if self.current_room else None,
            "players": [p.model_dump(mode="json") for p in self.players],
            "spectators": [s.model_dump(mode="json") for s in self.spectators],
            "messages": [m.model_dump(mode="json") for m in self.messages],
            "cardState": self.card_game_state.to_payload() if self.card_game_state else None,
            "isSpectator": self.is_spectator,
            "drinkingMode": self.drinking_mode.model_dump(by_alias=True),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _deny(self, operation: str, reason: str) -> None:
        logger.debug("Ignored %s from %s: %s", operation, self.player_id, reason)

    def _notice(self, text: str, exc: Optional[BaseException] = None) -> None:
        if exc is not None:
            logger.warning("%s (%s): %s", text, self.player_id, exc)
        self.notices.append(text)

    def _fail(self, error: LobbyError) -> None:
        logger.info("Lobby: %s denied for %s (%s)", error.code, self.player_id, error.message)
        self.last_error = error

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for background persists and stats calls started by this session."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _system_message(self, room_id: str, text: str, message_type: MessageType = "system",
                              sender_name: str = "System") -> None:
        try:
            await self.store.insert(
                MESSAGES,
                {
                    "room_id": room_id,
                    "player_id": SYSTEM_ID,
                    "player_name": sender_name,
                    "message": text,
                    "message_type": message_type,
                },
            )
        except SQLAlchemyError as exc:
            self._notice("Could not post system message", exc)

    async def _find_room(self, code: str) -> Dict[str, Any]:
        room = await self.store.select_one(ROOMS, room_code=code.strip().upper())
        if room is None:
            raise LobbyError("room_not_found", f"No room with code {code.upper()}")
        return room

    async def _unique_room_code(self) -> str:
        for _ in range(self.config.room_code_attempts):
            code = generate_room_code()
            if await self.store.select_one(ROOMS, room_code=code) is None:
                return code
            logger.info("Lobby: room code %s already taken, retrying", code)
        raise LobbyError("room_code_collision", "Could not allocate a free room code")

    def _apply_room(self, room: GameRoom) -> None:
        previous = self.current_room
        self.current_room = room
        settings = room.settings or {}
        self.drinking_mode = DrinkingModeSettings(
            enabled=bool(settings.get("drinking_mode", False)),
            intensity=settings.get("drinking_intensity") or "medium",
            drinks_this_game=self.drinking_mode.drinks_this_game,
        )
        if room.status == "playing":
            self.game_started_at = room.started_at or self.game_started_at or utcnow()
        else:
            self.game_started_at = None
        card_state = (room.game_data or {}).get("cardState")
        if card_state:
            self.card_game_state = CardGameState.model_validate(card_state)
        if previous is not None and previous.status == "playing" and room.status == "finished":
            self._spawn(self._record_stats(room))

    async def _fetch_players(self, room_id: str) -> List[RoomPlayer]:
        rows = await self.store.select(PLAYERS, order_by=("player_order",), room_id=room_id)
        self.players = [RoomPlayer.model_validate(r) for r in rows]
        return self.players

    async def _fetch_spectators(self, room_id: str) -> List[RoomSpectator]:
        rows = await self.store.select(SPECTATORS, room_id=room_id)
        self.spectators = [RoomSpectator.model_validate(r) for r in rows]
        return self.spectators

    async def _fetch_messages(self, room_id: str) -> List[ChatMessage]:
        rows = await self.store.select(MESSAGES, order_by=("created_at",), room_id=room_id)
        self.messages = [ChatMessage.model_validate(r) for r in rows]
        return self.messages

    async def _enter_room(self, room_row: Dict[str, Any], *, spectator: bool) -> None:
        self._disconnect()
        room = GameRoom.model_validate(room_row)
        self.current_room = None
        self.card_game_state = None
        self.is_spectator = spectator
        self._apply_room(room)
        self.connect()
        # the snapshot must be complete before the caller renders anything
        await asyncio.gather(
            self._fetch_players(room.id),
            self._fetch_spectators(room.id),
            self._fetch_messages(room.id),
        )
        self.drinking_mode = self.drinking_mode.model_copy(update={"drinks_this_game": 0})

    async def _drop_membership(self, room: GameRoom) -> None:
        try:
            if self.is_spectator:
                await self.store.delete(SPECTATORS, room_id=room.id, spectator_id=self.player_id)
            else:
                await self.store.delete(PLAYERS, room_id=room.id, player_id=self.player_id)
        except SQLAlchemyError as exc:
            self._notice("Could not remove you from the room", exc)

    async def _release_membership(self, room_id: Optional[str], *, spectator: bool) -> None:
        """Give up the seat held before taking a new one; one row per session."""
        room = self.current_room
        if room is None or (room.id == room_id and self.is_spectator == spectator):
            return
        self._disconnect()
        await self._drop_membership(room)
        if room.id != room_id:
            await self._system_message(room.id, f"{self.player_name} left")
        self._reset()

    def _reset(self) -> None:
        self.current_room = None
        self.players = []
        self.spectators = []
        self.messages = []
        self.card_game_state = None
        self.is_spectator = False
        self.drink_events = []
        self.game_started_at = None
        self.drinking_mode = DrinkingModeSettings()

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------
    def connect(self) -> RoomConnection:
        room_id = self.room_id
        if room_id is None:
            raise LobbyError("room_not_found", "Not in a room")
        subscription = self.hub.subscribe(
            room_topic(room_id),
            on_broadcast=self._on_broadcast,
            on_change=self._on_change,
            filters=[
                ChangeFilter(ROOMS, {"id": room_id}),
                ChangeFilter(PLAYERS, {"room_id": room_id}),
                ChangeFilter(SPECTATORS, {"room_id": room_id}),
                ChangeFilter(MESSAGES, {"room_id": room_id}),
            ],
        )
        heartbeat = asyncio.ensure_future(self._heartbeat_loop(room_id, self.is_spectator))
        self.connection = RoomConnection(subscription, heartbeat)
        return self.connection

    def _disconnect(self) -> None:
        if self.connection is not None:
            self.connection.close()
            self.connection = None

    def close(self) -> None:
        self._disconnect()

    async def heartbeat(self) -> None:
        if self.current_room is None:
            return
        await self._beat(self.current_room.id, self.is_spectator)

    async def _beat(self, room_id: str, spectator: bool) -> None:
        values = {"is_connected": True, "last_seen_at": utcnow()}
        if spectator:
            await self.store.update(SPECTATORS, values, room_id=room_id, spectator_id=self.player_id)
        else:
            await self.store.update(PLAYERS, values, room_id=room_id, player_id=self.player_id)

    async def _heartbeat_loop(self, room_id: str, spectator: bool) -> None:
        while True:
            await asyncio.sleep(self.config.heartbeat_interval_sec)
            try:
                await self._beat(room_id, spectator)
            except SQLAlchemyError as exc:
                logger.warning("Heartbeat failed for %s in %s: %s", self.player_id, room_id, exc)
            except Exception:
                logger.exception("Heartbeat error for %s in %s", self.player_id, room_id)

    async def _on_change(self, table: str, event: str, row: Dict[str, Any]) -> None:
        room_id = self.room_id
        if room_id is None:
            return
        if table == ROOMS:
            if event != "DELETE":
                self._apply_room(GameRoom.model_validate(row))
        elif table == PLAYERS:
            if event == "DELETE" and row.get("player_id") == self.player_id and not self.is_spectator:
                # kicked, or our row went away some other way
                logger.info("Lobby: %s lost their seat in %s", self.player_id, room_id)
                self._disconnect()
                self._reset()
                return
            await self._fetch_players(room_id)
        elif table == SPECTATORS:
            await self._fetch_spectators(room_id)
        elif table == MESSAGES and event == "INSERT":
            if all(m.id != row.get("id") for m in self.messages):
                self.messages.append(ChatMessage.model_validate(row))

    async def _on_broadcast(self, event: str, payload: Dict[str, Any]) -> None:
        if event == "card_action" and payload.get("state"):
            self.card_game_state = CardGameState.model_validate(payload["state"])
        elif event == "drink_event" and payload.get("rule"):
            self.drink_events.append(payload)

    async def _broadcast(self, event: str, payload: Dict[str, Any]) -> None:
        if self.connection is None:
            return
        await self.connection.subscription.send(event, payload)

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------
    async def create_room(
        self,
        game_type: str,
        host_name: str,
        is_private: bool = False,
        drinking_mode: bool = False,
    ) -> Optional[str]:
        self.is_loading = True
        self.last_error = None
        try:
            code = await self._unique_room_code()
            await self._release_membership(None, spectator=False)
            child_game = game_type in self.config.child_games
            room = await self.store.insert(
                ROOMS,
                {
                    "room_code": code,
                    "game_type": game_type,
                    "host_id": self.player_id,
                    "host_name": host_name,
                    "game_data": {},
                    "is_private": is_private,
                    "max_players": self.config.max_players,
                    "min_players": self.config.min_players,
                    "settings": {
                        "drinking_mode": False if child_game else drinking_mode,
                        "drinking_intensity": "medium",
                    },
                    "allow_spectators": True,
                },
            )
            await self.store.insert(
                PLAYERS,
                {
                    "room_id": room["id"],
                    "player_id": self.player_id,
                    "player_name": host_name,
                    "user_id": self.user_id,
                    "is_host": True,
                    "player_order": 0,
                },
            )
            self.player_name = host_name
            await self._system_message(room["id"], f"{host_name} created the room", "chat")
            await self._enter_room(room, spectator=False)
            logger.info("Lobby: %s created room %s (%s)", self.player_id, code, game_type)
            return code
        except LobbyError as exc:
            self._fail(exc)
            return None
        except SQLAlchemyError as exc:
            logger.warning("Lobby: create_room failed for %s: %s", self.player_id, exc)
            self._fail(LobbyError("store_unavailable", "Could not create the room"))
            return None
        finally:
            self.is_loading = False

    async def join_room(self, code: str, name: str) -> bool:
        self.is_loading = True
        self.last_error = None
        try:
            room = await self._find_room(code)
            if room["status"] == "finished":
                raise LobbyError("room_finished", "That game has already finished")
            async with self.store.room_lock(room["id"]):
                existing = await self.store.select(PLAYERS, order_by=("player_order",), room_id=room["id"])
                seated = any(p["player_id"] == self.player_id for p in existing)
                if not seated and len(existing) >= room["max_players"]:
                    raise LobbyError("room_full", "The room is full")
                await self._release_membership(room["id"], spectator=False)
                if not seated:
                    next_order = max((p["player_order"] for p in existing), default=-1) + 1
                    await self.store.insert(
                        PLAYERS,
                        {
                            "room_id": room["id"],
                            "player_id": self.player_id,
                            "player_name": name,
                            "user_id": self.user_id,
                            "player_order": next_order,
                        },
                    )
                    await self._system_message(room["id"], f"{name} joined")
            self.player_name = name
            await self._enter_room(room, spectator=False)
            logger.info("Lobby: %s joined room %s", self.player_id, room["room_code"])
            return True
        except LobbyError as exc:
            self._fail(exc)
            return False
        except SQLAlchemyError as exc:
            logger.warning("Lobby: join_room failed for %s: %s", self.player_id, exc)
            self._fail(LobbyError("store_unavailable", "Could not join the room"))
            return False
        finally:
            self.is_loading = False

    async def join_as_spectator(self, code: str, name: str) -> bool:
        self.is_loading = True
        self.last_error = None
        try:
            room = await self._find_room(code)
            if not room["allow_spectators"]:
                raise LobbyError("spectators_disabled", "This room does not allow spectators")
            await self._release_membership(room["id"], spectator=True)
            existing = await self.store.select_one(SPECTATORS, room_id=room["id"], spectator_id=self.player_id)
            if existing is None:
                await self.store.insert(
                    SPECTATORS,
                    {
                        "room_id": room["id"],
                        "spectator_id": self.player_id,
                        "spectator_name": name,
                        "user_id": self.user_id,
                    },
                )
                await self._system_message(room["id"], f"{name} is now spectating")
            self.player_name = name
            await self._enter_room(room, spectator=True)
            logger.info("Lobby: %s spectating room %s", self.player_id, room["room_code"])
            return True
        except LobbyError as exc:
            self._fail(exc)
            return False
        except SQLAlchemyError as exc:
            logger.warning("Lobby: join_as_spectator failed for %s: %s", self.player_id, exc)
            self._fail(LobbyError("store_unavailable", "Could not join the room"))
            return False
        finally:
            self.is_loading = False

    async def join_by_invite(self, invite_code: str, name: str) -> bool:
        self.last_error = None
        try:
            invite = await self.store.select_one(INVITES, invite_code=invite_code.strip().upper(), is_active=True)
            if invite is None:
                raise LobbyError("invite_invalid", "Invite not found")
            if invite["uses_count"] >= invite["max_uses"]:
                raise LobbyError("invite_invalid", "Invite has been used up")
            if invite["expires_at"] is not None and invite["expires_at"] <= utcnow():
                raise LobbyError("invite_invalid", "Invite has expired")
            room = await self.store.select_one(ROOMS, id=invite["room_id"])
            if room is None:
                raise LobbyError("room_not_found", "The invited room no longer exists")
        except LobbyError as exc:
            self._fail(exc)
            return False
        except SQLAlchemyError as exc:
            logger.warning("Lobby: invite lookup failed for %s: %s", self.player_id, exc)
            self._fail(LobbyError("store_unavailable", "Could not read the invite"))
            return False

        joined = await self.join_room(room["room_code"], name)
        if joined:
            try:
                async with self.store.room_lock(room["id"]):
                    latest = await self.store.select_one(INVITES, id=invite["id"])
                    if latest is not None:
                        await self.store.update(INVITES, {"uses_count": latest["uses_count"] + 1}, id=invite["id"])
            except SQLAlchemyError as exc:
                self._notice("Could not count the invite use", exc)
        return joined

    async def leave_room(self) -> None:
        room = self.current_room
        if room is None:
            return
        self._disconnect()
        await self._drop_membership(room)
        await self._system_message(room.id, f"{self.player_name} left")
        self._reset()
        logger.info("Lobby: %s left room %s", self.player_id, room.room_code)

    async def send_message(self, message: str, message_type: MessageType = "chat") -> None:
        if self.current_room is None:
            return self._deny("send_message", "not in a room")
        try:
            await self.store.insert(
                MESSAGES,
                {
                    "room_id": self.current_room.id,
                    "player_id": self.player_id,
                    "player_name": self.player_name,
                    "message": message,
                    "message_type": message_type,
                },
            )
        except SQLAlchemyError as exc:
            self._notice("Message not sent", exc)

    async def toggle_ready(self) -> None:
        if not self.can_play:
            return self._deny("toggle_ready", "not a player")
        me = self.me()
        if me is None:
            return self._deny("toggle_ready", "no player row")
        try:
            await self.store.update(PLAYERS, {"is_ready": not me.is_ready}, id=me.id)
        except SQLAlchemyError as exc:
            self._notice("Could not update ready state", exc)

    async def start_game(self) -> None:
        if not self.can_play or not self.is_host:
            return self._deny("start_game", "host only")
        room_id = self.current_room.id
        try:
            async with self.store.room_lock(room_id):
                latest = await self.store.select_one(ROOMS, id=room_id)
                if latest is None or latest["status"] != "waiting":
                    return self._deny("start_game", "room is not waiting")
                now = utcnow()
                await self.store.update(
                    ROOMS,
                    {"status": "playing", "current_turn": 0, "started_at": now, "updated_at": now},
                    id=room_id,
                )
        except SQLAlchemyError as exc:
            self._notice("Could not start the game", exc)
            return
        self.drinking_mode = self.drinking_mode.model_copy(update={"drinks_this_game": 0})
        logger.info("Lobby: room %s started", self.current_room.room_code if self.current_room else room_id)

    # ------------------------------------------------------------------
    # Shared game data
    # ------------------------------------------------------------------
    async def _merge_game_data(self, room_id: str, partial: Dict[str, Any]) -> Dict[str, Any]:
        """Caller holds the room lock."""
        latest = await self.store.select_one(ROOMS, id=room_id)
        if latest is None:
            raise LobbyError("room_not_found", "Room disappeared")
        merged = {**(latest["game_data"] or {}), **partial}
        values: Dict[str, Any] = {"game_data": merged, "updated_at": utcnow()}
        if "currentTurn" in partial:
            values["current_turn"] = int(partial["currentTurn"])
        await self.store.update(ROOMS, values, id=room_id)
        return merged

    async def update_game_state(self, partial: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self.apply_game_update(lambda _: partial)

    async def apply_game_update(
        self,
        compute: Callable[[Dict[str, Any]], Optional[Dict[str, Any]]],
    ) -> Optional[Dict[str, Any]]:
        """
        ``compute`` receives the freshly read room row and returns the partial
        game data to merge, or ``None`` to write nothing. Read, compute and
        write all happen under the room lock.
        """
        if not self.can_play:
            return self._deny("update_game_state", "not a player")
        room_id = self.current_room.id
        try:
            async with self.store.room_lock(room_id):
                latest = await self.store.select_one(ROOMS, id=room_id)
                if latest is None:
                    raise LobbyError("room_not_found", "Room disappeared")
                partial = compute(latest)
                if partial is None:
                    return None
                return await self._merge_game_data(room_id, partial)
        except (LobbyError, SQLAlchemyError) as exc:
            self._notice("Game state was not saved", exc)
            return None

    async def next_turn(self) -> Optional[int]:
        if not self.can_play:
            return self._deny("next_turn", "not a player")
        room_id = self.current_room.id
        try:
            async with self.store.room_lock(room_id):
                latest = await self.store.select_one(ROOMS, id=room_id)
                if latest is None:
                    return None
                count = await self.store.count(PLAYERS, room_id=room_id)
                turn = (latest["current_turn"] + 1) % max(count, 1)
                await self.store.update(ROOMS, {"current_turn": turn, "updated_at": utcnow()}, id=room_id)
                return turn
        except SQLAlchemyError as exc:
            self._notice("Turn was not advanced", exc)
            return None

    async def end_game(self, winner_id: Optional[str] = None, scores: Optional[Dict[str, int]] = None) -> None:
        if not self.can_play:
            return self._deny("end_game", "not a player")
        room_id = self.current_room.id
        try:
            async with self.store.room_lock(room_id):
                latest = await self.store.select_one(ROOMS, id=room_id)
                if latest is None or latest["status"] != "playing":
                    return self._deny("end_game", "room is not playing")
                game_data = {**(latest["game_data"] or {}), "winner": winner_id, "finalScores": scores or {}}
                now = utcnow()
                await self.store.update(
                    ROOMS,
                    {"status": "finished", "game_data": game_data, "finished_at": now, "updated_at": now},
                    id=room_id,
                )
        except SQLAlchemyError as exc:
            self._notice("Could not end the game", exc)
            return
        logger.info("Lobby: room %s finished, winner=%s", room_id, winner_id)

    async def _record_stats(self, room: GameRoom) -> None:
        if not self.user_id or self.stats is None or self.is_spectator:
            return
        if room.id in self._stats_recorded:
            return
        self._stats_recorded.add(room.id)

        game_data = room.game_data or {}
        winner_id = game_data.get("winner")
        scores = game_data.get("finalScores") or {}
        if winner_id is None:
            result = "draw"
        else:
            result = "win" if winner_id == self.player_id else "loss"
        duration = None
        if room.started_at is not None:
            finished = room.finished_at or utcnow()
            duration = round((finished - room.started_at).total_seconds() / 60)
        try:
            await self.stats.record_game(
                self.user_id,
                game_type=room.game_type,
                result=result,
                score=int(scores.get(self.player_id, 0)),
                room_code=room.room_code,
                duration_minutes=duration,
                players_count=len(self.players),
                drinking_mode=self.drinking_mode.enabled,
                drinks_taken=self.drinking_mode.drinks_this_game,
                opponents=[
                    {"name": p.player_name, "id": p.player_id}
                    for p in self.players if p.player_id != self.player_id
                ],
            )
        except Exception as exc:
            # stats never block play
            logger.warning("Stats recording failed for %s: %s", self.user_id, exc)

    async def update_player_score(self, player_id: str, score: int) -> None:
        if not self.can_play:
            return self._deny("update_player_score", "not a player")
        if player_id != self.player_id:
            return self._deny("update_player_score", "player rows belong to their owner")
        try:
            await self.store.update(PLAYERS, {"score": score}, room_id=self.current_room.id, player_id=player_id)
        except SQLAlchemyError as exc:
            self._notice("Score was not saved", exc)

    # ------------------------------------------------------------------
    # Card state
    # ------------------------------------------------------------------
    async def update_card_game_state(self, state: CardGameState, action: CardAction) -> None:
        """Broadcast now, persist in the background."""
        if not self.can_play:
            return self._deny("update_card_game_state", "not a player")
        self.card_game_state = state
        await self._broadcast(
            "card_action",
            {"action": action.model_dump(by_alias=True, mode="json"), "state": state.to_payload()},
        )
        self._spawn(self._persist_card_state(self.current_room.id, state))

    async def _persist_card_state(self, room_id: str, state: CardGameState) -> None:
        try:
            async with self.store.room_lock(room_id):
                await self._merge_game_data(room_id, {"cardState": state.to_payload()})
        except (LobbyError, SQLAlchemyError) as exc:
            self._notice("Card state was not saved", exc)

    async def _card_move(
        self,
        operation: str,
        move: Callable[[CardGameState], Optional[CardGameState]],
        *,
        fresh: bool = False,
    ) -> Optional[CardGameState]:
        """Apply ``move`` to the stored card state under the room lock, then broadcast and persist."""
        if not self.can_play:
            self._deny(operation, "not a player")
            return None
        room_id = self.current_room.id
        try:
            async with self.store.room_lock(room_id):
                latest = await self.store.select_one(ROOMS, id=room_id)
                stored = ((latest or {}).get("game_data") or {}).get("cardState")
                if not stored and not fresh:
                    self._deny(operation, "no card state")
                    return None
                state = move(CardGameState.model_validate(stored or {}))
                if state is None:
                    self._deny(operation, "move not possible")
                    return None
                self.card_game_state = state
                action = state.last_action.model_dump(by_alias=True, mode="json") if state.last_action else None
                await self._broadcast("card_action", {"action": action, "state": state.to_payload()})
                await self._merge_game_data(room_id, {"cardState": state.to_payload()})
                return state
        except (LobbyError, SQLAlchemyError) as exc:
            self._notice("Card move was not saved", exc)
            return self.card_game_state

    async def initialize_cards(
        self,
        cards: Iterable[Dict[str, Any]],
        seed: Optional[int] = None,
    ) -> Optional[CardGameState]:
        cards = list(cards)
        return await self._card_move(
            "initialize_cards",
            lambda _: card_sync.build_card_state(cards, seed, player_id=self.player_id),
            fresh=True,
        )

    async def draw_cards(self, count: int = 1) -> Optional[CardGameState]:
        return await self._card_move("draw_cards", lambda s: card_sync.draw_cards(s, self.player_id, count))

    async def discard_card(self, card_id: str) -> Optional[CardGameState]:
        return await self._card_move("discard_card", lambda s: card_sync.discard_card(s, self.player_id, card_id))

    async def play_card(self, card_id: str) -> Optional[CardGameState]:
        return await self._card_move("play_card", lambda s: card_sync.play_card(s, self.player_id, card_id))

    async def reshuffle_discard(self, seed: Optional[int] = None) -> Optional[CardGameState]:
        return await self._card_move(
            "reshuffle_discard", lambda s: card_sync.reshuffle_discard(s, self.player_id, seed)
        )

    # ------------------------------------------------------------------
    # Host tools
    # ------------------------------------------------------------------
    async def create_invite(self, expires_in: Optional[timedelta] = None) -> Optional[str]:
        if self.current_room is None:
            return self._deny("create_invite", "not in a room")
        code = generate_invite_code()
        try:
            await self.store.insert(
                INVITES,
                {
                    "room_id": self.current_room.id,
                    "invite_code": code,
                    "created_by": self.player_id,
                    "max_uses": self.config.invite_max_uses,
                    "expires_at": utcnow() + expires_in if expires_in else None,
                },
            )
        except SQLAlchemyError as exc:
            self._notice("Invite link could not be created", exc)
            return None
        return code

    async def kick_player(self, player_id: str) -> bool:
        if not self.can_play or not self.is_host:
            self._deny("kick_player", "host only")
            return False
        if player_id == self.player_id:
            self._deny("kick_player", "host cannot kick themselves")
            return False
        try:
            removed = await self.store.delete(PLAYERS, room_id=self.current_room.id, player_id=player_id)
        except SQLAlchemyError as exc:
            self._notice("Player was not removed", exc)
            return False
        if removed:
            await self._system_message(self.current_room.id, f"{removed[0]['player_name']} was removed by the host")
        return bool(removed)

    async def add_bot(self, name: str = "Bot") -> Optional[str]:
        if not self.can_play or not self.is_host:
            return self._deny("add_bot", "host only")
        room_id = self.current_room.id
        bot_id = f"bot_{random.getrandbits(40):010x}"
        try:
            async with self.store.room_lock(room_id):
                latest = await self.store.select_one(ROOMS, id=room_id)
                if latest is None or latest["status"] != "waiting":
                    return self._deny("add_bot", "room is not waiting")
                existing = await self.store.select(PLAYERS, room_id=room_id)
                if len(existing) >= latest["max_players"]:
                    return self._deny("add_bot", "room is full")
                await self.store.insert(
                    PLAYERS,
                    {
                        "room_id": room_id,
                        "player_id": bot_id,
                        "player_name": name,
                        "is_ready": True,
                        "player_order": max((p["player_order"] for p in existing), default=-1) + 1,
                        "player_data": {"is_bot": True},
                    },
                )
        except SQLAlchemyError as exc:
            self._notice("Bot was not added", exc)
            return None
        await self._system_message(room_id, f"{name} (bot) joined")
        return bot_id

    async def _merge_settings(self, update: Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]) -> Optional[Dict[str, Any]]:
        room_id = self.current_room.id
        async with self.store.room_lock(room_id):
            latest = await self.store.select_one(ROOMS, id=room_id)
            if latest is None:
                return None
            settings = update(dict(latest["settings"] or {}))
            if settings is None:
                return None
            await self.store.update(ROOMS, {"settings": settings, "updated_at": utcnow()}, id=room_id)
            return settings

    async def toggle_drinking_mode(self) -> None:
        if not self.can_play or not self.is_host:
            return self._deny("toggle_drinking_mode", "host only")
        if self.current_room.game_type in self.config.child_games:
            return self._deny("toggle_drinking_mode", "child game")

        def flip(settings: Dict[str, Any]) -> Dict[str, Any]:
            return {**settings, "drinking_mode": not settings.get("drinking_mode", False)}

        try:
            settings = await self._merge_settings(flip)
        except SQLAlchemyError as exc:
            self._notice("Drinking mode was not changed", exc)
            return
        if settings is None:
            return
        text = (
            "Drinking Game Mode enabled! Drink responsibly!"
            if settings["drinking_mode"] else "Drinking Game Mode disabled"
        )
        await self._system_message(self.current_room.id, text)

    async def set_drinking_intensity(self, intensity: DrinkIntensity) -> None:
        if not self.can_play or not self.is_host:
            return self._deny("set_drinking_intensity", "host only")
        try:
            await self._merge_settings(lambda settings: {**settings, "drinking_intensity": intensity})
        except SQLAlchemyError as exc:
            self._notice("Drinking intensity was not changed", exc)

    async def trigger_drink_event(self, rule: str, target_player: Optional[str] = None) -> None:
        if self.current_room is None or not self.drinking_mode.enabled:
            return self._deny("trigger_drink_event", "drinking mode is off")
        # a known rule id expands to its text; anything else is free text
        known = find_rule(self.current_room.game_type, rule)
        if known is not None:
            drinks = scale_drinks(known.drinks, self.drinking_mode.intensity)
            rule = f"{known.trigger}: {known.action} ({drinks} drinks)"
        payload = {
            "rule": rule,
            "ruleId": known.id if known is not None else None,
            "targetPlayer": target_player,
            "from": self.player_id,
        }
        self.drink_events.append(payload)
        await self._broadcast("drink_event", payload)
        await self._system_message(
            self.current_room.id,
            f"{target_player}: {rule}" if target_player else rule,
            "drink",
            sender_name="Drinking Game",
        )

    def add_drink(self) -> int:
        self.drinking_mode = self.drinking_mode.model_copy(
            update={"drinks_this_game": self.drinking_mode.drinks_this_game + 1}
        )
        return self.drinking_mode.drinks_this_game
