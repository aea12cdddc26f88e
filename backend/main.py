from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from fastapi import (
    Body,
    Depends,
    FastAPI,
    HTTPException,
    Query,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware

from app.api.auth import router as session_router
from app.database import AsyncSessionMaker, init_db
from app.schemas import PlayerIdentity
from app.services.auth import decode_token, get_current_player
from catalog import CardCatalog
from creek import CreekGame
from drinking import rules_for_game
from lobby import MESSAGES, PLAYERS, ROOMS, SPECTATORS, LobbySession
from models import (
    BotRequest,
    CardDrawRequest,
    CardInitRequest,
    CardMoveRequest,
    ChatRequest,
    CreateRoomRequest,
    CreekTurnRequest,
    DrinkEventRequest,
    DrinkIntensity,
    EndGameRequest,
    GameRoom,
    IntensityRequest,
    InviteJoinRequest,
    JoinRoomRequest,
    KickRequest,
    RoomPlayer,
    RoomSpectator,
)
from realtime import ChangeFilter, RealtimeHub, room_topic
from stats import StatsRecorder
from store import RoomStore

logger = logging.getLogger(__name__)


# ---------- CORS with multiple origins ----------
def _parse_origins(raw: str) -> list[str]:
    """
    Split ORIGIN from env on commas, dropping blanks.
    Example: "https://party.example, https://www.party.example"
    """
    return [x.strip() for x in raw.split(",") if x.strip()]


ORIGIN_ENV = os.getenv("ORIGIN", "")
ALLOWED_ORIGINS = ["http://localhost:5173"] + _parse_origins(ORIGIN_ENV)

app = FastAPI()
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

logger.info("[CORS] allow_origins: %s", ALLOWED_ORIGINS)

app.include_router(session_router)

# ---------- collaborators ----------
hub = RealtimeHub()
store = RoomStore(AsyncSessionMaker, hub)
catalog = CardCatalog(store)
stats = StatsRecorder(AsyncSessionMaker)
creek = CreekGame(catalog)

# one session per player id
SESSIONS: Dict[str, LobbySession] = {}


@app.on_event("startup")
async def _prepare_db() -> None:
    await init_db()


@app.on_event("shutdown")
async def _close_sessions() -> None:
    for session in SESSIONS.values():
        session.close()
    SESSIONS.clear()


def get_lobby_session(identity: PlayerIdentity = Depends(get_current_player)) -> LobbySession:
    session = SESSIONS.get(identity.player_id)
    if session is None:
        session = LobbySession(store, hub, identity.player_id, user_id=identity.user_id, stats=stats)
        SESSIONS[identity.player_id] = session
    elif identity.user_id and session.user_id != identity.user_id:
        session.user_id = identity.user_id
    return session


def _in_room(session: LobbySession) -> LobbySession:
    if session.current_room is None:
        raise HTTPException(status_code=409, detail="not_in_room")
    return session


def _outcome(session: LobbySession, ok: bool, **extra: Any) -> Dict[str, Any]:
    if not ok:
        error = session.last_error.code if session.last_error else "denied"
        return {"ok": False, "error": error}
    return {"ok": True, **extra, "state": jsonable_encoder(session.snapshot())}


def _card_outcome(session: LobbySession, state) -> Dict[str, Any]:
    if state is None:
        return {"ok": False, "error": "move_rejected"}
    return {"ok": True, "cardState": state.to_payload()}


# ---------- session ----------
@app.get("/api/me")
async def my_state(session: LobbySession = Depends(get_lobby_session)):
    return {**jsonable_encoder(session.snapshot()), "notices": list(session.notices)}


# ---------- rooms ----------
@app.post("/api/rooms")
async def create_room(req: CreateRoomRequest, session: LobbySession = Depends(get_lobby_session)):
    code = await session.create_room(req.game_type, req.player_name, req.is_private, req.drinking_mode)
    return _outcome(session, code is not None, room_code=code)


@app.post("/api/rooms/join")
async def join_room(req: JoinRoomRequest, session: LobbySession = Depends(get_lobby_session)):
    ok = await session.join_room(req.room_code, req.player_name)
    return _outcome(session, ok)


@app.post("/api/rooms/spectate")
async def spectate_room(req: JoinRoomRequest, session: LobbySession = Depends(get_lobby_session)):
    ok = await session.join_as_spectator(req.room_code, req.player_name)
    return _outcome(session, ok)


@app.post("/api/rooms/invite/join")
async def join_by_invite(req: InviteJoinRequest, session: LobbySession = Depends(get_lobby_session)):
    ok = await session.join_by_invite(req.invite_code, req.player_name)
    return _outcome(session, ok)


@app.post("/api/rooms/leave")
async def leave_room(session: LobbySession = Depends(get_lobby_session)):
    await session.leave_room()
    return {"ok": True}


@app.post("/api/rooms/start")
async def start_game(session: LobbySession = Depends(get_lobby_session)):
    await _in_room(session).start_game()
    return _outcome(session, True)


@app.post("/api/rooms/end")
async def end_game(req: EndGameRequest, session: LobbySession = Depends(get_lobby_session)):
    await _in_room(session).end_game(req.winner_id, req.scores)
    return _outcome(session, True)


@app.post("/api/rooms/invite")
async def create_invite(session: LobbySession = Depends(get_lobby_session)):
    code = await _in_room(session).create_invite()
    if code is None:
        return {"ok": False, "error": "invite_failed"}
    return {"ok": True, "invite_code": code, "url": f"/lobby?invite={code}"}


@app.post("/api/rooms/ready")
async def toggle_ready(session: LobbySession = Depends(get_lobby_session)):
    await _in_room(session).toggle_ready()
    return _outcome(session, True)


@app.post("/api/rooms/kick")
async def kick_player(req: KickRequest, session: LobbySession = Depends(get_lobby_session)):
    kicked = await _in_room(session).kick_player(req.player_id)
    return {"ok": kicked}


@app.post("/api/rooms/bots")
async def add_bot(req: BotRequest, session: LobbySession = Depends(get_lobby_session)):
    bot_id = await _in_room(session).add_bot(req.name)
    if bot_id is None:
        return {"ok": False, "error": "denied"}
    return {"ok": True, "player_id": bot_id}


@app.patch("/api/rooms/state")
async def update_game_state(
    partial: Dict[str, Any] = Body(...),
    session: LobbySession = Depends(get_lobby_session),
):
    merged = await _in_room(session).update_game_state(partial)
    if merged is None:
        return {"ok": False, "error": "denied"}
    return {"ok": True, "game_data": merged}


@app.post("/api/rooms/turn/next")
async def next_turn(session: LobbySession = Depends(get_lobby_session)):
    turn = await _in_room(session).next_turn()
    return {"ok": turn is not None, "current_turn": turn}


@app.post("/api/rooms/chat")
async def send_chat(req: ChatRequest, session: LobbySession = Depends(get_lobby_session)):
    await _in_room(session).send_message(req.message, req.message_type)
    return {"ok": True}


@app.post("/api/rooms/drinking/toggle")
async def toggle_drinking(session: LobbySession = Depends(get_lobby_session)):
    await _in_room(session).toggle_drinking_mode()
    return _outcome(session, True)


@app.post("/api/rooms/drinking/intensity")
async def drinking_intensity(req: IntensityRequest, session: LobbySession = Depends(get_lobby_session)):
    await _in_room(session).set_drinking_intensity(req.intensity)
    return _outcome(session, True)


@app.post("/api/rooms/drinking/event")
async def drink_event(req: DrinkEventRequest, session: LobbySession = Depends(get_lobby_session)):
    await _in_room(session).trigger_drink_event(req.rule, req.target_player)
    return {"ok": True}


@app.post("/api/rooms/drinking/drink")
async def add_drink(session: LobbySession = Depends(get_lobby_session)):
    return {"ok": True, "drinks_this_game": session.add_drink()}


async def _room_or_404(room_code: str) -> Dict[str, Any]:
    room = await store.select_one(ROOMS, room_code=room_code.strip().upper())
    if room is None:
        raise HTTPException(status_code=404, detail="room_not_found")
    return room


@app.get("/api/rooms/{room_code}")
async def room_snapshot(room_code: str):
    room = await _room_or_404(room_code)
    players = await store.select(PLAYERS, order_by=("player_order",), room_id=room["id"])
    spectators = await store.select(SPECTATORS, room_id=room["id"])
    return jsonable_encoder(
        {
            "room": GameRoom.model_validate(room).model_dump(),
            "players": [RoomPlayer.model_validate(p).model_dump() for p in players],
            "spectators": [RoomSpectator.model_validate(s).model_dump() for s in spectators],
        }
    )


# ---------- drinking rules & stats ----------
@app.get("/api/drinking/rules/{game_type}")
async def drinking_rules(game_type: str, intensity: DrinkIntensity = "medium"):
    return [rule.model_dump(by_alias=True) for rule in rules_for_game(game_type, intensity)]


@app.get("/api/stats/{user_id}")
async def player_stats(user_id: str):
    summary = await stats.get_player_stats(user_id)
    if summary is None:
        raise HTTPException(status_code=404, detail="stats_not_found")
    return {**summary, "history": await stats.get_history(user_id)}


# ---------- synchronized cards ----------
@app.post("/api/cards/init")
async def init_cards(req: CardInitRequest, session: LobbySession = Depends(get_lobby_session)):
    _in_room(session)
    cards = await catalog.fetch_cards(req.game_id, req.card_type)
    if not cards:
        return {"ok": False, "error": "no_cards"}
    state = await session.initialize_cards([c.model_dump() for c in cards], req.seed)
    return _card_outcome(session, state)


@app.post("/api/cards/draw")
async def draw_cards(req: CardDrawRequest, session: LobbySession = Depends(get_lobby_session)):
    return _card_outcome(session, await _in_room(session).draw_cards(req.count))


@app.post("/api/cards/discard")
async def discard_card(req: CardMoveRequest, session: LobbySession = Depends(get_lobby_session)):
    return _card_outcome(session, await _in_room(session).discard_card(req.card_id))


@app.post("/api/cards/play")
async def play_card(req: CardMoveRequest, session: LobbySession = Depends(get_lobby_session)):
    return _card_outcome(session, await _in_room(session).play_card(req.card_id))


@app.post("/api/cards/reshuffle")
async def reshuffle_cards(session: LobbySession = Depends(get_lobby_session)):
    return _card_outcome(session, await _in_room(session).reshuffle_discard())


# ---------- board race ----------
@app.post("/api/creek/turn")
async def creek_turn(
    req: Optional[CreekTurnRequest] = Body(None),
    session: LobbySession = Depends(get_lobby_session),
):
    result = await creek.take_turn(_in_room(session), roll=req.roll if req else None)
    if result is None:
        return {"ok": False, "error": "not_your_turn"}
    drawn = None
    if result.drawn_card:
        drawn = {
            "card": result.drawn_card.card.model_dump(),
            "action": result.drawn_card.parsed_action.model_dump(by_alias=True),
            "targetPlayerId": result.drawn_card.target_player_id,
        }
    return jsonable_encoder(
        {
            "ok": True,
            "messages": result.messages,
            "drawnCard": drawn,
            "extraRoll": result.extra_roll,
            "winner": result.winner,
            "gameData": result.game_data,
        }
    )


# ---------- WebSocket bridge ----------
@app.websocket("/ws/{room_code}")
async def ws_room(ws: WebSocket, room_code: str, token: str = Query(...)):
    try:
        identity = decode_token(token)
    except HTTPException as exc:
        await ws.close(code=1008, reason=str(exc.detail))
        return
    room = await store.select_one(ROOMS, room_code=room_code.strip().upper())
    session = SESSIONS.get(identity.player_id)
    if room is None:
        await ws.close(code=1008, reason="room_not_found")
        return
    if session is None or session.room_id != room["id"]:
        await ws.close(code=1008, reason="not_in_room")
        return

    await ws.accept()

    async def forward_broadcast(event: str, payload: Dict[str, Any]) -> None:
        await ws.send_json({"type": "broadcast", "event": event, "payload": jsonable_encoder(payload)})

    async def forward_change(table: str, event: str, row: Dict[str, Any]) -> None:
        await ws.send_json({"type": "change", "table": table, "event": event, "row": jsonable_encoder(row)})

    subscription = hub.subscribe(
        room_topic(room["id"]),
        on_broadcast=forward_broadcast,
        on_change=forward_change,
        filters=[
            ChangeFilter(ROOMS, {"id": room["id"]}),
            ChangeFilter(PLAYERS, {"room_id": room["id"]}),
            ChangeFilter(SPECTATORS, {"room_id": room["id"]}),
            ChangeFilter(MESSAGES, {"room_id": room["id"]}),
        ],
    )
    try:
        await ws.send_json({"type": "state", "payload": jsonable_encoder(session.snapshot())})
        while True:
            data = await ws.receive_json()
            t = data.get("type")
            try:
                if t == "chat":
                    await session.send_message(data["message"], data.get("message_type", "chat"))
                elif t == "draw_card":
                    state = await session.draw_cards(int(data.get("count", 1)))
                    if state is None:
                        await ws.send_json({"type": "error", "error": "move_rejected"})
                elif t in {"discard_card", "play_card"}:
                    move = session.discard_card if t == "discard_card" else session.play_card
                    if await move(data["card_id"]) is None:
                        await ws.send_json({"type": "error", "error": "move_rejected"})
                elif t == "drink":
                    await session.trigger_drink_event(data["rule"], data.get("target_player"))
                elif t == "heartbeat":
                    await session.heartbeat()
                else:
                    await ws.send_json({"type": "error", "error": "unknown_action"})
            except (KeyError, TypeError, ValueError) as exc:
                await ws.send_json({"type": "error", "error": f"bad_request: {exc}"})
    except WebSocketDisconnect:
        logger.debug("WebSocket closed for %s in %s", identity.player_id, room["room_code"])
    finally:
        subscription.close()
