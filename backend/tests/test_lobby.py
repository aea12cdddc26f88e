import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio

import card_sync
import lobby
from app.models import utcnow
from app.settings import get_settings
from catalog import CardCatalog
from creek import CreekGame
from lobby import LobbySession
from models import CardAction, CardGameState
from realtime import RealtimeHub, room_topic
from stats import StatsRecorder
from store import RoomStore

DECK = [{"id": f"card{i}", "card_type": "shit", "card_name": f"Card {i}"} for i in range(25)]


class Env:
    def __init__(self, session_maker):
        self.hub = RealtimeHub()
        self.store = RoomStore(session_maker, self.hub)
        self.stats = StatsRecorder(session_maker)
        self.catalog = CardCatalog(self.store)
        self.config = get_settings()
        self.sessions = []

    def configure(self, **values):
        self.config = self.config.model_copy(update=values)

    def session(self, player_id, user_id=None):
        session = LobbySession(
            self.store, self.hub, player_id, user_id=user_id, stats=self.stats, config=self.config
        )
        self.sessions.append(session)
        return session

    async def room(self, session):
        return await self.store.select_one("game_rooms", id=session.room_id)

    async def shutdown(self):
        for session in self.sessions:
            await session.drain()
            session.close()
        await asyncio.sleep(0)


@pytest_asyncio.fixture
async def env(session_maker):
    environment = Env(session_maker)
    yield environment
    await environment.shutdown()


async def two_player_room(env, game_type="shito", drinking_mode=False, alice_uid=None, bob_uid=None):
    alice = env.session("alice", user_id=alice_uid)
    bob = env.session("bob", user_id=bob_uid)
    code = await alice.create_room(game_type, "Alice", drinking_mode=drinking_mode)
    assert await bob.join_room(code, "Bob")
    return alice, bob, code


@pytest.mark.asyncio
async def test_end_to_end_room_lifecycle(env, monkeypatch):
    monkeypatch.setattr(lobby, "generate_room_code", lambda: "ABC123")

    alice = env.session("alice")
    code = await alice.create_room("shito", "Alice", drinking_mode=True)
    assert code == "ABC123"
    assert alice.current_room.settings["drinking_mode"] is True
    assert alice.drinking_mode.enabled

    bob = env.session("bob")
    assert await bob.join_room("abc123", "Bob")
    assert len(bob.players) == 2
    assert len(alice.players) == 2

    await alice.start_game()
    assert alice.current_room.status == "playing"
    assert bob.current_room.status == "playing"

    state = await alice.initialize_cards(DECK, seed=42)
    assert len(state.deck_cards) == 25
    assert len(state.discard_pile) == 0

    state = await alice.draw_cards()
    assert len(state.player_hands["alice"]) == 1
    assert len(state.deck_cards) == 24
    assert len(bob.card_game_state.deck_cards) == 24

    assert await bob.join_as_spectator("ABC123", "Bob")
    assert any(s.spectator_id == "bob" for s in bob.spectators)
    assert bob.is_spectator
    assert [p.player_id for p in bob.players] == ["alice"]
    assert [p.player_id for p in alice.players] == ["alice"]
    assert await env.store.count("room_players", room_id=alice.room_id) == 1

    assert await bob.draw_cards() is None
    stored = (await env.room(alice))["game_data"]["cardState"]
    assert len(stored["deckCards"]) == 24
    assert len(stored["playerHands"]["alice"]) == 1
    assert "bob" not in stored["playerHands"]


@pytest.mark.asyncio
async def test_concurrent_partial_updates_are_merged(env):
    alice, bob, _ = await two_player_room(env)
    await asyncio.gather(
        alice.update_game_state({"scoreA": 5}),
        bob.update_game_state({"scoreB": 7}),
    )
    await alice.update_game_state({"currentTurn": 1})

    room = await env.room(alice)
    assert room["game_data"] == {"scoreA": 5, "scoreB": 7, "currentTurn": 1}
    assert room["current_turn"] == 1


@pytest.mark.asyncio
async def test_next_turn_wraps_around(env):
    alice, bob, _ = await two_player_room(env)
    await alice.start_game()

    assert await bob.next_turn() == 1
    assert await alice.next_turn() == 0
    assert bob.current_room.current_turn == 0


@pytest.mark.asyncio
async def test_non_host_actions_are_ignored(env):
    alice, bob, _ = await two_player_room(env, drinking_mode=True)
    await bob.start_game()
    assert (await env.room(alice))["status"] == "waiting"

    assert await bob.kick_player("alice") is False
    assert await bob.add_bot() is None
    await bob.toggle_drinking_mode()
    assert (await env.room(alice))["settings"]["drinking_mode"] is True

    await bob.update_player_score("alice", 99)
    await bob.update_player_score("bob", 3)
    assert {p.player_id: p.score for p in alice.players} == {"alice": 0, "bob": 3}

    assert await alice.kick_player("alice") is False
    assert await alice.kick_player("bob") is True
    assert [p.player_id for p in alice.players] == ["alice"]
    assert any("removed by the host" in m.message for m in alice.messages)


@pytest.mark.asyncio
async def test_kicked_player_loses_the_session(env):
    alice, bob, _ = await two_player_room(env)
    await alice.start_game()
    await alice.initialize_cards(DECK, seed=42)
    connection = bob.connection

    assert await alice.kick_player("bob") is True
    assert bob.current_room is None
    assert bob.can_play is False
    assert bob.connection is None
    await asyncio.sleep(0.01)
    assert connection.closed

    assert await bob.update_game_state({"hijack": True}) is None
    assert await bob.draw_cards() is None
    stored = (await env.room(alice))["game_data"]
    assert "hijack" not in stored
    assert "bob" not in stored["cardState"]["playerHands"]


@pytest.mark.asyncio
async def test_player_without_a_row_cannot_play(env):
    alice, bob, _ = await two_player_room(env)
    bob.players = [p for p in bob.players if p.player_id != "bob"]

    assert bob.can_play is False
    assert await bob.update_game_state({"hijack": True}) is None
    assert "hijack" not in (await env.room(alice))["game_data"]


@pytest.mark.asyncio
async def test_joining_another_room_gives_up_the_old_seat(env):
    alice, bob, _ = await two_player_room(env)
    carol = env.session("carol")
    other = await carol.create_room("shito", "Carol")

    assert await bob.join_room(other, "Bob")
    assert [p.player_id for p in alice.players] == ["alice"]
    assert alice.messages[-1].message == "Bob left"
    assert [p.player_id for p in carol.players] == ["carol", "bob"]

    # and back again as a spectator of the first room
    assert await bob.join_as_spectator(alice.current_room.room_code, "Bob")
    assert [p.player_id for p in carol.players] == ["carol"]
    assert [s.spectator_id for s in alice.spectators] == ["bob"]


@pytest.mark.asyncio
async def test_spectators_cannot_write(env):
    alice = env.session("alice")
    code = await alice.create_room("shito", "Alice")
    await alice.start_game()
    await alice.initialize_cards(DECK, seed=1)

    carol = env.session("carol")
    assert await carol.join_as_spectator(code, "Carol")
    assert carol.can_play is False
    assert await carol.update_game_state({"hacked": True}) is None
    assert await carol.draw_cards() is None
    await carol.toggle_ready()
    await carol.next_turn()
    await carol.end_game("carol")

    room = await env.room(alice)
    assert "hacked" not in room["game_data"]
    assert room["status"] == "playing"
    assert room["current_turn"] == 0
    assert carol.card_game_state is not None


@pytest.mark.asyncio
async def test_join_failures_report_an_error_code(env):
    env.configure(max_players=2)
    alice, bob, code = await two_player_room(env)
    carol = env.session("carol")

    assert await carol.join_room("NOPE00", "Carol") is False
    assert carol.last_error.code == "room_not_found"

    assert await carol.join_room(code, "Carol") is False
    assert carol.last_error.code == "room_full"
    assert carol.current_room is None

    # a player already seated may rejoin a full room
    assert await bob.join_room(code, "Bob") is True

    await env.store.update("game_rooms", {"allow_spectators": False}, id=alice.room_id)
    assert await carol.join_as_spectator(code, "Carol") is False
    assert carol.last_error.code == "spectators_disabled"

    await alice.start_game()
    await alice.end_game("alice", {"alice": 1})
    dave = env.session("dave")
    assert await dave.join_room(code, "Dave") is False
    assert dave.last_error.code == "room_finished"


@pytest.mark.asyncio
async def test_room_code_collision_gives_up_after_retries(env, monkeypatch):
    monkeypatch.setattr(lobby, "generate_room_code", lambda: "SAME01")
    env.configure(room_code_attempts=3)
    first = env.session("alice")
    second = env.session("bob")

    assert await first.create_room("shito", "Alice") == "SAME01"
    assert await second.create_room("shito", "Bob") is None
    assert second.last_error.code == "room_code_collision"
    assert second.is_loading is False


@pytest.mark.asyncio
async def test_child_game_never_enables_drinking(env):
    alice = env.session("alice")
    await alice.create_room("drop-deuce", "Alice", drinking_mode=True)
    assert alice.drinking_mode.enabled is False

    await alice.toggle_drinking_mode()
    assert (await env.room(alice))["settings"]["drinking_mode"] is False


@pytest.mark.asyncio
async def test_join_order_follows_existing_players(env):
    alice, bob, code = await two_player_room(env)
    carol = env.session("carol")
    assert await carol.join_room(code, "Carol")
    await bob.leave_room()
    dave = env.session("dave")
    assert await dave.join_room(code, "Dave")

    assert [(p.player_id, p.player_order) for p in alice.players] == [("alice", 0), ("carol", 2), ("dave", 3)]


@pytest.mark.asyncio
async def test_invite_links(env):
    env.configure(invite_max_uses=1)
    alice = env.session("alice")
    await alice.create_room("shito", "Alice")
    code = await alice.create_invite()
    assert len(code) == 12

    carol = env.session("carol")
    assert await carol.join_by_invite(code.lower(), "Carol")
    assert carol.room_id == alice.room_id
    invite = await env.store.select_one("game_invites", invite_code=code)
    assert invite["uses_count"] == 1

    dave = env.session("dave")
    assert await dave.join_by_invite(code, "Dave") is False
    assert dave.last_error.code == "invite_invalid"

    expired = await alice.create_invite(expires_in=timedelta(seconds=-1))
    assert await dave.join_by_invite(expired, "Dave") is False
    assert await dave.join_by_invite("MISSING", "Dave") is False
    assert dave.current_room is None


@pytest.mark.asyncio
async def test_chat_and_roster_reach_other_sessions(env):
    alice, bob, _ = await two_player_room(env)
    await bob.send_message("hello there")
    await bob.toggle_ready()

    chat = [(m.player_name, m.message) for m in alice.messages]
    assert ("System", "Bob joined") in chat
    assert chat[-1] == ("Bob", "hello there")
    assert {p.player_id: p.is_ready for p in alice.players} == {"alice": False, "bob": True}


@pytest.mark.asyncio
async def test_card_state_is_broadcast_then_persisted(env):
    alice, bob, _ = await two_player_room(env)
    state = card_sync.build_card_state(DECK[:5], 3)
    action = CardAction(type="shuffle", player_id="alice", timestamp=0)

    await alice.update_card_game_state(state, action)
    assert bob.card_game_state.to_payload() == state.to_payload()

    await alice.drain()
    stored = (await env.room(alice))["game_data"]["cardState"]
    assert stored == state.to_payload()
    assert alice.card_game_state.to_payload() == state.to_payload()


@pytest.mark.asyncio
async def test_card_moves_keep_every_card_accounted_for(env):
    alice, bob, _ = await two_player_room(env)
    await alice.start_game()
    await alice.initialize_cards(DECK, seed=42)
    expected = card_sync.all_card_ids(alice.card_game_state)

    await asyncio.gather(alice.draw_cards(2), bob.draw_cards(2))
    hand = alice.card_game_state.player_hands["alice"]
    await alice.discard_card(hand[0].id)
    await alice.play_card(hand[1].id)
    assert await bob.discard_card(hand[1].id) is None
    await bob.reshuffle_discard(seed=8)

    stored = (await env.room(alice))["game_data"]["cardState"]
    state = CardGameState.model_validate(stored)
    card_sync.check_ownership(state, expected)
    assert len(state.deck_cards) == 22
    assert len(state.table_cards) == 1
    assert len(state.player_hands["bob"]) == 2


@pytest.mark.asyncio
async def test_heartbeat_runs_until_the_session_leaves(env):
    env.configure(heartbeat_interval_sec=0.05)
    alice = env.session("alice")
    await alice.create_room("shito", "Alice")
    room_id = alice.room_id
    connection = alice.connection
    first_seen = alice.me().last_seen_at

    await asyncio.sleep(0.2)
    row = await env.store.select_one("room_players", room_id=room_id, player_id="alice")
    assert row["last_seen_at"] > first_seen

    await alice.leave_room()
    await asyncio.sleep(0.05)
    assert alice.connection is None
    assert connection.closed
    assert env.hub.subscriber_count(room_topic(room_id)) == 0
    assert alice.current_room is None


@pytest.mark.asyncio
async def test_heartbeat_survives_an_unexpected_error(env, caplog):
    env.configure(heartbeat_interval_sec=0.02)
    alice = env.session("alice")
    await alice.create_room("shito", "Alice")
    beats = []

    async def flaky_beat(room_id, spectator):
        beats.append(room_id)
        if len(beats) == 1:
            raise RuntimeError("boom")

    alice._beat = flaky_beat
    await asyncio.sleep(0.15)

    assert len(beats) >= 2
    assert not alice.connection.heartbeat.done()
    assert "Heartbeat error for alice" in caplog.text


@pytest.mark.asyncio
async def test_stale_players_are_not_connected(env):
    alice, _, _ = await two_player_room(env)
    now = utcnow()

    assert {p.player_id for p in alice.connected_players(now)} == {"alice", "bob"}
    assert alice.connected_players(now + timedelta(seconds=31)) == []


@pytest.mark.asyncio
async def test_drinking_controls(env):
    alice, bob, _ = await two_player_room(env, drinking_mode=True)
    await alice.set_drinking_intensity("heavy")
    assert bob.drinking_mode.intensity == "heavy"

    await alice.trigger_drink_event("Take a drink", "Bob")
    assert bob.drink_events == [{"rule": "Take a drink", "ruleId": None, "targetPlayer": "Bob", "from": "alice"}]
    assert alice.messages[-1].message_type == "drink"
    assert alice.messages[-1].player_name == "Drinking Game"

    assert bob.add_drink() == 1
    assert bob.add_drink() == 2

    await alice.toggle_drinking_mode()
    assert bob.drinking_mode.enabled is False
    await alice.trigger_drink_event("Again")
    assert len(bob.drink_events) == 1


@pytest.mark.asyncio
async def test_drink_event_by_rule_id_uses_the_scaled_rule(env):
    alice, bob, _ = await two_player_room(env, drinking_mode=True)
    await alice.set_drinking_intensity("heavy")

    await alice.trigger_drink_event("sh-2", "Bob")
    assert bob.drink_events[-1]["ruleId"] == "sh-2"
    assert bob.drink_events[-1]["rule"] == "Miss a call (had the icon): Take 2 drinks (4 drinks)"
    assert alice.messages[-1].message == "Bob: Miss a call (had the icon): Take 2 drinks (4 drinks)"


@pytest.mark.asyncio
async def test_finished_game_is_recorded_once_per_account(env):
    alice, bob, _ = await two_player_room(env, alice_uid="u-alice", bob_uid="u-bob")
    await alice.start_game()
    await alice.end_game("alice", {"alice": 10, "bob": 3})
    await bob.end_game("bob", {})
    for session in (alice, bob):
        await session.drain()

    alice_stats = await env.stats.get_player_stats("u-alice")
    assert alice_stats["totalGames"] == 1
    assert alice_stats["wins"] == 1
    assert alice_stats["winRate"] == 100.0
    assert (await env.stats.get_player_stats("u-bob"))["losses"] == 1
    assert (await env.stats.get_history("u-alice"))[0]["score"] == 10

    room = await env.room(alice)
    assert room["game_data"]["winner"] == "alice"
    assert room["game_data"]["finalScores"] == {"alice": 10, "bob": 3}


@pytest.mark.asyncio
async def test_creek_turns_through_sessions(env):
    alice, bob, _ = await two_player_room(env, game_type="up-shitz-creek")
    bot_id = await alice.add_bot("Robo")
    await alice.start_game()
    creek = CreekGame(env.catalog)

    assert await creek.take_turn(bob, roll=2) is None
    first = await creek.take_turn(alice, roll=1)
    assert first.game_data["currentTurn"] == 1
    await creek.take_turn(bob, roll=2)

    # only the host may move a bot
    assert await creek.take_turn(bob, roll=5) is None
    await creek.take_turn(alice, roll=5)

    room = await env.room(alice)
    assert room["current_turn"] == 0
    assert room["game_data"]["positions"] == {"alice": 1, "bob": 2, bot_id: 5}

    await alice.update_game_state({"positions": {"alice": 24, "bob": 2, bot_id: 5}})
    final = await creek.take_turn(alice, roll=1)
    assert final.winner == "alice"

    room = await env.room(alice)
    assert room["status"] == "finished"
    assert room["game_data"]["winner"] == "alice"
    assert room["game_data"]["finalScores"]["alice"] == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["waiting", "finished"])
async def test_creek_turn_needs_a_running_game(env, status):
    alice, _, _ = await two_player_room(env, game_type="up-shitz-creek")
    if status == "finished":
        await alice.start_game()
        await alice.end_game()

    assert await CreekGame(env.catalog).take_turn(alice, roll=1) is None
