import asyncio

import pytest

from coaster.logic.enums import RoomState
from coaster.tests.helpers.catalog import make_coaster, spread_catalog
from coaster.tests.helpers.timing import wait_until

LONG_ROUND_MS = 10000


async def _send(router, connection, message_type, **payload):
    await router.handle_message(connection, {"type": message_type, **payload})


async def _start_game(router, manager, connect, *, names=("Alice", "Bob"), **config):
    """Create a room, fill it with the named players and wait for round one."""
    players = [await connect(name) for name in names]
    host = players[0]
    await _send(router, host, "createRoom", round_time_ms=config.pop("round_time_ms", LONG_ROUND_MS), **config)
    code = host.last_of_type("roomCreated")["room_code"]
    for guest in players[1:]:
        await _send(router, guest, "joinRoom", room_code=code)
    await _send(router, host, "startGame")
    room = manager.registry.get_room(code)
    await wait_until(lambda: room.game is not None and room.game.round_active)
    return room, players


def _correct_id(room):
    return room.game.current_round.criterion.correct_coaster_id


def _wrong_id(room):
    correct = _correct_id(room)
    return next(c.id for c in room.game.current_round.candidates if c.id != correct)


async def _wait_for_round(room, round_number):
    await wait_until(lambda: room.game.round_number == round_number and room.game.round_active)


class TestStartGame:
    async def test_broadcasts_start_and_first_round(self, router, manager, connect):
        room, (alice, bob) = await _start_game(router, manager, connect)

        for player in (alice, bob):
            assert player.last_of_type("gameStarted")["message"] == f"Game started in room {room.code}!"
            new_round = player.last_of_type("newRound")
            assert new_round["round_number"] == 1
            assert new_round["time_limit_ms"] == LONG_ROUND_MS
            assert len(new_round["coasters"]) == 3
            assert all("stats" not in coaster for coaster in new_round["coasters"])
            assert set(new_round["criterion"]) == {"type", "display_value"}
        assert room.state == RoomState.PLAYING

    async def test_requires_two_players(self, router, connect):
        alice = await connect("Alice")
        await _send(router, alice, "createRoom")
        await _send(router, alice, "startGame")

        error = alice.last_of_type("error")
        assert error["code"] == "invalid_state"
        assert error["message"] == "Need at least 2 players to start."

    async def test_only_host_can_start(self, router, connect):
        alice = await connect("Alice")
        bob = await connect("Bob")
        await _send(router, alice, "createRoom")
        await _send(router, bob, "joinRoom", room_code=alice.last_of_type("roomCreated")["room_code"])
        await _send(router, bob, "startGame")

        assert bob.last_of_type("error") == {
            "type": "error",
            "code": "not_host",
            "message": "Only the room host can start the game.",
        }

    async def test_cannot_start_twice(self, router, manager, connect):
        _room, (alice, _bob) = await _start_game(router, manager, connect)
        await _send(router, alice, "startGame")

        assert alice.last_of_type("error")["message"] == "Game is already in progress."


class TestAnswers:
    async def test_player_answered_is_broadcast(self, router, manager, connect):
        room, (alice, bob) = await _start_game(router, manager, connect)
        await _send(router, alice, "submitAnswer", coaster_id=_correct_id(room))

        answered = bob.last_of_type("playerAnswered")
        assert answered["user_id"] == room.members[0]
        assert answered["username"] == "Alice"

    async def test_duplicate_answer_is_rejected(self, router, manager, connect):
        room, (alice, _bob) = await _start_game(router, manager, connect)
        await _send(router, alice, "submitAnswer", coaster_id=_wrong_id(room))
        await _send(router, alice, "submitAnswer", coaster_id=_correct_id(room))

        assert alice.last_of_type("error")["message"] == "You already answered this round!"
        assert room.game.current_round.answers[room.members[0]] == _wrong_id(room)

    async def test_answer_outside_a_round_is_rejected(self, router, connect):
        alice = await connect("Alice")
        await _send(router, alice, "createRoom")
        await _send(router, alice, "submitAnswer", coaster_id=1)

        assert alice.last_of_type("error")["message"] == "No active round!"

    async def test_answer_outside_a_room_is_rejected(self, router, connect):
        alice = await connect("Alice")
        await _send(router, alice, "submitAnswer", coaster_id=1)

        assert alice.last_of_type("error")["message"] == "You are not in a room."


class TestRoundResolution:
    async def test_two_health_game_to_a_winner(self, router, manager, connect):
        """Alice right and Bob wrong, then both wrong: Alice survives with one health."""
        room, (alice, bob) = await _start_game(router, manager, connect, starting_health=2)
        alice_id, bob_id = room.members

        await _send(router, alice, "submitAnswer", coaster_id=_correct_id(room))
        await _send(router, bob, "submitAnswer", coaster_id=_wrong_id(room))
        await wait_until(lambda: alice.messages_of_type("roundEnded"))

        first = alice.last_of_type("roundEnded")
        results = {r["user_id"]: r for r in first["results"]}
        assert first["round_number"] == 1
        assert results[alice_id]["is_correct"] and results[alice_id]["health"] == 2
        assert results[alice_id]["streak"] == 1
        assert not results[bob_id]["is_correct"] and results[bob_id]["health"] == 1

        await _wait_for_round(room, 2)
        await _send(router, alice, "submitAnswer", coaster_id=_wrong_id(room))
        await _send(router, bob, "submitAnswer", coaster_id=_wrong_id(room))
        await wait_until(lambda: alice.messages_of_type("gameEnded"))

        ended = bob.last_of_type("gameEnded")
        assert ended["message"] == "Alice wins!"
        assert ended["winner"] == {"user_id": alice_id, "username": "Alice"}
        assert room.state == RoomState.LOBBY
        snapshot = alice.last_of_type("roomUsersUpdate")
        assert snapshot["game_state"] == "lobby"

    async def test_all_answered_switches_to_grace_timer(self, router, manager, connect):
        """Once every alive member answered, the round resolves long before its deadline."""
        room, (alice, bob) = await _start_game(router, manager, connect)
        await _send(router, alice, "submitAnswer", coaster_id=_correct_id(room))
        assert room.timer.label == "deadline"
        await _send(router, bob, "submitAnswer", coaster_id=_correct_id(room))

        assert room.timer.label == "grace"
        await wait_until(lambda: alice.messages_of_type("roundEnded"), timeout=1.0)

    async def test_deadline_marks_silent_players_too_slow(self, router, manager, connect):
        room, (alice, _bob) = await _start_game(router, manager, connect, round_time_ms=200, starting_health=1)
        await wait_until(lambda: alice.messages_of_type("gameEnded"))

        ended_round = alice.last_of_type("roundEnded")
        assert all(r["too_slow"] for r in ended_round["results"])
        assert all(r["health"] == 0 for r in ended_round["results"])
        ended = alice.last_of_type("gameEnded")
        assert ended["message"] == "Game over! Nobody won!"
        assert ended["winner"] is None
        assert room.state == RoomState.LOBBY

    async def test_round_ended_reveals_correct_coaster(self, router, manager, connect):
        room, (alice, bob) = await _start_game(router, manager, connect)
        correct = _correct_id(room)
        criterion = room.game.current_round.criterion
        await _send(router, alice, "submitAnswer", coaster_id=correct)
        await _send(router, bob, "submitAnswer", coaster_id=correct)
        await wait_until(lambda: alice.messages_of_type("roundEnded"))

        ended = alice.last_of_type("roundEnded")
        assert ended["correct_coaster_id"] == correct
        assert ended["correct_coaster"]["id"] == correct
        assert "stats" in ended["correct_coaster"]
        assert len(ended["all_coasters"]) == 3
        assert ended["criterion"] == {"key": criterion.key, "type": criterion.name}
        assert ended["is_landmark"] is False

    async def test_eliminated_player_cannot_answer(self, router, manager, connect):
        room, (alice, bob, carol) = await _start_game(
            router, manager, connect, names=("Alice", "Bob", "Carol"), starting_health=1
        )
        await _send(router, alice, "submitAnswer", coaster_id=_correct_id(room))
        await _send(router, bob, "submitAnswer", coaster_id=_correct_id(room))
        await _send(router, carol, "submitAnswer", coaster_id=_wrong_id(room))

        await _wait_for_round(room, 2)
        await _send(router, carol, "submitAnswer", coaster_id=_correct_id(room))

        assert carol.last_of_type("error")["message"] == "You are eliminated!"

    async def test_opponent_leaving_ends_the_game(self, router, manager, connect):
        room, (alice, bob) = await _start_game(router, manager, connect)
        alice_id = room.members[0]
        await _send(router, alice, "submitAnswer", coaster_id=_correct_id(room))
        await _send(router, bob, "leaveRoom")
        await wait_until(lambda: alice.messages_of_type("gameEnded"))

        assert alice.last_of_type("gameEnded")["winner"]["user_id"] == alice_id


class TestEndGame:
    async def test_host_ends_game(self, router, manager, connect):
        room, (alice, bob) = await _start_game(router, manager, connect)
        await _send(router, alice, "endGame")

        assert bob.last_of_type("gameEnded") == {
            "type": "gameEnded",
            "message": "Game has been ended by the host.",
            "winner": None,
        }
        assert room.state == RoomState.LOBBY
        assert not room.timer.is_armed

    async def test_non_host_cannot_end_game(self, router, manager, connect):
        room, (_alice, bob) = await _start_game(router, manager, connect)
        await _send(router, bob, "endGame")

        assert bob.last_of_type("error")["code"] == "not_host"
        assert room.is_playing

    async def test_end_without_game_is_rejected(self, router, connect):
        alice = await connect("Alice")
        await _send(router, alice, "createRoom")
        await _send(router, alice, "endGame")

        assert alice.last_of_type("error")["message"] == "No game is currently in progress."


class TestSettings:
    async def test_host_updates_settings(self, router, manager, connect):
        alice = await connect("Alice")
        await _send(router, alice, "createRoom")
        await _send(router, alice, "updateGameSettings", starting_health=4, use_imperial=False, difficulty_mode="hard")

        snapshot = alice.last_of_type("roomUsersUpdate")
        assert snapshot["starting_health"] == 4
        assert snapshot["use_imperial"] is False
        assert snapshot["difficulty_mode"] == "hard"

    async def test_invalid_settings_are_rejected(self, router, connect):
        alice = await connect("Alice")
        await _send(router, alice, "createRoom")
        await _send(router, alice, "updateGameSettings", max_players=20)

        error = alice.last_of_type("error")
        assert error["code"] == "invalid_settings"
        assert error["message"] == "Max Players must be between 2 and 8."

    async def test_capacity_never_drops_below_member_count(self, router, connect):
        alice = await connect("Alice")
        bob = await connect("Bob")
        carol = await connect("Carol")
        await _send(router, alice, "createRoom", max_players=4)
        code = alice.last_of_type("roomCreated")["room_code"]
        await _send(router, bob, "joinRoom", room_code=code)
        await _send(router, carol, "joinRoom", room_code=code)
        await _send(router, alice, "updateGameSettings", max_players=2)

        assert alice.last_of_type("roomUsersUpdate")["room_limit"] == 3

    async def test_running_game_keeps_its_settings(self, router, manager, connect):
        room, (alice, _bob) = await _start_game(router, manager, connect)
        await _send(router, alice, "updateGameSettings", round_time_ms=3000)

        assert room.config.round_time_ms == 3000
        assert room.game.round_time_ms == LONG_ROUND_MS

    async def test_public_room_capacity_is_locked_once_shared(self, router, connect):
        alice = await connect("Alice")
        bob = await connect("Bob")
        await _send(router, alice, "quickQueue")
        await _send(router, bob, "quickQueue")
        await _send(router, alice, "updateGameSettings", max_players=4)

        assert alice.last_of_type("error")["code"] == "invalid_state"


class TestRoundSelectionRetry:
    @pytest.fixture
    def catalog(self):
        # every stat and park ties, so no triple has a single correct answer
        return [make_coaster(i, height=50) for i in range(1, 7)]

    async def test_failed_build_keeps_the_round_number(self, router, manager, connect, catalog):
        alice, bob = await connect("Alice"), await connect("Bob")
        await _send(router, alice, "createRoom", round_time_ms=LONG_ROUND_MS)
        code = alice.last_of_type("roomCreated")["room_code"]
        await _send(router, bob, "joinRoom", room_code=code)
        await _send(router, alice, "startGame")
        room = manager.registry.get_room(code)

        await wait_until(lambda: room.timer.label == "selection_retry")
        assert room.game.round_number == 0
        assert room.game.current_round is None
        assert not alice.messages_of_type("newRound")

        catalog[:] = spread_catalog()
        await _wait_for_round(room, 1)

        assert alice.last_of_type("newRound")["round_number"] == 1
        assert room.timer.label == "deadline"


class TestEmptiedRoom:
    async def test_room_emptied_mid_round_goes_quiet(self, router, manager, connect):
        room, (alice, bob) = await _start_game(router, manager, connect, round_time_ms=100)
        await _send(router, alice, "leaveRoom")
        await _send(router, bob, "leaveRoom")

        assert room.timer.is_armed is False
        assert manager.registry.get_room(room.code) is None
        assert not manager.registry.is_alive(room)

        # well past the round deadline
        await asyncio.sleep(0.3)
        for player in (alice, bob):
            assert not player.messages_of_type("roundEnded")
