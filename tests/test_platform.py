"""
Composition root tests: wiring and the background matchmaking loop.
"""

import pytest

from arenacore.config import Settings
from arenacore.events import NotificationKind, participant_topic, tournament_topic
from arenacore.matchmaking import GameMode
from arenacore.platform import CompetitivePlatform
from arenacore.tournament import BracketFormat, MatchResult, TournamentConfig, TournamentStatus
from arenacore.utils.errors import MatchNotFoundError


def make_settings(**overrides):
    values = dict(
        _env_file=None,
        matchmaking_tick_interval=0.01,
        lock_acquire_timeout_ms=200,
        lock_retry_interval_ms=5,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def platform(mock_redis):
    return CompetitivePlatform(
        mock_redis,
        settings=make_settings(),
        modes=[GameMode("ranked"), GameMode("duo", team_size=2)],
    )


class TestWiring:
    def test_components_share_settings(self, platform):
        assert platform.queue.modes == ["duo", "ranked"]
        assert platform.rating_engine.k_factor == 32.0
        assert platform.tournaments.broadcaster is platform.broadcaster
        assert platform.verifier is None

    def test_game_client_used_as_verifier(self, mock_redis):
        platform = CompetitivePlatform(
            mock_redis, settings=make_settings(game_integration_url="https://games.test")
        )
        assert platform.verifier is not None
        assert platform.queue.modes == ["ranked"]


class TestQueueFlow:
    @pytest.mark.asyncio
    async def test_enqueue_tick_and_commit(self, platform):
        await platform.enqueue("a", "ranked")
        await platform.enqueue("b", "ranked")

        formed = await platform.queue.tick()
        match = await platform.submit_queue_result(
            formed[0].match_id, MatchResult.decided("a", "b")
        )

        assert match.is_committed
        assert await platform.rating_book.get_rating("a", "ranked") == pytest.approx(1516)

    @pytest.mark.asyncio
    async def test_background_loop_forms_matches(self, platform):
        notices = platform.subscribe(participant_topic("a"))
        await platform.start()
        try:
            await platform.enqueue("a", "ranked")
            await platform.enqueue("b", "ranked")

            event = await notices.get(timeout=2)
        finally:
            await platform.stop()

        assert event.payload.kind == NotificationKind.MATCH_FOUND
        assert event.payload.opponent_ids == ("b",)
        assert platform.queue.entries("ranked") == []


class TestTournamentFlow:
    @pytest.mark.asyncio
    async def test_two_player_cup(self, platform):
        config = TournamentConfig(
            tournament_id="t1", name="Cup", format=BracketFormat.SINGLE_ELIMINATION
        )
        await platform.create_tournament(config)
        await platform.open_registration("t1")
        await platform.register_participant("t1", "a")
        await platform.register_participant("t1", "b")
        await platform.start_tournament("t1")
        events = platform.subscribe(tournament_topic("t1"), after_sequence=0)

        state = await platform.submit_match_result("t1:WB-R1-M1", MatchResult.decided("b", "a"))

        assert state.status == TournamentStatus.COMPLETED
        assert state.bracket.champion_id == "b"
        first = await events.get(timeout=1)
        assert first.sequence == 1


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_loop_survives_unexpected_tick_error(self, platform, monkeypatch):
        real_tick = platform.queue.tick
        calls = []

        async def flaky_tick():
            calls.append(True)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return await real_tick()

        monkeypatch.setattr(platform.queue, "tick", flaky_tick)
        notices = platform.subscribe(participant_topic("a"))
        await platform.start()
        try:
            await platform.enqueue("a", "ranked")
            await platform.enqueue("b", "ranked")

            event = await notices.get(timeout=2)
        finally:
            await platform.stop()

        assert len(calls) >= 2
        assert event.payload.kind == NotificationKind.MATCH_FOUND

    @pytest.mark.asyncio
    async def test_sweep_drops_expired_state(self, platform):
        await platform.enqueue("a", "ranked")
        await platform.enqueue("b", "ranked")
        formed = await platform.queue.tick()
        await platform.submit_queue_result(formed[0].match_id, MatchResult.decided("a", "b"))
        platform.queue.retention_seconds = 0.0

        await platform.sweep()

        with pytest.raises(MatchNotFoundError):
            platform.queue.get_match(formed[0].match_id)


class TestLifespan:
    @pytest.mark.asyncio
    async def test_run_platform_opens_and_closes_redis(self, mock_redis, monkeypatch):
        import logging

        from arenacore import platform as platform_module

        closed = []

        async def fake_init(settings):
            return mock_redis

        async def fake_close():
            closed.append(True)

        monkeypatch.setattr(platform_module, "init_redis", fake_init)
        monkeypatch.setattr(platform_module, "close_redis", fake_close)

        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            async with platform_module.run_platform(make_settings(json_logs=True)) as running:
                assert running.redis is mock_redis
                await running.enqueue("a", "ranked")
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

        assert closed == [True]
