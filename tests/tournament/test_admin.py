"""
Tournament Admin Controller Tests.
"""

import pytest

from arenacore.events import NotificationKind, participant_topic
from arenacore.tournament.admin import AdminActionType, TournamentAdminController
from arenacore.tournament.engine import TournamentEngine
from arenacore.tournament.models import (
    BracketFormat,
    MatchResult,
    ResultState,
    TournamentConfig,
    TournamentStatus,
)
from arenacore.utils.errors import InvalidStateTransitionError, TournamentNotInProgressError


@pytest.fixture
def engine(lock_manager, broadcaster, rating_book):
    return TournamentEngine(lock_manager, broadcaster, rating_book)


@pytest.fixture
def admin(engine):
    return TournamentAdminController(engine)


async def start(engine, count, fmt=BracketFormat.SINGLE_ELIMINATION, tid="t1"):
    await engine.create_tournament(TournamentConfig(tournament_id=tid, name="Cup", format=fmt))
    await engine.open_registration(tid)
    for i in range(1, count + 1):
        await engine.rating_book.set_rating(f"p{i}", "tournament", 2000 - i * 10)
        await engine.register_participant(tid, f"p{i}")
    return await engine.start_tournament(tid)


class TestForfeit:
    @pytest.mark.asyncio
    async def test_forfeit_concedes_playable_match(self, admin, engine, broadcaster):
        await start(engine, 4)

        state = await admin.forfeit_participant("t1", "p4", admin_id="admin1", reason="no show")

        match = engine.get_match("t1:WB-R1-M1")
        assert match.result_state == ResultState.COMMITTED
        assert match.winner_id == "p1"
        assert "p4" in state.forfeited

        kinds = [e.payload.kind for e in broadcaster.replay(participant_topic("p4"), 0)]
        assert NotificationKind.FORFEITED in kinds

        log = admin.get_action_log("t1")
        assert log[-1].action_type == AdminActionType.FORFEIT
        assert log[-1].parameters == {"conceded_matches": ["t1:WB-R1-M1"]}

    @pytest.mark.asyncio
    async def test_forfeited_participant_concedes_future_match(self, admin, engine):
        await start(engine, 4)
        await admin.forfeit_participant("t1", "p2", admin_id="admin1")
        # p3 advanced by forfeit; p1 still has to play p4
        assert engine.get_match("t1:WB-R1-M2").winner_id == "p3"

        state = await engine.submit_match_result("t1:WB-R1-M1", MatchResult.decided("p1", "p4"))

        assert state.status == TournamentStatus.IN_PROGRESS
        assert engine.get_match("t1:WB-R2-M1").is_playable

    @pytest.mark.asyncio
    async def test_forfeit_in_losers_bracket_is_applied_when_match_appears(self, admin, engine):
        await start(engine, 4, fmt=BracketFormat.DOUBLE_ELIMINATION)
        await engine.submit_match_result("t1:WB-R1-M1", MatchResult.decided("p1", "p4"))
        await admin.forfeit_participant("t1", "p4", admin_id="admin1")
        # p4 is waiting in the losers bracket; nothing to concede yet
        assert not engine.get_match("t1:LB-R1-M1").is_committed

        await engine.submit_match_result("t1:WB-R1-M2", MatchResult.decided("p2", "p3"))

        lb = engine.get_match("t1:LB-R1-M1")
        assert lb.is_committed
        assert lb.winner_id == "p3"

    @pytest.mark.asyncio
    async def test_forfeit_requires_running_tournament(self, admin, engine):
        await engine.create_tournament(TournamentConfig(tournament_id="t1", name="Cup"))

        with pytest.raises(TournamentNotInProgressError):
            await admin.forfeit_participant("t1", "p1", admin_id="admin1")

        failed = admin.get_action_log()[-1]
        assert failed.success is False
        assert failed.error_message

    @pytest.mark.asyncio
    async def test_forfeit_is_idempotent(self, admin, engine):
        await start(engine, 4)
        await admin.forfeit_participant("t1", "p4", admin_id="admin1")

        state = await admin.forfeit_participant("t1", "p4", admin_id="admin1")

        assert admin.get_action_log()[-1].parameters == {"conceded_matches": []}
        assert state.forfeited == frozenset({"p4"})


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_logs_action(self, admin, engine):
        await engine.create_tournament(TournamentConfig(tournament_id="t1", name="Cup"))

        state = await admin.cancel_tournament("t1", admin_id="admin1", reason="venue closed")

        assert state.status == TournamentStatus.CANCELLED
        assert admin.get_action_log()[-1].to_dict()["action_type"] == "cancel"

    @pytest.mark.asyncio
    async def test_cancel_running_tournament_fails(self, admin, engine):
        await start(engine, 2)

        with pytest.raises(InvalidStateTransitionError):
            await admin.cancel_tournament("t1", admin_id="admin1")
        assert admin.get_action_log()[-1].success is False
