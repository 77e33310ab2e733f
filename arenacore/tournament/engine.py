"""
Tournament State Machine - Core Implementation.

Owns every tournament's lifecycle and bracket. All mutations of one
tournament run under its own distributed lock, so unrelated tournaments never
contend and a single tournament never sees two commits interleave.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Protocol, Tuple

import redis.asyncio as redis

from arenacore.events import (
    EventBroadcaster,
    MatchUpdated,
    NotificationKind,
    ParticipantNotified,
    TournamentAdvanced,
    participant_topic,
    tournament_topic,
)
from arenacore.rating import RatingBook, RatingChange
from arenacore.utils.distributed_lock import (
    DistributedLockError,
    DistributedLockManager,
    LockType,
)
from arenacore.utils.errors import (
    AlreadyCommittedError,
    AlreadyRegisteredError,
    CoreError,
    InsufficientParticipantsError,
    InvalidStateTransitionError,
    MatchNotFoundError,
    ParticipantMismatchError,
    ParticipantNotFoundError,
    ResultVerificationError,
    TournamentFullError,
    TournamentNotFoundError,
    TournamentNotInProgressError,
    WithdrawalNotAllowedError,
)

from .bracket import Bracket, BracketMatch, advance, generate
from .models import (
    MatchResult,
    Participant,
    ResultState,
    TournamentConfig,
    TournamentState,
    TournamentStatus,
    utcnow,
)

logger = logging.getLogger(__name__)


class MatchResultVerifier(Protocol):
    """Anything that can confirm a reported result with the game integration."""

    async def verify_match_result(self, game_id: str, result: MatchResult) -> bool:
        ...


class TournamentEngine:
    """
    Tournament lifecycle and result commits.

    Lifecycle:
    ─────────────────────────────────────────────────────────────────

    DRAFT -> REGISTRATION -> IN_PROGRESS -> COMPLETED
      |            |
      +------------+--> CANCELLED

    Result commit (per tournament lock held):
    ─────────────────────────────────────────────────────────────────

    1. Validate: tournament running, match not committed, result names the
       match's occupants
    2. Advance the bracket (new immutable Bracket)
    3. Apply ratings (one atomic write for both sides)
    4. Store the new state
    5. Publish MatchUpdated for the commit, then MatchUpdated and
       ParticipantNotified for each newly playable match, then
       TournamentAdvanced

    External verification happens before the lock is taken so network
    latency is never held inside the exclusivity scope.

    ─────────────────────────────────────────────────────────────────
    """

    def __init__(
        self,
        lock_manager: DistributedLockManager,
        broadcaster: EventBroadcaster,
        rating_book: RatingBook,
        verifier: Optional[MatchResultVerifier] = None,
        retention_seconds: int = 7 * 24 * 3600,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.lock_manager = lock_manager
        self.broadcaster = broadcaster
        self.rating_book = rating_book
        self.verifier = verifier
        self.retention = timedelta(seconds=retention_seconds)
        self._clock = clock

        # State store (one entry per tournament)
        self._tournaments: Dict[str, TournamentState] = {}

        # match_id -> tournament_id for result routing
        self._match_index: Dict[str, str] = {}

    # =========================================================================
    # Queries
    # =========================================================================

    def get_state(self, tournament_id: str) -> TournamentState:
        state = self._tournaments.get(tournament_id)
        if state is None:
            raise TournamentNotFoundError(tournament_id)
        return state

    def get_match(self, match_id: str) -> BracketMatch:
        tournament_id = self._match_index.get(match_id)
        if tournament_id is None:
            raise MatchNotFoundError(match_id)
        return self.get_state(tournament_id).bracket.matches[match_id]

    def list_tournaments(
        self, status: Optional[TournamentStatus] = None
    ) -> List[TournamentState]:
        states = list(self._tournaments.values())
        if status is not None:
            states = [s for s in states if s.status == status]
        return states

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def create_tournament(self, config: TournamentConfig) -> TournamentState:
        """
        Create a tournament in DRAFT.

        The configuration is validated when registration opens, so a draft may
        be created before every field is settled.
        """
        async with self.lock_manager.lock(config.tournament_id, LockType.TOURNAMENT):
            if config.tournament_id in self._tournaments:
                raise InvalidStateTransitionError(
                    config.tournament_id,
                    self._tournaments[config.tournament_id].status.value,
                    TournamentStatus.DRAFT.value,
                )
            state = TournamentState(
                tournament_id=config.tournament_id,
                config=config,
                created_at=self._clock(),
            )
            self._tournaments[config.tournament_id] = state

        logger.info("Created tournament %s (%s)", state.tournament_id, config.name)
        return state

    async def open_registration(self, tournament_id: str) -> TournamentState:
        """DRAFT -> REGISTRATION. Raises InvalidConfigurationError for a bad config."""
        async with self.lock_manager.lock(tournament_id, LockType.TOURNAMENT):
            state = self.get_state(tournament_id)
            self._require_transition(state, TournamentStatus.REGISTRATION)
            state.config.validate()

            state = state.with_status(
                TournamentStatus.REGISTRATION,
                registration_opened_at=self._clock(),
            )
            self._tournaments[tournament_id] = state
            await self._publish_advanced(state)

        logger.info("Registration open for tournament %s", tournament_id)
        return state

    async def register_participant(
        self,
        tournament_id: str,
        participant_id: str,
        display_name: Optional[str] = None,
    ) -> Tuple[TournamentState, Participant]:
        """
        Register a participant.

        Concurrency:
        - runs under the tournament lock
        - capacity and duplicate checks see every earlier registration
        """
        async with self.lock_manager.lock(tournament_id, LockType.TOURNAMENT):
            state = self.get_state(tournament_id)
            if state.status != TournamentStatus.REGISTRATION:
                raise InvalidStateTransitionError(
                    tournament_id, state.status.value, "register"
                )
            if participant_id in state.participants:
                raise AlreadyRegisteredError(tournament_id, participant_id)
            if state.participant_count >= state.config.capacity:
                raise TournamentFullError(tournament_id, state.config.capacity)

            rating = await self.rating_book.get_rating(participant_id, state.config.game_mode)
            participant = Participant(
                participant_id=participant_id,
                display_name=display_name or participant_id,
                rating=rating,
            )
            state = state.with_participant(participant)
            self._tournaments[tournament_id] = state

        logger.debug(
            "Registered %s in tournament %s (%d/%d)",
            participant_id,
            tournament_id,
            state.participant_count,
            state.config.capacity,
        )
        return state, participant

    async def withdraw_participant(
        self, tournament_id: str, participant_id: str
    ) -> TournamentState:
        """
        Withdraw during registration.

        Once the bracket exists a participant can only leave through the
        administrative forfeit path.
        """
        async with self.lock_manager.lock(tournament_id, LockType.TOURNAMENT):
            state = self.get_state(tournament_id)
            if state.status == TournamentStatus.IN_PROGRESS:
                raise WithdrawalNotAllowedError(tournament_id, participant_id)
            if state.status != TournamentStatus.REGISTRATION:
                raise InvalidStateTransitionError(
                    tournament_id, state.status.value, "withdraw"
                )
            if participant_id not in state.participants:
                raise ParticipantNotFoundError(participant_id, f"in tournament {tournament_id}")

            state = state.without_participant(participant_id)
            self._tournaments[tournament_id] = state

        logger.debug("Withdrew %s from tournament %s", participant_id, tournament_id)
        return state

    async def start_tournament(self, tournament_id: str) -> TournamentState:
        """
        REGISTRATION -> IN_PROGRESS.

        Refreshes rating snapshots, generates the bracket and announces every
        match that is playable from the start.
        """
        async with self.lock_manager.lock(tournament_id, LockType.TOURNAMENT):
            state = self.get_state(tournament_id)
            self._require_transition(state, TournamentStatus.IN_PROGRESS)
            if state.participant_count < 2:
                raise InsufficientParticipantsError(current=state.participant_count)

            ratings = await self.rating_book.get_ratings(
                state.participants.keys(), state.config.game_mode
            )
            participants = [
                p.with_rating(ratings[p.participant_id]) for p in state.participants.values()
            ]
            bracket = generate(participants, state.config.format, bracket_id=tournament_id)

            state = state.with_status(
                TournamentStatus.IN_PROGRESS,
                participants={p.participant_id: p for p in participants},
                bracket=bracket,
                started_at=self._clock(),
            )
            self._tournaments[tournament_id] = state
            for match_id in bracket.matches:
                self._match_index[match_id] = tournament_id

            playable = bracket.playable_matches()
            await self._announce_playable(state, playable)
            await self._publish_advanced(state, playable=playable)

        logger.info(
            "Started tournament %s: %d participants, %d matches",
            tournament_id,
            state.participant_count,
            bracket.match_count,
        )
        return state

    async def cancel_tournament(
        self, tournament_id: str, reason: str = ""
    ) -> TournamentState:
        """Cancel from DRAFT or REGISTRATION."""
        async with self.lock_manager.lock(tournament_id, LockType.TOURNAMENT):
            state = self.get_state(tournament_id)
            self._require_transition(state, TournamentStatus.CANCELLED)

            state = state.with_status(
                TournamentStatus.CANCELLED,
                cancelled_at=self._clock(),
                cancel_reason=reason or None,
            )
            self._tournaments[tournament_id] = state

            await self._publish_advanced(state)
            for participant_id in state.participants:
                await self.broadcaster.publish(
                    participant_topic(participant_id),
                    ParticipantNotified(
                        participant_id=participant_id,
                        kind=NotificationKind.TOURNAMENT_CANCELLED,
                        tournament_id=tournament_id,
                    ),
                )

        logger.info("Cancelled tournament %s: %s", tournament_id, reason or "-")
        return state

    # =========================================================================
    # Results
    # =========================================================================

    async def submit_match_result(
        self, match_id: str, result: MatchResult
    ) -> TournamentState:
        """
        Commit a reported match result.

        Raises:
            MatchNotFoundError: match id unknown
            TournamentNotInProgressError: owning tournament is not running
            AlreadyCommittedError: match already has a result
            ParticipantMismatchError: result does not name the match's occupants
            ResultVerificationError: game integration rejected the result
            ExternalVerificationError: game integration unreachable
        """
        tournament_id = self._match_index.get(match_id)
        if tournament_id is None:
            raise MatchNotFoundError(match_id)

        if self.verifier is not None and not result.forfeit:
            game_id = result.game_id or match_id
            if not await self.verifier.verify_match_result(game_id, result):
                raise ResultVerificationError(match_id, game_id)

        async with self.lock_manager.lock(tournament_id, LockType.TOURNAMENT):
            # A purge may have dropped the tournament while we were verifying
            if self._match_index.get(match_id) != tournament_id:
                raise MatchNotFoundError(match_id)
            state = self.get_state(tournament_id)
            # Concede what forfeited occupants still hold before judging the
            # submitted result
            state = await self._resolve_forfeits_logged(state)
            state = await self._commit(state, match_id, result)
            state = await self._resolve_forfeits_logged(state)

        return state

    async def forfeit_participant(
        self, tournament_id: str, participant_id: str
    ) -> Tuple[TournamentState, List[str]]:
        """
        Record a forfeit and concede the participant's playable matches.

        Matches that become playable later with a forfeited occupant are
        conceded as soon as they appear.

        Returns:
            (new state, ids of matches committed by the forfeit)
        """
        async with self.lock_manager.lock(tournament_id, LockType.TOURNAMENT):
            state = self.get_state(tournament_id)
            if state.status != TournamentStatus.IN_PROGRESS:
                raise TournamentNotInProgressError(tournament_id, state.status.value)
            if participant_id not in state.participants:
                raise ParticipantNotFoundError(participant_id, f"in tournament {tournament_id}")
            if participant_id in state.forfeited:
                return state, []

            state = state.with_forfeit(participant_id)
            self._tournaments[tournament_id] = state
            await self.broadcaster.publish(
                participant_topic(participant_id),
                ParticipantNotified(
                    participant_id=participant_id,
                    kind=NotificationKind.FORFEITED,
                    tournament_id=tournament_id,
                ),
            )

            before = set(self._committed_ids(state.bracket))
            state = await self._resolve_forfeits_logged(state)
            conceded = [m for m in self._committed_ids(state.bracket) if m not in before]

        logger.info(
            "Participant %s forfeited tournament %s (%d matches conceded)",
            participant_id,
            tournament_id,
            len(conceded),
        )
        return state, conceded

    async def _commit(
        self, state: TournamentState, match_id: str, result: MatchResult
    ) -> TournamentState:
        """Validate and commit one result. Caller holds the tournament lock."""
        tournament_id = state.tournament_id
        if state.status != TournamentStatus.IN_PROGRESS:
            raise TournamentNotInProgressError(tournament_id, state.status.value)

        match = state.bracket.matches[match_id]
        if match.is_committed:
            raise AlreadyCommittedError(match_id)
        if (
            not match.is_playable
            or len(result.winner_ids) != 1
            or len(result.loser_ids) != 1
            or set(result.participant_ids) != set(match.occupants)
        ):
            raise ParticipantMismatchError(match_id, list(result.participant_ids))

        bracket, newly_playable = advance(state.bracket, match_id, result.winner_id)

        changes = await self.rating_book.apply_match(
            match_id,
            state.config.game_mode,
            [result.winner_id],
            [result.loser_id],
        )

        changes_by_id = {c.participant_id: c for c in changes}
        participants = dict(state.participants)
        for pid, change in changes_by_id.items():
            participants[pid] = participants[pid].with_rating(change.after)

        if bracket.is_complete:
            state = state.with_status(
                TournamentStatus.COMPLETED,
                bracket=bracket,
                participants=participants,
                completed_at=self._clock(),
            )
        else:
            state = state.with_status(
                state.status, bracket=bracket, participants=participants
            )
        self._tournaments[tournament_id] = state

        await self.broadcaster.publish(
            tournament_topic(tournament_id),
            self._match_updated(state, bracket.matches[match_id], result, changes),
        )
        await self._announce_playable(state, newly_playable)
        await self._publish_advanced(state, completed_match_id=match_id, playable=newly_playable)

        logger.info(
            "Committed %s in tournament %s: %s beat %s%s",
            match_id,
            tournament_id,
            result.winner_id,
            result.loser_id,
            " (forfeit)" if result.forfeit else "",
        )
        if state.status == TournamentStatus.COMPLETED:
            logger.info("Tournament %s completed, champion %s", tournament_id, state.champion_id)
        return state

    async def _resolve_forfeits(self, state: TournamentState) -> TournamentState:
        """Concede playable matches that involve a forfeited participant."""
        while state.status == TournamentStatus.IN_PROGRESS and state.forfeited:
            pending = [
                m for m in state.bracket.playable_matches()
                if set(m.occupants) & state.forfeited
            ]
            if not pending:
                break
            match = pending[0]
            top, bottom = match.slots
            # Slot 0 advances when both sides forfeited
            loser = bottom if bottom in state.forfeited else top
            winner = top if loser == bottom else bottom
            state = await self._commit(
                state,
                match.match_id,
                MatchResult((winner,), (loser,), forfeit=True),
            )
        return state

    async def _resolve_forfeits_logged(self, state: TournamentState) -> TournamentState:
        """
        Run forfeit resolution without letting it fail the caller.

        Every conceded match is stored as soon as it commits, so on failure the
        last stored state is returned and the remaining concessions are picked
        up by the next commit or by resolve_pending_forfeits().
        """
        try:
            return await self._resolve_forfeits(state)
        except (CoreError, DistributedLockError, redis.RedisError) as e:
            logger.warning(
                "Forfeit resolution deferred for tournament %s: %s", state.tournament_id, e
            )
            return self._tournaments[state.tournament_id]

    async def resolve_pending_forfeits(self) -> List[str]:
        """
        Concede outstanding forfeit matches in every running tournament.

        Returns:
            Ids of the matches committed by this sweep
        """
        conceded: List[str] = []
        for state in self.list_tournaments(TournamentStatus.IN_PROGRESS):
            if not state.forfeited:
                continue
            tournament_id = state.tournament_id
            async with self.lock_manager.lock(tournament_id, LockType.TOURNAMENT):
                state = self._tournaments.get(tournament_id)
                if state is None or state.status != TournamentStatus.IN_PROGRESS:
                    continue
                before = set(self._committed_ids(state.bracket))
                state = await self._resolve_forfeits_logged(state)
                conceded.extend(
                    m for m in self._committed_ids(state.bracket) if m not in before
                )

        if conceded:
            logger.info("Conceded %d pending forfeit matches", len(conceded))
        return conceded

    # =========================================================================
    # Retention
    # =========================================================================

    async def purge_expired(self, now: Optional[datetime] = None) -> List[str]:
        """
        Drop finished tournaments whose retention window has elapsed.

        Their topics are retired so lingering subscribers are closed.

        Returns:
            Purged tournament ids
        """
        now = now or self._clock()
        purged: List[str] = []
        for tournament_id in list(self._tournaments):
            async with self.lock_manager.lock(tournament_id, LockType.TOURNAMENT):
                state = self._tournaments.get(tournament_id)
                if state is None:
                    continue
                finished_at = state.completed_at or state.cancelled_at
                if finished_at is None or finished_at + self.retention > now:
                    continue

                del self._tournaments[tournament_id]
                if state.bracket is not None:
                    for match_id in state.bracket.matches:
                        self._match_index.pop(match_id, None)
                self.broadcaster.retire_topic(tournament_topic(tournament_id))
                purged.append(tournament_id)

        if purged:
            logger.info("Purged %d expired tournaments", len(purged))
        return purged

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_transition(self, state: TournamentState, target: TournamentStatus) -> None:
        if not state.can_transition(target):
            raise InvalidStateTransitionError(
                state.tournament_id, state.status.value, target.value
            )

    @staticmethod
    def _committed_ids(bracket: Optional[Bracket]) -> List[str]:
        if bracket is None:
            return []
        return [m.match_id for m in bracket.matches.values() if m.is_committed]

    @staticmethod
    def _match_updated(
        state: TournamentState,
        match: BracketMatch,
        result: Optional[MatchResult] = None,
        changes: Optional[List[RatingChange]] = None,
    ) -> MatchUpdated:
        return MatchUpdated(
            match_id=match.match_id,
            result_state=match.result_state.value,
            participants=match.occupants,
            tournament_id=state.tournament_id,
            winner_ids=result.winner_ids if result else (),
            loser_ids=result.loser_ids if result else (),
            rating_changes=tuple(c.to_dict() for c in changes or ()),
            forfeit=result.forfeit if result else False,
        )

    async def _announce_playable(
        self, state: TournamentState, matches: List[BracketMatch]
    ) -> None:
        for match in matches:
            if match.result_state != ResultState.CONTESTED:
                continue
            await self.broadcaster.publish(
                tournament_topic(state.tournament_id),
                self._match_updated(state, match),
            )
            for participant_id in match.occupants:
                await self.broadcaster.publish(
                    participant_topic(participant_id),
                    ParticipantNotified(
                        participant_id=participant_id,
                        kind=NotificationKind.MATCH_READY,
                        match_id=match.match_id,
                        tournament_id=state.tournament_id,
                        opponent_ids=tuple(
                            pid for pid in match.occupants if pid != participant_id
                        ),
                    ),
                )

    async def _publish_advanced(
        self,
        state: TournamentState,
        completed_match_id: Optional[str] = None,
        playable: Optional[List[BracketMatch]] = None,
    ) -> None:
        await self.broadcaster.publish(
            tournament_topic(state.tournament_id),
            TournamentAdvanced(
                tournament_id=state.tournament_id,
                status=state.status.value,
                completed_match_id=completed_match_id,
                playable_match_ids=tuple(m.match_id for m in playable or ()),
                champion_id=state.champion_id,
            ),
        )
