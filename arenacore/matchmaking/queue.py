"""
Skill-based Matchmaking Queue.

Entries wait per game mode; each tick pairs (or groups) compatible entries.

Matching policy:
─────────────────────────────────────────────────────────────────

1. Search radius grows with wait time:
       radius = min(base + growth_rate * wait_seconds, max_radius)
2. Two entries are compatible when their rating delta is within the larger
   of their two radii, so a long-waiting entry can reach a fresh one.
3. Anchors are taken oldest first. Among compatible opponents the smallest
   delta wins, then the longer wait, then the earlier enqueue.
4. An entry consumed by a match leaves the pass immediately.
5. Team modes gather the 2 * team_size - 1 best opponents for the anchor and
   split the group into two sides by snake draft on rating.

Ratings are only touched when a formed match's result is committed.

─────────────────────────────────────────────────────────────────
"""

import logging
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from arenacore.events import (
    EventBroadcaster,
    MatchUpdated,
    NotificationKind,
    ParticipantNotified,
    QueueMatched,
    match_topic,
    participant_topic,
)
from arenacore.rating import RatingBook
from arenacore.tournament.engine import MatchResultVerifier
from arenacore.tournament.models import MatchResult
from arenacore.utils.distributed_lock import (
    DistributedLockManager,
    LockType,
    MultiLockManager,
)
from arenacore.utils.errors import (
    AlreadyCommittedError,
    AlreadyQueuedError,
    MatchNotFoundError,
    ParticipantMismatchError,
    ResultVerificationError,
    UnknownGameModeError,
)

from .models import GameMode, QueueEntry, QueueMatch, QueueSnapshot

logger = logging.getLogger(__name__)


def search_radius(
    wait_seconds: float,
    base_radius: float,
    growth_rate: float,
    max_radius: float,
) -> float:
    """Rating window for an entry that has waited ``wait_seconds``."""
    return min(base_radius + growth_rate * max(0.0, wait_seconds), max_radius)


def snake_draft(entries: Sequence[QueueEntry]) -> Tuple[Tuple[QueueEntry, ...], Tuple[QueueEntry, ...]]:
    """
    Split entries into two sides of equal size.

    Entries are ranked by rating (descending, ties by enqueue order) and dealt
    A, B, B, A, A, B, ... which keeps the side averages close.
    """
    ranked = sorted(entries, key=lambda e: (-e.rating, e.sequence))
    sides: Tuple[List[QueueEntry], List[QueueEntry]] = ([], [])
    for index, entry in enumerate(ranked):
        first_of_pair = index % 2 == 0
        forward = (index // 2) % 2 == 0
        side = 0 if first_of_pair == forward else 1
        sides[side].append(entry)
    return tuple(sides[0]), tuple(sides[1])


class MatchmakingQueue:
    """
    Per-mode matchmaking queue.

    Every mutation of a mode's entries (enqueue, dequeue, tick) runs under
    that mode's lock, so an entry is consumed by at most one match. Result
    commits lock the match itself.
    """

    def __init__(
        self,
        lock_manager: DistributedLockManager,
        broadcaster: EventBroadcaster,
        rating_book: RatingBook,
        base_radius: float = 100.0,
        growth_rate: float = 5.0,
        max_radius: float = 800.0,
        verifier: Optional[MatchResultVerifier] = None,
        retention_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if base_radius < 0 or growth_rate < 0:
            raise ValueError("base_radius and growth_rate must not be negative")
        if max_radius < base_radius:
            raise ValueError("max_radius must be at least base_radius")

        self.lock_manager = lock_manager
        self.multi_lock = MultiLockManager(lock_manager)
        self.broadcaster = broadcaster
        self.rating_book = rating_book
        self.base_radius = base_radius
        self.growth_rate = growth_rate
        self.max_radius = max_radius
        self.verifier = verifier
        self.retention_seconds = retention_seconds
        self._clock = clock

        self._modes: Dict[str, GameMode] = {}

        # mode -> participant_id -> open entry
        self._entries: Dict[str, Dict[str, QueueEntry]] = {}

        # match_id -> formed match
        self._matches: Dict[str, QueueMatch] = {}

        self._sequence = 0

    # =========================================================================
    # Modes
    # =========================================================================

    def register_mode(self, mode: GameMode) -> None:
        self._modes[mode.name] = mode
        self._entries.setdefault(mode.name, {})

    def get_mode(self, name: str) -> GameMode:
        mode = self._modes.get(name)
        if mode is None:
            raise UnknownGameModeError(name)
        return mode

    @property
    def modes(self) -> List[str]:
        return sorted(self._modes)

    # =========================================================================
    # Entries
    # =========================================================================

    def radius(self, entry: QueueEntry, now: Optional[float] = None) -> float:
        now = self._clock() if now is None else now
        return search_radius(
            entry.wait_seconds(now), self.base_radius, self.growth_rate, self.max_radius
        )

    async def enqueue(
        self,
        participant_id: str,
        mode: str,
        rating: Optional[float] = None,
    ) -> QueueEntry:
        """
        Open a queue entry.

        The rating snapshot comes from the rating store unless given.

        Raises:
            UnknownGameModeError: mode not registered
            AlreadyQueuedError: participant already holds an open entry here
        """
        self.get_mode(mode)
        if rating is None:
            rating = await self.rating_book.get_rating(participant_id, mode)

        async with self.lock_manager.lock(mode, LockType.QUEUE):
            entries = self._entries[mode]
            if participant_id in entries:
                raise AlreadyQueuedError(participant_id, mode)

            self._sequence += 1
            entry = QueueEntry(
                participant_id=participant_id,
                mode=mode,
                rating=rating,
                enqueued_at=self._clock(),
                sequence=self._sequence,
            )
            entries[participant_id] = entry

        logger.debug("Queued %s for %s at %.1f", participant_id, mode, rating)
        return entry

    async def dequeue(
        self, participant_id: str, mode: Optional[str] = None
    ) -> List[QueueEntry]:
        """
        Withdraw a participant's open entries.

        Without ``mode`` every mode the participant is queued in is covered.
        An entry already consumed by a match is gone, so nothing is returned
        for it.
        """
        if mode is not None:
            self.get_mode(mode)
            modes = [mode]
        else:
            modes = [name for name in self.modes if participant_id in self._entries[name]]
        if not modes:
            return []

        removed: List[QueueEntry] = []
        async with self.multi_lock.multi_lock([(name, LockType.QUEUE) for name in modes]):
            for name in modes:
                entry = self._entries[name].pop(participant_id, None)
                if entry is not None:
                    removed.append(entry)

        if removed:
            logger.debug(
                "Dequeued %s from %s", participant_id, ", ".join(e.mode for e in removed)
            )
        return removed

    def is_queued(self, participant_id: str, mode: str) -> bool:
        return participant_id in self._entries.get(mode, {})

    def entries(self, mode: str) -> List[QueueEntry]:
        """Open entries for a mode, oldest first."""
        self.get_mode(mode)
        return sorted(self._entries[mode].values(), key=lambda e: (e.enqueued_at, e.sequence))

    # =========================================================================
    # Matching
    # =========================================================================

    async def tick(self) -> List[QueueMatch]:
        """Run one matching pass over every mode."""
        formed: List[QueueMatch] = []
        for name in self.modes:
            formed.extend(await self.tick_mode(name))
        return formed

    async def tick_mode(self, mode: str) -> List[QueueMatch]:
        """
        Run one matching pass over a mode.

        Entries that stay unmatched have their ``search_expansions`` counter
        bumped; their radius keeps growing with wait time either way.
        """
        game_mode = self.get_mode(mode)

        async with self.lock_manager.lock(mode, LockType.QUEUE):
            now = self._clock()
            pool = self.entries(mode)
            radii = {e.entry_id: self.radius(e, now) for e in pool}
            consumed: set = set()
            formed: List[QueueMatch] = []

            for anchor in pool:
                if anchor.entry_id in consumed:
                    continue
                candidates = [
                    e for e in pool
                    if e.entry_id not in consumed
                    and e.entry_id != anchor.entry_id
                    and abs(e.rating - anchor.rating)
                    <= max(radii[anchor.entry_id], radii[e.entry_id])
                ]
                needed = game_mode.match_size - 1
                if len(candidates) < needed:
                    continue

                candidates.sort(
                    key=lambda e: (abs(e.rating - anchor.rating), e.enqueued_at, e.sequence)
                )
                group = [anchor] + candidates[:needed]
                consumed.update(e.entry_id for e in group)
                formed.append(self._form_match(game_mode, group, now))

            entries = self._entries[mode]
            for entry in pool:
                if entry.entry_id in consumed:
                    del entries[entry.participant_id]
                else:
                    entries[entry.participant_id] = entry.expanded()

            for match in formed:
                self._matches[match.match_id] = match
                await self._announce(match)

        if formed:
            logger.info("Formed %d matches in %s (%d waiting)", len(formed), mode, len(entries))
        return formed

    def _form_match(
        self, mode: GameMode, group: List[QueueEntry], now: float
    ) -> QueueMatch:
        if mode.team_size == 1:
            side_a, side_b = (group[0],), (group[1],)
        else:
            side_a, side_b = snake_draft(group)
        ratings = [e.rating for e in group]
        return QueueMatch(
            match_id=str(uuid4()),
            mode=mode.name,
            sides=(
                tuple(e.participant_id for e in side_a),
                tuple(e.participant_id for e in side_b),
            ),
            entries=tuple(group),
            rating_spread=max(ratings) - min(ratings),
            formed_at=now,
        )

    async def _announce(self, match: QueueMatch) -> None:
        await self.broadcaster.publish(
            match_topic(match.match_id),
            QueueMatched(
                match_id=match.match_id,
                mode=match.mode,
                sides=match.sides,
                rating_spread=match.rating_spread,
            ),
        )
        for index, side in enumerate(match.sides):
            opponents = match.sides[1 - index]
            for participant_id in side:
                await self.broadcaster.publish(
                    participant_topic(participant_id),
                    ParticipantNotified(
                        participant_id=participant_id,
                        kind=NotificationKind.MATCH_FOUND,
                        match_id=match.match_id,
                        opponent_ids=opponents,
                    ),
                )

    # =========================================================================
    # Results
    # =========================================================================

    def get_match(self, match_id: str) -> QueueMatch:
        match = self._matches.get(match_id)
        if match is None:
            raise MatchNotFoundError(match_id)
        return match

    async def submit_result(self, match_id: str, result: MatchResult) -> QueueMatch:
        """
        Commit the result of a queue-formed match.

        Raises:
            MatchNotFoundError: no such match
            AlreadyCommittedError: match already has a result
            ParticipantMismatchError: sides in the result are not the match's sides
            ResultVerificationError: game integration rejected the result
        """
        self.get_match(match_id)

        if self.verifier is not None and not result.forfeit:
            game_id = result.game_id or match_id
            if not await self.verifier.verify_match_result(game_id, result):
                raise ResultVerificationError(match_id, game_id)

        async with self.lock_manager.lock(match_id, LockType.QUEUE_MATCH):
            match = self.get_match(match_id)
            if match.is_committed:
                raise AlreadyCommittedError(match_id)

            winners, losers = set(result.winner_ids), set(result.loser_ids)
            sides = [set(side) for side in match.sides]
            if not (
                len(winners) == len(result.winner_ids)
                and len(losers) == len(result.loser_ids)
                and (winners, losers) in ((sides[0], sides[1]), (sides[1], sides[0]))
            ):
                raise ParticipantMismatchError(match_id, list(result.participant_ids))

            changes = await self.rating_book.apply_match(
                match_id, match.mode, list(result.winner_ids), list(result.loser_ids)
            )
            match = match.committed(result, self._clock())
            self._matches[match_id] = match

            await self.broadcaster.publish(
                match_topic(match_id),
                MatchUpdated(
                    match_id=match_id,
                    result_state=match.result_state.value,
                    participants=match.participant_ids,
                    winner_ids=result.winner_ids,
                    loser_ids=result.loser_ids,
                    rating_changes=tuple(c.to_dict() for c in changes),
                    forfeit=result.forfeit,
                ),
            )

        logger.info(
            "Committed queue match %s (%s): %s beat %s",
            match_id,
            match.mode,
            ",".join(result.winner_ids),
            ",".join(result.loser_ids),
        )
        return match

    def forget_match(self, match_id: str) -> Optional[QueueMatch]:
        """Drop a committed match and retire its topic; open matches are kept."""
        match = self._matches.get(match_id)
        if match is None or not match.is_committed:
            return None
        self.broadcaster.retire_topic(match_topic(match_id))
        return self._matches.pop(match_id)

    async def purge_expired(self, now: Optional[float] = None) -> List[str]:
        """
        Forget committed matches older than the retention window.

        Returns:
            Purged match ids
        """
        now = self._clock() if now is None else now
        expired = [
            m.match_id
            for m in self._matches.values()
            if m.is_committed and m.committed_at + self.retention_seconds <= now
        ]
        purged: List[str] = []
        for match_id in expired:
            async with self.lock_manager.lock(match_id, LockType.QUEUE_MATCH):
                if self.forget_match(match_id) is not None:
                    purged.append(match_id)

        if purged:
            logger.info("Purged %d committed queue matches", len(purged))
        return purged

    # =========================================================================
    # Monitoring
    # =========================================================================

    def snapshot(self, mode: str) -> QueueSnapshot:
        pool = self.entries(mode)
        now = self._clock()
        waits = [e.wait_seconds(now) for e in pool]
        ratings = [e.rating for e in pool]
        return QueueSnapshot(
            mode=mode,
            size=len(pool),
            average_wait=sum(waits) / len(waits) if waits else 0.0,
            longest_wait=max(waits, default=0.0),
            min_rating=min(ratings) if ratings else None,
            max_rating=max(ratings) if ratings else None,
            open_matches=sum(
                1 for m in self._matches.values() if m.mode == mode and not m.is_committed
            ),
        )
