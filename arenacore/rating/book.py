"""
Rating store.

Ratings are scalars per participant per game mode, kept in one Redis hash per
mode so a pair of updates lands in a single MULTI/EXEC and any reader sees
either both old values or both new ones.

Keys:
- rating:{mode}            participant_id -> rating
- rating:history:{mode}    match_id -> JSON list of RatingChange
"""

import json
import logging
from typing import Dict, Iterable, List, Optional

import redis.asyncio as redis

from arenacore.utils.distributed_lock import DistributedLockManager, LockType

from .elo import EloRatingEngine, RatingChange

logger = logging.getLogger(__name__)


class RatingBook:
    """Per-mode rating store backed by Redis hashes."""

    KEY_PREFIX = "rating"

    def __init__(
        self,
        redis_client: redis.Redis,
        engine: EloRatingEngine,
        lock_manager: DistributedLockManager,
    ):
        self.redis = redis_client
        self.engine = engine
        self.lock_manager = lock_manager

    def _ratings_key(self, mode: str) -> str:
        return f"{self.KEY_PREFIX}:{mode}"

    def _history_key(self, mode: str) -> str:
        return f"{self.KEY_PREFIX}:history:{mode}"

    def _parse(self, raw: Optional[str]) -> float:
        if raw is None:
            return self.engine.initial_rating
        return float(raw)

    async def get_rating(self, participant_id: str, mode: str) -> float:
        """Current rating, or the initial rating for unseen participants."""
        raw = await self.redis.hget(self._ratings_key(mode), participant_id)
        return self._parse(raw)

    async def get_ratings(self, participant_ids: Iterable[str], mode: str) -> Dict[str, float]:
        """Read several ratings in one round trip (a consistent snapshot)."""
        ids = list(participant_ids)
        if not ids:
            return {}
        values = await self.redis.hmget(self._ratings_key(mode), ids)
        return {pid: self._parse(raw) for pid, raw in zip(ids, values)}

    async def set_rating(self, participant_id: str, mode: str, rating: float) -> None:
        """Seed a rating directly (imports and tests)."""
        await self.redis.hset(self._ratings_key(mode), mapping={participant_id: repr(float(rating))})

    async def apply_match(
        self,
        match_id: str,
        mode: str,
        winners: List[str],
        losers: List[str],
    ) -> List[RatingChange]:
        """
        Rate a committed match and store the result atomically.

        The read-compute-write runs under the mode's rating lock so two matches
        sharing a participant cannot lose an update; the write itself is one
        MULTI/EXEC covering every participant and the history record.
        """
        async with self.lock_manager.lock(mode, LockType.RATING):
            current = await self.get_ratings(list(winners) + list(losers), mode)
            changes = self.engine.rate_match(
                {pid: current[pid] for pid in winners},
                {pid: current[pid] for pid in losers},
            )

            mapping = {c.participant_id: repr(c.after) for c in changes}
            history = json.dumps([c.to_dict() for c in changes])

            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.hset(self._ratings_key(mode), mapping=mapping)
                pipe.hset(self._history_key(mode), mapping={match_id: history})
                await pipe.execute()

        logger.debug(
            "Rated match %s (%s): %s",
            match_id,
            mode,
            ", ".join(f"{c.participant_id} {c.delta:+.1f}" for c in changes),
        )
        return changes

    async def history(self, match_id: str, mode: str) -> List[RatingChange]:
        """Rating changes recorded for a match, empty if it was never rated."""
        raw = await self.redis.hget(self._history_key(mode), match_id)
        if raw is None:
            return []
        return [
            RatingChange(item["participant_id"], item["before"], item["after"])
            for item in json.loads(raw)
        ]
