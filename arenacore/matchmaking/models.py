"""
Matchmaking data models.

Queue entries and formed matches are immutable; the queue replaces them
instead of editing in place.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple
from uuid import uuid4

from arenacore.tournament.models import MatchResult, ResultState


@dataclass(frozen=True)
class GameMode:
    """A queue. ``team_size`` participants form each side of a match."""

    name: str
    team_size: int = 1

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("game mode needs a name")
        if self.team_size < 1:
            raise ValueError("team_size must be at least 1")

    @property
    def match_size(self) -> int:
        return 2 * self.team_size


@dataclass(frozen=True)
class QueueEntry:
    """
    One participant waiting in one mode.

    ``enqueued_at`` is on the queue's monotonic clock; ``sequence`` is the
    global enqueue order and breaks ties between equal waits.
    """

    participant_id: str
    mode: str
    rating: float
    enqueued_at: float
    sequence: int
    entry_id: str = field(default_factory=lambda: str(uuid4()))
    search_expansions: int = 0

    def wait_seconds(self, now: float) -> float:
        return max(0.0, now - self.enqueued_at)

    def expanded(self) -> "QueueEntry":
        return replace(self, search_expansions=self.search_expansions + 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "participant_id": self.participant_id,
            "mode": self.mode,
            "rating": self.rating,
            "enqueued_at": self.enqueued_at,
            "sequence": self.sequence,
            "search_expansions": self.search_expansions,
        }


@dataclass(frozen=True)
class QueueMatch:
    """
    A match formed by the queue.

    Born CONTESTED; moves to COMMITTED exactly once when its result is
    submitted. Never linked to a tournament bracket.
    """

    match_id: str
    mode: str
    sides: Tuple[Tuple[str, ...], Tuple[str, ...]]
    entries: Tuple[QueueEntry, ...]
    rating_spread: float
    formed_at: float
    result_state: ResultState = ResultState.CONTESTED
    result: Optional[MatchResult] = None
    committed_at: Optional[float] = None

    @property
    def participant_ids(self) -> Tuple[str, ...]:
        return self.sides[0] + self.sides[1]

    @property
    def is_committed(self) -> bool:
        return self.result_state == ResultState.COMMITTED

    def side_of(self, participant_id: str) -> Optional[int]:
        for index, side in enumerate(self.sides):
            if participant_id in side:
                return index
        return None

    def committed(self, result: MatchResult, committed_at: float) -> "QueueMatch":
        return replace(
            self,
            result_state=ResultState.COMMITTED,
            result=result,
            committed_at=committed_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_id": self.match_id,
            "mode": self.mode,
            "sides": [list(side) for side in self.sides],
            "rating_spread": self.rating_spread,
            "formed_at": self.formed_at,
            "committed_at": self.committed_at,
            "result_state": self.result_state.value,
            "result": self.result.to_dict() if self.result else None,
        }


@dataclass(frozen=True)
class QueueSnapshot:
    """Point-in-time queue statistics for one mode."""

    mode: str
    size: int
    average_wait: float
    longest_wait: float
    min_rating: Optional[float]
    max_rating: Optional[float]
    open_matches: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "size": self.size,
            "average_wait": self.average_wait,
            "longest_wait": self.longest_wait,
            "min_rating": self.min_rating,
            "max_rating": self.max_rating,
            "open_matches": self.open_matches,
        }
