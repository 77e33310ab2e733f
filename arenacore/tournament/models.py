"""
Tournament Data Models.

Immutable state representations for tournament entities.
All mutations go through the TournamentEngine and return new instances.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple, TYPE_CHECKING
from uuid import uuid4

from arenacore.utils.errors import InvalidConfigurationError

if TYPE_CHECKING:
    from .bracket import Bracket


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TournamentStatus(Enum):
    """Tournament lifecycle states."""

    DRAFT = "draft"
    REGISTRATION = "registration"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Allowed lifecycle edges
TRANSITIONS: Dict[TournamentStatus, FrozenSet[TournamentStatus]] = {
    TournamentStatus.DRAFT: frozenset(
        {TournamentStatus.REGISTRATION, TournamentStatus.CANCELLED}
    ),
    TournamentStatus.REGISTRATION: frozenset(
        {TournamentStatus.IN_PROGRESS, TournamentStatus.CANCELLED}
    ),
    TournamentStatus.IN_PROGRESS: frozenset({TournamentStatus.COMPLETED}),
    TournamentStatus.COMPLETED: frozenset(),
    TournamentStatus.CANCELLED: frozenset(),
}


class BracketFormat(Enum):
    """Elimination formats."""

    SINGLE_ELIMINATION = "single_elimination"
    DOUBLE_ELIMINATION = "double_elimination"


class ResultState(Enum):
    """Result lifecycle of a match.

    UNSET: waiting for an upstream match to fill a slot
    CONTESTED: both sides known, result pending
    COMMITTED: final; never overwritten
    """

    UNSET = "unset"
    CONTESTED = "contested"
    COMMITTED = "committed"


@dataclass(frozen=True)
class Participant:
    """
    A player or team taking part in a tournament or queue.

    Identity is immutable; the rating is a snapshot taken from the rating
    store and only changes through rating updates.
    """

    participant_id: str
    display_name: str = ""
    rating: float = 1500.0
    is_team: bool = False

    def with_rating(self, rating: float) -> "Participant":
        return replace(self, rating=rating)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "display_name": self.display_name or self.participant_id,
            "rating": self.rating,
            "is_team": self.is_team,
        }


@dataclass(frozen=True)
class MatchResult:
    """
    A reported match outcome.

    ``winner_ids`` / ``loser_ids`` name the two sides; bracket matches and solo
    queue matches have one participant per side. ``game_id`` identifies the
    game for external verification.
    """

    winner_ids: Tuple[str, ...]
    loser_ids: Tuple[str, ...]
    game_id: Optional[str] = None
    score: Optional[Dict[str, Any]] = None
    forfeit: bool = False

    @classmethod
    def decided(
        cls,
        winner_id: str,
        loser_id: str,
        game_id: Optional[str] = None,
        score: Optional[Dict[str, Any]] = None,
    ) -> "MatchResult":
        """Result of a one-versus-one match."""
        return cls((winner_id,), (loser_id,), game_id=game_id, score=score)

    @property
    def winner_id(self) -> str:
        return self.winner_ids[0]

    @property
    def loser_id(self) -> str:
        return self.loser_ids[0]

    @property
    def participant_ids(self) -> Tuple[str, ...]:
        return self.winner_ids + self.loser_ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            "winner_ids": list(self.winner_ids),
            "loser_ids": list(self.loser_ids),
            "game_id": self.game_id,
            "score": self.score,
            "forfeit": self.forfeit,
        }


@dataclass(frozen=True)
class TournamentConfig:
    """
    Tournament configuration - immutable after creation.

    Validated when the tournament leaves DRAFT.
    """

    tournament_id: str = field(default_factory=lambda: str(uuid4()))
    name: str = ""
    format: BracketFormat = BracketFormat.SINGLE_ELIMINATION
    capacity: int = 64
    game_mode: str = "tournament"

    def validate(self) -> None:
        """Raise InvalidConfigurationError unless the config can open registration."""
        if not self.name or not self.name.strip():
            raise InvalidConfigurationError("name must not be empty")
        if not isinstance(self.format, BracketFormat):
            raise InvalidConfigurationError(
                "unsupported format", details={"format": str(self.format)}
            )
        if self.capacity < 2:
            raise InvalidConfigurationError(
                "capacity must be at least 2", details={"capacity": self.capacity}
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tournament_id": self.tournament_id,
            "name": self.name,
            "format": self.format.value if isinstance(self.format, BracketFormat) else str(self.format),
            "capacity": self.capacity,
            "game_mode": self.game_mode,
        }


@dataclass(frozen=True)
class TournamentState:
    """
    Complete tournament state - immutable.

    Single source of truth for one tournament. The bracket is owned 1:1 and
    exists from IN_PROGRESS onwards.
    """

    tournament_id: str
    config: TournamentConfig
    status: TournamentStatus = TournamentStatus.DRAFT

    # Timing
    created_at: datetime = field(default_factory=utcnow)
    registration_opened_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    # Participants in registration order (participant_id -> Participant)
    participants: Dict[str, Participant] = field(default_factory=dict)

    bracket: Optional["Bracket"] = None

    # Forfeited through the administrative path
    forfeited: FrozenSet[str] = frozenset()

    cancel_reason: Optional[str] = None

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    @property
    def champion_id(self) -> Optional[str]:
        return self.bracket.champion_id if self.bracket else None

    def can_transition(self, target: TournamentStatus) -> bool:
        return target in TRANSITIONS[self.status]

    def with_status(self, status: TournamentStatus, **changes: Any) -> "TournamentState":
        return replace(self, status=status, **changes)

    def with_participant(self, participant: Participant) -> "TournamentState":
        participants = dict(self.participants)
        participants[participant.participant_id] = participant
        return replace(self, participants=participants)

    def without_participant(self, participant_id: str) -> "TournamentState":
        participants = dict(self.participants)
        participants.pop(participant_id, None)
        return replace(self, participants=participants)

    def with_forfeit(self, participant_id: str) -> "TournamentState":
        return replace(self, forfeited=self.forfeited | {participant_id})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tournament_id": self.tournament_id,
            "name": self.config.name,
            "format": self.config.to_dict()["format"],
            "status": self.status.value,
            "capacity": self.config.capacity,
            "participant_count": self.participant_count,
            "participants": [p.to_dict() for p in self.participants.values()],
            "champion_id": self.champion_id,
            "forfeited": sorted(self.forfeited),
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "bracket": self.bracket.to_dict() if self.bracket else None,
        }
