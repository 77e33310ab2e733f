"""
Broadcast event models.

Event payloads form a closed set of variants. Consumers dispatch on the payload
class (or its ``event_type``) and can rely on every variant being listed in
``EventPayload``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple, Union
from uuid import uuid4
import json


class EventType(Enum):
    """Event variants delivered to subscribers."""

    QUEUE_MATCHED = "queue_matched"
    MATCH_UPDATED = "match_updated"
    TOURNAMENT_ADVANCED = "tournament_advanced"
    PARTICIPANT_NOTIFIED = "participant_notified"


class NotificationKind(Enum):
    """Why a participant is being notified."""

    MATCH_FOUND = "match_found"
    MATCH_READY = "match_ready"
    FORFEITED = "forfeited"
    TOURNAMENT_CANCELLED = "tournament_cancelled"


def tournament_topic(tournament_id: str) -> str:
    return f"tournament:{tournament_id}"


def match_topic(match_id: str) -> str:
    return f"match:{match_id}"


def participant_topic(participant_id: str) -> str:
    return f"participant:{participant_id}"


@dataclass(frozen=True)
class QueueMatched:
    """Matchmaking formed a match from queued entries."""

    event_type: ClassVar[EventType] = EventType.QUEUE_MATCHED

    match_id: str
    mode: str
    sides: Tuple[Tuple[str, ...], Tuple[str, ...]]
    rating_spread: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_id": self.match_id,
            "mode": self.mode,
            "sides": [list(side) for side in self.sides],
            "rating_spread": self.rating_spread,
        }


@dataclass(frozen=True)
class MatchUpdated:
    """A match changed state (became playable or had its result committed)."""

    event_type: ClassVar[EventType] = EventType.MATCH_UPDATED

    match_id: str
    result_state: str
    participants: Tuple[str, ...]
    tournament_id: Optional[str] = None
    winner_ids: Tuple[str, ...] = ()
    loser_ids: Tuple[str, ...] = ()
    rating_changes: Tuple[Dict[str, Any], ...] = ()
    forfeit: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_id": self.match_id,
            "result_state": self.result_state,
            "participants": list(self.participants),
            "tournament_id": self.tournament_id,
            "winner_ids": list(self.winner_ids),
            "loser_ids": list(self.loser_ids),
            "rating_changes": list(self.rating_changes),
            "forfeit": self.forfeit,
        }


@dataclass(frozen=True)
class TournamentAdvanced:
    """A tournament changed lifecycle state or its bracket moved forward."""

    event_type: ClassVar[EventType] = EventType.TOURNAMENT_ADVANCED

    tournament_id: str
    status: str
    completed_match_id: Optional[str] = None
    playable_match_ids: Tuple[str, ...] = ()
    champion_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tournament_id": self.tournament_id,
            "status": self.status,
            "completed_match_id": self.completed_match_id,
            "playable_match_ids": list(self.playable_match_ids),
            "champion_id": self.champion_id,
        }


@dataclass(frozen=True)
class ParticipantNotified:
    """Direct notice to one participant."""

    event_type: ClassVar[EventType] = EventType.PARTICIPANT_NOTIFIED

    participant_id: str
    kind: NotificationKind
    match_id: Optional[str] = None
    tournament_id: Optional[str] = None
    opponent_ids: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "kind": self.kind.value,
            "match_id": self.match_id,
            "tournament_id": self.tournament_id,
            "opponent_ids": list(self.opponent_ids),
        }


EventPayload = Union[QueueMatched, MatchUpdated, TournamentAdvanced, ParticipantNotified]

PAYLOAD_TYPES: Tuple[type, ...] = (
    QueueMatched,
    MatchUpdated,
    TournamentAdvanced,
    ParticipantNotified,
)


@dataclass(frozen=True)
class Event:
    """
    Envelope for a published payload.

    ``sequence`` is assigned by the broadcaster and increases by one per
    publish on the same topic, starting at 1.
    """

    topic: str
    sequence: int
    payload: EventPayload
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def event_type(self) -> EventType:
        return self.payload.event_type

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "topic": self.topic,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "payload": self.payload.to_dict(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())
