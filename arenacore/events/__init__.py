"""
Real-time event fan-out.

Ordered per-topic delivery with bounded replay for reconnecting subscribers.
"""

from .models import (
    Event,
    EventPayload,
    EventType,
    MatchUpdated,
    NotificationKind,
    ParticipantNotified,
    QueueMatched,
    TournamentAdvanced,
    match_topic,
    participant_topic,
    tournament_topic,
)
from .broadcaster import BroadcastMetrics, EventBroadcaster, Subscription

__all__ = [
    "Event",
    "EventPayload",
    "EventType",
    "MatchUpdated",
    "NotificationKind",
    "ParticipantNotified",
    "QueueMatched",
    "TournamentAdvanced",
    "match_topic",
    "participant_topic",
    "tournament_topic",
    "BroadcastMetrics",
    "EventBroadcaster",
    "Subscription",
]
