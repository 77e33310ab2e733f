"""
Skill-based matchmaking.

Per-mode queues with an expanding rating window and team support.
"""

from .models import GameMode, QueueEntry, QueueMatch, QueueSnapshot
from .queue import MatchmakingQueue, search_radius, snake_draft

__all__ = [
    "GameMode",
    "QueueEntry",
    "QueueMatch",
    "QueueSnapshot",
    "MatchmakingQueue",
    "search_radius",
    "snake_draft",
]
