"""
Tournament orchestration.

This module provides:
- Single and double elimination bracket generation with seeding and byes
- A per-tournament state machine with lock-serialized result commits
- An administrative forfeit / cancel path with an audit log
"""

from .models import (
    BracketFormat,
    MatchResult,
    Participant,
    ResultState,
    TournamentConfig,
    TournamentState,
    TournamentStatus,
)
from .bracket import (
    Bracket,
    BracketMatch,
    BracketStage,
    Seed,
    SlotPointer,
    advance,
    generate,
    seeding_order,
)
from .engine import MatchResultVerifier, TournamentEngine
from .admin import AdminAction, AdminActionType, TournamentAdminController

__all__ = [
    "BracketFormat",
    "MatchResult",
    "Participant",
    "ResultState",
    "TournamentConfig",
    "TournamentState",
    "TournamentStatus",
    "Bracket",
    "BracketMatch",
    "BracketStage",
    "Seed",
    "SlotPointer",
    "advance",
    "generate",
    "seeding_order",
    "MatchResultVerifier",
    "TournamentEngine",
    "AdminAction",
    "AdminActionType",
    "TournamentAdminController",
]
