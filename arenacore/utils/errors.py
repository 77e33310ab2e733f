"""Custom exception classes for the competitive core.

Provides structured error handling with error codes and caller-facing messages.
Every error is scoped to the single requested operation; none is fatal.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes for core errors."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"

    # Validation errors
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"
    INSUFFICIENT_PARTICIPANTS = "INSUFFICIENT_PARTICIPANTS"
    PARTICIPANT_MISMATCH = "PARTICIPANT_MISMATCH"
    UNKNOWN_GAME_MODE = "UNKNOWN_GAME_MODE"
    WITHDRAWAL_NOT_ALLOWED = "WITHDRAWAL_NOT_ALLOWED"

    # Conflict errors
    ALREADY_QUEUED = "ALREADY_QUEUED"
    ALREADY_COMMITTED = "ALREADY_COMMITTED"
    ALREADY_RESOLVED = "ALREADY_RESOLVED"
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    TOURNAMENT_FULL = "TOURNAMENT_FULL"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    TOURNAMENT_NOT_IN_PROGRESS = "TOURNAMENT_NOT_IN_PROGRESS"

    # Lookup errors
    TOURNAMENT_NOT_FOUND = "TOURNAMENT_NOT_FOUND"
    MATCH_NOT_FOUND = "MATCH_NOT_FOUND"
    UNKNOWN_MATCH = "UNKNOWN_MATCH"
    PARTICIPANT_NOT_FOUND = "PARTICIPANT_NOT_FOUND"

    # External dependency errors
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    VERIFICATION_UNAVAILABLE = "VERIFICATION_UNAVAILABLE"
    GAME_INTEGRATION_UNAVAILABLE = "GAME_INTEGRATION_UNAVAILABLE"

    # Broadcast errors
    SUBSCRIBER_DISCONNECTED = "SUBSCRIBER_DISCONNECTED"


class CoreError(Exception):
    """Base exception for core errors.

    Attributes:
        code: Error code for programmatic handling
        message: Caller-facing error message
        details: Additional error details
        recoverable: Whether the caller may retry after fetching fresh state
    """

    def __init__(
        self,
        code: ErrorCode | str,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = True,
    ):
        self.code = code if isinstance(code, str) else code.value
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "errorCode": self.code,
            "errorMessage": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class ValidationError(CoreError):
    """Request rejected because its input is invalid."""


class ConflictError(CoreError):
    """Request conflicts with current state; refetch before retrying."""


class NotFoundError(CoreError):
    """Referenced entity does not exist."""


class ExternalDependencyError(CoreError):
    """A collaborator outside the core failed or timed out."""


# =============================================================================
# Validation
# =============================================================================


class InvalidConfigurationError(ValidationError):
    """Raised when a tournament configuration is not acceptable."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            code=ErrorCode.INVALID_CONFIGURATION,
            message=f"Invalid tournament configuration: {reason}",
            details=details,
        )


class InsufficientParticipantsError(ValidationError):
    """Raised when too few participants are registered to start."""

    def __init__(self, current: int, required: int = 2):
        super().__init__(
            code=ErrorCode.INSUFFICIENT_PARTICIPANTS,
            message=f"At least {required} participants required, got {current}",
            details={"current": current, "required": required},
        )


class ParticipantMismatchError(ValidationError):
    """Raised when a result names participants that do not occupy the match."""

    def __init__(self, match_id: str, participant_ids: list[str] | None = None):
        super().__init__(
            code=ErrorCode.PARTICIPANT_MISMATCH,
            message=f"Result participants do not occupy match {match_id}",
            details={"match_id": match_id, "participant_ids": participant_ids or []},
        )


class UnknownGameModeError(ValidationError):
    """Raised when a queue operation names an unregistered mode."""

    def __init__(self, mode: str):
        super().__init__(
            code=ErrorCode.UNKNOWN_GAME_MODE,
            message=f"Unknown game mode: {mode}",
            details={"mode": mode},
        )


class WithdrawalNotAllowedError(ValidationError):
    """Raised when a participant tries to withdraw after the bracket exists."""

    def __init__(self, tournament_id: str, participant_id: str):
        super().__init__(
            code=ErrorCode.WITHDRAWAL_NOT_ALLOWED,
            message=(
                "Withdrawal is closed once the tournament is in progress; "
                "use the administrative forfeit path"
            ),
            details={"tournament_id": tournament_id, "participant_id": participant_id},
        )


# =============================================================================
# Conflicts
# =============================================================================


class AlreadyQueuedError(ConflictError):
    """Raised when a participant already holds an open entry for the mode."""

    def __init__(self, participant_id: str, mode: str):
        super().__init__(
            code=ErrorCode.ALREADY_QUEUED,
            message=f"Participant {participant_id} is already queued for {mode}",
            details={"participant_id": participant_id, "mode": mode},
        )


class AlreadyCommittedError(ConflictError):
    """Raised when a result is submitted for a match that already has one."""

    def __init__(self, match_id: str):
        super().__init__(
            code=ErrorCode.ALREADY_COMMITTED,
            message=f"Match {match_id} already has a committed result",
            details={"match_id": match_id},
            recoverable=False,
        )


class AlreadyResolvedError(ConflictError):
    """Raised when a bracket slot or match is already filled."""

    def __init__(self, match_id: str, slot: int | None = None):
        super().__init__(
            code=ErrorCode.ALREADY_RESOLVED,
            message=f"Bracket match {match_id} is already resolved",
            details={"match_id": match_id, "slot": slot},
            recoverable=False,
        )


class AlreadyRegisteredError(ConflictError):
    """Raised on duplicate tournament registration."""

    def __init__(self, tournament_id: str, participant_id: str):
        super().__init__(
            code=ErrorCode.ALREADY_REGISTERED,
            message=f"Participant {participant_id} already registered",
            details={"tournament_id": tournament_id, "participant_id": participant_id},
        )


class TournamentFullError(ConflictError):
    """Raised when registration would exceed capacity."""

    def __init__(self, tournament_id: str, capacity: int):
        super().__init__(
            code=ErrorCode.TOURNAMENT_FULL,
            message=f"Tournament {tournament_id} is full ({capacity})",
            details={"tournament_id": tournament_id, "capacity": capacity},
        )


class InvalidStateTransitionError(ConflictError):
    """Raised when a lifecycle transition is not allowed from the current state."""

    def __init__(self, tournament_id: str, current: str, target: str):
        super().__init__(
            code=ErrorCode.INVALID_STATE_TRANSITION,
            message=f"Cannot move tournament {tournament_id} from {current} to {target}",
            details={"tournament_id": tournament_id, "current": current, "target": target},
        )


class TournamentNotInProgressError(ConflictError):
    """Raised when a result arrives for a tournament that is not running."""

    def __init__(self, tournament_id: str, status: str):
        super().__init__(
            code=ErrorCode.TOURNAMENT_NOT_IN_PROGRESS,
            message=f"Tournament {tournament_id} is not in progress ({status})",
            details={"tournament_id": tournament_id, "status": status},
        )


# =============================================================================
# Lookups
# =============================================================================


class TournamentNotFoundError(NotFoundError):
    """Raised when a tournament doesn't exist."""

    def __init__(self, tournament_id: str):
        super().__init__(
            code=ErrorCode.TOURNAMENT_NOT_FOUND,
            message=f"Tournament {tournament_id} not found",
            details={"tournament_id": tournament_id},
        )


class MatchNotFoundError(NotFoundError):
    """Raised when a submitted result references an unknown match."""

    def __init__(self, match_id: str):
        super().__init__(
            code=ErrorCode.MATCH_NOT_FOUND,
            message=f"Match {match_id} not found",
            details={"match_id": match_id},
        )


class UnknownMatchError(NotFoundError):
    """Raised when a match does not belong to the bracket being advanced."""

    def __init__(self, match_id: str, bracket_id: str = ""):
        super().__init__(
            code=ErrorCode.UNKNOWN_MATCH,
            message=f"Match {match_id} does not belong to bracket {bracket_id!r}",
            details={"match_id": match_id, "bracket_id": bracket_id},
        )


class ParticipantNotFoundError(NotFoundError):
    """Raised when a participant is not registered where expected."""

    def __init__(self, participant_id: str, scope: str = ""):
        super().__init__(
            code=ErrorCode.PARTICIPANT_NOT_FOUND,
            message=f"Participant {participant_id} not found {scope}".rstrip(),
            details={"participant_id": participant_id, "scope": scope},
        )


# =============================================================================
# External dependencies
# =============================================================================


class ResultVerificationError(ExternalDependencyError):
    """Raised when the game integration rejects a reported result."""

    def __init__(self, match_id: str, game_id: str | None = None):
        super().__init__(
            code=ErrorCode.VERIFICATION_FAILED,
            message=f"Result for match {match_id} failed verification",
            details={"match_id": match_id, "game_id": game_id},
        )


class ExternalVerificationError(ExternalDependencyError):
    """Raised when the game integration cannot be reached or times out."""

    def __init__(self, game_id: str | None, reason: str):
        super().__init__(
            code=ErrorCode.VERIFICATION_UNAVAILABLE,
            message=f"Result verification unavailable: {reason}",
            details={"game_id": game_id},
        )


class GameIntegrationUnavailableError(ExternalDependencyError):
    """Raised when a read from the game integration fails after retries."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            code=ErrorCode.GAME_INTEGRATION_UNAVAILABLE,
            message=f"Game integration unavailable: {reason}",
            details={"path": path},
        )


# =============================================================================
# Broadcast
# =============================================================================


class SubscriberDisconnectedError(CoreError):
    """Raised to a subscriber that was dropped for falling behind."""

    def __init__(self, topic: str, last_sequence: int, reason: str = "slow_consumer"):
        super().__init__(
            code=ErrorCode.SUBSCRIBER_DISCONNECTED,
            message=f"Subscription to {topic} disconnected ({reason})",
            details={"topic": topic, "last_sequence": last_sequence, "reason": reason},
        )
        self.topic = topic
        self.last_sequence = last_sequence
        self.reason = reason
