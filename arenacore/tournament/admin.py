"""
Tournament Admin Controller.

Administrative path for changes the normal flow does not allow: forfeiting a
participant out of a running tournament and cancelling a tournament. Every
action, successful or not, is appended to an audit log.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from arenacore.utils.errors import CoreError

from .engine import TournamentEngine
from .models import TournamentState, utcnow

logger = logging.getLogger(__name__)


class AdminActionType(Enum):
    FORFEIT = "forfeit"
    CANCEL = "cancel"


@dataclass
class AdminAction:
    """Record of admin action for audit."""

    action_id: str = field(default_factory=lambda: str(uuid4()))
    action_type: AdminActionType = AdminActionType.FORFEIT
    admin_id: str = ""
    tournament_id: str = ""
    target_participant_id: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    reason: str = ""
    timestamp: Any = field(default_factory=utcnow)
    success: bool = True
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_id": self.action_id,
            "action_type": self.action_type.value,
            "admin_id": self.admin_id,
            "tournament_id": self.tournament_id,
            "target_participant_id": self.target_participant_id,
            "parameters": self.parameters,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "error_message": self.error_message,
        }


class TournamentAdminController:
    """
    Administrative control over tournaments.

    Features:
    1. Forfeit a participant from a running tournament
    2. Cancel a tournament before it starts
    3. Audit log of every action
    """

    def __init__(self, engine: TournamentEngine):
        self.engine = engine
        self._action_log: List[AdminAction] = []

    async def forfeit_participant(
        self,
        tournament_id: str,
        participant_id: str,
        admin_id: str,
        reason: str = "Admin forfeit",
    ) -> TournamentState:
        """
        Forfeit a participant out of an IN_PROGRESS tournament.

        The participant's playable match is conceded to the opponent at once
        (rated and broadcast like any commit); later matches are conceded as
        they become playable.
        """
        action = AdminAction(
            action_type=AdminActionType.FORFEIT,
            admin_id=admin_id,
            tournament_id=tournament_id,
            target_participant_id=participant_id,
            reason=reason,
        )

        try:
            state, conceded = await self.engine.forfeit_participant(
                tournament_id, participant_id
            )
        except CoreError as e:
            action.success = False
            action.error_message = e.message
            self._action_log.append(action)
            raise

        action.parameters = {"conceded_matches": conceded}
        self._action_log.append(action)
        logger.warning(
            "Admin %s forfeited %s in tournament %s: %s",
            admin_id,
            participant_id,
            tournament_id,
            reason,
        )
        return state

    async def cancel_tournament(
        self,
        tournament_id: str,
        admin_id: str,
        reason: str = "Admin cancel",
    ) -> TournamentState:
        """Cancel a tournament in DRAFT or REGISTRATION."""
        action = AdminAction(
            action_type=AdminActionType.CANCEL,
            admin_id=admin_id,
            tournament_id=tournament_id,
            reason=reason,
        )

        try:
            state = await self.engine.cancel_tournament(tournament_id, reason)
        except CoreError as e:
            action.success = False
            action.error_message = e.message
            self._action_log.append(action)
            raise

        self._action_log.append(action)
        logger.warning("Admin %s cancelled tournament %s: %s", admin_id, tournament_id, reason)
        return state

    def get_action_log(
        self,
        tournament_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[AdminAction]:
        """Admin actions, newest last."""
        logs = self._action_log
        if tournament_id:
            logs = [a for a in logs if a.tournament_id == tournament_id]
        return logs[-limit:]
