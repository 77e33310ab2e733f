"""Game integration API client.

The game integration service is the external system that hosts matches and
reports their raw outcomes. The core asks it two things:

- verify a reported result before it is committed (single attempt; retrying
  is the submitter's decision)
- fetch player statistics for display (retried, never used for bracket logic)

Authentication uses an ``X-API-Key`` header.
"""

import logging
from typing import Any, Optional

import httpx

from arenacore.config import Settings, get_settings
from arenacore.tournament.models import MatchResult
from arenacore.utils.errors import (
    ExternalVerificationError,
    GameIntegrationUnavailableError,
)
from arenacore.utils.http_client import AsyncHttpClient

logger = logging.getLogger(__name__)


class GameIntegrationClient:
    """Client for the game integration service.

    Usage:
        async with GameIntegrationClient("https://games.example.com") as games:
            ok = await games.verify_match_result("game-1", result)
    """

    VERIFY_PATH = "/api/v1/games/{game_id}/results/verify"
    STATS_PATH = "/api/v1/games/{game_id}/players/{player_id}/stats"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._headers = {"X-API-Key": api_key} if api_key else {}
        self._http = AsyncHttpClient(
            base_url=self.base_url,
            timeout=timeout,
            connect_timeout=min(timeout, 5.0),
            transport=transport,
        )
        self._open = False

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "GameIntegrationClient":
        settings = settings or get_settings()
        if not settings.game_integration_url:
            raise ValueError("game_integration_url is not configured")
        return cls(
            base_url=settings.game_integration_url,
            api_key=settings.game_integration_api_key,
            timeout=settings.game_integration_timeout,
        )

    async def open(self) -> None:
        if not self._open:
            await self._http.__aenter__()
            self._open = True

    async def close(self) -> None:
        if self._open:
            await self._http.__aexit__(None, None, None)
            self._open = False

    async def __aenter__(self) -> "GameIntegrationClient":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def verify_match_result(self, game_id: str, result: MatchResult) -> bool:
        """Ask the game integration whether a reported result is genuine.

        Returns:
            True if the service confirms the result

        Raises:
            ExternalVerificationError: timeout, transport failure, error status
                or a body that is not a JSON object
        """
        path = self.VERIFY_PATH.format(game_id=game_id)
        try:
            response = await self._http.post_once(
                path, json=result.to_dict(), headers=self._headers
            )
        except httpx.TimeoutException:
            logger.error("Game integration verify timeout: %s", game_id)
            raise ExternalVerificationError(game_id, "timeout")
        except httpx.HTTPStatusError as e:
            logger.error(
                "Game integration verify error: %s - %s",
                e.response.status_code,
                e.response.text,
            )
            raise ExternalVerificationError(game_id, f"status {e.response.status_code}")
        except httpx.RequestError as e:
            logger.error("Game integration connection error: %s", e)
            raise ExternalVerificationError(game_id, "connection failed")

        try:
            verified = bool(response.json().get("valid", False))
        except (ValueError, AttributeError):
            logger.error("Game integration sent an unreadable verdict for %s", game_id)
            raise ExternalVerificationError(game_id, "invalid response")
        if not verified:
            logger.warning("Game integration rejected result for %s", game_id)
        return verified

    async def fetch_player_stats(self, game_id: str, player_id: str) -> dict[str, Any]:
        """Player statistics for display.

        Raises:
            GameIntegrationUnavailableError: still failing after retries
        """
        path = self.STATS_PATH.format(game_id=game_id, player_id=player_id)
        try:
            stats = await self._http.get_json(path, headers=self._headers)
        except ValueError:
            raise GameIntegrationUnavailableError(path, "invalid response")
        except httpx.TimeoutException:
            raise GameIntegrationUnavailableError(path, "timeout")
        except httpx.HTTPStatusError as e:
            raise GameIntegrationUnavailableError(path, f"status {e.response.status_code}")
        except httpx.RequestError as e:
            raise GameIntegrationUnavailableError(path, str(e) or "connection failed")

        if not isinstance(stats, dict):
            raise GameIntegrationUnavailableError(path, "invalid response")
        return stats
