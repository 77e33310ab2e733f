"""
Game integration client tests (httpx.MockTransport, no network).
"""

import json

import httpx
import pytest

from arenacore.config import Settings
from arenacore.integration import GameIntegrationClient
from arenacore.tournament.models import MatchResult
from arenacore.utils.errors import (
    ExternalVerificationError,
    GameIntegrationUnavailableError,
)

BASE_URL = "https://games.test"


def client_with(handler, api_key="secret"):
    return GameIntegrationClient(
        BASE_URL, api_key=api_key, timeout=1.0, transport=httpx.MockTransport(handler)
    )


class TestVerifyMatchResult:
    @pytest.mark.asyncio
    async def test_confirmed_result(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"valid": True})

        async with client_with(handler) as games:
            ok = await games.verify_match_result("g-1", MatchResult.decided("a", "b"))

        assert ok is True
        request = seen[0]
        assert request.url.path == "/api/v1/games/g-1/results/verify"
        assert request.headers["X-API-Key"] == "secret"
        assert json.loads(request.content)["winner_ids"] == ["a"]

    @pytest.mark.asyncio
    async def test_rejected_result(self):
        async with client_with(lambda r: httpx.Response(200, json={"valid": False})) as games:
            assert await games.verify_match_result("g-1", MatchResult.decided("a", "b")) is False

    @pytest.mark.asyncio
    async def test_timeout_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ReadTimeout("slow", request=request)

        async with client_with(handler) as games:
            with pytest.raises(ExternalVerificationError) as exc_info:
                await games.verify_match_result("g-1", MatchResult.decided("a", "b"))

        assert len(calls) == 1
        assert "timeout" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_server_error(self):
        async with client_with(lambda r: httpx.Response(503, text="down")) as games:
            with pytest.raises(ExternalVerificationError):
                await games.verify_match_result("g-1", MatchResult.decided("a", "b"))

    @pytest.mark.asyncio
    async def test_no_api_key_header_when_unset(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"valid": True})

        async with client_with(handler, api_key=None) as games:
            await games.verify_match_result("g-1", MatchResult.decided("a", "b"))

        assert "X-API-Key" not in seen[0].headers


class TestFetchPlayerStats:
    @pytest.mark.asyncio
    async def test_returns_json(self):
        def handler(request):
            assert request.url.path == "/api/v1/games/g-1/players/p1/stats"
            return httpx.Response(200, json={"wins": 12})

        async with client_with(handler) as games:
            assert await games.fetch_player_stats("g-1", "p1") == {"wins": 12}

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json={"wins": 3})

        async with client_with(handler) as games:
            assert await games.fetch_player_stats("g-1", "p1") == {"wins": 3}

        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_not_found(self):
        async with client_with(lambda r: httpx.Response(404)) as games:
            with pytest.raises(GameIntegrationUnavailableError):
                await games.fetch_player_stats("g-1", "missing")


class TestFromSettings:
    def test_requires_url(self):
        with pytest.raises(ValueError):
            GameIntegrationClient.from_settings(Settings(_env_file=None))

    def test_reads_settings(self):
        settings = Settings(
            _env_file=None,
            game_integration_url="https://games.test/",
            game_integration_api_key="k",
        )
        client = GameIntegrationClient.from_settings(settings)
        assert client.base_url == "https://games.test"


class TestMalformedResponses:
    @pytest.mark.asyncio
    async def test_verify_with_html_body(self):
        async with client_with(lambda r: httpx.Response(200, text="<html>gateway</html>")) as games:
            with pytest.raises(ExternalVerificationError) as exc_info:
                await games.verify_match_result("g-1", MatchResult.decided("a", "b"))

        assert "invalid response" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_verify_with_json_array(self):
        async with client_with(lambda r: httpx.Response(200, json=[True])) as games:
            with pytest.raises(ExternalVerificationError):
                await games.verify_match_result("g-1", MatchResult.decided("a", "b"))

    @pytest.mark.asyncio
    async def test_stats_with_html_body(self):
        async with client_with(lambda r: httpx.Response(200, text="<html>gateway</html>")) as games:
            with pytest.raises(GameIntegrationUnavailableError):
                await games.fetch_player_stats("g-1", "p1")

    @pytest.mark.asyncio
    async def test_stats_with_json_array(self):
        async with client_with(lambda r: httpx.Response(200, json=[1, 2])) as games:
            with pytest.raises(GameIntegrationUnavailableError):
                await games.fetch_player_stats("g-1", "p1")
