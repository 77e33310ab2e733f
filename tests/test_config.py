"""
Settings tests.
"""

import pytest
from pydantic import ValidationError

from arenacore.config import Settings


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.elo_k_factor == 32.0
        assert settings.initial_rating == 1500.0
        assert settings.matchmaking_base_radius == 100.0
        assert settings.game_integration_url is None
        assert settings.broadcast_mirror_enabled is False
        assert settings.matchmaking_match_retention_seconds == 3600.0

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("ARENA_ELO_K_FACTOR", "24")
        monkeypatch.setenv("ARENA_MATCHMAKING_MAX_RADIUS", "600")

        settings = Settings(_env_file=None)

        assert settings.elo_k_factor == 24.0
        assert settings.matchmaking_max_radius == 600.0

    @pytest.mark.parametrize(
        "field",
        [
            "elo_k_factor",
            "broadcast_subscriber_buffer",
            "lock_timeout_ms",
            "matchmaking_match_retention_seconds",
        ],
    )
    def test_rejects_non_positive(self, field):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: 0})

    def test_rejects_negative_growth(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, matchmaking_growth_rate=-1)

    def test_rejects_inverted_radius_bounds(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, matchmaking_base_radius=500, matchmaking_max_radius=100)
