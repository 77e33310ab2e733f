"""Clients for external collaborators."""

from .game_client import GameIntegrationClient

__all__ = ["GameIntegrationClient"]
