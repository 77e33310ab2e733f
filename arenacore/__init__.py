"""Competitive gaming core: tournament brackets, matchmaking, ratings and event fan-out."""

__version__ = "0.1.0"
