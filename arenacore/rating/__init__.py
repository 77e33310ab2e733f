"""
Rating engine and per-mode rating store.
"""

from .elo import (
    EloRatingEngine,
    RatingChange,
    expected_score,
    team_rating,
    update_ratings,
)
from .book import RatingBook

__all__ = [
    "EloRatingEngine",
    "RatingChange",
    "expected_score",
    "team_rating",
    "update_ratings",
    "RatingBook",
]
