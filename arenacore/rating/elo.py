"""Elo rating engine.

Pure functions: the same inputs always produce the same outputs, and nothing here
remembers which matches were already rated. Callers guarantee a committed match
is rated exactly once.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Sequence, Tuple

DEFAULT_K_FACTOR = 32.0
DEFAULT_SCALE_FACTOR = 400.0
DEFAULT_INITIAL_RATING = 1500.0


def expected_score(
    rating: float,
    opponent_rating: float,
    scale_factor: float = DEFAULT_SCALE_FACTOR,
) -> float:
    """Compute the Elo expected score for one side."""
    return 1.0 / (1.0 + 10.0 ** ((opponent_rating - rating) / scale_factor))


def update_ratings(
    winner_rating: float,
    loser_rating: float,
    k_factor: float = DEFAULT_K_FACTOR,
    scale_factor: float = DEFAULT_SCALE_FACTOR,
) -> Tuple[float, float]:
    """Return ``(new_winner_rating, new_loser_rating)`` after a decisive result.

    The winner scores 1 and the loser 0. With a shared K-factor the exchange is
    zero-sum: the winner gains exactly what the loser gives up.
    """
    winner_expected = expected_score(winner_rating, loser_rating, scale_factor)
    delta = k_factor * (1.0 - winner_expected)
    return winner_rating + delta, loser_rating - delta


def team_rating(ratings: Sequence[float]) -> float:
    """Mean rating of a side; used when both sides field several participants."""
    if not ratings:
        raise ValueError("team_rating requires at least one rating")
    return sum(ratings) / len(ratings)


@dataclass(frozen=True)
class RatingChange:
    """Before/after record of one side in a rated match."""

    participant_id: str
    before: float
    after: float

    @property
    def delta(self) -> float:
        return self.after - self.before

    def to_dict(self) -> Dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "before": self.before,
            "after": self.after,
            "delta": self.delta,
        }


class EloRatingEngine:
    """Elo calculator bound to configured constants."""

    def __init__(
        self,
        k_factor: float = DEFAULT_K_FACTOR,
        scale_factor: float = DEFAULT_SCALE_FACTOR,
        initial_rating: float = DEFAULT_INITIAL_RATING,
    ):
        if k_factor <= 0:
            raise ValueError("k_factor must be positive")
        if scale_factor <= 0:
            raise ValueError("scale_factor must be positive")
        self.k_factor = k_factor
        self.scale_factor = scale_factor
        self.initial_rating = initial_rating

    def expected(self, rating: float, opponent_rating: float) -> float:
        return expected_score(rating, opponent_rating, self.scale_factor)

    def update(self, winner_rating: float, loser_rating: float) -> Tuple[float, float]:
        return update_ratings(winner_rating, loser_rating, self.k_factor, self.scale_factor)

    def rate_match(
        self,
        winners: Dict[str, float],
        losers: Dict[str, float],
    ) -> list[RatingChange]:
        """
        Rate a decided match between two sides.

        Each side is summarised by its mean rating; every member of a side
        moves by the same delta. Solo matches are sides of one.

        Args:
            winners: participant_id -> current rating for the winning side
            losers: participant_id -> current rating for the losing side

        Returns:
            RatingChange for every participant, winners first, each side in
            participant_id order
        """
        if not winners or not losers:
            raise ValueError("both sides need at least one participant")
        if set(winners) & set(losers):
            raise ValueError("a participant cannot be on both sides")

        winner_side = team_rating(list(winners.values()))
        loser_side = team_rating(list(losers.values()))
        new_winner_side, _ = self.update(winner_side, loser_side)
        delta = new_winner_side - winner_side

        changes = [
            RatingChange(pid, winners[pid], winners[pid] + delta)
            for pid in sorted(winners)
        ]
        changes.extend(
            RatingChange(pid, losers[pid], losers[pid] - delta)
            for pid in sorted(losers)
        )
        return changes
