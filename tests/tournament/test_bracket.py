"""Property-Based Tests for the bracket engine.

- Single elimination has n - 1 matches for every n >= 2
- Generation is deterministic
- Seeds 1 and 2 only meet in the final
- Double elimination: everyone but the champion is eliminated by a second loss
"""

import random
from collections import Counter

import pytest
from hypothesis import given, strategies as st, settings

from arenacore.tournament.bracket import (
    Bracket,
    BracketStage,
    advance,
    generate,
    seeding_order,
)
from arenacore.tournament.models import BracketFormat, Participant, ResultState
from arenacore.utils.errors import (
    AlreadyResolvedError,
    InsufficientParticipantsError,
    InvalidConfigurationError,
    ParticipantMismatchError,
    UnknownMatchError,
)

SINGLE = BracketFormat.SINGLE_ELIMINATION
DOUBLE = BracketFormat.DOUBLE_ELIMINATION


def make_participants(count, base=2000, step=10):
    """p1 has the highest rating, p{count} the lowest."""
    return [
        Participant(participant_id=f"p{i}", rating=base - i * step)
        for i in range(1, count + 1)
    ]


def play_out(bracket: Bracket, rng: random.Random):
    """Resolve every playable match with a random winner until a champion emerges."""
    results = []
    while not bracket.is_complete:
        playable = bracket.playable_matches()
        assert playable, "bracket stalled before producing a champion"
        match = playable[0]
        winner = rng.choice(match.occupants)
        loser = match.opponent_of(winner)
        bracket, _ = advance(bracket, match.match_id, winner)
        results.append((match.match_id, winner, loser))
    return bracket, results


class TestSeeding:
    def test_seeding_order(self):
        assert seeding_order(2) == [1, 2]
        assert seeding_order(4) == [1, 4, 2, 3]
        assert seeding_order(8) == [1, 8, 4, 5, 2, 7, 3, 6]

    def test_seeding_order_rejects_non_power_of_two(self):
        with pytest.raises(ValueError):
            seeding_order(6)

    def test_four_participant_pairings(self):
        participants = [
            Participant("a", rating=1500),
            Participant("b", rating=1400),
            Participant("c", rating=1300),
            Participant("d", rating=1200),
        ]
        bracket = generate(participants, SINGLE, bracket_id="t1")

        assert bracket.get_match("t1:WB-R1-M1").slots == ("a", "d")
        assert bracket.get_match("t1:WB-R1-M2").slots == ("b", "c")
        final = bracket.get_match("t1:WB-R2-M1")
        assert final.depth == 0
        assert final.result_state == ResultState.UNSET

    def test_seeding_sorts_by_rating_not_input_order(self):
        participants = [
            Participant("low", rating=1000),
            Participant("high", rating=2000),
        ]
        bracket = generate(participants, SINGLE)

        assert bracket.seeds[0].participant_id == "high"
        assert bracket.get_match("WB-R1-M1").slots == ("high", "low")

    def test_ties_keep_input_order(self):
        participants = [Participant(f"p{i}", rating=1500) for i in range(4)]
        bracket = generate(participants, SINGLE)

        assert [s.participant_id for s in bracket.seeds] == ["p0", "p1", "p2", "p3"]


class TestGenerate:
    def test_rejects_fewer_than_two(self):
        with pytest.raises(InsufficientParticipantsError):
            generate(make_participants(1), SINGLE)

    def test_rejects_duplicate_ids(self):
        with pytest.raises(InvalidConfigurationError):
            generate([Participant("a"), Participant("a")], SINGLE)

    @given(count=st.integers(min_value=2, max_value=70))
    @settings(max_examples=60)
    def test_single_elimination_has_n_minus_one_matches(self, count):
        bracket = generate(make_participants(count), SINGLE)
        assert bracket.match_count == count - 1

    @given(count=st.integers(min_value=2, max_value=40), fmt=st.sampled_from([SINGLE, DOUBLE]))
    @settings(max_examples=40)
    def test_deterministic(self, count, fmt):
        participants = make_participants(count)
        first = generate(participants, fmt, bracket_id="t")
        second = generate(list(participants), fmt, bracket_id="t")

        assert first == second
        assert first.to_dict() == second.to_dict()

    def test_byes_go_to_top_seeds(self):
        bracket = generate(make_participants(5), SINGLE)

        assert bracket.match_count == 4
        assert bracket.get_match("WB-R1-M1") is None
        assert bracket.get_match("WB-R1-M2").slots == ("p4", "p5")
        # Seed 1 waits for the p4/p5 winner; seeds 2 and 3 meet at once
        assert bracket.get_match("WB-R2-M1").slots == ("p1", None)
        assert bracket.get_match("WB-R2-M2").slots == ("p2", "p3")
        assert {m.match_id for m in bracket.playable_matches()} == {"WB-R1-M2", "WB-R2-M2"}

    def test_participant_lookups(self):
        bracket = generate(make_participants(5), SINGLE)

        assert bracket.seed_of("p4") == 4
        assert bracket.seed_of("nobody") is None
        assert [m.match_id for m in bracket.matches_for("p1")] == ["WB-R2-M1"]

    def test_every_participant_placed_once(self):
        bracket = generate(make_participants(11), SINGLE)
        placed = Counter(
            pid
            for m in bracket.matches.values()
            for kind, pid in (s.split(":", 1) for s in m.sources)
            if kind == "seed"
        )
        assert sorted(placed) == sorted(f"p{i}" for i in range(1, 12))
        assert set(placed.values()) == {1}

    @given(exponent=st.integers(min_value=2, max_value=6), seed=st.integers(0, 10_000))
    @settings(max_examples=40)
    def test_top_two_seeds_only_meet_in_final(self, exponent, seed):
        count = 2 ** exponent
        bracket = generate(make_participants(count), SINGLE)
        final_id = f"WB-R{exponent}-M1"

        bracket, results = play_out(bracket, random.Random(seed))

        for match_id, winner, loser in results:
            if {winner, loser} == {"p1", "p2"}:
                assert match_id == final_id

    @given(count=st.integers(min_value=2, max_value=40), seed=st.integers(0, 10_000))
    @settings(max_examples=50)
    def test_single_elimination_plays_to_a_champion(self, count, seed):
        bracket = generate(make_participants(count), SINGLE)

        bracket, results = play_out(bracket, random.Random(seed))

        assert len(results) == count - 1
        losers = Counter(loser for _, _, loser in results)
        assert set(losers.values()) == {1}
        assert bracket.champion_id not in losers


class TestDoubleElimination:
    def test_two_participants(self):
        bracket = generate(make_participants(2), DOUBLE, bracket_id="t")

        assert set(bracket.matches) == {"t:WB-R1-M1", "t:GF", "t:GF-RESET"}
        gf = bracket.get_match("t:GF")
        assert gf.sources == ("winner:t:WB-R1-M1", "loser:t:WB-R1-M1")

    def test_losers_bracket_layout_for_eight(self):
        bracket = generate(make_participants(8), DOUBLE)
        losers = [m for m in bracket.matches.values() if m.stage == BracketStage.LOSERS]

        assert Counter(m.round for m in losers) == {1: 2, 2: 2, 3: 1, 4: 1}
        # WB round 2 losers drop in reversed order
        assert bracket.get_match("LB-R2-M1").sources[1] == "loser:WB-R2-M2"
        assert bracket.get_match("LB-R2-M2").sources[1] == "loser:WB-R2-M1"
        assert bracket.get_match("LB-R4-M1").sources[1] == "loser:WB-R3-M1"

    def test_winners_champion_takes_title_without_reset(self):
        bracket = generate(make_participants(2), DOUBLE)
        bracket, _ = advance(bracket, "WB-R1-M1", "p1")
        assert bracket.get_match("GF").slots == ("p1", "p2")

        bracket, playable = advance(bracket, "GF", "p1")

        assert playable == []
        assert bracket.champion_id == "p1"
        assert bracket.get_match("GF-RESET").skipped

    def test_losers_champion_forces_reset(self):
        bracket = generate(make_participants(2), DOUBLE)
        bracket, _ = advance(bracket, "WB-R1-M1", "p1")

        bracket, playable = advance(bracket, "GF", "p2")

        assert not bracket.is_complete
        assert [m.match_id for m in playable] == ["GF-RESET"]
        assert playable[0].slots == ("p1", "p2")
        assert playable[0].stage == BracketStage.GRAND_FINAL_RESET

        bracket, _ = advance(bracket, "GF-RESET", "p2")
        assert bracket.champion_id == "p2"

    @given(count=st.integers(min_value=2, max_value=33), seed=st.integers(0, 10_000))
    @settings(max_examples=60)
    def test_everyone_but_champion_loses_twice(self, count, seed):
        bracket = generate(make_participants(count), DOUBLE)

        bracket, results = play_out(bracket, random.Random(seed))

        losses = Counter(loser for _, _, loser in results)
        champion = bracket.champion_id
        assert losses[champion] <= 1
        for participant in make_participants(count):
            if participant.participant_id != champion:
                assert losses[participant.participant_id] == 2
        reset_played = any(match_id == "GF-RESET" for match_id, _, _ in results)
        assert len(results) == 2 * count - 2 + (1 if reset_played else 0)


class TestAdvance:
    def test_advance_returns_new_bracket(self):
        bracket = generate(make_participants(4), SINGLE)

        updated, playable = advance(bracket, "WB-R1-M1", "p1")

        assert playable == []
        assert bracket.get_match("WB-R1-M1").result_state == ResultState.CONTESTED
        assert updated.get_match("WB-R1-M1").result_state == ResultState.COMMITTED
        assert updated.get_match("WB-R1-M1").loser_id == "p4"
        assert updated.get_match("WB-R2-M1").slots == ("p1", None)

    def test_final_becomes_playable_when_both_semis_done(self):
        bracket = generate(make_participants(4), SINGLE)
        bracket, _ = advance(bracket, "WB-R1-M1", "p1")

        bracket, playable = advance(bracket, "WB-R1-M2", "p3")

        assert [m.match_id for m in playable] == ["WB-R2-M1"]
        assert playable[0].slots == ("p1", "p3")

        bracket, _ = advance(bracket, "WB-R2-M1", "p3")
        assert bracket.is_complete
        assert bracket.champion_id == "p3"

    def test_unknown_match(self):
        bracket = generate(make_participants(4), SINGLE)
        with pytest.raises(UnknownMatchError):
            advance(bracket, "nope", "p1")

    def test_already_resolved(self):
        bracket = generate(make_participants(4), SINGLE)
        bracket, _ = advance(bracket, "WB-R1-M1", "p1")

        with pytest.raises(AlreadyResolvedError):
            advance(bracket, "WB-R1-M1", "p4")

    def test_winner_must_occupy_match(self):
        bracket = generate(make_participants(4), SINGLE)
        with pytest.raises(ParticipantMismatchError):
            advance(bracket, "WB-R1-M1", "p2")

    def test_pending_match_cannot_advance(self):
        bracket = generate(make_participants(4), SINGLE)
        with pytest.raises(ParticipantMismatchError):
            advance(bracket, "WB-R2-M1", "p1")
