"""
Bracket Engine.

Builds and advances elimination brackets.

Generation
─────────────────────────────────────────────────────────────────

1. Seeding: participants sorted by rating (descending), ties keep input order.
2. Placement: standard bracket order, built by doubling
   [1, 2] -> [1, 4, 2, 3] -> [1, 8, 4, 5, 2, 7, 3, 6] ...
   so seeds 1 and 2 sit in opposite halves and can only meet in the final.
3. Byes: the bracket is padded to the next power of two. Padding seeds are
   byes and land against the top seeds. A match with a bye side is never
   created; whatever would have come out of it is wired straight into the
   next slot. Single elimination therefore has exactly n - 1 matches.
4. Double elimination adds a losers bracket (LB) of 2(R - 1) rounds:
   - LB round 1: losers of WB round 1, paired in order
   - LB round 2k: winners of LB round 2k-1 against losers of WB round k+1,
     the drop order reversed on odd k to delay rematches
   - LB round 2k+1: winners of LB round 2k paired in order
   The LB champion meets the WB champion in the grand final. If the LB
   champion wins it, a reset match decides the title.

Advancement
─────────────────────────────────────────────────────────────────

advance() is the only mutator. It returns a new Bracket plus the matches
that just became playable; the input bracket is left untouched, so a
rejected advance mutates nothing.

─────────────────────────────────────────────────────────────────
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from arenacore.utils.errors import (
    AlreadyResolvedError,
    InsufficientParticipantsError,
    InvalidConfigurationError,
    ParticipantMismatchError,
    UnknownMatchError,
)

from .models import BracketFormat, Participant, ResultState


class BracketStage(Enum):
    """Which part of the bracket a match belongs to."""

    WINNERS = "winners"
    LOSERS = "losers"
    GRAND_FINAL = "grand_final"
    GRAND_FINAL_RESET = "grand_final_reset"


@dataclass(frozen=True)
class SlotPointer:
    """Destination of a match outcome: slot 0 or 1 of another match."""

    match_id: str
    slot: int


@dataclass(frozen=True)
class Seed:
    """A participant's seeding position."""

    seed: int
    participant_id: str
    rating: float


@dataclass(frozen=True)
class BracketMatch:
    """
    One match slot in the bracket tree.

    ``sources`` describes where each slot is filled from ("seed:3",
    "winner:<match_id>", "loser:<match_id>") and never changes; ``slots``
    holds the occupants as they resolve.
    """

    match_id: str
    stage: BracketStage
    round: int
    position: int
    depth: int
    sources: Tuple[str, str]
    slots: Tuple[Optional[str], Optional[str]] = (None, None)
    winner_to: Optional[SlotPointer] = None
    loser_to: Optional[SlotPointer] = None
    result_state: ResultState = ResultState.UNSET
    winner_id: Optional[str] = None
    loser_id: Optional[str] = None
    skipped: bool = False

    @property
    def occupants(self) -> Tuple[str, ...]:
        return tuple(pid for pid in self.slots if pid is not None)

    @property
    def is_playable(self) -> bool:
        return self.result_state == ResultState.CONTESTED

    @property
    def is_committed(self) -> bool:
        return self.result_state == ResultState.COMMITTED

    def opponent_of(self, participant_id: str) -> Optional[str]:
        if participant_id not in self.slots:
            return None
        other = self.slots[1] if self.slots[0] == participant_id else self.slots[0]
        return other

    def with_occupant(self, slot: int, participant_id: str) -> "BracketMatch":
        slots = list(self.slots)
        slots[slot] = participant_id
        state = self.result_state
        if slots[0] is not None and slots[1] is not None:
            state = ResultState.CONTESTED
        return replace(self, slots=(slots[0], slots[1]), result_state=state)

    def committed(self, winner_id: str, loser_id: str) -> "BracketMatch":
        return replace(
            self,
            result_state=ResultState.COMMITTED,
            winner_id=winner_id,
            loser_id=loser_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_id": self.match_id,
            "stage": self.stage.value,
            "round": self.round,
            "position": self.position,
            "depth": self.depth,
            "sources": list(self.sources),
            "slots": list(self.slots),
            "result_state": self.result_state.value,
            "winner_id": self.winner_id,
            "loser_id": self.loser_id,
            "skipped": self.skipped,
        }


@dataclass(frozen=True)
class Bracket:
    """
    Complete bracket - immutable.

    ``matches`` is ordered by stage and round so iteration is deterministic.
    """

    bracket_id: str
    format: BracketFormat
    size: int
    seeds: Tuple[Seed, ...]
    matches: Dict[str, BracketMatch]
    champion_id: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.champion_id is not None

    @property
    def match_count(self) -> int:
        """Matches that are (or may become) playable; a skipped reset still counts."""
        return len(self.matches)

    def get_match(self, match_id: str) -> Optional[BracketMatch]:
        return self.matches.get(match_id)

    def playable_matches(self) -> List[BracketMatch]:
        return [m for m in self.matches.values() if m.is_playable]

    def matches_for(self, participant_id: str) -> List[BracketMatch]:
        return [m for m in self.matches.values() if participant_id in m.slots]

    def seed_of(self, participant_id: str) -> Optional[int]:
        for seed in self.seeds:
            if seed.participant_id == participant_id:
                return seed.seed
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bracket_id": self.bracket_id,
            "format": self.format.value,
            "size": self.size,
            "seeds": [
                {"seed": s.seed, "participant_id": s.participant_id, "rating": s.rating}
                for s in self.seeds
            ],
            "matches": [m.to_dict() for m in self.matches.values()],
            "champion_id": self.champion_id,
        }


# =============================================================================
# Generation
# =============================================================================

# Slot source during generation: ("seed", participant_id | None),
# ("winner", match_id) or ("loser", match_id). A seed of None is a bye.
_Source = Tuple[str, Optional[str]]
_BYE: _Source = ("seed", None)


@dataclass
class _Draft:
    match_id: str
    stage: BracketStage
    round: int
    position: int
    depth: int
    sources: List[_Source]


def seeding_order(size: int) -> List[int]:
    """
    Seed numbers in bracket position order for a power-of-two size.

    Each doubling pairs every seed s with (2 * len + 1 - s), which keeps the
    top two seeds in opposite halves at every level.
    """
    if size < 2 or size & (size - 1):
        raise ValueError(f"bracket size must be a power of two >= 2, got {size}")
    order = [1, 2]
    while len(order) < size:
        total = len(order) * 2 + 1
        order = [s for seed in order for s in (seed, total - seed)]
    return order


def seed_participants(participants: Sequence[Participant]) -> List[Seed]:
    """Order by rating descending; ties keep their input order."""
    ranked = sorted(
        enumerate(participants),
        key=lambda item: (-item[1].rating, item[0]),
    )
    return [
        Seed(seed=i + 1, participant_id=p.participant_id, rating=p.rating)
        for i, (_, p) in enumerate(ranked)
    ]


def _bracket_size(count: int) -> int:
    return 1 << (count - 1).bit_length()


def generate(
    participants: Sequence[Participant],
    fmt: BracketFormat,
    bracket_id: str = "",
) -> Bracket:
    """
    Build a bracket for the given participants.

    Args:
        participants: Entrants; ratings drive seeding
        fmt: Single or double elimination
        bracket_id: Prefix for match ids (usually the tournament id)

    Raises:
        InsufficientParticipantsError: fewer than two participants
        InvalidConfigurationError: duplicate participant ids or unknown format
    """
    if len(participants) < 2:
        raise InsufficientParticipantsError(current=len(participants))
    ids = [p.participant_id for p in participants]
    if len(set(ids)) != len(ids):
        raise InvalidConfigurationError("duplicate participant ids")
    if not isinstance(fmt, BracketFormat):
        raise InvalidConfigurationError("unsupported format", details={"format": str(fmt)})

    seeds = seed_participants(participants)
    size = _bracket_size(len(seeds))
    by_seed = {s.seed: s.participant_id for s in seeds}
    prefix = f"{bracket_id}:" if bracket_id else ""

    drafts = _draft_winners(size, by_seed, prefix, fmt)
    if fmt == BracketFormat.DOUBLE_ELIMINATION:
        drafts.extend(_draft_losers_and_finals(size, prefix))

    matches = _collapse(drafts)
    return Bracket(
        bracket_id=bracket_id,
        format=fmt,
        size=size,
        seeds=tuple(seeds),
        matches=matches,
    )


def _wb_id(prefix: str, rnd: int, pos: int) -> str:
    return f"{prefix}WB-R{rnd}-M{pos}"


def _lb_id(prefix: str, rnd: int, pos: int) -> str:
    return f"{prefix}LB-R{rnd}-M{pos}"


def _rounds(size: int) -> int:
    return size.bit_length() - 1


def _draft_winners(
    size: int,
    by_seed: Dict[int, str],
    prefix: str,
    fmt: BracketFormat,
) -> List[_Draft]:
    rounds = _rounds(size)
    # In double elimination the grand final sits above the winners final
    offset = 1 if fmt == BracketFormat.DOUBLE_ELIMINATION else 0
    order = seeding_order(size)
    drafts: List[_Draft] = []

    for pos in range(1, size // 2 + 1):
        top, bottom = order[2 * pos - 2], order[2 * pos - 1]
        drafts.append(
            _Draft(
                match_id=_wb_id(prefix, 1, pos),
                stage=BracketStage.WINNERS,
                round=1,
                position=pos,
                depth=rounds - 1 + offset,
                sources=[("seed", by_seed.get(top)), ("seed", by_seed.get(bottom))],
            )
        )

    for rnd in range(2, rounds + 1):
        for pos in range(1, (size >> rnd) + 1):
            drafts.append(
                _Draft(
                    match_id=_wb_id(prefix, rnd, pos),
                    stage=BracketStage.WINNERS,
                    round=rnd,
                    position=pos,
                    depth=rounds - rnd + offset,
                    sources=[
                        ("winner", _wb_id(prefix, rnd - 1, 2 * pos - 1)),
                        ("winner", _wb_id(prefix, rnd - 1, 2 * pos)),
                    ],
                )
            )
    return drafts


def _draft_losers_and_finals(size: int, prefix: str) -> List[_Draft]:
    rounds = _rounds(size)
    lb_rounds = 2 * (rounds - 1)
    drafts: List[_Draft] = []

    def depth(lb_round: int) -> int:
        return lb_rounds - lb_round + 1

    if lb_rounds:
        for pos in range(1, size // 4 + 1):
            drafts.append(
                _Draft(
                    match_id=_lb_id(prefix, 1, pos),
                    stage=BracketStage.LOSERS,
                    round=1,
                    position=pos,
                    depth=depth(1),
                    sources=[
                        ("loser", _wb_id(prefix, 1, 2 * pos - 1)),
                        ("loser", _wb_id(prefix, 1, 2 * pos)),
                    ],
                )
            )

    for k in range(1, rounds):
        count = size >> (k + 1)
        even_round = 2 * k
        for pos in range(1, count + 1):
            dropped = count + 1 - pos if k % 2 == 1 else pos
            drafts.append(
                _Draft(
                    match_id=_lb_id(prefix, even_round, pos),
                    stage=BracketStage.LOSERS,
                    round=even_round,
                    position=pos,
                    depth=depth(even_round),
                    sources=[
                        ("winner", _lb_id(prefix, even_round - 1, pos)),
                        ("loser", _wb_id(prefix, k + 1, dropped)),
                    ],
                )
            )
        if k < rounds - 1:
            odd_round = even_round + 1
            for pos in range(1, (count // 2) + 1):
                drafts.append(
                    _Draft(
                        match_id=_lb_id(prefix, odd_round, pos),
                        stage=BracketStage.LOSERS,
                        round=odd_round,
                        position=pos,
                        depth=depth(odd_round),
                        sources=[
                            ("winner", _lb_id(prefix, even_round, 2 * pos - 1)),
                            ("winner", _lb_id(prefix, even_round, 2 * pos)),
                        ],
                    )
                )

    if lb_rounds:
        lb_champion: _Source = ("winner", _lb_id(prefix, lb_rounds, 1))
    else:
        # Two-participant bracket: the winners-final loser is the LB champion
        lb_champion = ("loser", _wb_id(prefix, rounds, 1))

    grand_final_id = f"{prefix}GF"
    drafts.append(
        _Draft(
            match_id=grand_final_id,
            stage=BracketStage.GRAND_FINAL,
            round=1,
            position=1,
            depth=0,
            sources=[("winner", _wb_id(prefix, rounds, 1)), lb_champion],
        )
    )
    drafts.append(
        _Draft(
            match_id=f"{prefix}GF-RESET",
            stage=BracketStage.GRAND_FINAL_RESET,
            round=2,
            position=1,
            depth=0,
            sources=[("reset", grand_final_id), ("reset", grand_final_id)],
        )
    )
    return drafts


def _collapse(drafts: List[_Draft]) -> Dict[str, BracketMatch]:
    """
    Remove bye matches and wire the surviving matches together.

    Drafts are processed in creation order, which is topological: every
    source refers to an earlier draft. A draft with a bye side becomes a
    pass-through of its other side; its loser is a bye.
    """
    passthrough: Dict[str, _Source] = {}
    real: List[Tuple[_Draft, List[_Source]]] = []

    def resolve(source: _Source) -> _Source:
        kind, ref = source
        if kind == "winner" and ref in passthrough:
            return passthrough[ref]
        if kind == "loser" and ref in passthrough:
            return _BYE
        return source

    for draft in drafts:
        if draft.stage == BracketStage.GRAND_FINAL_RESET:
            real.append((draft, list(draft.sources)))
            continue
        resolved = [resolve(s) for s in draft.sources]
        if _BYE in resolved:
            other = resolved[1] if resolved[0] == _BYE else resolved[0]
            passthrough[draft.match_id] = other
            continue
        real.append((draft, resolved))

    winner_to: Dict[str, SlotPointer] = {}
    loser_to: Dict[str, SlotPointer] = {}
    for draft, sources in real:
        for slot, (kind, ref) in enumerate(sources):
            if kind == "winner":
                winner_to[ref] = SlotPointer(draft.match_id, slot)
            elif kind == "loser":
                loser_to[ref] = SlotPointer(draft.match_id, slot)

    matches: Dict[str, BracketMatch] = {}
    for draft, sources in real:
        slots: List[Optional[str]] = [None, None]
        labels: List[str] = []
        for slot, (kind, ref) in enumerate(sources):
            if kind == "seed":
                slots[slot] = ref
            labels.append(f"{kind}:{ref}")
        state = ResultState.UNSET
        if slots[0] is not None and slots[1] is not None:
            state = ResultState.CONTESTED
        matches[draft.match_id] = BracketMatch(
            match_id=draft.match_id,
            stage=draft.stage,
            round=draft.round,
            position=draft.position,
            depth=draft.depth,
            sources=(labels[0], labels[1]),
            slots=(slots[0], slots[1]),
            winner_to=winner_to.get(draft.match_id),
            loser_to=loser_to.get(draft.match_id),
            result_state=state,
        )
    return matches


# =============================================================================
# Advancement
# =============================================================================


def advance(
    bracket: Bracket,
    match_id: str,
    winner_id: str,
) -> Tuple[Bracket, List[BracketMatch]]:
    """
    Resolve a committed match into the bracket.

    Places the winner (and, in double elimination, the loser) into their next
    slots and reports which matches became playable.

    Raises:
        UnknownMatchError: match does not belong to this bracket
        AlreadyResolvedError: match already decided, or a target slot is filled
        ParticipantMismatchError: match not yet playable or winner not an occupant
    """
    match = bracket.matches.get(match_id)
    if match is None:
        raise UnknownMatchError(match_id, bracket.bracket_id)
    if match.is_committed or match.skipped:
        raise AlreadyResolvedError(match_id)
    if not match.is_playable or winner_id not in match.slots:
        raise ParticipantMismatchError(match_id, [winner_id])

    loser_id = match.opponent_of(winner_id)
    matches = dict(bracket.matches)
    matches[match_id] = match.committed(winner_id, loser_id)
    newly_playable: List[BracketMatch] = []
    champion_id: Optional[str] = None

    def place(pointer: SlotPointer, participant_id: str) -> None:
        target = matches[pointer.match_id]
        if target.slots[pointer.slot] is not None:
            raise AlreadyResolvedError(target.match_id, pointer.slot)
        updated = target.with_occupant(pointer.slot, participant_id)
        matches[target.match_id] = updated
        if updated.is_playable:
            newly_playable.append(updated)

    if match.stage == BracketStage.GRAND_FINAL:
        reset_id = _reset_id(match_id)
        reset = matches[reset_id]
        if winner_id == match.slots[0]:
            # Winners-bracket champion never lost: no reset needed
            champion_id = winner_id
            matches[reset_id] = replace(reset, skipped=True)
        else:
            if reset.occupants:
                raise AlreadyResolvedError(reset_id)
            place(SlotPointer(reset_id, 0), match.slots[0])
            place(SlotPointer(reset_id, 1), match.slots[1])
    elif match.stage == BracketStage.GRAND_FINAL_RESET:
        champion_id = winner_id
    else:
        if match.winner_to is not None:
            place(match.winner_to, winner_id)
        else:
            champion_id = winner_id
        if match.loser_to is not None:
            place(match.loser_to, loser_id)

    updated_bracket = replace(bracket, matches=matches, champion_id=champion_id)
    return updated_bracket, newly_playable


def _reset_id(grand_final_id: str) -> str:
    return f"{grand_final_id}-RESET"
