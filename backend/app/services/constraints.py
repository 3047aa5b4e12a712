from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

from app.schemas.calendar import time_period
from app.schemas.generator import ObjectiveWeights
from app.services.planning import LAB_ROOM_TYPES, PlanningGraph, PlanningUnit, RoomResource, TimeSlotResource

if TYPE_CHECKING:
    from app.services.chromosome import Chromosome, Gene


HARD_RULES = (
    "unknown_resource",
    "missing_session",
    "room_conflict",
    "faculty_conflict",
    "cohort_conflict",
    "room_type",
    "room_capacity",
    "day_group",
    "parallel_mismatch",
    "faculty_day_off",
)

# Back-to-back meetings closer than this count as consecutive room use.
CONSECUTIVE_GAP_MINUTES = 10

Occupant = tuple[str, bool]


@dataclass(frozen=True)
class FitnessScore:
    hard_violations: int
    soft_penalty: float
    fitness: float
    breakdown: tuple[tuple[str, float], ...] = ()

    @property
    def is_feasible(self) -> bool:
        return self.hard_violations == 0

    @property
    def rank_key(self) -> tuple[int, float]:
        return (self.hard_violations, self.soft_penalty)

    def better_than(self, other: "FitnessScore | None") -> bool:
        return other is None or self.rank_key < other.rank_key

    def as_dict(self) -> dict:
        return {
            "hard_violations": self.hard_violations,
            "soft_penalty": self.soft_penalty,
            "fitness": self.fitness,
            "breakdown": dict(self.breakdown),
        }


def occupant_of(unit: PlanningUnit, is_lab: bool) -> Occupant:
    """Parallel siblings count as a single occupant of their slots."""
    return (unit.parallel_group_id or unit.id, is_lab)


def occupancy_keys(graph: PlanningGraph, unit: PlanningUnit, gene: "Gene") -> list[tuple]:
    slot = graph.slots_by_id[gene.time_slot_id]
    keys: list[tuple] = []
    for slot_id in graph.covered_slot_ids(slot.day_group, gene.start, gene.end):
        keys.append(("room", gene.room_id, slot_id, gene.day))
        for faculty_id in unit.faculty_ids:
            keys.append(("faculty", faculty_id, slot_id, gene.day))
        for cohort in unit.cohort_keys:
            keys.append(("cohort", cohort, slot_id, gene.day))
    return keys


def gene_static_violations(
    graph: PlanningGraph,
    unit: PlanningUnit,
    room: RoomResource,
    slot: TimeSlotResource,
    gene: "Gene",
) -> list[str]:
    """Hard rules that can be judged from one gene alone."""
    violations: list[str] = []
    if gene.is_lab and room.room_type not in LAB_ROOM_TYPES:
        violations.append("room_type")
    if room.capacity < unit.expected_enrollment:
        violations.append("room_capacity")
    if gene.day not in slot.days or slot.day_group not in graph.included_day_groups:
        violations.append("day_group")
    for faculty_id in unit.faculty_ids:
        if graph.availability(faculty_id).blocks(gene.day, gene.start, gene.end):
            violations.append("faculty_day_off")
            break
    return violations


@dataclass
class _Analysis:
    hard: Counter
    soft: dict[str, float]
    violating: set[tuple[str, bool]]


class ConstraintEvaluator:
    """Scores chromosomes against the hard and soft rules of one planning graph.

    Evaluation is pure: the same chromosome always yields the same score and
    nothing is cached on the instance, so instances can be shipped to worker
    processes.
    """

    def __init__(
        self,
        graph: PlanningGraph,
        weights: ObjectiveWeights | None = None,
        *,
        hard_penalty: float = 10_000.0,
    ) -> None:
        self.graph = graph
        self.weights = weights or ObjectiveWeights()
        self.hard_penalty = hard_penalty

    def evaluate(self, chromosome: "Chromosome") -> FitnessScore:
        analysis = self._analyse(chromosome)
        hard_total = sum(analysis.hard.values())
        soft_total = round(sum(analysis.soft.values()), 6)
        breakdown = {name: float(count) for name, count in analysis.hard.items() if count}
        breakdown.update({name: round(value, 6) for name, value in analysis.soft.items() if value})
        penalty = (hard_total * self.hard_penalty) + soft_total
        return FitnessScore(
            hard_violations=hard_total,
            soft_penalty=soft_total,
            # Subtracting from 0.0 keeps a clean score at 0.0 rather than -0.0.
            fitness=0.0 - penalty,
            breakdown=tuple(sorted(breakdown.items())),
        )

    def violating_sessions(self, chromosome: "Chromosome") -> set[tuple[str, bool]]:
        """Sessions (unit id, is_lab) implicated in at least one hard violation."""
        return self._analyse(chromosome, with_soft=False).violating

    def _analyse(self, chromosome: "Chromosome", *, with_soft: bool = True) -> _Analysis:
        graph = self.graph
        hard: Counter = Counter()
        violating: set[tuple[str, bool]] = set()
        occupancy: dict[tuple, dict[Occupant, list[tuple[str, bool]]]] = defaultdict(dict)
        placements: dict[tuple[str, bool], dict[str, set[tuple]]] = defaultdict(dict)
        session_genes: dict[tuple[str, bool], list["Gene"]] = defaultdict(list)
        resolved: list[tuple["Gene", PlanningUnit, RoomResource, TimeSlotResource]] = []

        for gene in chromosome:
            unit = graph.units_by_id.get(gene.unit_id)
            room = graph.rooms_by_id.get(gene.room_id)
            slot = graph.slots_by_id.get(gene.time_slot_id)
            if unit is None or room is None or slot is None:
                hard["unknown_resource"] += 1
                continue
            session = (unit.id, gene.is_lab)
            session_genes[session].append(gene)
            resolved.append((gene, unit, room, slot))

            for rule in gene_static_violations(graph, unit, room, slot, gene):
                hard[rule] += 1
                violating.add(session)

            occupant = occupant_of(unit, gene.is_lab)
            for key in occupancy_keys(graph, unit, gene):
                occupancy[key].setdefault(occupant, []).append(session)

            if unit.parallel_group_id:
                placements[(unit.parallel_group_id, gene.is_lab)].setdefault(unit.id, set()).add(
                    (gene.room_id, gene.time_slot_id, gene.day, gene.start, gene.end)
                )

        for key, occupants in occupancy.items():
            count = len(occupants)
            if count < 2:
                continue
            hard[f"{key[0]}_conflict"] += count * (count - 1) // 2
            for sessions in occupants.values():
                violating.update(sessions)

        for unit in graph.units:
            for requirement in unit.sessions:
                session = (unit.id, requirement.is_lab)
                genes = session_genes.get(session)
                if not genes:
                    hard["missing_session"] += 1
                    violating.add(session)
                    continue
                slot = graph.slots_by_id[genes[0].time_slot_id]
                if len(genes) != len(slot.days):
                    hard["missing_session"] += 1
                    violating.add(session)

        for group_id, member_ids in graph.parallel_groups.items():
            for is_lab in (False, True):
                by_unit = placements.get((group_id, is_lab), {})
                if not by_unit:
                    continue
                reference = by_unit.get(member_ids[0], set())
                for member_id in member_ids[1:]:
                    mismatch = len(reference ^ by_unit.get(member_id, set()))
                    if mismatch:
                        hard["parallel_mismatch"] += mismatch
                        violating.add((member_id, is_lab))

        soft: dict[str, float] = {}
        if with_soft:
            soft = self._soft_penalties(resolved)
        return _Analysis(hard=hard, soft=soft, violating=violating)

    def _soft_penalties(
        self,
        resolved: list[tuple["Gene", PlanningUnit, RoomResource, TimeSlotResource]],
    ) -> dict[str, float]:
        graph = self.graph
        weights = self.weights
        soft: dict[str, float] = defaultdict(float)

        faculty_days: dict[tuple[str, str], set[tuple[int, int]]] = defaultdict(set)
        room_days: dict[tuple[str, str], set[tuple[int, int, Occupant]]] = defaultdict(set)
        unit_days: dict[tuple[str, str], dict[bool, list[tuple[int, int]]]] = defaultdict(dict)
        subject_slots: dict[tuple, set[str]] = defaultdict(set)
        preferred_misses: set[tuple[str, bool]] = set()

        for gene, unit, room, slot in resolved:
            availability = graph.availability(unit.faculty_id)
            preferred_period = availability.preferred_time_period
            if preferred_period and time_period(gene.start) != preferred_period:
                soft["time_period_mismatch"] += weights.time_period_mismatch

            soft["room_priority"] += graph.room_rank.get(room.id, 0.0) * weights.room_priority
            soft["slot_priority"] += graph.slot_rank.get(slot.id, 0.0) * weights.slot_priority

            preferred_room = unit.preferred_room_for(gene.is_lab)
            if preferred_room and gene.room_id != preferred_room:
                preferred_misses.add((unit.id, gene.is_lab))
            if unit.allowed_room_ids and gene.room_id not in unit.allowed_room_ids:
                soft["room_rule"] += weights.room_rule

            for faculty_id in unit.faculty_ids:
                faculty_days[(faculty_id, gene.day)].add((gene.start, gene.end))
            room_days[(room.id, gene.day)].add((gene.start, gene.end, occupant_of(unit, gene.is_lab)))
            unit_days[(unit.id, gene.day)].setdefault(gene.is_lab, []).append((gene.start, gene.end))
            for slot_id in graph.covered_slot_ids(slot.day_group, gene.start, gene.end):
                subject_slots[(unit.subject_id, slot_id, gene.day)].add(unit.id)

        soft["preferred_room"] += len(preferred_misses) * weights.preferred_room

        for intervals in faculty_days.values():
            soft["faculty_gaps"] += _idle_hours(intervals) * weights.faculty_gap_per_hour

        for (room_id, _day), entries in room_days.items():
            intervals = {(start, end) for start, end, _ in entries}
            soft["room_gaps"] += _idle_hours(intervals) * weights.room_gap_per_hour
            room = graph.rooms_by_id[room_id]
            if room.max_daily_hours:
                used_hours = sum(end - start for start, end in intervals) / 60.0
                overload = used_hours - room.max_daily_hours
                if overload > 0:
                    soft["room_daily_overload"] += overload * weights.room_daily_overload_per_hour
            if not room.allow_consecutive:
                ordered = sorted(intervals)
                for previous, current in zip(ordered, ordered[1:]):
                    if 0 <= current[0] - previous[1] <= CONSECUTIVE_GAP_MINUTES:
                        soft["consecutive_room_use"] += weights.consecutive_room_use

        for by_kind in unit_days.values():
            lectures = by_kind.get(False, [])
            labs = by_kind.get(True, [])
            for lecture_start, lecture_end in lectures:
                for lab_start, lab_end in labs:
                    if lab_start != lecture_end and lecture_start != lab_end:
                        soft["split_session"] += weights.split_session

        for unit_ids in subject_slots.values():
            count = len(unit_ids)
            if count > 1:
                soft["block_overlap"] += (count * (count - 1) // 2) * weights.block_overlap

        return dict(soft)


def _idle_hours(intervals: Iterable[tuple[int, int]]) -> float:
    ordered = sorted(intervals)
    idle = 0
    latest_end = None
    for start, end in ordered:
        if latest_end is not None and start > latest_end:
            idle += start - latest_end
        latest_end = end if latest_end is None else max(latest_end, end)
    return idle / 60.0
