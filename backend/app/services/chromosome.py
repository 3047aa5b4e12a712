from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, replace
import random

from app.schemas.calendar import WEEK_DAYS, convert_meeting_minutes, is_paired_group, per_meeting_minutes
from app.services.constraints import ConstraintEvaluator, gene_static_violations, occupancy_keys, occupant_of
from app.services.planning import (
    PlanningGraph,
    PlanningUnit,
    RoomResource,
    SessionKey,
    TimeSlotResource,
    fits_in_day,
)


@dataclass(frozen=True)
class Gene:
    unit_id: str
    room_id: str
    time_slot_id: str
    day: str
    is_lab: bool
    start: int
    end: int
    session_group_id: str

    @property
    def session_key(self) -> SessionKey:
        return (self.unit_id, self.is_lab)

    @property
    def duration(self) -> int:
        return self.end - self.start


Chromosome = tuple[Gene, ...]

_DAY_ORDER = {day: index for index, day in enumerate(WEEK_DAYS)}


def session_group_id(unit_id: str, is_lab: bool) -> str:
    return f"{unit_id}:{'lab' if is_lab else 'lecture'}"


def normalize(genes) -> Chromosome:
    """Canonical gene order so equal timetables compare and hash equal."""
    return tuple(sorted(genes, key=lambda gene: (gene.unit_id, gene.is_lab, _DAY_ORDER[gene.day], gene.start)))


def split_sessions(chromosome: Chromosome) -> dict[SessionKey, tuple[Gene, ...]]:
    sessions: dict[SessionKey, list[Gene]] = defaultdict(list)
    for gene in chromosome:
        sessions[gene.session_key].append(gene)
    return {key: tuple(genes) for key, genes in sessions.items()}


def assemble(sessions: dict[SessionKey, tuple[Gene, ...]]) -> Chromosome:
    return normalize(gene for genes in sessions.values() for gene in genes)


class ConflictIndex:
    """Occupant counts per (resource, slot, day), updated as sessions move."""

    def __init__(self, graph: PlanningGraph) -> None:
        self.graph = graph
        self._occupants: dict[tuple, Counter] = defaultdict(Counter)

    def _entries(self, genes):
        for gene in genes:
            unit = self.graph.units_by_id[gene.unit_id]
            occupant = occupant_of(unit, gene.is_lab)
            for key in occupancy_keys(self.graph, unit, gene):
                yield key, occupant

    def add(self, genes) -> None:
        for key, occupant in self._entries(genes):
            self._occupants[key][occupant] += 1

    def remove(self, genes) -> None:
        for key, occupant in self._entries(genes):
            counter = self._occupants.get(key)
            if counter is None:
                continue
            counter[occupant] -= 1
            if counter[occupant] <= 0:
                del counter[occupant]
            if not counter:
                del self._occupants[key]

    def clashes(self, genes) -> int:
        total = 0
        for key, occupant in self._entries(genes):
            counter = self._occupants.get(key)
            if counter:
                total += sum(1 for other in counter if other != occupant)
        return total


def day_group_caps(graph: PlanningGraph) -> dict[str, int]:
    """Seeding load ceiling per day group.

    MW and TTH take up to 80% of their room-slot cells (at least 10 sessions),
    single-day groups up to 60% (at least 5).
    """
    room_count = len(graph.rooms)
    caps: dict[str, int] = {}
    for group, slots in graph.slots_by_group.items():
        cells = len(slots) * room_count
        if is_paired_group(group):
            caps[group] = max(10, cells * 8 // 10)
        else:
            caps[group] = max(5, cells * 6 // 10)
    return caps


class ChromosomeOperators:
    """Seeding, crossover, mutation and repair over one planning graph.

    Only leader units of a parallel group are searched; followers are copied
    from their leader by ``sync_parallel``.
    """

    def __init__(self, graph: PlanningGraph, evaluator: ConstraintEvaluator, rng: random.Random) -> None:
        self.graph = graph
        self.evaluator = evaluator
        self.random = rng
        self.day_group_caps = day_group_caps(graph)

    # Placement helpers

    def place_session(
        self,
        unit: PlanningUnit,
        is_lab: bool,
        room: RoomResource,
        slot: TimeSlotResource,
        meeting_minutes: int,
    ) -> tuple[Gene, ...] | None:
        if not fits_in_day(slot.start, meeting_minutes):
            return None
        group_id = session_group_id(unit.id, is_lab)
        return tuple(
            Gene(
                unit_id=unit.id,
                room_id=room.id,
                time_slot_id=slot.id,
                day=day,
                is_lab=is_lab,
                start=slot.start,
                end=slot.start + meeting_minutes,
                session_group_id=group_id,
            )
            for day in slot.days
        )

    def move_session(
        self,
        genes: tuple[Gene, ...],
        room: RoomResource,
        slot: TimeSlotResource,
    ) -> tuple[Gene, ...] | None:
        """Reassign a session, converting its meeting length between day groups."""
        first = genes[0]
        current_group = self.graph.slots_by_id[first.time_slot_id].day_group
        minutes = convert_meeting_minutes(first.duration, current_group, slot.day_group)
        unit = self.graph.units_by_id[first.unit_id]
        return self.place_session(unit, first.is_lab, room, slot, minutes)

    def _expand(self, genes: tuple[Gene, ...]) -> list[Gene]:
        expanded = list(genes)
        for follower_id in self.graph.followers_of(genes[0].unit_id):
            expanded.extend(self._copy_to(genes, follower_id))
        return expanded

    @staticmethod
    def _copy_to(genes: tuple[Gene, ...], unit_id: str) -> tuple[Gene, ...]:
        group_id = session_group_id(unit_id, genes[0].is_lab)
        return tuple(replace(gene, unit_id=unit_id, session_group_id=group_id) for gene in genes)

    def _static_cost(self, unit: PlanningUnit, genes) -> int:
        graph = self.graph
        total = 0
        for gene in genes:
            owner = graph.units_by_id[gene.unit_id] if gene.unit_id != unit.id else unit
            total += len(
                gene_static_violations(
                    graph,
                    owner,
                    graph.rooms_by_id[gene.room_id],
                    graph.slots_by_id[gene.time_slot_id],
                    gene,
                )
            )
        return total

    def _options(
        self,
        unit: PlanningUnit,
        is_lab: bool,
        *,
        randomized: bool,
        group_load: Counter | None = None,
    ) -> list[tuple[RoomResource, TimeSlotResource]]:
        rooms = list(self.graph.candidate_rooms(unit, is_lab))
        slots = list(self.graph.time_slots)
        if randomized:
            self.random.shuffle(rooms)
            self.random.shuffle(slots)
        if group_load is not None:
            slots = self._balanced_slots(slots, group_load)
        return [(room, slot) for slot in slots for room in rooms]

    def _balanced_slots(self, slots: list[TimeSlotResource], group_load: Counter) -> list[TimeSlotResource]:
        """Slots of day groups still under their cap first, paired groups ahead of single days.

        Slots of full groups go last, so they are only taken when nothing earlier is free.
        """
        caps = self.day_group_caps

        def order(slot: TimeSlotResource) -> tuple[bool, bool]:
            return group_load[slot.day_group] >= caps.get(slot.day_group, 0), not is_paired_group(slot.day_group)

        return sorted(slots, key=order)

    def _best_placement(
        self,
        index: ConflictIndex,
        unit: PlanningUnit,
        is_lab: bool,
        *,
        weekly_minutes: int | None = None,
        current: tuple[Gene, ...] | None = None,
        randomized: bool = False,
        group_load: Counter | None = None,
    ) -> tuple[tuple[Gene, ...] | None, int]:
        best: tuple[Gene, ...] | None = None
        best_cost = 0
        for room, slot in self._options(unit, is_lab, randomized=randomized, group_load=group_load):
            if current is not None:
                genes = self.move_session(current, room, slot)
            else:
                genes = self.place_session(
                    unit, is_lab, room, slot, per_meeting_minutes(weekly_minutes or 0, slot.day_group)
                )
            if genes is None:
                continue
            expanded = self._expand(genes)
            cost = index.clashes(expanded) + self._static_cost(unit, expanded)
            if best is None or cost < best_cost:
                best, best_cost = genes, cost
                if cost == 0:
                    break
        return best, best_cost

    # Operators

    def seed(self, *, randomized: bool = True) -> Chromosome:
        """Greedy constructive timetable: first conflict-free option per session.

        Sessions are spread across day groups: a group stops taking new sessions
        once it reaches its cap from ``day_group_caps``.
        """
        index = ConflictIndex(self.graph)
        group_load: Counter = Counter()
        sessions: dict[SessionKey, tuple[Gene, ...]] = {}
        units = list(self.graph.leader_units)
        if randomized:
            self.random.shuffle(units)
        else:
            # Most constrained first: labs and large enrollments.
            units.sort(key=lambda unit: (-unit.lab_hours, -unit.expected_enrollment, unit.id))

        for unit in units:
            for requirement in unit.sessions:
                genes, _cost = self._best_placement(
                    index,
                    unit,
                    requirement.is_lab,
                    weekly_minutes=requirement.weekly_minutes,
                    randomized=randomized,
                    group_load=group_load,
                )
                if genes is None:
                    continue
                index.add(self._expand(genes))
                group_load[self.graph.slots_by_id[genes[0].time_slot_id].day_group] += 1
                sessions[(unit.id, requirement.is_lab)] = genes
        return self.sync_parallel(assemble(sessions))

    def sync_parallel(self, chromosome: Chromosome) -> Chromosome:
        """Copy each parallel leader's placement onto its followers."""
        if not self.graph.parallel_groups:
            return chromosome
        sessions = split_sessions(chromosome)
        synced = {key: genes for key, genes in sessions.items() if not self.graph.is_follower(key[0])}
        for (unit_id, is_lab), genes in list(synced.items()):
            for follower_id in self.graph.followers_of(unit_id):
                synced[(follower_id, is_lab)] = self._copy_to(genes, follower_id)
        return assemble(synced)

    def crossover(self, parent_a: Chromosome, parent_b: Chromosome) -> Chromosome:
        """Unit-level uniform crossover; a unit's lecture and lab travel together."""
        sessions_a = split_sessions(parent_a)
        sessions_b = split_sessions(parent_b)
        child: dict[SessionKey, tuple[Gene, ...]] = {}
        for unit in self.graph.leader_units:
            donor, fallback = (sessions_b, sessions_a) if self.random.random() < 0.5 else (sessions_a, sessions_b)
            for requirement in unit.sessions:
                key = (unit.id, requirement.is_lab)
                genes = donor.get(key) or fallback.get(key)
                if genes:
                    child[key] = genes
        return self.sync_parallel(assemble(child))

    def mutate(self, chromosome: Chromosome, mutation_rate: float) -> Chromosome:
        sessions = split_sessions(chromosome)
        changed = False
        for key in sorted(sessions):
            if self.graph.is_follower(key[0]):
                continue
            if self.random.random() >= mutation_rate:
                continue
            moved = self._mutate_session(sessions[key])
            if moved is not None:
                sessions[key] = moved
                changed = True
        if not changed:
            return chromosome
        return self.sync_parallel(assemble(sessions))

    def _mutate_session(self, genes: tuple[Gene, ...]) -> tuple[Gene, ...] | None:
        graph = self.graph
        first = genes[0]
        unit = graph.units_by_id[first.unit_id]
        room = graph.rooms_by_id[first.room_id]
        slot = graph.slots_by_id[first.time_slot_id]

        other_rooms = [item for item in graph.candidate_rooms(unit, first.is_lab) if item.id != room.id]
        same_group = [item for item in graph.slots_by_group.get(slot.day_group, ()) if item.id != slot.id]
        other_groups = [
            group
            for group in graph.included_day_groups
            if group != slot.day_group and graph.slots_by_group.get(group)
        ]

        kinds: list[str] = []
        if other_rooms:
            kinds.append("room")
        if same_group:
            kinds.append("timeslot")
        if other_groups:
            kinds.append("day")
        if not kinds:
            return None

        kind = self.random.choice(kinds)
        if kind == "room":
            return self.move_session(genes, self.random.choice(other_rooms), slot)
        if kind == "timeslot":
            return self.move_session(genes, room, self.random.choice(same_group))
        target_group = self.random.choice(other_groups)
        return self.move_session(genes, room, self.random.choice(graph.slots_by_group[target_group]))

    def repair(self, chromosome: Chromosome, *, max_passes: int = 2) -> Chromosome:
        """Move sessions implicated in hard violations to their least violating option."""
        graph = self.graph
        violating = self.evaluator.violating_sessions(chromosome)
        if not violating:
            return chromosome

        sessions = split_sessions(self.sync_parallel(chromosome))
        index = ConflictIndex(graph)
        for genes in sessions.values():
            index.add(genes)

        for _ in range(max_passes):
            targets = sorted({(graph.leader_id(unit_id), is_lab) for unit_id, is_lab in violating})
            improved = False
            for key in targets:
                genes = sessions.get(key)
                unit = graph.units_by_id[key[0]]
                if genes is None:
                    requirement = next((item for item in unit.sessions if item.is_lab == key[1]), None)
                    if requirement is None:
                        continue
                    placed, _cost = self._best_placement(
                        index, unit, key[1], weekly_minutes=requirement.weekly_minutes
                    )
                    if placed is None:
                        continue
                    sessions[key] = placed
                    for follower_id in graph.followers_of(unit.id):
                        sessions[(follower_id, key[1])] = self._copy_to(placed, follower_id)
                    index.add(self._expand(placed))
                    improved = True
                    continue

                current = [gene for member in (unit.id, *graph.followers_of(unit.id)) for gene in sessions.get((member, key[1]), ())]
                index.remove(current)
                expanded = self._expand(genes)
                current_cost = index.clashes(expanded) + self._static_cost(unit, expanded)
                best, best_cost = genes, current_cost
                if current_cost > 0:
                    candidate, candidate_cost = self._best_placement(index, unit, key[1], current=genes)
                    if candidate is not None and candidate_cost < current_cost:
                        best, best_cost = candidate, candidate_cost
                        improved = True
                sessions[key] = best
                for follower_id in graph.followers_of(unit.id):
                    sessions[(follower_id, key[1])] = self._copy_to(best, follower_id)
                index.add(self._expand(best))

            repaired = assemble(sessions)
            violating = self.evaluator.violating_sessions(repaired)
            if not violating or not improved:
                return repaired
        return assemble(sessions)
