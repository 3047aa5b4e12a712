from __future__ import annotations

from dataclasses import dataclass, field
import logging

from app.core.exceptions import DataIncompleteError, InfeasibleConstraintError
from app.models.room import RoomType
from app.schemas.calendar import (
    DAY_GROUP_DAYS,
    DEFAULT_INCLUDED_DAY_GROUPS,
    NOON_MINUTES,
    parse_time_to_minutes,
)
from app.schemas.setup import AcademicSetupGraph, SetupSubjectRecord, SubjectRecord

logger = logging.getLogger(__name__)

DEFAULT_LAB_HOURS = 3
DAY_END_MINUTES = 24 * 60

LAB_ROOM_TYPES = frozenset({RoomType.laboratory, RoomType.hybrid})
LECTURE_ROOM_TYPES = frozenset({RoomType.lecture, RoomType.hybrid})

SessionKey = tuple[str, bool]


@dataclass(frozen=True)
class SessionRequirement:
    is_lab: bool
    weekly_minutes: int

    @property
    def kind(self) -> str:
        return "lab" if self.is_lab else "lecture"


@dataclass(frozen=True)
class PlanningUnit:
    id: str
    setup_subject_id: str
    subject_id: str
    subject_code: str
    category: str | None
    year_level: int
    block_number: int
    course_codes: tuple[str, ...]
    expected_enrollment: int
    lecture_hours: int
    lab_hours: int
    faculty_id: str
    co_faculty_ids: tuple[str, ...] = ()
    needs_lab: bool = False
    is_parallel: bool = False
    parallel_group_id: str | None = None
    preferred_lecture_room_id: str | None = None
    preferred_lab_room_id: str | None = None
    allowed_room_ids: tuple[str, ...] = ()
    priority_room_ids: tuple[str, ...] = ()

    @property
    def faculty_ids(self) -> tuple[str, ...]:
        return (self.faculty_id, *self.co_faculty_ids)

    @property
    def cohort_keys(self) -> tuple[tuple[str, int, int], ...]:
        codes = self.course_codes or ("",)
        return tuple((code, self.year_level, self.block_number) for code in codes)

    @property
    def sessions(self) -> tuple[SessionRequirement, ...]:
        items: list[SessionRequirement] = []
        if self.lecture_hours > 0:
            items.append(SessionRequirement(is_lab=False, weekly_minutes=self.lecture_hours * 60))
        if self.lab_hours > 0:
            items.append(SessionRequirement(is_lab=True, weekly_minutes=self.lab_hours * 60))
        return tuple(items)

    def preferred_room_for(self, is_lab: bool) -> str | None:
        return self.preferred_lab_room_id if is_lab else self.preferred_lecture_room_id


@dataclass(frozen=True)
class RoomResource:
    id: str
    name: str
    room_type: RoomType
    capacity: int
    priority: int = 0
    max_daily_hours: int | None = None
    allow_consecutive: bool = True

    def supports(self, is_lab: bool) -> bool:
        return self.room_type in (LAB_ROOM_TYPES if is_lab else LECTURE_ROOM_TYPES)


@dataclass(frozen=True)
class TimeSlotResource:
    id: str
    name: str
    day_group: str
    start: int
    end: int
    priority: int = 0

    @property
    def days(self) -> tuple[str, ...]:
        return DAY_GROUP_DAYS[self.day_group]

    @property
    def duration(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class FacultyAvailability:
    faculty_id: str
    day_off: str | None = None
    day_off_time: str | None = None
    preferred_time_period: str | None = None

    def blocks(self, day: str, start: int, end: int) -> bool:
        if self.day_off is None or day != self.day_off:
            return False
        if self.day_off_time in (None, "wholeday"):
            return True
        if self.day_off_time == "morning":
            return start < NOON_MINUTES
        return end > NOON_MINUTES


@dataclass
class PlanningGraph:
    """In-memory planning graph; read-only once built."""

    academic_setup_id: str
    units: tuple[PlanningUnit, ...]
    rooms: tuple[RoomResource, ...]
    time_slots: tuple[TimeSlotResource, ...]
    faculty: dict[str, FacultyAvailability] = field(default_factory=dict)
    included_day_groups: tuple[str, ...] = DEFAULT_INCLUDED_DAY_GROUPS

    units_by_id: dict[str, PlanningUnit] = field(init=False, repr=False)
    rooms_by_id: dict[str, RoomResource] = field(init=False, repr=False)
    slots_by_id: dict[str, TimeSlotResource] = field(init=False, repr=False)
    slots_by_group: dict[str, tuple[TimeSlotResource, ...]] = field(init=False, repr=False)
    parallel_groups: dict[str, tuple[str, ...]] = field(init=False, repr=False)
    room_rank: dict[str, float] = field(init=False, repr=False)
    slot_rank: dict[str, float] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.units_by_id = {unit.id: unit for unit in self.units}
        self.rooms_by_id = {room.id: room for room in self.rooms}
        self.slots_by_id = {slot.id: slot for slot in self.time_slots}

        grouped: dict[str, list[TimeSlotResource]] = {}
        for slot in self.time_slots:
            grouped.setdefault(slot.day_group, []).append(slot)
        self.slots_by_group = {group: tuple(items) for group, items in grouped.items()}

        parallel: dict[str, list[str]] = {}
        for unit in self.units:
            if unit.parallel_group_id:
                parallel.setdefault(unit.parallel_group_id, []).append(unit.id)
        self.parallel_groups = {group: tuple(ids) for group, ids in parallel.items()}

        self.room_rank = _priority_ranks({room.id: room.priority for room in self.rooms})
        self.slot_rank = _priority_ranks({slot.id: slot.priority for slot in self.time_slots})
        self._coverage_cache: dict[tuple[str, int, int], tuple[str, ...]] = {}
        self._room_cache: dict[SessionKey, tuple[RoomResource, ...]] = {}

    @property
    def leader_units(self) -> tuple[PlanningUnit, ...]:
        return tuple(unit for unit in self.units if not self.is_follower(unit.id))

    def is_follower(self, unit_id: str) -> bool:
        unit = self.units_by_id[unit_id]
        if not unit.parallel_group_id:
            return False
        return self.parallel_groups[unit.parallel_group_id][0] != unit_id

    def leader_id(self, unit_id: str) -> str:
        unit = self.units_by_id[unit_id]
        if not unit.parallel_group_id:
            return unit_id
        return self.parallel_groups[unit.parallel_group_id][0]

    def followers_of(self, unit_id: str) -> tuple[str, ...]:
        unit = self.units_by_id[unit_id]
        if not unit.parallel_group_id:
            return ()
        return tuple(item for item in self.parallel_groups[unit.parallel_group_id] if item != unit_id)

    def availability(self, faculty_id: str) -> FacultyAvailability:
        return self.faculty.get(faculty_id) or FacultyAvailability(faculty_id=faculty_id)

    def covered_slot_ids(self, day_group: str, start: int, end: int) -> tuple[str, ...]:
        """Slots of one day group whose window overlaps [start, end)."""
        key = (day_group, start, end)
        cached = self._coverage_cache.get(key)
        if cached is None:
            cached = tuple(
                slot.id
                for slot in self.slots_by_group.get(day_group, ())
                if slot.start < end and start < slot.end
            )
            self._coverage_cache[key] = cached
        return cached

    def candidate_rooms(self, unit: PlanningUnit, is_lab: bool) -> tuple[RoomResource, ...]:
        """Rooms for one session, preferred and rule-priority rooms first.

        Filters relax in order (room rule, capacity, room type) so a session
        always has somewhere to go; the evaluator scores what was relaxed.
        """
        key = (unit.id, is_lab)
        cached = self._room_cache.get(key)
        if cached is not None:
            return cached

        allowed = set(unit.allowed_room_ids)
        filters = [
            lambda room: room.supports(is_lab)
            and room.capacity >= unit.expected_enrollment
            and (not allowed or room.id in allowed),
            lambda room: room.supports(is_lab) and room.capacity >= unit.expected_enrollment,
            lambda room: room.supports(is_lab) or not is_lab,
            lambda room: True,
        ]
        rooms: list[RoomResource] = []
        for accept in filters:
            rooms = [room for room in self.rooms if accept(room)]
            if rooms:
                break

        preferred = unit.preferred_room_for(is_lab)
        priority_ids = list(unit.priority_room_ids)

        def order(room: RoomResource) -> tuple[int, int, int, str]:
            preferred_rank = 0 if room.id == preferred else 1
            rule_rank = priority_ids.index(room.id) if room.id in priority_ids else len(priority_ids)
            return (preferred_rank, rule_rank, room.priority, room.name)

        cached = tuple(sorted(rooms, key=order))
        self._room_cache[key] = cached
        return cached


def _priority_ranks(priorities: dict[str, int]) -> dict[str, float]:
    distinct = sorted(set(priorities.values()))
    if len(distinct) <= 1:
        return {key: 0.0 for key in priorities}
    scale = len(distinct) - 1
    position = {value: index / scale for index, value in enumerate(distinct)}
    return {key: position[value] for key, value in priorities.items()}


@dataclass
class _UnitDraft:
    id: str
    setup_subject_id: str
    subject: SubjectRecord
    year_level: int
    block_number: int
    course_codes: list[str] = field(default_factory=list)
    expected_enrollment: int = 0
    faculty_ids: list[str] = field(default_factory=list)
    needs_lab: bool = False
    lecture_hours: int = 0
    lab_hours: int = 0
    parallel_subject_ids: list[str] = field(default_factory=list)
    parallel_group_id: str | None = None
    preferred_lecture_room_id: str | None = None
    preferred_lab_room_id: str | None = None

    @property
    def label(self) -> str:
        return f"{self.subject.code} (year {self.year_level}, block {self.block_number})"


def _merge_fused_rows(
    rows: list[SetupSubjectRecord],
    subjects: dict[str, SubjectRecord],
    problems: list[str],
) -> dict[tuple[str, int, int], _UnitDraft]:
    drafts: dict[tuple[str, int, int], _UnitDraft] = {}
    for row in rows:
        subject = subjects.get(row.subject_id)
        if subject is None:
            problems.append(f"Setup subject {row.id} references unknown subject {row.subject_id}")
            continue

        key = (row.subject_id, row.year_level, row.block_number)
        draft = drafts.get(key)
        if draft is None:
            lab_hours = subject.lab_hours
            if row.needs_lab and lab_hours == 0:
                lab_hours = DEFAULT_LAB_HOURS
            draft = _UnitDraft(
                id=row.id,
                setup_subject_id=row.id,
                subject=subject,
                year_level=row.year_level,
                block_number=row.block_number,
                lecture_hours=subject.lecture_hours,
                lab_hours=lab_hours,
                needs_lab=row.needs_lab or lab_hours > 0,
                preferred_lecture_room_id=row.preferred_lecture_room_id,
                preferred_lab_room_id=row.preferred_lab_room_id,
            )
            drafts[key] = draft
        else:
            # Fused block: same subject and block offered to several courses.
            if row.needs_lab and draft.lab_hours == 0:
                draft.lab_hours = DEFAULT_LAB_HOURS
            draft.needs_lab = draft.needs_lab or row.needs_lab
            draft.preferred_lecture_room_id = draft.preferred_lecture_room_id or row.preferred_lecture_room_id
            draft.preferred_lab_room_id = draft.preferred_lab_room_id or row.preferred_lab_room_id

        for code in row.course_codes:
            if code not in draft.course_codes:
                draft.course_codes.append(code)
        for faculty_id in row.faculty_ids:
            if faculty_id not in draft.faculty_ids:
                draft.faculty_ids.append(faculty_id)
        for subject_id in row.parallel_subject_ids:
            if subject_id not in draft.parallel_subject_ids:
                draft.parallel_subject_ids.append(subject_id)
        draft.expected_enrollment += row.expected_students
    return drafts


def _link_parallel_groups(
    drafts: dict[tuple[str, int, int], _UnitDraft],
    subjects: dict[str, SubjectRecord],
    problems: list[str],
) -> None:
    group_of: dict[tuple[str, int, int], str] = {}
    for leader in list(drafts.values()):
        if not leader.parallel_subject_ids:
            continue
        leader_key = (leader.subject.id, leader.year_level, leader.block_number)
        if leader_key in group_of:
            continue

        group_id = f"parallel:{leader.id}"
        member_subject_ids = [leader.subject.id] + [
            item for item in leader.parallel_subject_ids if item != leader.subject.id
        ]
        members: list[tuple[tuple[str, int, int], _UnitDraft]] = []
        for subject_id in member_subject_ids:
            key = (subject_id, leader.year_level, leader.block_number)
            member = drafts.get(key)
            if member is None:
                subject = subjects.get(subject_id)
                if subject is None:
                    problems.append(f"{leader.label} lists unknown parallel subject {subject_id}")
                    continue
                member = _UnitDraft(
                    id=f"{leader.id}:{subject_id}",
                    setup_subject_id=leader.setup_subject_id,
                    subject=subject,
                    year_level=leader.year_level,
                    block_number=leader.block_number,
                    course_codes=list(leader.course_codes),
                    expected_enrollment=leader.expected_enrollment,
                    faculty_ids=list(leader.faculty_ids),
                    lecture_hours=subject.lecture_hours,
                    lab_hours=subject.lab_hours,
                    needs_lab=subject.lab_hours > 0,
                )
                drafts[key] = member
            if group_of.get(key, group_id) != group_id:
                logger.warning(
                    "Subject %s already belongs to parallel group %s; skipping group %s",
                    member.subject.code,
                    group_of[key],
                    group_id,
                )
                continue
            members.append((key, member))

        if len(members) < 2:
            continue

        lecture_hours = max(member.lecture_hours for _, member in members)
        lab_hours = max(member.lab_hours for _, member in members)
        for key, member in members:
            group_of[key] = group_id
            member.parallel_group_id = group_id
            member.lecture_hours = lecture_hours
            member.lab_hours = lab_hours
            member.needs_lab = lab_hours > 0


def _freeze(draft: _UnitDraft, rules: dict, problems: list[str]) -> PlanningUnit | None:
    if not draft.faculty_ids:
        problems.append(f"{draft.label} has no assigned faculty")
        return None
    if draft.lecture_hours + draft.lab_hours <= 0:
        problems.append(f"{draft.label} defines zero contact hours")
        return None

    rule = rules.get((draft.subject.category or "").strip().lower())
    return PlanningUnit(
        id=draft.id,
        setup_subject_id=draft.setup_subject_id,
        subject_id=draft.subject.id,
        subject_code=draft.subject.code,
        category=draft.subject.category,
        year_level=draft.year_level,
        block_number=draft.block_number,
        course_codes=tuple(draft.course_codes),
        expected_enrollment=draft.expected_enrollment,
        lecture_hours=draft.lecture_hours,
        lab_hours=draft.lab_hours,
        faculty_id=draft.faculty_ids[0],
        co_faculty_ids=tuple(draft.faculty_ids[1:]),
        needs_lab=draft.needs_lab,
        is_parallel=draft.parallel_group_id is not None,
        parallel_group_id=draft.parallel_group_id,
        preferred_lecture_room_id=draft.preferred_lecture_room_id,
        preferred_lab_room_id=draft.preferred_lab_room_id,
        allowed_room_ids=tuple(rule.allowed_room_ids) if rule else (),
        priority_room_ids=tuple(rule.priority_room_ids) if rule else (),
    )


def build_planning_graph(
    setup: AcademicSetupGraph,
    *,
    included_day_groups: list[str] | tuple[str, ...] | None = None,
) -> PlanningGraph:
    groups = tuple(included_day_groups or DEFAULT_INCLUDED_DAY_GROUPS)
    subjects = {item.id: item for item in setup.subjects}
    rules = {item.subject_category.strip().lower(): item for item in setup.room_rules}
    problems: list[str] = []

    drafts = _merge_fused_rows(setup.setup_subjects, subjects, problems)
    _link_parallel_groups(drafts, subjects, problems)

    units: list[PlanningUnit] = []
    for draft in drafts.values():
        unit = _freeze(draft, rules, problems)
        if unit is not None:
            units.append(unit)

    rooms = sorted(
        (
            RoomResource(
                id=item.id,
                name=item.name,
                room_type=item.room_type,
                capacity=item.capacity,
                priority=item.priority,
                max_daily_hours=item.max_daily_hours,
                allow_consecutive=item.allow_consecutive,
            )
            for item in setup.rooms
            if item.is_active and item.is_available
        ),
        key=lambda room: (room.priority, room.name),
    )
    group_order = {group: index for index, group in enumerate(groups)}
    time_slots = sorted(
        (
            TimeSlotResource(
                id=item.id,
                name=item.name,
                day_group=item.day_group,
                start=parse_time_to_minutes(item.start_time),
                end=parse_time_to_minutes(item.end_time),
                priority=item.priority,
            )
            for item in setup.time_slots
            if item.is_active and item.day_group in group_order
        ),
        key=lambda slot: (slot.priority, group_order[slot.day_group], slot.start),
    )

    if not setup.setup_subjects:
        problems.append("Academic setup has no subjects to schedule")
    if not rooms:
        problems.append("No active, available rooms")
    if not time_slots:
        problems.append(f"No active time slots in day groups {', '.join(groups)}")
    if problems:
        raise DataIncompleteError(
            f"Academic setup {setup.id} is incomplete: {len(problems)} problem(s)",
            problems=problems,
        )

    units.sort(key=lambda unit: (unit.year_level, unit.block_number, unit.subject_code, unit.id))
    faculty = {
        item.user_id: FacultyAvailability(
            faculty_id=item.user_id,
            day_off=item.preferred_day_off,
            day_off_time=item.preferred_day_off_time,
            preferred_time_period=item.preferred_time_period,
        )
        for item in setup.faculty
    }
    graph = PlanningGraph(
        academic_setup_id=setup.id,
        units=tuple(units),
        rooms=tuple(rooms),
        time_slots=tuple(time_slots),
        faculty=faculty,
        included_day_groups=groups,
    )
    logger.info(
        "Planning graph built setup=%s units=%s rooms=%s slots=%s parallel_groups=%s",
        setup.id,
        len(graph.units),
        len(graph.rooms),
        len(graph.time_slots),
        len(graph.parallel_groups),
    )
    return graph


def check_capacity(graph: PlanningGraph) -> None:
    """Raise InfeasibleConstraintError when demand provably exceeds capacity.

    Every session needs at least one (room, time slot) pair, so the counts
    below are lower bounds on demand and upper bounds on supply.
    """
    slot_count = len(graph.time_slots)
    lab_room_count = sum(1 for room in graph.rooms if room.supports(True))

    sessions = [(unit, requirement) for unit in graph.leader_units for requirement in unit.sessions]
    lab_sessions = sum(1 for _, requirement in sessions if requirement.is_lab)

    per_faculty: dict[str, int] = {}
    per_cohort: dict[tuple[str, int, int], int] = {}
    for unit, _ in sessions:
        for faculty_id in unit.faculty_ids:
            per_faculty[faculty_id] = per_faculty.get(faculty_id, 0) + 1
        for cohort in unit.cohort_keys:
            per_cohort[cohort] = per_cohort.get(cohort, 0) + 1

    checks: list[tuple[str, int, int]] = [
        ("sessions exceed room x time-slot pairs", len(sessions), len(graph.rooms) * slot_count),
        ("lab sessions exceed lab room x time-slot pairs", lab_sessions, lab_room_count * slot_count),
    ]
    for faculty_id, required in per_faculty.items():
        checks.append((f"faculty {faculty_id} sessions exceed time slots", required, slot_count))
    for cohort, required in per_cohort.items():
        code, year_level, block = cohort
        label = f"{code or 'cohort'} year {year_level} block {block}"
        checks.append((f"{label} sessions exceed time slots", required, slot_count))

    for reason, required, available in checks:
        if required > available:
            raise InfeasibleConstraintError(
                f"Infeasible academic setup: {reason} ({required} > {available})",
                required=required,
                available=available,
            )


def fits_in_day(start: int, minutes: int) -> bool:
    return minutes > 0 and start + minutes < DAY_END_MINUTES
