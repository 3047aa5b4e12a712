from __future__ import annotations

from datetime import datetime, timezone
import logging
import math

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from app.core.exceptions import ResourceNotFoundError
from app.db.session import SessionLocal
from app.models.academic_setup import (
    AcademicSetup,
    AcademicSetupBuilding,
    AcademicSetupFaculty,
    AcademicSetupRoom,
    AcademicSetupSubject,
    SubjectFacultyAssignment,
)
from app.models.room import Room, RoomAssignmentRule
from app.models.schedule import Schedule, ScheduleEntry, ScheduleStatus
from app.models.subject import Subject
from app.models.time_slot import TimeSlot
from app.schemas.calendar import minutes_to_time, parse_time_to_minutes
from app.schemas.setup import (
    AcademicSetupGraph,
    FacultyRecord,
    RoomRecord,
    RoomRuleRecord,
    SetupSubjectRecord,
    SubjectRecord,
    TimeSlotRecord,
)
from app.services.chromosome import Chromosome, Gene, normalize
from app.services.constraints import FitnessScore
from app.services.planning import PlanningGraph

logger = logging.getLogger(__name__)


class SqlAcademicSetupSource:
    """Reads an academic setup snapshot from the database."""

    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self.session_factory = session_factory

    def load(self, academic_setup_id: str) -> AcademicSetupGraph:
        db = self.session_factory()
        try:
            return self._load(db, academic_setup_id)
        finally:
            db.close()

    def _load(self, db: Session, academic_setup_id: str) -> AcademicSetupGraph:
        setup = db.get(AcademicSetup, academic_setup_id)
        if setup is None or not setup.is_active:
            raise ResourceNotFoundError("AcademicSetup", academic_setup_id)

        rows = (
            db.execute(
                select(AcademicSetupSubject).where(
                    AcademicSetupSubject.academic_setup_id == academic_setup_id,
                    AcademicSetupSubject.is_active.is_(True),
                )
            )
            .scalars()
            .all()
        )
        row_ids = [row.id for row in rows]
        subject_ids = {row.subject_id for row in rows}
        for row in rows:
            subject_ids.update(row.parallel_subject_ids or [])

        subjects = db.execute(select(Subject).where(Subject.id.in_(subject_ids))).scalars().all() if subject_ids else []

        faculty_by_row: dict[str, list[str]] = {}
        if row_ids:
            assignments = (
                db.execute(
                    select(SubjectFacultyAssignment)
                    .where(SubjectFacultyAssignment.academic_setup_subject_id.in_(row_ids))
                    .order_by(SubjectFacultyAssignment.is_primary.desc(), SubjectFacultyAssignment.created_at)
                )
                .scalars()
                .all()
            )
            for item in assignments:
                faculty_by_row.setdefault(item.academic_setup_subject_id, []).append(item.user_id)

        rooms = self._room_pool(db, academic_setup_id)
        time_slots = db.execute(select(TimeSlot)).scalars().all()
        faculty = (
            db.execute(
                select(AcademicSetupFaculty).where(
                    AcademicSetupFaculty.academic_setup_id == academic_setup_id,
                    AcademicSetupFaculty.is_active.is_(True),
                )
            )
            .scalars()
            .all()
        )
        rules = db.execute(select(RoomAssignmentRule).where(RoomAssignmentRule.is_active.is_(True))).scalars().all()

        return AcademicSetupGraph(
            id=setup.id,
            name=setup.name,
            subjects=[SubjectRecord.model_validate(item) for item in subjects],
            setup_subjects=[
                SetupSubjectRecord(
                    id=row.id,
                    subject_id=row.subject_id,
                    year_level=row.year_level,
                    block_number=row.block_number or 1,
                    course_codes=list(row.course_codes or []),
                    expected_students=row.expected_students if row.expected_students is not None else 40,
                    needs_lab=row.needs_lab,
                    faculty_ids=faculty_by_row.get(row.id, []),
                    parallel_subject_ids=list(row.parallel_subject_ids or []),
                    preferred_lecture_room_id=row.preferred_lecture_room_id,
                    preferred_lab_room_id=row.preferred_lab_room_id,
                )
                for row in rows
            ],
            rooms=[
                RoomRecord(
                    id=room.id,
                    name=room.name,
                    room_type=room.room_type,
                    capacity=room.capacity,
                    priority=room.priority,
                    is_active=room.is_active,
                    is_available=room.is_available,
                    max_daily_hours=(room.class_settings or {}).get("max_daily_hours"),
                    allow_consecutive=(room.class_settings or {}).get("allow_consecutive", True),
                )
                for room in rooms
            ],
            time_slots=[
                TimeSlotRecord(
                    id=slot.id,
                    name=slot.name,
                    day_group=slot.day_group,
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                    priority=slot.priority,
                    is_active=slot.is_active,
                )
                for slot in time_slots
            ],
            faculty=[
                FacultyRecord(
                    user_id=item.user_id,
                    name=item.name,
                    preferred_day_off=item.preferred_day_off,
                    preferred_day_off_time=item.preferred_day_off_time,
                    preferred_time_period=item.preferred_time_period,
                )
                for item in faculty
            ],
            room_rules=[
                RoomRuleRecord(
                    subject_category=rule.subject_category,
                    allowed_room_ids=list(rule.allowed_room_ids or []),
                    priority_room_ids=list(rule.priority_room_ids or []),
                )
                for rule in rules
            ],
        )

    @staticmethod
    def _room_pool(db: Session, academic_setup_id: str) -> list[Room]:
        """Selected rooms, else active rooms in the selected buildings, else every active room."""
        selected = (
            db.execute(
                select(Room)
                .join(AcademicSetupRoom, AcademicSetupRoom.room_id == Room.id)
                .where(AcademicSetupRoom.academic_setup_id == academic_setup_id)
                .order_by(Room.priority, Room.name)
            )
            .scalars()
            .all()
        )
        if selected:
            return list(selected)

        query = select(Room).where(Room.is_active.is_(True)).order_by(Room.priority, Room.name)
        buildings = (
            db.execute(
                select(AcademicSetupBuilding.building).where(AcademicSetupBuilding.academic_setup_id == academic_setup_id)
            )
            .scalars()
            .all()
        )
        if buildings:
            query = query.where(Room.building.in_(set(buildings)))
        return list(db.execute(query).scalars().all())


class SqlScheduleWriter:
    """Persists a chromosome as one Schedule plus one ScheduleEntry per gene."""

    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self.session_factory = session_factory

    def persist(
        self,
        chromosome: Chromosome,
        academic_setup_id: str,
        created_by: str | None,
        *,
        graph: PlanningGraph,
        score: FitnessScore,
        generations: int = 0,
        converged: bool = False,
        run_metadata: dict | None = None,
    ) -> str:
        db = self.session_factory()
        try:
            schedule = Schedule(
                academic_setup_id=academic_setup_id,
                name=f"Schedule - {datetime.now(timezone.utc):%Y-%m-%d %H:%M}",
                status=ScheduleStatus.draft,
                fitness_score=score.fitness,
                hard_violations=score.hard_violations,
                converged=converged,
                generation=generations,
                run_metadata={**(run_metadata or {}), "score": score.as_dict()},
                created_by=created_by,
            )
            db.add(schedule)
            db.flush()
            schedule_id = schedule.id

            db.add_all(self._entry(schedule_id, gene, graph) for gene in chromosome)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info("Persisted schedule id=%s entries=%s setup=%s", schedule_id, len(chromosome), academic_setup_id)
        return schedule_id

    @staticmethod
    def _entry(schedule_id: str, gene: Gene, graph: PlanningGraph) -> ScheduleEntry:
        unit = graph.units_by_id[gene.unit_id]
        slot = graph.slots_by_id[gene.time_slot_id]
        custom = (gene.start, gene.end) != (slot.start, slot.end)
        return ScheduleEntry(
            schedule_id=schedule_id,
            academic_setup_subject_id=unit.setup_subject_id,
            subject_id=unit.subject_id,
            planning_unit_key=unit.id,
            room_id=gene.room_id,
            time_slot_id=gene.time_slot_id,
            user_id=unit.faculty_id,
            day=gene.day,
            is_lab_session=gene.is_lab,
            custom_start_time=minutes_to_time(gene.start) if custom else None,
            custom_end_time=minutes_to_time(gene.end) if custom else None,
            session_group_id=gene.session_group_id,
            slots_span=max(1, math.ceil(gene.duration / slot.duration)),
        )


def load_schedule_chromosome(db: Session, schedule_id: str) -> Chromosome:
    """Rebuild the chromosome a schedule was persisted from."""
    if db.get(Schedule, schedule_id) is None:
        raise ResourceNotFoundError("Schedule", schedule_id)

    entries = db.execute(select(ScheduleEntry).where(ScheduleEntry.schedule_id == schedule_id)).scalars().all()
    slot_ids = {entry.time_slot_id for entry in entries}
    slots = {
        slot.id: slot
        for slot in (db.execute(select(TimeSlot).where(TimeSlot.id.in_(slot_ids))).scalars().all() if slot_ids else [])
    }

    genes: list[Gene] = []
    for entry in entries:
        slot = slots.get(entry.time_slot_id)
        if slot is None:
            raise ResourceNotFoundError("TimeSlot", entry.time_slot_id)
        start = entry.custom_start_time or slot.start_time
        end = entry.custom_end_time or slot.end_time
        genes.append(
            Gene(
                unit_id=entry.planning_unit_key,
                room_id=entry.room_id,
                time_slot_id=entry.time_slot_id,
                day=entry.day,
                is_lab=entry.is_lab_session,
                start=parse_time_to_minutes(start),
                end=parse_time_to_minutes(end),
                session_group_id=entry.session_group_id,
            )
        )
    return normalize(genes)
