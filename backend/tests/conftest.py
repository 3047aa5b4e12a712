import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.db.base import Base
from app.schemas.setup import (
    AcademicSetupGraph,
    FacultyRecord,
    RoomRecord,
    RoomRuleRecord,
    SetupSubjectRecord,
    SubjectRecord,
    TimeSlotRecord,
)
from app.services.progress_store import InMemoryProgressStore


class SetupBuilder:
    """Builds small academic setups without touching the database."""

    def __init__(self, setup_id: str = "setup-1") -> None:
        self.setup_id = setup_id
        self.subjects: dict[str, SubjectRecord] = {}
        self.rows: list[SetupSubjectRecord] = []
        self.rooms: list[RoomRecord] = []
        self.slots: list[TimeSlotRecord] = []
        self.faculty: list[FacultyRecord] = []
        self.rules: list[RoomRuleRecord] = []

    def subject(self, code: str, *, lecture_hours: int = 3, lab_hours: int = 0, category: str | None = None) -> str:
        subject_id = f"subj-{code}"
        self.subjects[code] = SubjectRecord(
            id=subject_id,
            code=code,
            name=code,
            category=category,
            lecture_hours=lecture_hours,
            lab_hours=lab_hours,
        )
        return subject_id

    def row(
        self,
        code: str,
        *,
        year_level: int = 1,
        block: int = 1,
        course_codes: tuple[str, ...] = ("BSIT",),
        expected: int = 30,
        faculty: tuple[str, ...] = ("fac-1",),
        needs_lab: bool = False,
        parallel: tuple[str, ...] = (),
        preferred_lecture_room_id: str | None = None,
        preferred_lab_room_id: str | None = None,
    ) -> str:
        if code not in self.subjects:
            self.subject(code)
        for item in parallel:
            if item not in self.subjects:
                self.subject(item)
        row_id = f"row-{len(self.rows) + 1}"
        self.rows.append(
            SetupSubjectRecord(
                id=row_id,
                subject_id=self.subjects[code].id,
                year_level=year_level,
                block_number=block,
                course_codes=list(course_codes),
                expected_students=expected,
                needs_lab=needs_lab,
                faculty_ids=list(faculty),
                parallel_subject_ids=[self.subjects[item].id for item in parallel],
                preferred_lecture_room_id=preferred_lecture_room_id,
                preferred_lab_room_id=preferred_lab_room_id,
            )
        )
        return row_id

    def room(self, name: str, *, room_type: str = "lecture", capacity: int = 40, priority: int = 0, **extra) -> str:
        room_id = f"room-{name}"
        self.rooms.append(
            RoomRecord(id=room_id, name=name, room_type=room_type, capacity=capacity, priority=priority, **extra)
        )
        return room_id

    def slot(self, day_group: str, start_time: str, end_time: str, *, priority: int = 0, **extra) -> str:
        slot_id = f"slot-{day_group}-{start_time}"
        self.slots.append(
            TimeSlotRecord(
                id=slot_id,
                name=f"{day_group} {start_time}",
                day_group=day_group,
                start_time=start_time,
                end_time=end_time,
                priority=priority,
                **extra,
            )
        )
        return slot_id

    def instructor(self, user_id: str, **preferences) -> None:
        self.faculty.append(FacultyRecord(user_id=user_id, **preferences))

    def rule(self, category: str, allowed: list[str], priority: list[str] | None = None) -> None:
        self.rules.append(
            RoomRuleRecord(subject_category=category, allowed_room_ids=allowed, priority_room_ids=priority or [])
        )

    def build(self) -> AcademicSetupGraph:
        return AcademicSetupGraph(
            id=self.setup_id,
            name="Test setup",
            subjects=list(self.subjects.values()),
            setup_subjects=list(self.rows),
            rooms=list(self.rooms),
            time_slots=list(self.slots),
            faculty=list(self.faculty),
            room_rules=list(self.rules),
        )


@pytest.fixture()
def setup_builder():
    return SetupBuilder()


@pytest.fixture()
def progress_store():
    return InMemoryProgressStore(default_ttl_seconds=600)


@pytest.fixture()
def db_engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def session_factory(db_engine):
    return sessionmaker(autoflush=False, bind=db_engine)
