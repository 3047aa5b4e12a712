"""Demo academic setup: one curriculum year with fused, lab and parallel subjects."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.academic_setup import (
    AcademicSetup,
    AcademicSetupFaculty,
    AcademicSetupSubject,
    SubjectFacultyAssignment,
)
from app.models.room import Room, RoomAssignmentRule, RoomType
from app.models.subject import Subject
from app.models.time_slot import TimeSlot

DEMO_SETUP_NAME = "BSIT Curriculum 2026 - First Semester"
ACADEMIC_YEAR = "2026-2027"

SUBJECTS = [
    # code, name, category, lecture hours, lab hours
    ("IT101", "Introduction to Computing", "major", 2, 3),
    ("IT102", "Computer Programming 1", "major", 2, 3),
    ("GE101", "Purposive Communication", "general", 3, 0),
    ("GE102", "Mathematics in the Modern World", "general", 3, 0),
    ("PE1", "Physical Fitness", "pe", 2, 0),
    ("EL1", "Elective: Web Design", "elective", 3, 0),
    ("EL2", "Elective: Digital Illustration", "elective", 3, 0),
]

ROOMS = [
    # name, type, capacity, priority, class settings
    ("R101", RoomType.lecture, 50, 1, {}),
    ("R102", RoomType.lecture, 50, 1, {}),
    ("R103", RoomType.lecture, 90, 2, {"max_daily_hours": 8}),
    ("LAB1", RoomType.laboratory, 45, 1, {"allow_consecutive": True}),
    ("HYB1", RoomType.hybrid, 60, 3, {"allow_consecutive": False}),
    ("GYM", RoomType.lecture, 120, 5, {}),
]

TIME_SLOTS = [
    # day group, start, end, priority
    ("MW", "07:30", "09:00", 1),
    ("MW", "09:00", "10:30", 1),
    ("MW", "10:30", "12:00", 2),
    ("MW", "13:00", "14:30", 2),
    ("TTH", "07:30", "09:00", 1),
    ("TTH", "09:00", "10:30", 1),
    ("TTH", "10:30", "12:00", 2),
    ("TTH", "13:00", "14:30", 2),
    ("FRI", "07:30", "10:30", 3),
    ("FRI", "10:30", "13:30", 3),
    ("FRI", "13:30", "16:30", 4),
]

FACULTY = [
    # user id, name, day off, day off time, preferred period
    ("user-ana-reyes", "Ana Reyes", "friday", "afternoon", "morning"),
    ("user-ben-cruz", "Ben Cruz", None, None, None),
    ("user-carla-santos", "Carla Santos", "saturday", "wholeday", "afternoon"),
    ("user-dan-lim", "Dan Lim", None, None, "morning"),
]

# subject code, course codes, expected students, faculty user ids, parallel subject codes
SETUP_ROWS = [
    ("IT101", ["BSIT"], 40, ["user-ana-reyes"], []),
    ("IT102", ["BSIT"], 40, ["user-ben-cruz"], []),
    ("GE101", ["BSIT"], 40, ["user-carla-santos"], []),
    ("GE101", ["BSCS"], 35, ["user-carla-santos"], []),
    ("GE102", ["BSIT"], 40, ["user-dan-lim"], []),
    ("PE1", ["BSIT"], 40, ["user-dan-lim"], []),
    ("EL1", ["BSIT"], 40, ["user-ben-cruz", "user-ana-reyes"], ["EL2"]),
]


def upsert_subjects(session: Session) -> dict[str, Subject]:
    by_code: dict[str, Subject] = {}
    for code, name, category, lecture_hours, lab_hours in SUBJECTS:
        subject = session.execute(select(Subject).where(Subject.code == code)).scalar_one_or_none()
        if subject is None:
            subject = Subject(code=code, name=name)
            session.add(subject)
        subject.name = name
        subject.category = category
        subject.lecture_hours = lecture_hours
        subject.lab_hours = lab_hours
        by_code[code] = subject
    session.flush()
    return by_code


def upsert_rooms(session: Session) -> dict[str, Room]:
    by_name: dict[str, Room] = {}
    for name, room_type, capacity, priority, class_settings in ROOMS:
        room = session.execute(select(Room).where(Room.name == name)).scalar_one_or_none()
        if room is None:
            room = Room(name=name, room_type=room_type)
            session.add(room)
        room.building = "Main Academic Building"
        room.room_type = room_type
        room.capacity = capacity
        room.priority = priority
        room.class_settings = class_settings
        room.is_active = True
        room.is_available = True
        by_name[name] = room
    session.flush()

    rule = session.execute(
        select(RoomAssignmentRule).where(RoomAssignmentRule.subject_category == "pe")
    ).scalar_one_or_none()
    if rule is None:
        rule = RoomAssignmentRule(subject_category="pe")
        session.add(rule)
    rule.allowed_room_ids = [by_name["GYM"].id]
    rule.priority_room_ids = [by_name["GYM"].id]
    return by_name


def upsert_time_slots(session: Session) -> None:
    for day_group, start_time, end_time, priority in TIME_SLOTS:
        slot = session.execute(
            select(TimeSlot).where(
                TimeSlot.day_group == day_group,
                TimeSlot.start_time == start_time,
                TimeSlot.end_time == end_time,
            )
        ).scalar_one_or_none()
        if slot is None:
            slot = TimeSlot(day_group=day_group, start_time=start_time, end_time=end_time)
            session.add(slot)
        slot.name = f"{day_group} {start_time}-{end_time}"
        slot.priority = priority
        slot.is_active = True


def seed_demo_setup(session: Session) -> AcademicSetup:
    """Create (or refresh) the demo setup and return it; the caller commits."""
    subjects = upsert_subjects(session)
    upsert_rooms(session)
    upsert_time_slots(session)

    setup = session.execute(
        select(AcademicSetup).where(AcademicSetup.name == DEMO_SETUP_NAME)
    ).scalar_one_or_none()
    if setup is not None:
        # Rows are cheap to rebuild; drop them instead of diffing.
        rows = session.execute(
            select(AcademicSetupSubject).where(AcademicSetupSubject.academic_setup_id == setup.id)
        ).scalars().all()
        for row in rows:
            for assignment in session.execute(
                select(SubjectFacultyAssignment).where(SubjectFacultyAssignment.academic_setup_subject_id == row.id)
            ).scalars():
                session.delete(assignment)
            session.delete(row)
        for item in session.execute(
            select(AcademicSetupFaculty).where(AcademicSetupFaculty.academic_setup_id == setup.id)
        ).scalars():
            session.delete(item)
        session.flush()
    else:
        setup = AcademicSetup(name=DEMO_SETUP_NAME, academic_year=ACADEMIC_YEAR, semester="first")
        session.add(setup)
        session.flush()

    for user_id, name, day_off, day_off_time, period in FACULTY:
        session.add(
            AcademicSetupFaculty(
                academic_setup_id=setup.id,
                user_id=user_id,
                name=name,
                preferred_day_off=day_off,
                preferred_day_off_time=day_off_time,
                preferred_time_period=period,
            )
        )

    for code, course_codes, expected, faculty_ids, parallel_codes in SETUP_ROWS:
        row = AcademicSetupSubject(
            academic_setup_id=setup.id,
            subject_id=subjects[code].id,
            year_level=1,
            block_number=1,
            course_codes=course_codes,
            expected_students=expected,
            needs_lab=subjects[code].lab_hours > 0,
            parallel_subject_ids=[subjects[item].id for item in parallel_codes],
        )
        session.add(row)
        session.flush()
        for index, user_id in enumerate(faculty_ids):
            session.add(
                SubjectFacultyAssignment(
                    academic_setup_subject_id=row.id,
                    user_id=user_id,
                    is_primary=index == 0,
                )
            )
    session.flush()
    return setup
