import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class AcademicSetup(Base):
    __tablename__ = "academic_setups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    academic_year: Mapped[str] = mapped_column(String(20), nullable=False)
    semester: Mapped[str] = mapped_column(String(20), nullable=False, default="first")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AcademicSetupSubject(Base):
    __tablename__ = "academic_setup_subjects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    academic_setup_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("academic_setups.id", ondelete="CASCADE"), index=True, nullable=False
    )
    subject_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("subjects.id", ondelete="CASCADE"), index=True, nullable=False
    )
    year_level: Mapped[int] = mapped_column(Integer, nullable=False)
    block_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    course_codes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    expected_students: Mapped[int] = mapped_column(Integer, nullable=False, default=40)
    needs_lab: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    preferred_lecture_room_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    preferred_lab_room_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    parallel_subject_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class SubjectFacultyAssignment(Base):
    __tablename__ = "subject_faculty_assignments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    academic_setup_subject_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("academic_setup_subjects.id", ondelete="CASCADE"), index=True, nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AcademicSetupFaculty(Base):
    __tablename__ = "academic_setup_faculty"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    academic_setup_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("academic_setups.id", ondelete="CASCADE"), index=True, nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    preferred_day_off: Mapped[str | None] = mapped_column(String(20), nullable=True)
    preferred_day_off_time: Mapped[str | None] = mapped_column(String(20), nullable=True)
    preferred_time_period: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class AcademicSetupRoom(Base):
    """Rooms selected for one setup; when present they are its whole room pool."""

    __tablename__ = "academic_setup_rooms"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    academic_setup_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("academic_setups.id", ondelete="CASCADE"), index=True, nullable=False
    )
    room_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("rooms.id", ondelete="CASCADE"), index=True, nullable=False
    )


class AcademicSetupBuilding(Base):
    """Buildings selected for one setup, matched against ``Room.building``."""

    __tablename__ = "academic_setup_buildings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    academic_setup_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("academic_setups.id", ondelete="CASCADE"), index=True, nullable=False
    )
    building: Mapped[str] = mapped_column(String(200), nullable=False)
