import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Enum as SAEnum, Float, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class ScheduleStatus(str, Enum):
    draft = "draft"
    pending_approval = "pending_approval"
    approved = "approved"


class Schedule(Base):
    __tablename__ = "schedules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    academic_setup_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("academic_setups.id", ondelete="CASCADE"), index=True, nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[ScheduleStatus] = mapped_column(
        SAEnum(ScheduleStatus, name="schedule_status"),
        nullable=False,
        default=ScheduleStatus.draft,
    )
    fitness_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    hard_violations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    converged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    generation: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # "metadata" is reserved on declarative classes.
    run_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ScheduleEntry(Base):
    __tablename__ = "schedule_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    schedule_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("schedules.id", ondelete="CASCADE"), index=True, nullable=False
    )
    academic_setup_subject_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    subject_id: Mapped[str] = mapped_column(String(36), nullable=False)
    planning_unit_key: Mapped[str] = mapped_column(String(120), nullable=False)
    room_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    time_slot_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    day: Mapped[str] = mapped_column(String(10), nullable=False)
    is_lab_session: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    custom_start_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    custom_end_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    session_group_id: Mapped[str] = mapped_column(String(120), index=True, nullable=False)
    slots_span: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
