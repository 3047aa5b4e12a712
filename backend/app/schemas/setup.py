from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models.room import RoomType
from app.schemas.calendar import TIME_PATTERN, DayGroupName, TimePeriod, normalize_day, parse_time_to_minutes


DayOffTime = Literal["wholeday", "morning", "afternoon"]


class SubjectRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str = Field(min_length=1, max_length=50)
    name: str = ""
    category: str | None = None
    lecture_hours: int = Field(default=0, ge=0, le=40)
    lab_hours: int = Field(default=0, ge=0, le=40)


class SetupSubjectRecord(BaseModel):
    id: str
    subject_id: str
    year_level: int = Field(ge=1, le=10)
    block_number: int = Field(default=1, ge=1)
    course_codes: list[str] = Field(default_factory=list)
    expected_students: int = Field(default=40, ge=0)
    needs_lab: bool = False
    faculty_ids: list[str] = Field(default_factory=list)
    parallel_subject_ids: list[str] = Field(default_factory=list)
    preferred_lecture_room_id: str | None = None
    preferred_lab_room_id: str | None = None


class RoomRecord(BaseModel):
    id: str
    name: str
    room_type: RoomType
    capacity: int = Field(ge=0)
    priority: int = 0
    is_active: bool = True
    is_available: bool = True
    max_daily_hours: int | None = Field(default=None, ge=1, le=24)
    allow_consecutive: bool = True


class TimeSlotRecord(BaseModel):
    id: str
    name: str = ""
    day_group: DayGroupName
    start_time: str
    end_time: str
    priority: int = 0
    is_active: bool = True

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, value: str) -> str:
        if not TIME_PATTERN.match(value):
            raise ValueError("Time must be in HH:MM 24-hour format")
        return value[:5]

    @model_validator(mode="after")
    def validate_time_order(self) -> "TimeSlotRecord":
        if parse_time_to_minutes(self.end_time) <= parse_time_to_minutes(self.start_time):
            raise ValueError("end_time must be after start_time")
        return self


class FacultyRecord(BaseModel):
    user_id: str
    name: str = ""
    preferred_day_off: str | None = None
    preferred_day_off_time: DayOffTime | None = None
    preferred_time_period: TimePeriod | None = None

    @field_validator("preferred_day_off", mode="before")
    @classmethod
    def normalize_day_off(cls, value: str | None) -> str | None:
        if value is None or not str(value).strip():
            return None
        return normalize_day(str(value))

    @field_validator("preferred_day_off_time", "preferred_time_period", mode="before")
    @classmethod
    def normalize_period(cls, value: str | None) -> str | None:
        if value is None or not str(value).strip():
            return None
        return str(value).strip().lower().replace(" ", "").replace("_", "")


class RoomRuleRecord(BaseModel):
    subject_category: str
    allowed_room_ids: list[str] = Field(default_factory=list)
    priority_room_ids: list[str] = Field(default_factory=list)


class AcademicSetupGraph(BaseModel):
    """Snapshot of one academic setup as handed to the planning loader."""

    id: str
    name: str = ""
    subjects: list[SubjectRecord] = Field(default_factory=list)
    setup_subjects: list[SetupSubjectRecord] = Field(default_factory=list)
    rooms: list[RoomRecord] = Field(default_factory=list)
    time_slots: list[TimeSlotRecord] = Field(default_factory=list)
    faculty: list[FacultyRecord] = Field(default_factory=list)
    room_rules: list[RoomRuleRecord] = Field(default_factory=list)
