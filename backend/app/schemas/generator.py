from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.schemas.calendar import DEFAULT_INCLUDED_DAY_GROUPS, DayGroupName


JOB_KEY_PREFIX = "schedule_generation_"


class ObjectiveWeights(BaseModel):
    time_period_mismatch: float = Field(default=5.0, ge=0, le=1000)
    faculty_gap_per_hour: float = Field(default=1.0, ge=0, le=1000)
    room_gap_per_hour: float = Field(default=0.5, ge=0, le=1000)
    room_priority: float = Field(default=1.0, ge=0, le=1000)
    slot_priority: float = Field(default=1.0, ge=0, le=1000)
    preferred_room: float = Field(default=3.0, ge=0, le=1000)
    room_rule: float = Field(default=10.0, ge=0, le=1000)
    split_session: float = Field(default=2.0, ge=0, le=1000)
    block_overlap: float = Field(default=2.0, ge=0, le=1000)
    room_daily_overload_per_hour: float = Field(default=5.0, ge=0, le=1000)
    consecutive_room_use: float = Field(default=2.0, ge=0, le=1000)


class GenerationSettings(BaseModel):
    population_size: int = Field(default=50, ge=10, le=200)
    max_generations: int = Field(default=100, ge=1, le=500)
    mutation_rate: float = Field(default=0.1, ge=0.01, le=0.5)
    crossover_rate: float = Field(default=0.8, ge=0.1, le=1.0)
    elite_count: int = Field(default=6, ge=1, le=20)
    tournament_size: int = Field(default=4, ge=2, le=10)
    stagnation_limit: int = Field(default=6, ge=1, le=500)
    target_fitness_min: float | None = Field(default=None, le=0)
    target_fitness_max: float | None = Field(default=None, le=0)
    included_day_groups: list[DayGroupName] = Field(
        default_factory=lambda: list(DEFAULT_INCLUDED_DAY_GROUPS), min_length=1
    )
    random_seed: int | None = Field(default=None, ge=0, le=2_000_000_000)
    hard_penalty: float = Field(default=10_000.0, ge=1.0)
    evaluation_workers: int = Field(default=1, ge=1, le=64)
    objective_weights: ObjectiveWeights = Field(default_factory=ObjectiveWeights)

    @field_validator("included_day_groups")
    @classmethod
    def dedupe_day_groups(cls, value: list[str]) -> list[str]:
        unique: list[str] = []
        for item in value:
            if item not in unique:
                unique.append(item)
        return unique

    @model_validator(mode="after")
    def validate_relationships(self) -> "GenerationSettings":
        if self.elite_count >= self.population_size:
            raise ValueError("elite_count must be less than population_size")
        if self.tournament_size > self.population_size:
            raise ValueError("tournament_size cannot exceed population_size")
        if (
            self.target_fitness_min is not None
            and self.target_fitness_max is not None
            and self.target_fitness_max < self.target_fitness_min
        ):
            raise ValueError("target_fitness_max must be greater than or equal to target_fitness_min")
        return self

    @property
    def has_target(self) -> bool:
        return self.target_fitness_min is not None


class JobStatus(str, Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


TERMINAL_JOB_STATUSES = frozenset({JobStatus.completed, JobStatus.failed, JobStatus.cancelled})


def new_job_key() -> str:
    return f"{JOB_KEY_PREFIX}{uuid.uuid4()}"


class JobRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    academic_setup_id: str = Field(min_length=1, max_length=36)
    settings: GenerationSettings = Field(default_factory=GenerationSettings)
    user_id: str | None = Field(default=None, max_length=36)
    job_key: str = Field(default_factory=new_job_key, min_length=1, max_length=120)


class ProgressRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    message: str = ""
    status: JobStatus = JobStatus.pending
    schedule_id: str | None = None
    converged: bool | None = None
    hard_violations: int | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES
