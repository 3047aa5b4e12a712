from functools import lru_cache
import json
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BACKEND_ENV_FILE = Path(__file__).resolve().parents[2] / ".env"

DAY_GROUP_VALUES = ("MW", "TTH", "FRI", "SAT", "SUN")


class Settings(BaseSettings):
    # Resolve to backend/.env so scripts work from any cwd.
    model_config = SettingsConfigDict(env_file=str(BACKEND_ENV_FILE), env_file_encoding="utf-8")

    project_name: str = "Campus Timetable Engine"
    log_level: str = "INFO"

    database_url: str = "sqlite+pysqlite:///./timetable.db"

    generation_population_size: int = 50
    generation_max_generations: int = 100
    generation_mutation_rate: float = 0.1
    generation_included_day_groups: list[str] = ["MW", "TTH", "FRI"]
    generation_hard_penalty: float = 10_000.0
    generation_evaluation_workers: int = 1

    job_timeout_seconds: int = 300
    job_max_workers: int = 2
    progress_ttl_seconds: int = 600

    @field_validator("generation_included_day_groups", mode="before")
    @classmethod
    def split_day_groups(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                try:
                    parsed = json.loads(stripped)
                    if isinstance(parsed, list):
                        return [str(item).strip().upper() for item in parsed if str(item).strip()]
                except json.JSONDecodeError:
                    pass
            return [item.strip().upper() for item in value.split(",") if item.strip()]
        return value

    @field_validator("generation_included_day_groups")
    @classmethod
    def validate_day_groups(cls, value: list[str]) -> list[str]:
        unknown = [item for item in value if item not in DAY_GROUP_VALUES]
        if unknown:
            raise ValueError(f"Unknown day groups: {', '.join(unknown)}")
        if not value:
            raise ValueError("At least one day group must be included")
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
