from __future__ import annotations

import logging

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

from app.db.base import Base
from app.db.session import engine as default_engine
import app.models  # noqa: F401

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "subjects": {"id", "code", "lecture_hours", "lab_hours", "category"},
    "rooms": {"id", "name", "room_type", "capacity", "priority", "class_settings"},
    "time_slots": {"id", "day_group", "start_time", "end_time", "priority"},
    "academic_setup_subjects": {
        "id",
        "academic_setup_id",
        "subject_id",
        "year_level",
        "block_number",
        "course_codes",
        "parallel_subject_ids",
    },
    "academic_setup_rooms": {"id", "academic_setup_id", "room_id"},
    "academic_setup_buildings": {"id", "academic_setup_id", "building"},
    "schedule_entries": {
        "id",
        "schedule_id",
        "planning_unit_key",
        "room_id",
        "time_slot_id",
        "day",
        "session_group_id",
    },
}


def _ensure_schedule_entry_unit_key_column(engine: Engine) -> None:
    with engine.begin() as connection:
        inspector = inspect(connection)
        if "schedule_entries" not in set(inspector.get_table_names()):
            return
        column_names = {item["name"] for item in inspector.get_columns("schedule_entries")}
        if "planning_unit_key" in column_names:
            return
        connection.execute(
            text("ALTER TABLE schedule_entries ADD COLUMN planning_unit_key VARCHAR(120) NOT NULL DEFAULT ''")
        )


def _assert_required_columns(engine: Engine) -> None:
    with engine.begin() as connection:
        inspector = inspect(connection)
        table_names = set(inspector.get_table_names())
        missing_tables = [name for name in REQUIRED_COLUMNS if name not in table_names]
        if missing_tables:
            raise RuntimeError(f"Missing required tables: {', '.join(sorted(missing_tables))}")

        missing_columns: list[str] = []
        for table_name, required in REQUIRED_COLUMNS.items():
            existing = {item["name"] for item in inspector.get_columns(table_name)}
            for column_name in sorted(required - existing):
                missing_columns.append(f"{table_name}.{column_name}")
        if missing_columns:
            raise RuntimeError(f"Missing required columns: {', '.join(missing_columns)}")


def ensure_schema(engine: Engine | None = None) -> None:
    bind = engine or default_engine
    try:
        Base.metadata.create_all(bind=bind)
        _ensure_schedule_entry_unit_key_column(bind)
        _assert_required_columns(bind)
    except Exception as exc:  # pragma: no cover - runtime environment dependent
        logger.exception("Schema bootstrap failed")
        raise RuntimeError("Schema bootstrap failed") from exc
