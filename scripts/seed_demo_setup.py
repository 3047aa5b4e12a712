"""Seed the demo academic setup and optionally run one generation job.

Run:
  PYTHONPATH=backend python scripts/seed_demo_setup.py
"""

from __future__ import annotations

import logging
import os

from app.core.config import get_settings
from app.db.bootstrap import ensure_schema
from app.db.seed import seed_demo_setup
from app.db.session import SessionLocal
from app.schemas.generator import JobRequest
from app.services.generation_jobs import default_generation_settings, run_generation_job
from app.services.progress_store import get_progress_store
from app.services.schedule_store import SqlAcademicSetupSource, SqlScheduleWriter

RUN_GENERATION = os.getenv("SEED_RUN_GENERATION", "true").strip().lower() in {"1", "true", "yes", "on"}
RANDOM_SEED = int(os.getenv("SEED_RANDOM_SEED", "7"))


def main() -> None:
    logging.basicConfig(level=get_settings().log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    ensure_schema()
    with SessionLocal() as session:
        setup = seed_demo_setup(session)
        session.commit()
        setup_id = setup.id
        setup_name = setup.name

    print(f"Seeded academic setup: {setup_name} ({setup_id})")
    if not RUN_GENERATION:
        return

    request = JobRequest(
        academic_setup_id=setup_id,
        settings=default_generation_settings(random_seed=RANDOM_SEED),
    )
    store = get_progress_store()
    result = run_generation_job(
        request,
        setup_source=SqlAcademicSetupSource(),
        schedule_writer=SqlScheduleWriter(),
        progress_store=store,
    )
    record = store.get(request.job_key)
    print(f"Job {result.job_key}: {result.status.value} - {result.message}")
    if record is not None:
        print(f"  Progress: {record.progress}%  Schedule: {record.schedule_id}")
    if result.outcome is not None:
        print(f"  Fitness: {result.outcome.score.fitness:.2f}  Generations: {result.outcome.generations}")


if __name__ == "__main__":
    main()
