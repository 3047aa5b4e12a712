import random

import pytest
from sqlalchemy import create_engine, inspect, select, text
from sqlalchemy.pool import StaticPool

from app.core.exceptions import ResourceNotFoundError
from app.db.bootstrap import ensure_schema
from app.db.seed import seed_demo_setup
from app.models.academic_setup import AcademicSetup, AcademicSetupBuilding, AcademicSetupRoom
from app.models.room import Room, RoomType
from app.models.schedule import Schedule, ScheduleEntry
from app.schemas.generator import GenerationSettings, JobRequest, JobStatus
from app.services.chromosome import ChromosomeOperators
from app.services.constraints import ConstraintEvaluator
from app.services.generation_jobs import run_generation_job
from app.services.planning import build_planning_graph
from app.services.schedule_store import SqlAcademicSetupSource, SqlScheduleWriter, load_schedule_chromosome


@pytest.fixture()
def demo_setup_id(session_factory):
    db = session_factory()
    try:
        setup = seed_demo_setup(db)
        setup_id = setup.id
        db.commit()
    finally:
        db.close()
    return setup_id


def test_loads_seeded_setup_into_planning_graph(session_factory, demo_setup_id):
    snapshot = SqlAcademicSetupSource(session_factory).load(demo_setup_id)

    graph = build_planning_graph(snapshot)

    by_code = {}
    for unit in graph.units:
        by_code.setdefault(unit.subject_code, []).append(unit)
    fused = by_code["GE101"]
    assert len(fused) == 1
    assert set(fused[0].course_codes) == {"BSIT", "BSCS"}
    assert fused[0].expected_enrollment == 75

    assert len(graph.parallel_groups) == 1
    assert by_code["EL1"][0].parallel_group_id == by_code["EL2"][0].parallel_group_id
    assert by_code["EL1"][0].co_faculty_ids == ("user-ana-reyes",)

    db = session_factory()
    try:
        gym_id = db.execute(select(Room.id).where(Room.name == "GYM")).scalar_one()
    finally:
        db.close()
    assert by_code["PE1"][0].allowed_room_ids == (gym_id,)
    assert len(graph.time_slots) == 11


def test_seeding_twice_does_not_duplicate_rows(session_factory, demo_setup_id):
    db = session_factory()
    try:
        again = seed_demo_setup(db)
        db.commit()
        assert again.id == demo_setup_id
    finally:
        db.close()

    snapshot = SqlAcademicSetupSource(session_factory).load(demo_setup_id)
    assert len(snapshot.setup_subjects) == 7
    assert len(snapshot.rooms) == 6


def add_annex_room(db, name="ANX1"):
    room = Room(name=name, room_type=RoomType.lecture, capacity=40, building="Annex Building", class_settings={})
    db.add(room)
    db.flush()
    return room


def loaded_room_names(session_factory, setup_id):
    return {room.name for room in SqlAcademicSetupSource(session_factory).load(setup_id).rooms}


def test_setup_without_pool_selection_loads_every_active_room(session_factory, demo_setup_id):
    db = session_factory()
    try:
        add_annex_room(db)
        retired = add_annex_room(db, "ANX2")
        retired.is_active = False
        db.commit()
    finally:
        db.close()

    names = loaded_room_names(session_factory, demo_setup_id)

    assert "ANX1" in names
    assert "ANX2" not in names
    assert len(names) == 7


def test_selected_rooms_are_the_whole_pool(session_factory, demo_setup_id):
    db = session_factory()
    try:
        add_annex_room(db)
        for name in ("R101", "LAB1", "GYM"):
            room_id = db.execute(select(Room.id).where(Room.name == name)).scalar_one()
            db.add(AcademicSetupRoom(academic_setup_id=demo_setup_id, room_id=room_id))
        # a building selection is ignored once rooms are picked
        db.add(AcademicSetupBuilding(academic_setup_id=demo_setup_id, building="Annex Building"))
        db.commit()
    finally:
        db.close()

    assert loaded_room_names(session_factory, demo_setup_id) == {"R101", "LAB1", "GYM"}


def test_selected_buildings_limit_pool_per_setup(session_factory, demo_setup_id):
    db = session_factory()
    try:
        add_annex_room(db)
        db.add(AcademicSetupBuilding(academic_setup_id=demo_setup_id, building="Main Academic Building"))
        annex_setup = AcademicSetup(name="Annex Term", academic_year="2026-2027")
        db.add(annex_setup)
        db.flush()
        db.add(AcademicSetupBuilding(academic_setup_id=annex_setup.id, building="Annex Building"))
        annex_setup_id = annex_setup.id
        db.commit()
    finally:
        db.close()

    main_names = loaded_room_names(session_factory, demo_setup_id)
    assert "ANX1" not in main_names
    assert main_names == {"R101", "R102", "R103", "LAB1", "HYB1", "GYM"}
    assert loaded_room_names(session_factory, annex_setup_id) == {"ANX1"}


def test_unknown_setup_raises_not_found(session_factory):
    with pytest.raises(ResourceNotFoundError):
        SqlAcademicSetupSource(session_factory).load("does-not-exist")


def test_persisted_schedule_reloads_as_same_chromosome(session_factory, demo_setup_id):
    graph = build_planning_graph(SqlAcademicSetupSource(session_factory).load(demo_setup_id))
    evaluator = ConstraintEvaluator(graph)
    chromosome = ChromosomeOperators(graph, evaluator, random.Random(1)).seed(randomized=False)
    score = evaluator.evaluate(chromosome)

    schedule_id = SqlScheduleWriter(session_factory).persist(
        chromosome,
        demo_setup_id,
        "user-admin",
        graph=graph,
        score=score,
        generations=3,
        converged=score.is_feasible,
        run_metadata={"job_key": "job-1"},
    )

    db = session_factory()
    try:
        schedule = db.get(Schedule, schedule_id)
        assert schedule.generation == 3
        assert schedule.hard_violations == score.hard_violations
        assert schedule.run_metadata["job_key"] == "job-1"
        assert schedule.run_metadata["score"]["fitness"] == score.fitness
        entries = db.execute(select(ScheduleEntry).where(ScheduleEntry.schedule_id == schedule_id)).scalars().all()
        assert len(entries) == len(chromosome)
        assert load_schedule_chromosome(db, schedule_id) == chromosome
    finally:
        db.close()


def test_reloading_unknown_schedule_raises(session_factory):
    db = session_factory()
    try:
        with pytest.raises(ResourceNotFoundError):
            load_schedule_chromosome(db, "missing")
    finally:
        db.close()


def test_ensure_schema_is_idempotent(db_engine):
    ensure_schema(db_engine)
    ensure_schema(db_engine)

    assert "schedule_entries" in inspect(db_engine).get_table_names()


def test_ensure_schema_adds_unit_key_to_legacy_entries_table():
    engine = create_engine("sqlite+pysqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    with engine.begin() as connection:
        connection.execute(
            text(
                "CREATE TABLE schedule_entries ("
                "id VARCHAR(36) PRIMARY KEY, schedule_id VARCHAR(36), academic_setup_subject_id VARCHAR(36), "
                "subject_id VARCHAR(36), room_id VARCHAR(36), time_slot_id VARCHAR(36), user_id VARCHAR(36), "
                "day VARCHAR(10), is_lab_session BOOLEAN, custom_start_time VARCHAR(5), "
                "custom_end_time VARCHAR(5), session_group_id VARCHAR(120), slots_span INTEGER)"
            )
        )

    ensure_schema(engine)

    columns = {item["name"] for item in inspect(engine).get_columns("schedule_entries")}
    assert "planning_unit_key" in columns
    engine.dispose()


def test_generation_job_end_to_end_against_database(session_factory, demo_setup_id, progress_store):
    request = JobRequest(
        academic_setup_id=demo_setup_id,
        user_id="user-admin",
        job_key="job-e2e",
        settings=GenerationSettings(
            population_size=10,
            max_generations=5,
            elite_count=2,
            tournament_size=3,
            random_seed=3,
        ),
    )

    result = run_generation_job(
        request,
        setup_source=SqlAcademicSetupSource(session_factory),
        schedule_writer=SqlScheduleWriter(session_factory),
        progress_store=progress_store,
    )

    assert result.status is JobStatus.completed
    assert result.schedule_id is not None
    record = progress_store.get("job-e2e")
    assert record.progress == 100
    assert record.schedule_id == result.schedule_id

    db = session_factory()
    try:
        schedule = db.get(Schedule, result.schedule_id)
        assert schedule.generation == result.outcome.generations
        assert schedule.created_by == "user-admin"
        assert len(schedule.run_metadata["generation_stats"]) <= 10
    finally:
        db.close()
