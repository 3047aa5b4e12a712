import random
from collections import Counter

from app.services.chromosome import (
    ChromosomeOperators,
    ConflictIndex,
    Gene,
    day_group_caps,
    normalize,
    session_group_id,
    split_sessions,
)
from app.services.constraints import ConstraintEvaluator
from app.services.planning import build_planning_graph


def operators_for(graph, seed=3):
    return ChromosomeOperators(graph, ConstraintEvaluator(graph), random.Random(seed))


def gene(unit_id, room_id, slot_id, day, start, end, *, is_lab=False):
    return Gene(
        unit_id=unit_id,
        room_id=room_id,
        time_slot_id=slot_id,
        day=day,
        is_lab=is_lab,
        start=start,
        end=end,
        session_group_id=session_group_id(unit_id, is_lab),
    )


def campus_graph(builder):
    builder.room("R1")
    builder.room("R2")
    builder.room("LAB1", room_type="laboratory")
    builder.slot("MW", "07:30", "09:00", priority=1)
    builder.slot("MW", "09:00", "10:30", priority=1)
    builder.slot("TTH", "07:30", "09:00", priority=2)
    builder.slot("FRI", "07:30", "10:30", priority=3)
    builder.subject("IT101", lecture_hours=2, lab_hours=3)
    builder.row("IT101", needs_lab=True, faculty=("fac-1",))
    builder.row("GE101", faculty=("fac-2",))
    builder.row("GE102", faculty=("fac-3",))
    return build_planning_graph(builder.build())


def test_seed_covers_every_session_with_paired_meetings(setup_builder):
    graph = campus_graph(setup_builder)

    chromosome = operators_for(graph).seed(randomized=False)

    sessions = split_sessions(chromosome)
    expected = {(unit.id, item.is_lab) for unit in graph.units for item in unit.sessions}
    assert set(sessions) == expected
    for genes in sessions.values():
        slot = graph.slots_by_id[genes[0].time_slot_id]
        assert sorted(item.day for item in genes) == sorted(slot.days)
        assert len({item.session_group_id for item in genes}) == 1
    assert chromosome == normalize(chromosome)


def test_deterministic_seed_is_conflict_free_when_room_allows(setup_builder):
    graph = campus_graph(setup_builder)

    chromosome = operators_for(graph).seed(randomized=False)

    assert ConstraintEvaluator(graph).evaluate(chromosome).hard_violations == 0


def test_seed_is_reproducible_for_same_random_seed(setup_builder):
    graph = campus_graph(setup_builder)

    first = operators_for(graph, seed=11).seed(randomized=True)
    second = operators_for(graph, seed=11).seed(randomized=True)

    assert first == second


def test_day_group_caps_scale_with_rooms_and_slots(setup_builder):
    for name in ("R1", "R2", "R3"):
        setup_builder.room(name)
    for hour in range(7, 12):
        setup_builder.slot("MW", f"{hour:02d}:00", f"{hour + 1:02d}:00")
    setup_builder.slot("TTH", "07:30", "09:00")
    for hour in range(7, 17):
        setup_builder.slot("FRI", f"{hour:02d}:00", f"{hour + 1:02d}:00")
    setup_builder.row("IT101")
    graph = build_planning_graph(setup_builder.build())

    assert day_group_caps(graph) == {"MW": 12, "TTH": 10, "FRI": 18}


def test_seed_prefers_paired_groups_over_slot_priority(setup_builder):
    setup_builder.room("R1")
    setup_builder.slot("FRI", "07:30", "10:30", priority=0)
    setup_builder.slot("MW", "07:30", "09:00", priority=5)
    setup_builder.row("IT101")
    graph = build_planning_graph(setup_builder.build())

    chromosome = operators_for(graph).seed(randomized=False)

    assert {item.day for item in chromosome} == {"monday", "wednesday"}


def test_seed_stops_filling_a_day_group_at_its_cap(setup_builder):
    setup_builder.room("R1")
    for group in ("FRI", "SAT"):
        for hour in range(7, 17):
            setup_builder.slot(group, f"{hour:02d}:00", f"{hour + 1:02d}:00")
    for index in range(8):
        setup_builder.subject(f"C{index}", lecture_hours=1)
        setup_builder.row(f"C{index}", block=index + 1, faculty=(f"fac-{index}",))
    graph = build_planning_graph(setup_builder.build(), included_day_groups=["FRI", "SAT"])
    assert day_group_caps(graph)["FRI"] == 6

    chromosome = operators_for(graph).seed(randomized=False)

    assert Counter(item.day for item in chromosome) == {"friday": 6, "saturday": 2}
    assert ConstraintEvaluator(graph).evaluate(chromosome).hard_violations == 0


def test_move_from_friday_to_mw_halves_meetings(setup_builder):
    setup_builder.room("R1")
    setup_builder.slot("FRI", "07:30", "10:30")
    mw_slot = setup_builder.slot("MW", "07:30", "09:00")
    setup_builder.row("IT101")
    graph = build_planning_graph(setup_builder.build(), included_day_groups=["MW", "FRI"])
    operators = operators_for(graph)
    friday = (gene("row-1", "room-R1", "slot-FRI-07:30", "friday", 450, 630),)

    moved = operators.move_session(friday, graph.rooms_by_id["room-R1"], graph.slots_by_id[mw_slot])

    assert [(item.day, item.start, item.end) for item in moved] == [
        ("monday", 450, 540),
        ("wednesday", 450, 540),
    ]
    assert sum(item.duration for item in moved) == 180


def test_move_from_tth_to_friday_doubles_meeting(setup_builder):
    setup_builder.room("R1")
    setup_builder.slot("TTH", "07:30", "09:00")
    fri_slot = setup_builder.slot("FRI", "13:00", "16:00")
    setup_builder.row("IT101")
    graph = build_planning_graph(setup_builder.build(), included_day_groups=["TTH", "FRI"])
    paired = (
        gene("row-1", "room-R1", "slot-TTH-07:30", "tuesday", 450, 540),
        gene("row-1", "room-R1", "slot-TTH-07:30", "thursday", 450, 540),
    )

    moved = operators_for(graph).move_session(paired, graph.rooms_by_id["room-R1"], graph.slots_by_id[fri_slot])

    assert [(item.day, item.start, item.end) for item in moved] == [("friday", 780, 960)]


def test_day_group_mutation_applies_duration_law(setup_builder):
    setup_builder.room("R1")
    setup_builder.slot("FRI", "07:30", "10:30")
    setup_builder.slot("MW", "07:30", "09:00")
    setup_builder.row("IT101")
    graph = build_planning_graph(setup_builder.build(), included_day_groups=["MW", "FRI"])
    chromosome = (gene("row-1", "room-R1", "slot-FRI-07:30", "friday", 450, 630),)

    # One room and one slot per group leave a day-group change as the only move.
    mutated = operators_for(graph).mutate(chromosome, 1.0)

    assert [(item.day, item.start, item.end) for item in mutated] == [
        ("monday", 450, 540),
        ("wednesday", 450, 540),
    ]
    assert {item.duration for item in mutated} == {90}


def test_mutation_with_zero_rate_returns_same_chromosome(setup_builder):
    graph = campus_graph(setup_builder)
    operators = operators_for(graph)
    chromosome = operators.seed(randomized=False)

    assert operators.mutate(chromosome, 0.0) is chromosome


def test_crossover_keeps_one_placement_per_session(setup_builder):
    graph = campus_graph(setup_builder)
    operators = operators_for(graph)
    parent_a = operators.seed(randomized=True)
    parent_b = operators.seed(randomized=True)

    child = operators.crossover(parent_a, parent_b)

    counts = Counter(item.session_key for item in child)
    for unit in graph.units:
        for requirement in unit.sessions:
            key = (unit.id, requirement.is_lab)
            genes = [item for item in child if item.session_key == key]
            assert genes in (
                [item for item in parent_a if item.session_key == key],
                [item for item in parent_b if item.session_key == key],
            )
            assert counts[key] == len(genes)


def test_repair_moves_clashing_session_to_free_option(setup_builder):
    setup_builder.room("R1")
    setup_builder.slot("FRI", "07:30", "10:30")
    setup_builder.slot("FRI", "10:30", "13:30")
    setup_builder.row("A", block=1, faculty=("fac-1",))
    setup_builder.row("B", block=2, faculty=("fac-2",))
    graph = build_planning_graph(setup_builder.build())
    evaluator = ConstraintEvaluator(graph)
    clashing = normalize(
        [
            gene("row-1", "room-R1", "slot-FRI-07:30", "friday", 450, 630),
            gene("row-2", "room-R1", "slot-FRI-07:30", "friday", 450, 630),
        ]
    )
    assert evaluator.evaluate(clashing).hard_violations == 1

    repaired = ChromosomeOperators(graph, evaluator, random.Random(1)).repair(clashing)

    assert evaluator.evaluate(repaired).hard_violations == 0
    assert {item.time_slot_id for item in repaired} == {"slot-FRI-07:30", "slot-FRI-10:30"}


def test_repair_leaves_feasible_chromosome_untouched(setup_builder):
    graph = campus_graph(setup_builder)
    operators = operators_for(graph)
    chromosome = operators.seed(randomized=False)

    assert operators.repair(chromosome) is chromosome


def test_sync_parallel_copies_leader_placement(setup_builder):
    setup_builder.room("R1")
    setup_builder.room("R2")
    setup_builder.slot("FRI", "07:30", "10:30")
    setup_builder.slot("FRI", "10:30", "13:30")
    setup_builder.row("EL1", parallel=("EL2",))
    graph = build_planning_graph(setup_builder.build())
    leader, follower = next(iter(graph.parallel_groups.values()))
    drifted = normalize(
        [
            gene(leader, "room-R1", "slot-FRI-07:30", "friday", 450, 630),
            gene(follower, "room-R2", "slot-FRI-10:30", "friday", 630, 810),
        ]
    )

    synced = operators_for(graph).sync_parallel(drifted)

    by_unit = {item.unit_id: item for item in synced}
    assert (by_unit[follower].room_id, by_unit[follower].time_slot_id) == ("room-R1", "slot-FRI-07:30")
    assert by_unit[follower].session_group_id == session_group_id(follower, False)


def test_conflict_index_counts_other_occupants(setup_builder):
    graph = campus_graph(setup_builder)
    index = ConflictIndex(graph)
    first = (gene("row-2", "room-R1", "slot-FRI-07:30", "friday", 450, 630),)
    other = (gene("row-3", "room-R1", "slot-FRI-07:30", "friday", 450, 630),)

    index.add(first)
    # Same room and same cohort block.
    assert index.clashes(other) == 2
    assert index.clashes(first) == 0

    index.remove(first)
    assert index.clashes(other) == 0
