import pytest

from app.schemas.calendar import (
    convert_meeting_minutes,
    day_group_for_day,
    minutes_to_time,
    normalize_day,
    paired_day,
    parse_time_to_minutes,
    per_meeting_minutes,
    time_period,
)


def test_time_parsing_and_formatting():
    assert parse_time_to_minutes("07:30") == 450
    assert parse_time_to_minutes("13:05:00") == 785
    assert minutes_to_time(450) == "07:30"
    with pytest.raises(ValueError):
        parse_time_to_minutes("7:30")


def test_day_normalization_and_groups():
    assert normalize_day("Mon") == "monday"
    assert normalize_day(" Thursday ") == "thursday"
    assert day_group_for_day("wednesday") == "MW"
    assert day_group_for_day("friday") == "FRI"
    with pytest.raises(ValueError):
        normalize_day("someday")


def test_paired_day():
    assert paired_day("monday") == "wednesday"
    assert paired_day("thursday") == "tuesday"
    assert paired_day("friday") is None


def test_duration_law_between_day_groups():
    # single -> paired halves, paired -> single doubles, same family keeps
    assert convert_meeting_minutes(180, "FRI", "MW") == 90
    assert convert_meeting_minutes(90, "TTH", "SAT") == 180
    assert convert_meeting_minutes(90, "MW", "TTH") == 90
    assert convert_meeting_minutes(180, "FRI", "SUN") == 180
    assert per_meeting_minutes(180, "MW") == 90
    assert per_meeting_minutes(180, "FRI") == 180


def test_time_period_boundary():
    assert time_period(11 * 60 + 59) == "morning"
    assert time_period(12 * 60) == "afternoon"
