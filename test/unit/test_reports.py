"""Unit tests for report aggregation, PDF export, volume math and limits."""

from datetime import date

import pytest

from reppy.limits import LIMITS, LimitExceeded, check_set_counts, validate_notes, validate_set_values
from reppy.reports import (
    calculate_monthly_report, format_duration, format_plank_time, render_monthly_report_pdf,
)
from reppy.volume import calculate_set_volume, calculate_total_volume, format_volume

BENCH = {"id": "e1", "name": "Bench Press", "type": "weighted"}
PUSHUPS = {"id": "e2", "name": "Push-ups", "type": "bodyweight"}
RUN = {"id": "e3", "name": "Running", "type": "cardio"}
PLANK = {"id": "e4", "name": "Plank", "type": "timed"}


def _set(exercise, **values):
    return dict(values, exercise=exercise)


@pytest.fixture
def month_of_workouts():
    return [
        {"date": "2024-03-05", "workout_sets": [
            _set(BENCH, reps=8, weight=60),
            _set(BENCH, reps=6, weight=70),
            _set(PUSHUPS, reps=20),
        ]},
        {"date": "2024-03-02", "workout_sets": [
            _set(RUN, distance_km=5, duration_minutes=30),
            _set(PLANK, plank_seconds=90),
            {"reps": 10, "exercise": None},
        ]},
    ]


@pytest.mark.unit
def test_monthly_stats(month_of_workouts):
    stats = calculate_monthly_report(month_of_workouts)["stats"]

    assert stats["workout_count"] == 2
    assert stats["total_sets"] == 6
    assert stats["total_reps"] == 34
    assert stats["max_weight"] == 70
    assert stats["total_volume"] == 8 * 60 + 6 * 70
    assert stats["total_distance"] == 5
    assert stats["total_duration_minutes"] == 30
    assert stats["total_plank_seconds"] == 90


@pytest.mark.unit
def test_breakdown_sorted_by_sets(month_of_workouts):
    breakdown = calculate_monthly_report(month_of_workouts)["exercise_breakdown"]

    assert breakdown[0]["name"] == "Bench Press"
    assert breakdown[0]["sets"] == 2
    assert breakdown[0]["max_weight"] == 70
    assert {e["name"] for e in breakdown} == {"Bench Press", "Push-ups", "Running", "Plank"}


@pytest.mark.unit
def test_daily_data_sorted_by_date(month_of_workouts):
    daily = calculate_monthly_report(month_of_workouts)["daily_data"]

    assert [d["date"] for d in daily] == ["2024-03-02", "2024-03-05"]
    # the set without an exercise is not part of any day
    assert daily[0]["sets"] == 2
    assert daily[1]["exercises"][0]["name"] == "Bench Press"
    assert daily[0]["exercises"][0]["distance"] == 5
    assert daily[0]["exercises"][1]["plank_seconds"] == 90


@pytest.mark.unit
def test_empty_month():
    report = calculate_monthly_report([])
    assert report["stats"]["workout_count"] == 0
    assert report["exercise_breakdown"] == []
    assert report["daily_data"] == []


@pytest.mark.unit
@pytest.mark.parametrize("minutes,expected", [(45, "45 min"), (60, "1 h"), (95, "1h 35min")])
def test_format_duration(minutes, expected):
    assert format_duration(minutes) == expected


@pytest.mark.unit
@pytest.mark.parametrize("seconds,expected", [(45, "45s"), (120, "2 min"), (90, "1min 30s")])
def test_format_plank_time(seconds, expected):
    assert format_plank_time(seconds) == expected


@pytest.mark.unit
def test_pdf_with_data(month_of_workouts):
    report = calculate_monthly_report(month_of_workouts)
    pdf = render_monthly_report_pdf(report, "Lifter <&>", date(2024, 3, 1))

    assert pdf.startswith(b"%PDF")
    assert len(pdf) > 1000


@pytest.mark.unit
def test_pdf_without_data():
    pdf = render_monthly_report_pdf(calculate_monthly_report([]), "Nobody", date(2024, 2, 1))
    assert pdf.startswith(b"%PDF")


@pytest.mark.unit
def test_pdf_chart_handles_many_days():
    workouts = [
        {"date": f"2024-01-{day:02d}", "workout_sets": [_set(PUSHUPS, reps=10)]}
        for day in range(1, 29)
    ]
    pdf = render_monthly_report_pdf(calculate_monthly_report(workouts), "Daily", date(2024, 1, 1))
    assert pdf.startswith(b"%PDF")


# ==================== Volume ====================


@pytest.mark.unit
def test_set_volume_rules():
    assert calculate_set_volume(_set(BENCH, reps=5, weight=100)) == 500
    assert calculate_set_volume(_set(PUSHUPS, reps=10), body_weight=80) == 800
    assert calculate_set_volume(_set(PUSHUPS, reps=10)) == 10
    assert calculate_set_volume(_set(RUN, distance_km=5)) == 0
    assert calculate_total_volume([_set(BENCH, reps=5, weight=100), _set(PUSHUPS, reps=10)]) == 510


@pytest.mark.unit
def test_format_volume():
    assert format_volume(0) == "—"
    assert format_volume(12345) == "12 345 kg × reps"
    assert format_volume(999.6, include_unit=False) == "1 000"


# ==================== Limits ====================


@pytest.mark.unit
def test_set_value_ranges():
    validate_set_values({"reps": 10, "weight": 100, "distance_km": None})
    with pytest.raises(LimitExceeded, match="Reps must be between 1 and 999"):
        validate_set_values({"reps": 1000})
    with pytest.raises(LimitExceeded, match="Weight"):
        validate_set_values({"weight": 0})
    with pytest.raises(LimitExceeded, match="Time"):
        validate_set_values({"plank_seconds": 3601})


@pytest.mark.unit
def test_notes_length():
    validate_notes("x" * LIMITS["MAX_NOTES_LENGTH"])
    validate_notes(None)
    with pytest.raises(LimitExceeded):
        validate_notes("x" * (LIMITS["MAX_NOTES_LENGTH"] + 1))


@pytest.mark.unit
def test_set_counts():
    check_set_counts(total=99, exercises=5, for_exercise=19)
    with pytest.raises(LimitExceeded, match="sets per workout"):
        check_set_counts(total=100, exercises=5, for_exercise=0)
    with pytest.raises(LimitExceeded, match="exercises per workout"):
        check_set_counts(total=30, exercises=30, for_exercise=0)
    # an exercise already in the workout does not count as new
    check_set_counts(total=30, exercises=30, for_exercise=1)
    with pytest.raises(LimitExceeded, match="sets per exercise"):
        check_set_counts(total=20, exercises=1, for_exercise=20)
