from datetime import datetime, timedelta

import pytest

from aggregator import aggregate, habit_progress
from editing import remove_habit
from schemas import LogEntry, Schema, default_schema


def _schema(target=5):
    return Schema.model_validate({
        "categories": [
            {"id": "physical", "label": "Physical", "habits": [
                {"id": "h", "name": "Exercise", "target": target},
                {"id": "g", "name": "Stretch", "target": 0},
            ]},
        ]
    })


def _logs(counts, habit_id="h"):
    start = datetime(2026, 1, 1)
    entries = [
        LogEntry(id=str(i), data={habit_id: c}, timestamp=start - timedelta(days=i))
        for i, c in enumerate(counts)
    ]
    return entries


def _habit(report, habit_id):
    for category in report.categories:
        for habit in category.habits:
            if habit.id == habit_id:
                return habit
    return None


def test_full_window_reaches_target():
    report = aggregate(_schema(), _logs([1, 2, 0, 1, 1, 0, 0]))
    habit = _habit(report, "h")
    assert habit.current == 5
    assert habit.progress == 100
    assert report.window == 7


def test_no_logs_yields_zero():
    report = aggregate(default_schema(), [])
    assert report.window == 0
    for category in report.categories:
        for habit in category.habits:
            assert habit.current == 0
            assert habit.progress == 0


def test_only_most_recent_seven_count():
    report = aggregate(_schema(target=100), _logs([1] * 7 + [50, 50]))
    assert _habit(report, "h").current == 7


def test_short_window_is_not_padded():
    report = aggregate(_schema(), _logs([2, 1]))
    assert report.window == 2
    assert _habit(report, "h").current == 3
    assert _habit(report, "h").progress == pytest.approx(60.0)


def test_progress_is_capped():
    report = aggregate(_schema(target=2), _logs([3, 3]))
    assert _habit(report, "h").progress == 100


def test_zero_target_has_no_progress():
    report = aggregate(_schema(), _logs([1]))
    stretch = _habit(report, "g")
    assert stretch.current == 0
    assert stretch.progress is None
    assert habit_progress(10, 0) is None


def test_deleted_habit_is_ignored():
    schema = remove_habit(_schema(), "physical", "h")
    report = aggregate(schema, _logs([1, 2, 3]))
    assert _habit(report, "h") is None
    assert [h.id for h in report.categories[0].habits] == ["g"]


def test_category_and_pulse_averages():
    schema = Schema.model_validate({
        "categories": [
            {"id": "a", "label": "A", "habits": [
                {"id": "a1", "name": "x", "target": 2},
                {"id": "a2", "name": "y", "target": 4},
            ]},
            {"id": "b", "label": "B", "habits": [{"id": "b1", "name": "z", "target": 0}]},
            {"id": "c", "label": "C", "habits": [{"id": "c1", "name": "w", "target": 1}]},
        ]
    })
    logs = [LogEntry(id="1", data={"a1": 1, "a2": 1, "c1": 1})]
    report = aggregate(schema, logs)
    a, b, c = report.categories
    assert a.progress == pytest.approx(37.5)
    assert b.progress is None
    assert c.progress == 100
    assert report.pulse == pytest.approx((37.5 + 100) / 2)
