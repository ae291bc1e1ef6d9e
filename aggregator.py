from typing import List, Optional

from schemas import (
    TRAILING_WINDOW,
    CategoryProgress,
    HabitProgress,
    LogEntry,
    ProgressReport,
    Schema,
)


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def habit_progress(current: float, target: int) -> Optional[float]:
    if target <= 0:
        return None
    return min(100.0, 100.0 * current / target)


def aggregate(schema: Schema, logs: List[LogEntry], window: int = TRAILING_WINDOW) -> ProgressReport:
    """
    Sum each habit's counts over the most recent `window` reviews.

    `logs` must already be sorted newest first. Iteration is driven by the
    schema, so counts for habits that no longer exist are skipped.
    """
    recent = logs[:window]
    categories = []
    for category in schema.categories:
        habits = []
        for habit in category.habits:
            current = sum(entry.data.get(habit.id, 0) for entry in recent)
            habits.append(HabitProgress(
                **habit.model_dump(),
                current=current,
                progress=habit_progress(current, habit.target),
            ))
        categories.append(CategoryProgress(
            id=category.id,
            label=category.label,
            icon=category.icon,
            color=category.color,
            purpose=category.purpose,
            habits=habits,
            progress=_mean([h.progress for h in habits if h.progress is not None]),
        ))

    return ProgressReport(
        categories=categories,
        window=len(recent),
        pulse=_mean([c.progress for c in categories if c.progress is not None]),
    )
