"""
Structural edits on a Schema.

Each function leaves its input untouched and returns a new tree, ready to be
written back whole with SchemaRepository.replace.
"""

import uuid
from typing import Optional

from errors import SchemaEditError
from schemas import Category, Habit, Schema


def _category(schema: Schema, category_id: str) -> Category:
    category = schema.find_category(category_id)
    if category is None:
        raise SchemaEditError(f"Unknown category {category_id!r}")
    return category


def _habit(schema: Schema, category_id: str, habit_id: str) -> Habit:
    habit = _category(schema, category_id).find_habit(habit_id)
    if habit is None:
        raise SchemaEditError(f"Unknown habit {habit_id!r} in {category_id!r}")
    return habit


def set_category_purpose(schema: Schema, category_id: str, purpose: str) -> Schema:
    updated = schema.model_copy(deep=True)
    _category(updated, category_id).purpose = purpose
    return updated


def set_category_label(schema: Schema, category_id: str, label: str) -> Schema:
    updated = schema.model_copy(deep=True)
    _category(updated, category_id).label = label
    return updated


def rename_habit(schema: Schema, category_id: str, habit_id: str, name: str) -> Schema:
    updated = schema.model_copy(deep=True)
    _habit(updated, category_id, habit_id).name = name
    return updated


def set_habit_target(schema: Schema, category_id: str, habit_id: str, target: int) -> Schema:
    if target < 0:
        raise SchemaEditError("Target must be non-negative", reason="invalid")
    updated = schema.model_copy(deep=True)
    _habit(updated, category_id, habit_id).target = target
    return updated


def set_habit_rhythm(schema: Schema, category_id: str, habit_id: str, rhythm: str) -> Schema:
    if rhythm not in ("daily", "weekly"):
        raise SchemaEditError(f"Rhythm must be 'daily' or 'weekly', got {rhythm!r}", reason="invalid")
    updated = schema.model_copy(deep=True)
    _habit(updated, category_id, habit_id).rhythm = rhythm
    return updated


def set_habit_type(schema: Schema, category_id: str, habit_id: str, habit_type: str) -> Schema:
    if habit_type not in ("count", "boolean"):
        raise SchemaEditError(f"Type must be 'count' or 'boolean', got {habit_type!r}", reason="invalid")
    updated = schema.model_copy(deep=True)
    _habit(updated, category_id, habit_id).type = habit_type
    return updated


def new_habit_id(category: Category) -> str:
    taken = {h.id for h in category.habits}
    while True:
        candidate = f"{category.id[:1]}{uuid.uuid4().hex[:8]}"
        if candidate not in taken:
            return candidate


def add_habit(
    schema: Schema,
    category_id: str,
    name: str,
    rhythm: str = "weekly",
    target: int = 1,
    habit_type: str = "count",
    habit_id: Optional[str] = None,
) -> Schema:
    updated = schema.model_copy(deep=True)
    category = _category(updated, category_id)
    if habit_id is None:
        habit_id = new_habit_id(category)
    elif category.find_habit(habit_id) is not None:
        raise SchemaEditError(f"Habit {habit_id!r} already exists in {category_id!r}", reason="conflict")
    try:
        habit = Habit(id=habit_id, name=name, rhythm=rhythm, target=target, type=habit_type)
    except ValueError as e:
        raise SchemaEditError(str(e), reason="invalid") from e
    category.habits.append(habit)
    return updated


def remove_habit(schema: Schema, category_id: str, habit_id: str) -> Schema:
    # Old log entries keep referencing habit_id; aggregation ignores them.
    updated = schema.model_copy(deep=True)
    category = _category(updated, category_id)
    _habit(updated, category_id, habit_id)
    category.habits = [h for h in category.habits if h.id != habit_id]
    return updated
