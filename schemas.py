"""
Database Schemas for the SPIRE Rule of Life tracker

Each identity owns one Schema document (collection "config") holding its
category/habit tree, and a collection of review logs (collection "logs").
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


TRAILING_WINDOW = 7


class Habit(BaseModel):
    """
    A trackable activity inside one category.
    """
    id: str = Field(..., min_length=1, description="Unique within its category, e.g. s1")
    name: str = Field(..., description="Habit name, e.g. Scripture")
    rhythm: Literal["daily", "weekly"] = Field("weekly", description="How often this habit is intended")
    target: int = Field(0, ge=0, description="Target count per trailing window")
    type: Literal["count", "boolean"] = Field("count", description="Counted or simply done/not done")


class Category(BaseModel):
    """
    A life domain grouping habits. Icon and color are presentation tags;
    unknown tags are kept as-is.
    """
    id: str = Field(..., min_length=1, description="Unique, stable id, e.g. spiritual")
    label: str = Field(..., description="Display label")
    icon: str = Field("Heart", description="Icon tag: Heart, Dumbbell, Brain, Users, Smile, Briefcase")
    color: str = Field("slate", description="Color tag: indigo, emerald, sky, rose, amber, slate")
    purpose: str = Field("", description="Why this category matters")
    habits: List[Habit] = Field(default_factory=list)

    @field_validator("habits")
    @classmethod
    def unique_habit_ids(cls, habits: List[Habit]) -> List[Habit]:
        seen = set()
        for habit in habits:
            if habit.id in seen:
                raise ValueError(f"duplicate habit id {habit.id!r}")
            seen.add(habit.id)
        return habits

    def find_habit(self, habit_id: str) -> Optional[Habit]:
        return next((h for h in self.habits if h.id == habit_id), None)


class Schema(BaseModel):
    """
    The full category/habit tree for one identity.
    Collection: "config", document "{app_id}/{uid}/schema"
    """
    categories: List[Category] = Field(default_factory=list)

    @model_validator(mode="after")
    def unique_category_ids(self):
        ids = [c.id for c in self.categories]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate category ids: {', '.join(duplicates)}")
        return self

    def find_category(self, category_id: str) -> Optional[Category]:
        return next((c for c in self.categories if c.id == category_id), None)


class LogEntryCreate(BaseModel):
    """
    One review submission: per-habit counts plus a reflection note.
    """
    data: Dict[str, float] = Field(default_factory=dict, description="habit id -> count")
    reflection: str = Field("", description="Free-text notes")

    @field_validator("data")
    @classmethod
    def non_negative_counts(cls, data: Dict[str, float]) -> Dict[str, float]:
        negative = [k for k, v in data.items() if v < 0]
        if negative:
            raise ValueError(f"counts must be non-negative: {', '.join(sorted(negative))}")
        return data


class LogEntry(LogEntryCreate):
    """
    A stored review. Immutable once written.
    Collection: "logs"
    """
    id: str = Field(..., description="Store-assigned id")
    timestamp: Optional[datetime] = Field(None, description="Server-assigned creation time")


class HabitProgress(Habit):
    current: float = Field(0, description="Sum over the trailing window")
    progress: Optional[float] = Field(None, description="Percent of target, capped at 100")


class CategoryProgress(BaseModel):
    id: str
    label: str
    icon: str
    color: str
    purpose: str
    habits: List[HabitProgress] = Field(default_factory=list)
    progress: Optional[float] = Field(None, description="Mean of habit progress")


class ProgressReport(BaseModel):
    categories: List[CategoryProgress] = Field(default_factory=list)
    window: int = Field(0, description="Number of log entries aggregated")
    pulse: Optional[float] = Field(None, description="Mean of category progress")


class Identity(BaseModel):
    uid: str
    anonymous: bool = True
    provider: Literal["token", "anonymous"] = "anonymous"


def _habit(habit_id, name, target, habit_type="count"):
    return {"id": habit_id, "name": name, "rhythm": "weekly", "target": target, "type": habit_type}


DEFAULT_SCHEMA = {
    "categories": [
        {"id": "spiritual", "label": "Spiritual", "icon": "Heart", "color": "indigo",
         "purpose": "Connection with God", "habits": [_habit("s1", "Scripture", 7)]},
        {"id": "physical", "label": "Physical", "icon": "Dumbbell", "color": "emerald",
         "purpose": "Health & Vitality", "habits": [_habit("p1", "Exercise", 5)]},
        {"id": "intellectual", "label": "Intellectual", "icon": "Brain", "color": "sky",
         "purpose": "Learning", "habits": [_habit("i1", "Reading", 5)]},
        {"id": "relational", "label": "Relational", "icon": "Users", "color": "rose",
         "purpose": "Community", "habits": [_habit("r1", "Family Time", 7)]},
        {"id": "emotional", "label": "Emotional", "icon": "Smile", "color": "amber",
         "purpose": "Inner Peace", "habits": [_habit("e1", "Reflection", 1, "boolean")]},
        {"id": "career", "label": "Career", "icon": "Briefcase", "color": "slate",
         "purpose": "Impact", "habits": [_habit("c1", "Deep Work", 10)]},
    ]
}


def default_schema() -> Schema:
    return Schema.model_validate(DEFAULT_SCHEMA)
