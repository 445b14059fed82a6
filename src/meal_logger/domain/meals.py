"""Domain models for meal logging."""

import math
from dataclasses import dataclass, fields, replace
from datetime import datetime
from enum import Enum
from uuid import UUID


class MealType(str, Enum):
    """Meal categories shown on the timeline."""

    BREAKFAST = "BREAKFAST"
    BRUNCH = "BRUNCH"
    LUNCH = "LUNCH"
    DINNER = "DINNER"
    SNACK = "SNACK"

    @classmethod
    def parse(cls, value: str) -> "MealType":
        """Parse a meal type regardless of case."""
        try:
            return cls(value.strip().upper())
        except ValueError as exc:
            allowed = ", ".join(member.value for member in cls)
            raise ValueError(f"Meal type must be one of: {allowed}") from exc


@dataclass(frozen=True)
class NewMeal:
    """Fields supplied when a meal is created."""

    description: str
    meal_type: MealType
    estimated_carbs: float
    estimated_sugar: float = 0.0
    ai_summary: str | None = None
    carb_source: str | None = None
    photo_url: str | None = None
    user_id: UUID | None = None

    def __post_init__(self) -> None:
        if not self.description.strip():
            raise ValueError("Description is required")
        if self.estimated_carbs < 0 or self.estimated_sugar < 0:
            raise ValueError("Carb and sugar estimates must be non-negative")


@dataclass(frozen=True)
class MealRecord:
    """A persisted meal entry."""

    id: UUID
    description: str
    meal_type: MealType
    estimated_carbs: float
    estimated_sugar: float
    ai_summary: str | None
    carb_source: str | None
    photo_url: str | None
    created_at: datetime
    updated_at: datetime
    user_id: UUID | None = None


@dataclass(frozen=True)
class MealUpdate:
    """Partial update for a meal; None leaves a field untouched."""

    description: str | None = None
    meal_type: MealType | None = None
    estimated_carbs: float | None = None
    estimated_sugar: float | None = None
    ai_summary: str | None = None
    carb_source: str | None = None
    photo_url: str | None = None

    def changes(self) -> dict[str, object]:
        """Return only the fields that were provided."""
        return {
            field.name: getattr(self, field.name)
            for field in fields(self)
            if getattr(self, field.name) is not None
        }

    def apply(self, record: MealRecord, updated_at: datetime) -> MealRecord:
        """Return the record with this update applied."""
        return replace(record, **self.changes(), updated_at=updated_at)


@dataclass(frozen=True)
class DateRange:
    """Half-open UTC range [start, end)."""

    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


@dataclass(frozen=True)
class MealPage:
    """One page of meals, newest first."""

    records: list[MealRecord]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit)
