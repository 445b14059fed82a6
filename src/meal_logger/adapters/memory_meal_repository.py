"""In-process meal repository."""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from meal_logger.domain.meals import DateRange, MealRecord, MealUpdate
from meal_logger.services.meals import MealRepository


@dataclass
class InMemoryMealRepository(MealRepository):
    """Non-durable meal storage guarded by a lock."""

    meals: dict[UUID, MealRecord] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def ensure_schema(self) -> None:
        """Nothing to initialize."""

    def insert(self, record: MealRecord) -> MealRecord:
        with self._lock:
            self.meals[record.id] = record
        return record

    def list_meals(
        self,
        offset: int,
        limit: int,
        date_range: DateRange | None,
        user_id: UUID | None,
        unowned_only: bool = False,
    ) -> tuple[list[MealRecord], int]:
        with self._lock:
            matching = [
                meal
                for meal in self.meals.values()
                if (date_range is None or date_range.contains(meal.created_at))
                and (user_id is None or meal.user_id == user_id)
                and not (unowned_only and meal.user_id is not None)
            ]
        matching.sort(key=lambda meal: meal.created_at, reverse=True)
        return matching[offset : offset + limit], len(matching)

    def get(self, meal_id: UUID) -> MealRecord | None:
        return self.meals.get(meal_id)

    def update(
        self, meal_id: UUID, update: MealUpdate, updated_at: datetime
    ) -> MealRecord | None:
        with self._lock:
            current = self.meals.get(meal_id)
            if current is None:
                return None
            updated = update.apply(current, updated_at)
            self.meals[meal_id] = updated
            return updated

    def delete(self, meal_id: UUID) -> bool:
        with self._lock:
            return self.meals.pop(meal_id, None) is not None
