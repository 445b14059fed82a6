"""Meal storage with a one-way fallback to process memory, and meal logging."""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, time, timedelta
from typing import Protocol, TypeVar
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo

from meal_logger.domain.meals import (
    DateRange,
    MealPage,
    MealRecord,
    MealType,
    MealUpdate,
    NewMeal,
)
from meal_logger.services.analysis import MealAnalysisGateway, extract_carb_source

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class MealRepository(Protocol):
    """Persistence interface for meals."""

    def ensure_schema(self) -> None:
        """Create the meals table if it does not exist."""

    def insert(self, record: MealRecord) -> MealRecord:
        """Persist a fully populated record and return it."""

    def list_meals(
        self,
        offset: int,
        limit: int,
        date_range: DateRange | None,
        user_id: UUID | None,
        unowned_only: bool = False,
    ) -> tuple[list[MealRecord], int]:
        """Return a newest-first slice and the total matching count.

        ``user_id`` keeps one user's meals; ``unowned_only`` keeps meals that
        belong to nobody. With neither, every meal matches.
        """

    def get(self, meal_id: UUID) -> MealRecord | None:
        """Return a meal by id, if present."""

    def update(
        self, meal_id: UUID, update: MealUpdate, updated_at: datetime
    ) -> MealRecord | None:
        """Apply a partial update and return the new record."""

    def delete(self, meal_id: UUID) -> bool:
        """Delete a meal; return False when it did not exist."""


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class MealStore:
    """Meal persistence that degrades to memory after a backend error.

    When a primary (relational) repository is configured every operation goes
    there first. The first error from it flips a latch and every later call,
    including the failed one, is served by the in-memory fallback for the rest
    of the process lifetime.
    """

    primary: MealRepository | None
    fallback: MealRepository
    timezone: str = "UTC"
    clock: Callable[[], datetime] = _utc_now
    _use_fallback: bool = field(default=False, init=False)
    _schema_ready: bool = field(default=False, init=False)
    _last_created_at: datetime | None = field(default=None, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    @property
    def using_fallback(self) -> bool:
        return self.primary is None or self._use_fallback

    @property
    def backend_name(self) -> str:
        return "memory" if self.using_fallback else "relational"

    def ensure_schema(self) -> None:
        """Initialize the relational schema; a failure trips the latch."""
        if self.using_fallback or self.primary is None:
            return
        try:
            self.primary.ensure_schema()
        except Exception:
            _logger.exception("Failed to initialize meal schema")
            self._trip()
            return
        self._schema_ready = True

    def create(self, new_meal: NewMeal) -> MealRecord:
        """Assign id and timestamps and persist the meal."""
        now = self._next_timestamp()
        record = MealRecord(
            id=uuid4(),
            description=new_meal.description.strip(),
            meal_type=new_meal.meal_type,
            estimated_carbs=new_meal.estimated_carbs,
            estimated_sugar=new_meal.estimated_sugar,
            ai_summary=new_meal.ai_summary,
            carb_source=new_meal.carb_source,
            photo_url=new_meal.photo_url,
            created_at=now,
            updated_at=now,
            user_id=new_meal.user_id,
        )
        return self._run("create", lambda repository: repository.insert(record))

    def list(
        self,
        page: int = 1,
        limit: int = 20,
        day: date | None = None,
        user_id: UUID | None = None,
        unowned_only: bool = False,
    ) -> MealPage:
        """Return one page of meals, newest first."""
        if page < 1 or limit < 1:
            raise ValueError("page and limit must be positive")
        date_range = day_range(day, self.timezone) if day else None
        offset = (page - 1) * limit
        records, total = self._run(
            "list",
            lambda repository: repository.list_meals(
                offset, limit, date_range, user_id, unowned_only
            ),
        )
        return MealPage(records=records, page=page, limit=limit, total=total)

    def get(self, meal_id: UUID) -> MealRecord | None:
        return self._run("get", lambda repository: repository.get(meal_id))

    def update(self, meal_id: UUID, update: MealUpdate) -> MealRecord | None:
        updated_at = self.clock()
        return self._run(
            "update", lambda repository: repository.update(meal_id, update, updated_at)
        )

    def delete(self, meal_id: UUID) -> bool:
        return self._run("delete", lambda repository: repository.delete(meal_id))

    def count(self, user_id: UUID | None = None) -> int:
        """Return how many meals are stored for the user."""
        return self.list(page=1, limit=1, user_id=user_id).total

    def _run(self, operation: str, call: Callable[[MealRepository], T]) -> T:
        if not self.using_fallback and not self._schema_ready:
            self.ensure_schema()
        if self.using_fallback or self.primary is None:
            return call(self.fallback)
        try:
            return call(self.primary)
        except Exception:
            _logger.exception(
                "Postgres error, switching to in-memory store",
                extra={"operation": operation},
            )
            self._trip()
            return call(self.fallback)

    def _trip(self) -> None:
        with self._lock:
            if not self._use_fallback:
                self._use_fallback = True
                _logger.warning("Switched to in-memory meal storage")

    def _next_timestamp(self) -> datetime:
        with self._lock:
            now = self.clock()
            if self._last_created_at is not None and now <= self._last_created_at:
                now = self._last_created_at + timedelta(microseconds=1)
            self._last_created_at = now
            return now


def day_range(day: date, timezone_name: str) -> DateRange:
    """Return the UTC range covering a calendar day in the given timezone."""
    tz = ZoneInfo(timezone_name)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return DateRange(start=start.astimezone(UTC), end=end.astimezone(UTC))


@dataclass(frozen=True)
class LoggedMeal:
    """A stored meal with the advice returned by its analysis."""

    meal: MealRecord
    recommendations: list[str]
    error: str | None = None


@dataclass
class MealLogService:
    """Service that analyzes meals and persists them."""

    store: MealStore
    analysis: MealAnalysisGateway

    async def log_meal(  # noqa: PLR0913
        self,
        description: str,
        meal_type: MealType,
        user_id: UUID | None = None,
        photo_url: str | None = None,
        carb_source: str | None = None,
        estimated_carbs: float | None = None,
    ) -> LoggedMeal:
        """Analyze the description and store the meal.

        The meal is stored even when analysis fails; the standard estimate is
        used and the advisory is passed back to the caller.
        """
        analysis = await self.analysis.analyze_text(description)
        meal = self.store.create(
            NewMeal(
                description=description,
                meal_type=meal_type,
                estimated_carbs=(
                    estimated_carbs
                    if estimated_carbs is not None
                    else analysis.estimated_carbs
                ),
                estimated_sugar=analysis.estimated_sugar,
                ai_summary=analysis.summary,
                carb_source=(
                    carb_source
                    or analysis.carb_source
                    or extract_carb_source(description)
                ),
                photo_url=photo_url,
                user_id=user_id,
            )
        )
        _logger.info(
            "Meal logged",
            extra={"meal_id": str(meal.id), "backend": self.store.backend_name},
        )
        return LoggedMeal(
            meal=meal, recommendations=analysis.recommendations, error=analysis.error
        )

    def get_meal(self, meal_id: UUID, user_id: UUID | None = None) -> MealRecord | None:
        """Return a meal visible to the caller."""
        meal = self.store.get(meal_id)
        if meal is None:
            return None
        if meal.user_id is not None and meal.user_id != user_id:
            return None
        return meal

    async def update_meal(
        self, meal_id: UUID, update: MealUpdate, user_id: UUID | None = None
    ) -> LoggedMeal | None:
        """Apply an edit; a changed description is re-analyzed."""
        current = self.get_meal(meal_id, user_id)
        if current is None:
            return None
        recommendations: list[str] = []
        error = None
        if (
            update.description
            and update.description.strip() != current.description
            and update.estimated_carbs is None
        ):
            analysis = await self.analysis.analyze_text(update.description)
            recommendations = analysis.recommendations
            error = analysis.error
            update = replace(
                update,
                description=update.description.strip(),
                estimated_carbs=analysis.estimated_carbs,
                estimated_sugar=(
                    update.estimated_sugar
                    if update.estimated_sugar is not None
                    else analysis.estimated_sugar
                ),
                ai_summary=update.ai_summary or analysis.summary,
                carb_source=(
                    update.carb_source
                    or analysis.carb_source
                    or extract_carb_source(update.description)
                ),
            )
        updated = self.store.update(meal_id, update)
        if updated is None:
            return None
        return LoggedMeal(meal=updated, recommendations=recommendations, error=error)

    def delete_meal(self, meal_id: UUID, user_id: UUID | None = None) -> bool:
        """Delete a meal visible to the caller."""
        if self.get_meal(meal_id, user_id) is None:
            return False
        return self.store.delete(meal_id)

    def list_meals(
        self,
        page: int = 1,
        limit: int = 20,
        day: date | None = None,
        user_id: UUID | None = None,
    ) -> MealPage:
        """Anonymous callers see only meals that belong to nobody."""
        return self.store.list(
            page=page,
            limit=limit,
            day=day,
            user_id=user_id,
            unowned_only=user_id is None,
        )
