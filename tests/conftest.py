"""Shared test fixtures."""

import asyncio
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from uuid import UUID

import pytest

from meal_logger.adapters.memory_meal_repository import InMemoryMealRepository
from meal_logger.adapters.memory_user_repository import InMemoryUserRepository
from meal_logger.config import Settings
from meal_logger.containers import AppContainer
from meal_logger.domain.analysis import AnalysisFailureKind
from meal_logger.domain.meals import DateRange, MealRecord, MealUpdate
from meal_logger.services.analysis import (
    AnalysisClient,
    AnalysisClientError,
    MealAnalysisGateway,
)
from meal_logger.services.auth import TokenService
from meal_logger.services.cache import InMemoryCache
from meal_logger.services.conversation import ConversationService
from meal_logger.services.meals import MealLogService, MealRepository, MealStore
from meal_logger.services.photos import PhotoService, PhotoStorage
from meal_logger.services.users import UserService

PNG_DATA_URL = (
    "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR4"
    "2mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

TEXT_ANSWER = {
    "estimated_carbs": 55,
    "estimated_sugar": 4,
    "summary": "Rice and beans with a moderate carb load.",
    "carb_source": "rice",
    "food_items": ["rice", "beans"],
    "recommendations": ["Pair with a protein", "Walk for 10 minutes after eating"],
}

PHOTO_ANSWER = {
    "foods": ["rice", "grilled chicken"],
    "description": "A plate of rice with chicken",
    "carb_source": "rice",
    "estimated_carbs": 45,
}

CLARIFY_ANSWER = {"questions": ["How many cups of rice did you have?"]}


@dataclass
class FakeAnalysisClient(AnalysisClient):
    """Answers by schema name and records every call."""

    answers: dict[str, dict[str, object]] = field(
        default_factory=lambda: {
            "meal_analysis": dict(TEXT_ANSWER),
            "photo_analysis": dict(PHOTO_ANSWER),
            "clarifying_questions": dict(CLARIFY_ANSWER),
        }
    )
    calls: list[dict[str, object]] = field(default_factory=list)

    async def complete(  # noqa: PLR0913
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        prompt: str,
        schema_name: str,
        schema: dict[str, object],
        image_url: str | None = None,
    ) -> dict[str, object]:
        self.calls.append(
            {"schema_name": schema_name, "prompt": prompt, "image_url": image_url}
        )
        if schema_name not in self.answers:
            raise AnalysisClientError(AnalysisFailureKind.UPSTREAM, "no answer")
        return self.answers[schema_name]


@dataclass
class FailingAnalysisClient(AnalysisClient):
    """Fails every call with the configured kind."""

    kind: AnalysisFailureKind = AnalysisFailureKind.UPSTREAM
    calls: int = 0

    async def complete(  # noqa: PLR0913
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        prompt: str,
        schema_name: str,
        schema: dict[str, object],
        image_url: str | None = None,
    ) -> dict[str, object]:
        self.calls += 1
        raise AnalysisClientError(self.kind, "upstream failed")


@dataclass
class SlowAnalysisClient(AnalysisClient):
    """Never answers within a short timeout."""

    delay_seconds: float = 1.0

    async def complete(  # noqa: PLR0913
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        prompt: str,
        schema_name: str,
        schema: dict[str, object],
        image_url: str | None = None,
    ) -> dict[str, object]:
        await asyncio.sleep(self.delay_seconds)
        return dict(TEXT_ANSWER)


@dataclass
class BrokenMealRepository(MealRepository):
    """Relational stand-in whose every call fails like a lost connection."""

    fail_schema: bool = False
    calls: int = 0

    def _fail(self) -> None:
        self.calls += 1
        raise ConnectionError("database unreachable")

    def ensure_schema(self) -> None:
        if self.fail_schema:
            self._fail()

    def insert(self, record: MealRecord) -> MealRecord:
        self._fail()
        return record

    def list_meals(
        self,
        offset: int,
        limit: int,
        date_range: DateRange | None = None,
        user_id: UUID | None = None,
        unowned_only: bool = False,
    ) -> tuple[list[MealRecord], int]:
        self._fail()
        return [], 0

    def get(self, meal_id: UUID) -> MealRecord | None:
        self._fail()
        return None

    def update(
        self, meal_id: UUID, update: MealUpdate, updated_at: datetime
    ) -> MealRecord | None:
        self._fail()
        return None

    def delete(self, meal_id: UUID) -> bool:
        self._fail()
        return False


@dataclass
class FakePhotoStorage(PhotoStorage):
    """Keeps uploads in memory; can be told to fail."""

    fail: bool = False
    uploads: dict[str, tuple[bytes, str]] = field(default_factory=dict)

    def upload(self, path: str, content: bytes, content_type: str) -> str:
        if self.fail:
            raise ConnectionError("storage unreachable")
        self.uploads[path] = (content, content_type)
        return f"https://storage.example.com/meal-photos/{path}"


class SteppingClock:
    """Clock that advances one minute per reading."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 5, 14, 12, 30, tzinfo=UTC)

    def __call__(self) -> datetime:
        now = self.current
        self.current = now + timedelta(minutes=1)
        return now


@pytest.fixture
def settings() -> Settings:
    return Settings(
        openai_api_key="openai-key",
        jwt_secret_key="test-secret",
        timezone="UTC",
    )


@pytest.fixture
def analysis_client() -> FakeAnalysisClient:
    return FakeAnalysisClient()


@pytest.fixture
def photo_storage() -> FakePhotoStorage:
    return FakePhotoStorage()


@pytest.fixture
def meal_store() -> MealStore:
    return MealStore(primary=None, fallback=InMemoryMealRepository())


@pytest.fixture
def container(
    settings: Settings,
    analysis_client: FakeAnalysisClient,
    photo_storage: FakePhotoStorage,
    meal_store: MealStore,
) -> Iterator[AppContainer]:
    analysis = MealAnalysisGateway(
        client=analysis_client,
        model=settings.openai_model,
        timeout_seconds=settings.openai_timeout_seconds,
        fallback_carbs_g=settings.fallback_carbs_g,
    )
    meal_log_service = MealLogService(store=meal_store, analysis=analysis)
    photo_service = PhotoService(photo_storage)
    token_service = TokenService(
        secret_key=settings.jwt_secret_key,
        expiration_minutes=settings.jwt_expiration_minutes,
    )
    user_service = UserService(
        repository=InMemoryUserRepository(),
        tokens=token_service,
        meal_store=meal_store,
    )
    conversation_service = ConversationService(
        sessions=InMemoryCache(),
        analysis=analysis,
        photos=photo_service,
        meal_log=meal_log_service,
        timezone=settings.timezone,
        fallback_carbs_g=settings.fallback_carbs_g,
    )

    async def close_resources() -> None:
        return None

    yield AppContainer(
        settings=settings,
        meal_store=meal_store,
        analysis=analysis,
        meal_log_service=meal_log_service,
        photo_service=photo_service,
        token_service=token_service,
        user_service=user_service,
        conversation_service=conversation_service,
        close_resources=close_resources,
    )
