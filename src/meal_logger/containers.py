"""Dependency container wiring for the application."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from meal_logger.adapters.memory_meal_repository import InMemoryMealRepository
from meal_logger.adapters.memory_user_repository import InMemoryUserRepository
from meal_logger.adapters.openai_analysis_client import OpenAIAnalysisClient
from meal_logger.adapters.supabase_meal_repository import SupabaseMealRepository
from meal_logger.adapters.supabase_photo_storage import SupabasePhotoStorage
from meal_logger.adapters.supabase_user_repository import SupabaseUserRepository
from meal_logger.config import Settings
from meal_logger.services.analysis import MealAnalysisGateway
from meal_logger.services.auth import TokenService
from meal_logger.services.cache import InMemoryCache
from meal_logger.services.conversation import ConversationService
from meal_logger.services.meals import MealLogService, MealStore
from meal_logger.services.photos import PhotoService
from meal_logger.services.users import UserRepository, UserService

_logger = logging.getLogger(__name__)


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    meal_store: MealStore
    analysis: MealAnalysisGateway
    meal_log_service: MealLogService
    photo_service: PhotoService
    token_service: TokenService
    user_service: UserService
    conversation_service: ConversationService
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container.

    Missing Supabase credentials select the in-memory backend and missing
    OpenAI credentials leave every analysis on the standard estimates.
    """
    resolved_settings = settings or Settings()
    primary_meals = None
    photo_storage = None
    user_repository: UserRepository
    if resolved_settings.database_configured:
        supabase_client = create_client(
            resolved_settings.supabase_url, resolved_settings.supabase_service_key
        )
        primary_meals = SupabaseMealRepository(supabase_client)
        photo_storage = SupabasePhotoStorage(
            supabase_client, resolved_settings.photo_bucket
        )
        user_repository = SupabaseUserRepository(supabase_client)
    else:
        _logger.warning("Supabase is not configured, meals are kept in memory")
        user_repository = InMemoryUserRepository()

    openai_client = None
    if resolved_settings.openai_api_key:
        openai_client = OpenAIAnalysisClient.create(
            resolved_settings.openai_api_key,
            resolved_settings.openai_timeout_seconds,
        )

    meal_store = MealStore(
        primary=primary_meals,
        fallback=InMemoryMealRepository(),
        timezone=resolved_settings.timezone,
    )
    analysis = MealAnalysisGateway(
        client=openai_client,
        model=resolved_settings.openai_model,
        reasoning_effort=resolved_settings.openai_reasoning_effort,
        store=resolved_settings.openai_store,
        timeout_seconds=resolved_settings.openai_timeout_seconds,
        fallback_carbs_g=resolved_settings.fallback_carbs_g,
    )
    meal_log_service = MealLogService(store=meal_store, analysis=analysis)
    photo_service = PhotoService(photo_storage)
    token_service = TokenService(
        secret_key=resolved_settings.jwt_secret_key,
        expiration_minutes=resolved_settings.jwt_expiration_minutes,
    )
    user_service = UserService(
        repository=user_repository, tokens=token_service, meal_store=meal_store
    )
    conversation_service = ConversationService(
        sessions=InMemoryCache(),
        analysis=analysis,
        photos=photo_service,
        meal_log=meal_log_service,
        timezone=resolved_settings.timezone,
        ttl_seconds=resolved_settings.conversation_ttl_seconds,
        fallback_carbs_g=resolved_settings.fallback_carbs_g,
    )

    async def close_resources() -> None:
        if openai_client is not None:
            await openai_client.close()

    return AppContainer(
        settings=resolved_settings,
        meal_store=meal_store,
        analysis=analysis,
        meal_log_service=meal_log_service,
        photo_service=photo_service,
        token_service=token_service,
        user_service=user_service,
        conversation_service=conversation_service,
        close_resources=close_resources,
    )
