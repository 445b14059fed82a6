"""Tests for container wiring and settings."""

import asyncio

import pytest
from pydantic import ValidationError

from meal_logger.adapters.openai_analysis_client import OpenAIAnalysisClient
from meal_logger.config import Settings, is_valid_timezone
from meal_logger.containers import build_container


def test_build_container_without_credentials_uses_memory() -> None:
    container = build_container(Settings(openai_api_key=None))

    assert container.meal_store.backend_name == "memory"
    assert container.analysis.client is None
    assert container.photo_service.storage is None
    assert not container.settings.database_configured
    asyncio.run(container.close_resources())


def test_build_container_with_openai_key(settings: Settings) -> None:
    container = build_container(settings)

    assert isinstance(container.analysis.client, OpenAIAnalysisClient)
    assert container.analysis.timeout_seconds == settings.openai_timeout_seconds
    assert container.conversation_service.meal_log is container.meal_log_service
    assert settings.analysis_configured
    asyncio.run(container.close_resources())


def test_is_valid_timezone() -> None:
    assert is_valid_timezone("America/Chicago")
    assert not is_valid_timezone("Mars/Olympus_Mons")


def test_settings_reject_unknown_timezone() -> None:
    with pytest.raises(ValidationError, match="Unknown timezone"):
        Settings(timezone="Not/AZone")


def test_settings_accept_known_timezone() -> None:
    assert Settings(timezone="Europe/Berlin").timezone == "Europe/Berlin"
