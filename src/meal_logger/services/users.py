"""User registration, login and profile management."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID, uuid4

from meal_logger.domain.users import UserProfile, UserRecord
from meal_logger.services.auth import TokenService, hash_password, verify_password
from meal_logger.services.meals import MealStore

MIN_PASSWORD_LENGTH = 6

_logger = logging.getLogger(__name__)


class UserValidationError(ValueError):
    """Raised when registration or profile input is invalid."""

    def __init__(self, details: list[str]) -> None:
        super().__init__("Validation failed")
        self.details = details


class UserAlreadyExistsError(Exception):
    """Raised when an email is already registered."""


class InvalidCredentialsError(Exception):
    """Raised when an email/password pair does not match."""


class UserNotFoundError(Exception):
    """Raised when a token refers to a user that no longer exists."""


class UserRepository(Protocol):
    """Persistence interface for user data."""

    def get_by_email(self, email: str) -> UserRecord | None:
        """Return the user for an email, if present."""

    def get_by_id(self, user_id: UUID) -> UserRecord | None:
        """Return the user for an id, if present."""

    def create_user(self, user: UserRecord) -> UserRecord:
        """Persist and return a new user record."""

    def update_name(
        self, user_id: UUID, name: str, updated_at: datetime
    ) -> UserRecord | None:
        """Rename a user and return the updated record."""


@dataclass(frozen=True)
class AuthResult:
    """Issued token with the authenticated user."""

    token: str
    user: UserRecord


@dataclass
class UserService:
    """Application service for user lifecycle actions."""

    repository: UserRepository
    tokens: TokenService
    meal_store: MealStore

    def register(self, email: str, password: str, name: str) -> AuthResult:
        """Create a user and return a token for it."""
        errors = _validate_registration(email, password, name)
        if errors:
            raise UserValidationError(errors)
        normalized = email.strip().lower()
        if self.repository.get_by_email(normalized):
            raise UserAlreadyExistsError(normalized)
        now = datetime.now(tz=UTC)
        user = self.repository.create_user(
            UserRecord(
                id=uuid4(),
                email=normalized,
                name=name.strip(),
                password_hash=hash_password(password),
                created_at=now,
                updated_at=now,
            )
        )
        _logger.info("User registered", extra={"user_id": str(user.id)})
        return AuthResult(token=self.tokens.issue(user), user=user)

    def login(self, email: str, password: str) -> AuthResult:
        """Verify credentials and return a fresh token."""
        user = self.repository.get_by_email(email.strip().lower())
        if user is None or not verify_password(user.password_hash, password):
            raise InvalidCredentialsError
        return AuthResult(token=self.tokens.issue(user), user=user)

    def get_profile(self, user_id: UUID) -> UserProfile:
        """Return the user's profile with their meal count."""
        user = self.repository.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError(str(user_id))
        return _profile(user, self.meal_store.count(user_id))

    def update_profile(self, user_id: UUID, name: str) -> UserProfile:
        """Rename the user."""
        if not name.strip():
            raise UserValidationError(["Valid name is required"])
        user = self.repository.update_name(
            user_id, name.strip(), datetime.now(tz=UTC)
        )
        if user is None:
            raise UserNotFoundError(str(user_id))
        return _profile(user, self.meal_store.count(user_id))


def _validate_registration(email: str, password: str, name: str) -> list[str]:
    errors = []
    if "@" not in email:
        errors.append("Valid email is required")
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not name.strip():
        errors.append("Name is required")
    return errors


def _profile(user: UserRecord, meal_count: int) -> UserProfile:
    return UserProfile(
        id=user.id,
        email=user.email,
        name=user.name,
        created_at=user.created_at,
        meal_count=meal_count,
    )
