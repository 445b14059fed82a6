"""Domain models for application users."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class UserRecord:
    """Represents a user stored in the database."""

    id: UUID
    email: str
    name: str
    password_hash: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class UserProfile:
    """Public view of a user with usage counts."""

    id: UUID
    email: str
    name: str
    created_at: datetime
    meal_count: int
