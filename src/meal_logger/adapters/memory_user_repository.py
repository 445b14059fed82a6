"""In-process user repository used when no database is configured."""

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from uuid import UUID

from meal_logger.domain.users import UserRecord
from meal_logger.services.users import UserAlreadyExistsError, UserRepository


@dataclass
class InMemoryUserRepository(UserRepository):
    """Non-durable user storage."""

    users: dict[UUID, UserRecord] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def get_by_email(self, email: str) -> UserRecord | None:
        for user in list(self.users.values()):
            if user.email == email:
                return user
        return None

    def get_by_id(self, user_id: UUID) -> UserRecord | None:
        return self.users.get(user_id)

    def create_user(self, user: UserRecord) -> UserRecord:
        with self._lock:
            if any(existing.email == user.email for existing in self.users.values()):
                raise UserAlreadyExistsError(user.email)
            self.users[user.id] = user
        return user

    def update_name(
        self, user_id: UUID, name: str, updated_at: datetime
    ) -> UserRecord | None:
        with self._lock:
            current = self.users.get(user_id)
            if current is None:
                return None
            updated = replace(current, name=name, updated_at=updated_at)
            self.users[user_id] = updated
            return updated
