"""Bearer token issuance and verification."""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

import jwt
from jwt import ExpiredSignatureError
from werkzeug.security import check_password_hash, generate_password_hash

from meal_logger.domain.users import UserRecord


class TokenError(Exception):
    """Raised when a bearer token is missing, malformed or expired."""


@dataclass(frozen=True)
class TokenClaims:
    """Identity carried by a verified token."""

    user_id: UUID
    email: str


@dataclass
class TokenService:
    """Issues and verifies HS256 JWTs."""

    secret_key: str
    expiration_minutes: int
    algorithm: str = "HS256"

    def issue(self, user: UserRecord) -> str:
        """Return a signed token for the user."""
        issued_at = datetime.now(tz=UTC)
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "iat": issued_at,
            "exp": issued_at + timedelta(minutes=self.expiration_minutes),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> TokenClaims:
        """Decode a token and return its claims."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise TokenError("Token has expired.") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenError("Token is invalid.") from exc
        try:
            return TokenClaims(
                user_id=UUID(str(payload["sub"])), email=str(payload.get("email", ""))
            )
        except (KeyError, ValueError) as exc:
            raise TokenError("Token is invalid.") from exc


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    return check_password_hash(password_hash, password)
