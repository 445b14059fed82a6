"""Registration, login and profile endpoints with bearer token auth."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from meal_logger.api.schemas import (
    LoginRequest,
    ProfileUpdateRequest,
    RegisterRequest,
    profile_payload,
    user_payload,
)
from meal_logger.services.auth import TokenClaims, TokenError
from meal_logger.services.users import (
    InvalidCredentialsError,
    UserAlreadyExistsError,
    UserNotFoundError,
    UserValidationError,
)

if TYPE_CHECKING:
    from meal_logger.containers import AppContainer

router = APIRouter(tags=["auth"])


async def optional_user(
    request: Request, authorization: str | None = Header(default=None)
) -> TokenClaims | None:
    """Return the caller's claims, or None for anonymous requests."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token"
        )
    container: AppContainer = request.app.state.container
    try:
        return container.token_service.verify(token.strip())
    except TokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)
        ) from exc


async def require_user(
    claims: TokenClaims | None = Depends(optional_user),
) -> TokenClaims:
    """Ensure requests carry a valid bearer token."""
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="No token provided"
        )
    return claims


@router.post("/auth/register")
async def register(payload: RegisterRequest, request: Request) -> dict[str, object]:
    """Create an account and return a token."""
    container: AppContainer = request.app.state.container
    try:
        result = container.user_service.register(
            payload.email, payload.password, payload.name
        )
    except UserValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Validation failed", "details": exc.details},
        ) from exc
    except UserAlreadyExistsError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="User already exists"
        ) from exc
    return {
        "message": "User registered successfully",
        "token": result.token,
        "user": user_payload(result.user),
    }


@router.post("/auth/login")
async def login(payload: LoginRequest, request: Request) -> dict[str, object]:
    """Exchange credentials for a token."""
    container: AppContainer = request.app.state.container
    try:
        result = container.user_service.login(payload.email, payload.password)
    except InvalidCredentialsError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        ) from exc
    return {
        "message": "Login successful",
        "token": result.token,
        "user": user_payload(result.user),
    }


@router.get("/user/profile")
async def get_profile(
    request: Request, claims: TokenClaims = Depends(require_user)
) -> dict[str, object]:
    container: AppContainer = request.app.state.container
    try:
        profile = container.user_service.get_profile(claims.user_id)
    except UserNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="User not found"
        ) from exc
    return {"user": profile_payload(profile)}


@router.put("/user/profile")
async def update_profile(
    payload: ProfileUpdateRequest,
    request: Request,
    claims: TokenClaims = Depends(require_user),
) -> dict[str, object]:
    container: AppContainer = request.app.state.container
    try:
        profile = container.user_service.update_profile(claims.user_id, payload.name)
    except UserValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=exc.details[0]
        ) from exc
    except UserNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="User not found"
        ) from exc
    return {"message": "Profile updated successfully", "user": profile_payload(profile)}
