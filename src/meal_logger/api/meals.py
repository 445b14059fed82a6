"""Meal CRUD endpoints."""

from __future__ import annotations

from datetime import date  # noqa: TC003
from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from meal_logger.api.auth import optional_user
from meal_logger.api.schemas import (
    MealCreateRequest,
    MealUpdateRequest,
    logged_meal_payload,
    meal_page_payload,
    meal_payload,
)
from meal_logger.domain.meals import MealUpdate
from meal_logger.services.auth import TokenClaims  # noqa: TC001

if TYPE_CHECKING:
    from meal_logger.containers import AppContainer

router = APIRouter(prefix="/meals", tags=["meals"])

MAX_PAGE_SIZE = 100


def _user_id(claims: TokenClaims | None) -> UUID | None:
    return claims.user_id if claims else None


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Meal not found")


@router.post("")
async def create_meal(
    payload: MealCreateRequest,
    request: Request,
    claims: TokenClaims | None = Depends(optional_user),
) -> dict[str, object]:
    """Analyze and store a meal; analysis failures still store it."""
    container: AppContainer = request.app.state.container
    logged = await container.meal_log_service.log_meal(
        description=payload.description,
        meal_type=payload.meal_type,
        user_id=_user_id(claims),
        photo_url=payload.photo_url,
        carb_source=payload.carb_source,
        estimated_carbs=payload.estimated_carbs,
    )
    return logged_meal_payload(logged, "Meal logged successfully")


@router.get("")
async def list_meals(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=MAX_PAGE_SIZE),
    day: date | None = Query(default=None, alias="date"),
    claims: TokenClaims | None = Depends(optional_user),
) -> dict[str, object]:
    """Return meals newest first, optionally for one calendar day."""
    container: AppContainer = request.app.state.container
    meal_page = container.meal_log_service.list_meals(
        page=page, limit=limit, day=day, user_id=_user_id(claims)
    )
    return meal_page_payload(meal_page)


@router.get("/{meal_id}")
async def get_meal(
    meal_id: UUID,
    request: Request,
    claims: TokenClaims | None = Depends(optional_user),
) -> dict[str, object]:
    container: AppContainer = request.app.state.container
    meal = container.meal_log_service.get_meal(meal_id, _user_id(claims))
    if meal is None:
        raise _not_found()
    return {"meal": meal_payload(meal)}


@router.put("/{meal_id}")
async def update_meal(
    meal_id: UUID,
    payload: MealUpdateRequest,
    request: Request,
    claims: TokenClaims | None = Depends(optional_user),
) -> dict[str, object]:
    """Apply a partial edit; a new description is re-analyzed."""
    container: AppContainer = request.app.state.container
    logged = await container.meal_log_service.update_meal(
        meal_id,
        MealUpdate(
            description=payload.description,
            meal_type=payload.meal_type,
            estimated_carbs=payload.estimated_carbs,
            estimated_sugar=payload.estimated_sugar,
            ai_summary=payload.ai_summary,
            carb_source=payload.carb_source,
            photo_url=payload.photo_url,
        ),
        _user_id(claims),
    )
    if logged is None:
        raise _not_found()
    return logged_meal_payload(logged, "Meal updated successfully")


@router.delete("/{meal_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_meal(
    meal_id: UUID,
    request: Request,
    claims: TokenClaims | None = Depends(optional_user),
) -> Response:
    container: AppContainer = request.app.state.container
    if not container.meal_log_service.delete_meal(meal_id, _user_id(claims)):
        raise _not_found()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
