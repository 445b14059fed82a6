"""Guided meal-logging conversation endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from meal_logger.api.auth import optional_user
from meal_logger.api.schemas import (
    ConversationEventRequest,
    ConversationStartRequest,
    conversation_payload,
)
from meal_logger.domain.conversation import (
    Cancelled,
    Confirmed,
    ConversationEvent,
    ConversationSession,
    DescriptionSubmitted,
    MealTypeChosen,
    PhotoSelected,
    PortionAnswered,
    Skipped,
    TextFallbackChosen,
)
from meal_logger.services.auth import TokenClaims  # noqa: TC001
from meal_logger.services.conversation import (
    ConversationNotFoundError,
    InvalidTransitionError,
)
from meal_logger.services.photos import InvalidImageError, parse_data_url

if TYPE_CHECKING:
    from meal_logger.containers import AppContainer

router = APIRouter(prefix="/conversations", tags=["conversations"])

_SIMPLE_EVENTS: dict[str, type[ConversationEvent]] = {
    "type-instead": TextFallbackChosen,
    "skip": Skipped,
    "confirm": Confirmed,
    "cancel": Cancelled,
}


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found"
    )


def _owned_session(
    container: AppContainer, session_id: UUID, claims: TokenClaims | None
) -> ConversationSession:
    session = container.conversation_service.get(session_id)
    if session is None:
        raise _not_found()
    if session.user_id is not None and (
        claims is None or claims.user_id != session.user_id
    ):
        raise _not_found()
    return session


def _to_event(payload: ConversationEventRequest) -> ConversationEvent:
    simple = _SIMPLE_EVENTS.get(payload.type)
    if simple is not None:
        return simple()
    if payload.type == "photo":
        if not payload.image:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Image is required"
            )
        try:
            parse_data_url(payload.image)
        except InvalidImageError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
            ) from exc
        return PhotoSelected(payload.image)
    if payload.type == "description":
        return DescriptionSubmitted(payload.text or "")
    if payload.type == "portion":
        return PortionAnswered(payload.text or "")
    if payload.type == "meal-type":
        return MealTypeChosen(payload.meal_type)
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=f"Unknown event type: {payload.type}",
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def start_conversation(
    request: Request,
    payload: ConversationStartRequest | None = None,
    claims: TokenClaims | None = Depends(optional_user),
) -> dict[str, object]:
    """Open a logging conversation, or an edit conversation for ``mealId``."""
    container: AppContainer = request.app.state.container
    options = payload or ConversationStartRequest()
    session = container.conversation_service.start(
        user_id=claims.user_id if claims else None,
        meal_id=options.meal_id,
        clarify_portions=options.clarify_portions,
    )
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Meal not found"
        )
    return conversation_payload(session)


@router.get("/{session_id}")
async def get_conversation(
    session_id: UUID,
    request: Request,
    claims: TokenClaims | None = Depends(optional_user),
) -> dict[str, object]:
    container: AppContainer = request.app.state.container
    return conversation_payload(_owned_session(container, session_id, claims))


@router.post("/{session_id}/events")
async def post_event(
    session_id: UUID,
    payload: ConversationEventRequest,
    request: Request,
    claims: TokenClaims | None = Depends(optional_user),
) -> dict[str, object]:
    """Apply a user action and return the updated conversation."""
    container: AppContainer = request.app.state.container
    _owned_session(container, session_id, claims)
    event = _to_event(payload)
    try:
        session = await container.conversation_service.handle(session_id, event)
    except ConversationNotFoundError as exc:
        raise _not_found() from exc
    except InvalidTransitionError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc
    return conversation_payload(session)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_conversation(
    session_id: UUID,
    request: Request,
    claims: TokenClaims | None = Depends(optional_user),
) -> Response:
    container: AppContainer = request.app.state.container
    _owned_session(container, session_id, claims)
    container.conversation_service.cancel(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
