"""Model-backed analysis and photo upload endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Request, status

from meal_logger.api.schemas import AnalyzeRequest, UploadRequest
from meal_logger.services.photos import InvalidImageError, parse_data_url

if TYPE_CHECKING:
    from meal_logger.containers import AppContainer

router = APIRouter(tags=["analysis"])


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


@router.post("/ai/analyze")
async def analyze(payload: AnalyzeRequest, request: Request) -> dict[str, object]:
    """Dispatch on ``action``: text analysis, photo analysis or clarification.

    Upstream failures never fail the request; the fallback result is returned
    with an advisory ``error``.
    """
    container: AppContainer = request.app.state.container
    gateway = container.analysis
    description = (payload.description or "").strip()

    if payload.action == "photo":
        if not payload.image_url:
            raise _bad_request("Image URL is required for photo analysis")
        photo = await gateway.analyze_photo(payload.image_url)
        return _with_error(
            {"action": "photo", "analysis": photo.model_dump(by_alias=True)},
            photo.error,
        )

    if payload.action == "analyze":
        if not description:
            raise _bad_request("Description is required for analysis")
        text = await gateway.analyze_text(description)
        return _with_error(
            {
                "action": "analyze",
                "analysis": text.model_dump(by_alias=True),
                "message": text.summary,
            },
            text.error,
        )

    if payload.action == "clarify":
        if not description:
            raise _bad_request("Description is required for clarification")
        clarified = await gateway.clarify(description)
        return _with_error(
            {"action": "clarify", "questions": clarified.questions}, clarified.error
        )

    raise _bad_request('Invalid action. Use "analyze", "photo", or "clarify"')


@router.post("/uploads")
async def upload_photo(payload: UploadRequest, request: Request) -> dict[str, object]:
    """Store a photo; the local data URL is returned when storage fails."""
    container: AppContainer = request.app.state.container
    try:
        parse_data_url(payload.image)
    except InvalidImageError as exc:
        raise _bad_request(str(exc)) from exc
    outcome = container.photo_service.upload_best_effort(payload.image)
    return _with_error(
        {"url": outcome.url, "uploaded": outcome.uploaded}, outcome.error
    )


def _with_error(payload: dict[str, object], error: str | None) -> dict[str, object]:
    if error:
        payload["error"] = error
    return payload
