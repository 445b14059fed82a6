"""Meal analysis through a language/vision model with standard fallbacks."""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from meal_logger.domain.analysis import (
    AnalysisFailure,
    AnalysisFailureKind,
    AnalysisResult,
    ClarifyResult,
    PhotoAnalysis,
    TextAnalysis,
)

_logger = logging.getLogger(__name__)

FALLBACK_SUGAR_G = 5.0
FALLBACK_RECOMMENDATIONS = [
    "Consider taking a gentle walk after this meal",
    "Monitor your blood glucose levels in the next 2 hours",
]
DEFAULT_QUESTION = "Could you tell me more about the portion sizes?"
MAX_QUESTIONS = 2

_CARB_FOODS = (
    "rice",
    "pasta",
    "noodles",
    "bread",
    "naan",
    "tortilla",
    "potato",
    "fries",
    "beans",
    "lentils",
    "oatmeal",
    "cereal",
    "fruit",
    "banana",
    "apple",
    "quinoa",
    "couscous",
    "wrap",
    "bun",
    "roll",
    "crackers",
    "chips",
)

_NULLABLE_STRING = {"anyOf": [{"type": "string"}, {"type": "null"}]}

TEXT_ANALYSIS_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "estimated_carbs": {"type": "number", "minimum": 0},
        "estimated_sugar": {"type": "number", "minimum": 0},
        "summary": {"type": "string"},
        "carb_source": _NULLABLE_STRING,
        "food_items": {"type": "array", "items": {"type": "string"}},
        "recommendations": {"type": "array", "items": {"type": "string"}},
    },
    "required": [
        "estimated_carbs",
        "estimated_sugar",
        "summary",
        "carb_source",
        "food_items",
        "recommendations",
    ],
    "additionalProperties": False,
}

PHOTO_ANALYSIS_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "foods": {"type": "array", "items": {"type": "string"}},
        "description": {"type": "string"},
        "carb_source": _NULLABLE_STRING,
        "estimated_carbs": {"type": "number", "minimum": 0},
    },
    "required": ["foods", "description", "carb_source", "estimated_carbs"],
    "additionalProperties": False,
}

CLARIFY_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "questions": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["questions"],
    "additionalProperties": False,
}

_SYSTEM_CONTEXT = (
    "You are a nutritionist specializing in gestational diabetes. "
    "Be conservative with estimates and consider cultural foods."
)


class AnalysisClientError(Exception):
    """Provider failure already classified by the client adapter."""

    def __init__(self, kind: AnalysisFailureKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class AnalysisClient(Protocol):
    """Interface for structured model completions."""

    async def complete(  # noqa: PLR0913
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        prompt: str,
        schema_name: str,
        schema: dict[str, object],
        image_url: str | None = None,
    ) -> dict[str, object]:
        """Return the model's JSON answer for the prompt."""


class _QuestionList(BaseModel):
    questions: list[str]


M = TypeVar("M", bound=BaseModel)


@dataclass
class MealAnalysisGateway:
    """Builds analysis prompts, bounds each call and applies fallbacks.

    The ``request_*`` methods report failures as values. The ``analyze_*`` and
    ``clarify`` methods turn a failure into the standard estimate with an
    advisory ``error`` so callers never see an exception.
    """

    client: AnalysisClient | None
    model: str
    reasoning_effort: str | None = None
    store: bool = False
    timeout_seconds: float = 20.0
    fallback_carbs_g: float = 30.0

    async def request_text_analysis(
        self, description: str
    ) -> AnalysisResult[TextAnalysis]:
        """Ask the model for a carb estimate of a described meal."""
        prompt = (
            f"{_SYSTEM_CONTEXT}\n"
            "Analyze the meal description and provide estimated carbohydrates "
            "in grams, estimated sugar in grams, a one-sentence summary, the "
            "single ingredient contributing most carbohydrates (or null), the "
            "individual food items, and 2-3 practical recommendations for "
            "managing blood glucose during pregnancy.\n"
            f'Meal description: "{description}"'
        )
        return await self._request(
            TextAnalysis,
            prompt=prompt,
            schema_name="meal_analysis",
            schema=TEXT_ANALYSIS_SCHEMA,
        )

    async def request_photo_analysis(
        self, image_url: str
    ) -> AnalysisResult[PhotoAnalysis]:
        """Ask the model to identify the foods in a meal photo."""
        prompt = (
            f"{_SYSTEM_CONTEXT}\n"
            "Identify the foods in this meal photo. Return each food as a short "
            "name, a short description of the plate, the food contributing most "
            "carbohydrates (or null), and the estimated total carbohydrates in "
            "grams. Return an empty food list if no food is visible."
        )
        return await self._request(
            PhotoAnalysis,
            prompt=prompt,
            schema_name="photo_analysis",
            schema=PHOTO_ANALYSIS_SCHEMA,
            image_url=image_url,
        )

    async def request_clarifying_questions(
        self, description: str
    ) -> AnalysisResult[ClarifyResult]:
        """Ask the model for follow-up questions about a meal."""
        prompt = (
            f"{_SYSTEM_CONTEXT}\n"
            f'Given this meal description: "{description}"\n'
            "Generate 1-2 clarifying questions to better estimate the "
            "carbohydrate content. Focus on portion sizes, specific "
            "ingredients, cooking methods and cultural food items."
        )
        result = await self._request(
            _QuestionList,
            prompt=prompt,
            schema_name="clarifying_questions",
            schema=CLARIFY_SCHEMA,
        )
        if result.failure is not None or result.value is None:
            return AnalysisResult(failure=result.failure)
        questions = [q.strip() for q in result.value.questions if q.strip()]
        if not questions:
            return AnalysisResult.failed(
                AnalysisFailureKind.MALFORMED, "Model returned no questions"
            )
        return AnalysisResult.success(
            ClarifyResult(questions=questions[:MAX_QUESTIONS])
        )

    async def analyze_text(self, description: str) -> TextAnalysis:
        """Return a carb estimate, falling back to the standard estimate."""
        result = await self.request_text_analysis(description)
        if result.ok:
            return result.value
        return fallback_text_analysis(
            description, result.failure, self.fallback_carbs_g
        )

    async def analyze_photo(self, image_url: str) -> PhotoAnalysis:
        """Return identified foods, falling back to an empty identification."""
        result = await self.request_photo_analysis(image_url)
        if result.ok:
            return result.value
        return fallback_photo_analysis(result.failure, self.fallback_carbs_g)

    async def clarify(self, description: str) -> ClarifyResult:
        """Return 1-2 follow-up questions, falling back to a portion question."""
        result = await self.request_clarifying_questions(description)
        if result.ok:
            return result.value
        return fallback_questions(result.failure)

    async def _request(  # noqa: PLR0913
        self,
        model_cls: type[M],
        *,
        prompt: str,
        schema_name: str,
        schema: dict[str, object],
        image_url: str | None = None,
    ) -> AnalysisResult[M]:
        if self.client is None:
            return AnalysisResult.failed(
                AnalysisFailureKind.UNAVAILABLE, "No analysis client configured"
            )
        try:
            raw = await asyncio.wait_for(
                self.client.complete(
                    model=self.model,
                    reasoning_effort=self.reasoning_effort,
                    store=self.store,
                    prompt=prompt,
                    schema_name=schema_name,
                    schema=schema,
                    image_url=image_url,
                ),
                timeout=self.timeout_seconds,
            )
        except TimeoutError:
            _logger.warning(
                "Meal analysis timed out",
                extra={"schema": schema_name, "timeout": self.timeout_seconds},
            )
            return AnalysisResult.failed(
                AnalysisFailureKind.TIMEOUT,
                f"No answer within {self.timeout_seconds:g}s",
            )
        except AnalysisClientError as exc:
            _logger.warning(
                "Meal analysis failed: %s",
                exc,
                extra={"schema": schema_name, "kind": exc.kind.value},
            )
            return AnalysisResult.failed(exc.kind, str(exc))
        except Exception as exc:
            _logger.exception("Meal analysis failed", extra={"schema": schema_name})
            return AnalysisResult.failed(AnalysisFailureKind.UPSTREAM, str(exc))

        try:
            return AnalysisResult.success(model_cls.model_validate(raw))
        except ValidationError as exc:
            _logger.warning(
                "Meal analysis returned an invalid payload",
                extra={"schema": schema_name},
            )
            return AnalysisResult.failed(AnalysisFailureKind.MALFORMED, str(exc))


def advisory_message(failure: AnalysisFailure | None) -> str:
    """Return the user-facing note shown with standard estimates."""
    if failure is not None and failure.kind is AnalysisFailureKind.UNAVAILABLE:
        return "AI analysis is not configured. Using standard estimates."
    if failure is not None and failure.kind is AnalysisFailureKind.QUOTA:
        return (
            "AI analysis temporarily unavailable due to quota limits. "
            "Using standard estimates."
        )
    return "AI analysis temporarily unavailable. Using standard estimates."


def fallback_text_analysis(
    description: str, failure: AnalysisFailure | None, carbs_g: float = 30.0
) -> TextAnalysis:
    """Standard estimate for a described meal."""
    return TextAnalysis(
        estimated_carbs=carbs_g,
        estimated_sugar=FALLBACK_SUGAR_G,
        summary=f"Meal logged: {description}",
        carb_source=extract_carb_source(description),
        food_items=[],
        recommendations=list(FALLBACK_RECOMMENDATIONS),
        error=advisory_message(failure),
    )


def fallback_photo_analysis(
    failure: AnalysisFailure | None, carbs_g: float = 30.0
) -> PhotoAnalysis:
    """Empty identification; the conversation asks for a description instead."""
    return PhotoAnalysis(
        foods=[],
        description="",
        carb_source=None,
        estimated_carbs=carbs_g,
        error=advisory_message(failure),
    )


def fallback_questions(failure: AnalysisFailure | None) -> ClarifyResult:
    """Single generic portion question."""
    question = DEFAULT_QUESTION
    if failure is not None and failure.kind is AnalysisFailureKind.QUOTA:
        question = f"AI temporarily unavailable. {DEFAULT_QUESTION}"
    return ClarifyResult(questions=[question], error=advisory_message(failure))


def extract_carb_source(description: str) -> str | None:
    """Return the first well-known carb food named in the description."""
    lowered = description.lower()
    for food in _CARB_FOODS:
        if re.search(rf"\b{re.escape(food)}(?:e?s)?\b", lowered):
            return food
    return None
