"""Models for meal analysis results."""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _AnalysisModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TextAnalysis(_AnalysisModel):
    """Carb estimate for a described meal."""

    estimated_carbs: float = Field(ge=0.0)
    estimated_sugar: float = Field(default=0.0, ge=0.0)
    summary: str
    carb_source: str | None = None
    food_items: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    error: str | None = None


class PhotoAnalysis(_AnalysisModel):
    """Foods identified in a meal photo."""

    foods: list[str] = Field(default_factory=list)
    description: str = ""
    carb_source: str | None = None
    estimated_carbs: float = Field(default=0.0, ge=0.0)
    error: str | None = None


class ClarifyResult(_AnalysisModel):
    """Follow-up questions about a described meal."""

    questions: list[str] = Field(min_length=1, max_length=2)
    error: str | None = None


class AnalysisFailureKind(Enum):
    """Why an analysis request did not produce a usable answer."""

    UNAVAILABLE = "unavailable"
    QUOTA = "quota"
    TIMEOUT = "timeout"
    MALFORMED = "malformed"
    UPSTREAM = "upstream"


@dataclass(frozen=True)
class AnalysisFailure:
    """Failure detail for an analysis request."""

    kind: AnalysisFailureKind
    message: str


T = TypeVar("T")


@dataclass(frozen=True)
class AnalysisResult(Generic[T]):
    """Either a parsed model answer or the reason there is none."""

    value: T | None = None
    failure: AnalysisFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None and self.value is not None

    @classmethod
    def success(cls, value: T) -> "AnalysisResult[T]":
        return cls(value=value)

    @classmethod
    def failed(cls, kind: AnalysisFailureKind, message: str) -> "AnalysisResult[T]":
        return cls(failure=AnalysisFailure(kind=kind, message=message))
