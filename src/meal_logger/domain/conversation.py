"""Domain models for the guided meal-logging conversation."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from meal_logger.domain.analysis import ClarifyResult, PhotoAnalysis, TextAnalysis
from meal_logger.domain.meals import MealRecord, MealType


class ConversationStep(Enum):
    """Stage of the logging dialogue."""

    PHOTO_CAPTURE = "photo-capture"
    TEXT_FALLBACK = "text-fallback"
    DESCRIBING = "awaiting-description"
    PORTION_CLARIFICATION = "awaiting-portion"
    MEAL_TYPE_SELECTION = "awaiting-meal-type"
    READY_TO_LOG = "ready-to-save"
    DONE = "done"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in {ConversationStep.DONE, ConversationStep.CANCELLED}


class Role(Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatMessage:
    """One exchanged message."""

    role: Role
    text: str
    created_at: datetime
    image_url: str | None = None


@dataclass(frozen=True)
class MealDraft:
    """Meal fields accumulated during the conversation."""

    description: str = ""
    meal_type: MealType | None = None
    estimated_carbs: float | None = None
    estimated_sugar: float = 0.0
    ai_summary: str | None = None
    carb_source: str | None = None
    photo_url: str | None = None
    recommendations: tuple[str, ...] = ()
    pending_questions: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConversationSession:
    """Transient, in-process state of one logging dialogue."""

    id: UUID
    step: ConversationStep
    draft: MealDraft
    messages: tuple[ChatMessage, ...] = ()
    editing_meal_id: UUID | None = None
    user_id: UUID | None = None
    clarify_portions: bool = True
    fallback_carbs_g: float = 30.0
    saved_meal: MealRecord | None = None
    advisory: str | None = None


# Events fed into the state machine.


@dataclass(frozen=True)
class PhotoSelected:
    image_data_url: str


@dataclass(frozen=True)
class PhotoUploaded:
    image_url: str
    uploaded: bool


@dataclass(frozen=True)
class PhotoAnalyzed:
    analysis: PhotoAnalysis


@dataclass(frozen=True)
class TextFallbackChosen:
    pass


@dataclass(frozen=True)
class DescriptionSubmitted:
    text: str


@dataclass(frozen=True)
class DescriptionAnalyzed:
    questions: ClarifyResult
    analysis: TextAnalysis


@dataclass(frozen=True)
class PortionAnswered:
    text: str


@dataclass(frozen=True)
class PortionAnalyzed:
    analysis: TextAnalysis


@dataclass(frozen=True)
class MealTypeChosen:
    """Explicit meal type, or None to infer from the time of day."""

    meal_type: MealType | None = None


@dataclass(frozen=True)
class Skipped:
    pass


@dataclass(frozen=True)
class Confirmed:
    pass


@dataclass(frozen=True)
class MealSaved:
    meal: MealRecord


@dataclass(frozen=True)
class Cancelled:
    pass


ConversationEvent = (
    PhotoSelected
    | PhotoUploaded
    | PhotoAnalyzed
    | TextFallbackChosen
    | DescriptionSubmitted
    | DescriptionAnalyzed
    | PortionAnswered
    | PortionAnalyzed
    | MealTypeChosen
    | Skipped
    | Confirmed
    | MealSaved
    | Cancelled
)


# Effects requested by the state machine and executed by the service.


@dataclass(frozen=True)
class UploadPhoto:
    image_data_url: str


@dataclass(frozen=True)
class AnalyzePhoto:
    image_url: str


@dataclass(frozen=True)
class ClarifyAndAnalyze:
    description: str


@dataclass(frozen=True)
class AnalyzeText:
    description: str


@dataclass(frozen=True)
class SaveMeal:
    draft: MealDraft
    meal_type: MealType
    meal_id: UUID | None = None
    user_id: UUID | None = None


ConversationEffect = (
    UploadPhoto | AnalyzePhoto | ClarifyAndAnalyze | AnalyzeText | SaveMeal
)


@dataclass(frozen=True)
class Transition:
    """Result of applying one event."""

    session: ConversationSession
    effects: list[ConversationEffect] = field(default_factory=list)
