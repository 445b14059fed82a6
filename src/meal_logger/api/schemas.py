"""Request bodies and response payloads for the JSON API."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from meal_logger.domain.conversation import ChatMessage, ConversationSession, MealDraft
from meal_logger.domain.meals import MealPage, MealRecord, MealType
from meal_logger.domain.users import UserProfile, UserRecord
from meal_logger.services.meals import LoggedMeal


class _RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MealCreateRequest(_RequestModel):
    description: str = Field(min_length=1)
    meal_type: MealType
    photo_url: str | None = None
    carb_source: str | None = None
    estimated_carbs: float | None = Field(default=None, ge=0.0)

    @field_validator("meal_type", mode="before")
    @classmethod
    def _parse_meal_type(cls, value: object) -> object:
        if isinstance(value, str):
            return MealType.parse(value)
        return value

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Description is required")
        return value.strip()


class MealUpdateRequest(_RequestModel):
    description: str | None = None
    meal_type: MealType | None = None
    estimated_carbs: float | None = Field(default=None, ge=0.0)
    estimated_sugar: float | None = Field(default=None, ge=0.0)
    ai_summary: str | None = None
    carb_source: str | None = None
    photo_url: str | None = None

    @field_validator("meal_type", mode="before")
    @classmethod
    def _parse_meal_type(cls, value: object) -> object:
        if isinstance(value, str):
            return MealType.parse(value)
        return value

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            raise ValueError("Description cannot be empty")
        return value.strip() if value is not None else None


class AnalyzeRequest(_RequestModel):
    action: str = "analyze"
    description: str | None = None
    image_url: str | None = None


class UploadRequest(_RequestModel):
    image: str


class RegisterRequest(_RequestModel):
    email: str = ""
    password: str = ""
    name: str = ""


class LoginRequest(_RequestModel):
    email: str
    password: str


class ProfileUpdateRequest(_RequestModel):
    name: str = ""


class ConversationStartRequest(_RequestModel):
    meal_id: UUID | None = None
    clarify_portions: bool = True


class ConversationEventRequest(_RequestModel):
    """One user action in a conversation.

    ``type`` is one of ``photo``, ``type-instead``, ``description``,
    ``portion``, ``meal-type``, ``skip``, ``confirm`` or ``cancel``.
    """

    type: str
    image: str | None = None
    text: str | None = None
    meal_type: MealType | None = None

    @field_validator("meal_type", mode="before")
    @classmethod
    def _parse_meal_type(cls, value: object) -> object:
        if isinstance(value, str):
            return MealType.parse(value)
        return value


def meal_payload(meal: MealRecord) -> dict[str, object]:
    return {
        "id": str(meal.id),
        "description": meal.description,
        "mealType": meal.meal_type.value,
        "estimatedCarbs": meal.estimated_carbs,
        "estimatedSugar": meal.estimated_sugar,
        "aiSummary": meal.ai_summary,
        "carbSource": meal.carb_source,
        "photoUrl": meal.photo_url,
        "createdAt": meal.created_at.isoformat(),
        "updatedAt": meal.updated_at.isoformat(),
    }


def logged_meal_payload(logged: LoggedMeal, message: str) -> dict[str, object]:
    payload: dict[str, object] = {
        "message": message,
        "meal": meal_payload(logged.meal),
        "recommendations": logged.recommendations,
    }
    if logged.error:
        payload["error"] = logged.error
    return payload


def meal_page_payload(page: MealPage) -> dict[str, object]:
    return {
        "meals": [meal_payload(meal) for meal in page.records],
        "pagination": {
            "page": page.page,
            "limit": page.limit,
            "total": page.total,
            "pages": page.pages,
        },
    }


def user_payload(user: UserRecord) -> dict[str, object]:
    return {"id": str(user.id), "email": user.email, "name": user.name}


def profile_payload(profile: UserProfile) -> dict[str, object]:
    return {
        "id": str(profile.id),
        "email": profile.email,
        "name": profile.name,
        "createdAt": profile.created_at.isoformat(),
        "mealCount": profile.meal_count,
    }


def conversation_payload(session: ConversationSession) -> dict[str, object]:
    payload: dict[str, object] = {
        "id": str(session.id),
        "step": session.step.value,
        "draft": _draft_payload(session.draft),
        "messages": [_message_payload(message) for message in session.messages],
        "editingMealId": (
            str(session.editing_meal_id) if session.editing_meal_id else None
        ),
        "clarifyPortions": session.clarify_portions,
    }
    if session.saved_meal is not None:
        payload["meal"] = meal_payload(session.saved_meal)
    if session.advisory:
        payload["error"] = session.advisory
    return payload


def _draft_payload(draft: MealDraft) -> dict[str, object]:
    return {
        "description": draft.description,
        "mealType": draft.meal_type.value if draft.meal_type else None,
        "estimatedCarbs": draft.estimated_carbs,
        "estimatedSugar": draft.estimated_sugar,
        "aiSummary": draft.ai_summary,
        "carbSource": draft.carb_source,
        "photoUrl": draft.photo_url,
        "recommendations": list(draft.recommendations),
        "pendingQuestions": list(draft.pending_questions),
    }


def _message_payload(message: ChatMessage) -> dict[str, object]:
    payload: dict[str, object] = {
        "role": message.role.value,
        "text": message.text,
        "createdAt": message.created_at.isoformat(),
    }
    if message.image_url:
        payload["imageUrl"] = message.image_url
    return payload
