"""State machine for the guided meal-logging conversation.

``transition`` is pure: it maps a session and an event to the next session and
a list of effects (uploads, model calls, saves). ``ConversationService`` runs
those effects and feeds their results back in as events until none remain.
"""

import asyncio
import logging
import weakref
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo

from meal_logger.domain.analysis import TextAnalysis
from meal_logger.domain.conversation import (
    AnalyzePhoto,
    AnalyzeText,
    Cancelled,
    ChatMessage,
    ClarifyAndAnalyze,
    Confirmed,
    ConversationEffect,
    ConversationEvent,
    ConversationSession,
    ConversationStep,
    DescriptionAnalyzed,
    DescriptionSubmitted,
    MealDraft,
    MealSaved,
    MealTypeChosen,
    PhotoAnalyzed,
    PhotoSelected,
    PhotoUploaded,
    PortionAnalyzed,
    PortionAnswered,
    Role,
    SaveMeal,
    Skipped,
    TextFallbackChosen,
    Transition,
    UploadPhoto,
)
from meal_logger.domain.meals import MealRecord, MealType, MealUpdate, NewMeal
from meal_logger.services.analysis import MealAnalysisGateway, extract_carb_source
from meal_logger.services.cache import Cache
from meal_logger.services.meals import MealLogService
from meal_logger.services.photos import PhotoService

_logger = logging.getLogger(__name__)

UNSPECIFIED_MEAL = "Unspecified meal"

_PHOTO_STEPS = {
    ConversationStep.PHOTO_CAPTURE,
    ConversationStep.TEXT_FALLBACK,
    ConversationStep.DESCRIBING,
}
_DESCRIPTION_STEPS = {ConversationStep.TEXT_FALLBACK, ConversationStep.DESCRIBING}


class InvalidTransitionError(ValueError):
    """Raised when an event is not accepted in the session's current step."""


class ConversationNotFoundError(LookupError):
    """Raised when a session id is unknown or expired."""


def new_session(
    *,
    user_id: UUID | None = None,
    clarify_portions: bool = True,
    fallback_carbs_g: float = 30.0,
) -> ConversationSession:
    """Start at the photo capture step."""
    return ConversationSession(
        id=uuid4(),
        step=ConversationStep.PHOTO_CAPTURE,
        draft=MealDraft(),
        user_id=user_id,
        clarify_portions=clarify_portions,
        fallback_carbs_g=fallback_carbs_g,
    )


def edit_session(
    meal: MealRecord,
    now: datetime,
    *,
    user_id: UUID | None = None,
    clarify_portions: bool = True,
    fallback_carbs_g: float = 30.0,
) -> ConversationSession:
    """Start a session seeded from an existing meal."""
    session = ConversationSession(
        id=uuid4(),
        step=ConversationStep.DESCRIBING,
        draft=MealDraft(
            description=meal.description,
            meal_type=meal.meal_type,
            estimated_carbs=meal.estimated_carbs,
            estimated_sugar=meal.estimated_sugar,
            ai_summary=meal.ai_summary,
            carb_source=meal.carb_source,
            photo_url=meal.photo_url,
        ),
        editing_meal_id=meal.id,
        user_id=user_id,
        clarify_portions=clarify_portions,
        fallback_carbs_g=fallback_carbs_g,
    )
    return _say(
        session,
        "I see you want to update this meal. Would you like to take a new "
        "photo, or just tell me what changed?",
        now,
    )


def transition(  # noqa: PLR0911, PLR0912
    session: ConversationSession, event: ConversationEvent, now: datetime
) -> Transition:
    """Apply one event to a session."""
    step = session.step
    if step.terminal:
        raise InvalidTransitionError(f"Conversation already {step.value}")

    if isinstance(event, Cancelled):
        return Transition(replace(session, step=ConversationStep.CANCELLED))

    if isinstance(event, PhotoSelected) and step in _PHOTO_STEPS:
        session = _heard(session, "Here's what I'm eating", now, event.image_data_url)
        session = _with_draft(session, photo_url=event.image_data_url)
        return Transition(session, [UploadPhoto(event.image_data_url)])

    if isinstance(event, PhotoUploaded) and step in _PHOTO_STEPS:
        session = _with_draft(session, photo_url=event.image_url)
        return Transition(session, [AnalyzePhoto(event.image_url)])

    if isinstance(event, PhotoAnalyzed) and step in _PHOTO_STEPS:
        return Transition(_on_photo_analyzed(session, event, now))

    if isinstance(event, TextFallbackChosen) and step is ConversationStep.PHOTO_CAPTURE:
        session = _say(
            session, "What did you eat? Just describe it however feels natural.", now
        )
        return Transition(replace(session, step=ConversationStep.TEXT_FALLBACK))

    if isinstance(event, DescriptionSubmitted) and step in _DESCRIPTION_STEPS:
        text = event.text.strip()
        if not text:
            raise InvalidTransitionError("Description is required")
        session = _with_draft(_heard(session, text, now), description=text)
        return Transition(session, [ClarifyAndAnalyze(text)])

    if isinstance(event, DescriptionAnalyzed) and step in _DESCRIPTION_STEPS:
        return Transition(_on_description_analyzed(session, event, now))

    if isinstance(event, PortionAnswered) and (
        step is ConversationStep.PORTION_CLARIFICATION
    ):
        answer = event.text.strip()
        if not answer:
            raise InvalidTransitionError("Portion answer is required")
        description = f"{session.draft.description} ({answer})"
        session = _with_draft(
            _heard(session, answer, now),
            description=description,
            pending_questions=(),
        )
        return Transition(session, [AnalyzeText(description)])

    if isinstance(event, PortionAnalyzed) and (
        step is ConversationStep.PORTION_CLARIFICATION
    ):
        session = _apply_text_analysis(session, event.analysis)
        return Transition(_ask_meal_type(session, now))

    if isinstance(event, MealTypeChosen) and step in {
        ConversationStep.MEAL_TYPE_SELECTION,
        ConversationStep.READY_TO_LOG,
    }:
        meal_type = event.meal_type or infer_meal_type(now)
        if event.meal_type is not None:
            session = _heard(session, meal_type.value.lower(), now)
        session = _with_draft(session, meal_type=meal_type)
        return Transition(_ready(session, now))

    if isinstance(event, Skipped):
        return Transition(_skip(session, now))

    if isinstance(event, Confirmed) and step is ConversationStep.READY_TO_LOG:
        draft = session.draft
        if draft.estimated_carbs is None:
            draft = replace(draft, estimated_carbs=session.fallback_carbs_g)
        meal_type = draft.meal_type or infer_meal_type(now)
        return Transition(
            replace(session, draft=replace(draft, meal_type=meal_type)),
            [
                SaveMeal(
                    draft=draft,
                    meal_type=meal_type,
                    meal_id=session.editing_meal_id,
                    user_id=session.user_id,
                )
            ],
        )

    if isinstance(event, MealSaved) and step is ConversationStep.READY_TO_LOG:
        session = _say(
            session,
            f"Logged! Your {event.meal.meal_type.value.lower()} has been saved.",
            now,
        )
        return Transition(
            replace(session, step=ConversationStep.DONE, saved_meal=event.meal)
        )

    raise InvalidTransitionError(
        f"{type(event).__name__} is not accepted at step {step.value}"
    )


def infer_meal_type(moment: datetime) -> MealType:
    """Pick a meal type from the local time of day."""
    hour = moment.hour
    if 5 <= hour < 10:  # noqa: PLR2004
        return MealType.BREAKFAST
    if 10 <= hour < 12:  # noqa: PLR2004
        return MealType.BRUNCH
    if 12 <= hour < 15:  # noqa: PLR2004
        return MealType.LUNCH
    if 17 <= hour < 21:  # noqa: PLR2004
        return MealType.DINNER
    return MealType.SNACK


def _on_photo_analyzed(
    session: ConversationSession, event: PhotoAnalyzed, now: datetime
) -> ConversationSession:
    analysis = event.analysis
    if analysis.error is None and analysis.foods:
        food_list = ", ".join(analysis.foods)
        session = _with_draft(
            session,
            description=food_list,
            carb_source=analysis.carb_source,
            estimated_carbs=analysis.estimated_carbs,
            ai_summary=(
                f"Most carbs from {analysis.carb_source}"
                if analysis.carb_source
                else food_list
            ),
        )
        session = _say(session, f"I see {food_list}!\n\n{_estimate_text(session)}", now)
        return replace(session, step=ConversationStep.READY_TO_LOG, advisory=None)
    session = _say(
        session,
        "I couldn't quite make out the food. Could you describe what you're eating?",
        now,
    )
    return replace(session, step=ConversationStep.DESCRIBING, advisory=analysis.error)


def _on_description_analyzed(
    session: ConversationSession, event: DescriptionAnalyzed, now: datetime
) -> ConversationSession:
    session = _apply_text_analysis(session, event.analysis)
    session = replace(session, advisory=event.analysis.error or event.questions.error)
    if not session.clarify_portions:
        return _ready(session, now)
    questions = tuple(event.questions.questions)
    session = _with_draft(session, pending_questions=questions)
    session = _say(session, questions[0], now)
    return replace(session, step=ConversationStep.PORTION_CLARIFICATION)


def _skip(session: ConversationSession, now: datetime) -> ConversationSession:
    step = session.step
    if step is ConversationStep.PORTION_CLARIFICATION:
        return _ask_meal_type(_with_draft(session, pending_questions=()), now)
    if step is ConversationStep.MEAL_TYPE_SELECTION:
        session = _with_draft(
            session, meal_type=session.draft.meal_type or infer_meal_type(now)
        )
        return _ready(session, now)
    if step is ConversationStep.READY_TO_LOG:
        return session
    draft = session.draft
    description = draft.description or UNSPECIFIED_MEAL
    session = _with_draft(
        session,
        description=description,
        estimated_carbs=(
            draft.estimated_carbs
            if draft.estimated_carbs is not None
            else session.fallback_carbs_g
        ),
        ai_summary=draft.ai_summary or f"Meal logged: {description}",
    )
    return _ready(session, now)


def _ask_meal_type(
    session: ConversationSession, now: datetime
) -> ConversationSession:
    suggestion = (session.draft.meal_type or infer_meal_type(now)).value.lower()
    session = _say(
        session,
        f"{_estimate_text(session, closing=False)}\n\n"
        f"Which meal is this? It looks like {suggestion} time.",
        now,
    )
    return replace(session, step=ConversationStep.MEAL_TYPE_SELECTION)


def _ready(session: ConversationSession, now: datetime) -> ConversationSession:
    session = _say(session, f"Got it!\n\n{_estimate_text(session)}", now)
    return replace(session, step=ConversationStep.READY_TO_LOG)


def _estimate_text(session: ConversationSession, closing: bool = True) -> str:
    draft = session.draft
    carbs = (
        draft.estimated_carbs
        if draft.estimated_carbs is not None
        else session.fallback_carbs_g
    )
    lines = [f"**Estimated carbs: ~{carbs:g}g**"]
    if draft.carb_source:
        lines.append(f"Most carbs come from the {draft.carb_source}.")
    if closing:
        lines.append('Tap "Log Meal" below when you\'re ready to save.')
    return "\n\n".join(lines)


def _apply_text_analysis(
    session: ConversationSession, analysis: TextAnalysis
) -> ConversationSession:
    description = session.draft.description
    return _with_draft(
        session,
        estimated_carbs=analysis.estimated_carbs,
        estimated_sugar=analysis.estimated_sugar,
        ai_summary=analysis.summary,
        carb_source=analysis.carb_source or extract_carb_source(description),
        recommendations=tuple(analysis.recommendations),
    )


def _with_draft(session: ConversationSession, **changes: object) -> ConversationSession:
    return replace(session, draft=replace(session.draft, **changes))


def _say(session: ConversationSession, text: str, now: datetime) -> ConversationSession:
    message = ChatMessage(role=Role.ASSISTANT, text=text, created_at=now)
    return replace(session, messages=(*session.messages, message))


def _heard(
    session: ConversationSession,
    text: str,
    now: datetime,
    image_url: str | None = None,
) -> ConversationSession:
    message = ChatMessage(
        role=Role.USER, text=text, created_at=now, image_url=image_url
    )
    return replace(session, messages=(*session.messages, message))


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class ConversationService:
    """Runs conversations and the side effects they request."""

    sessions: Cache
    analysis: MealAnalysisGateway
    photos: PhotoService
    meal_log: MealLogService
    timezone: str = "UTC"
    ttl_seconds: int = 3600
    fallback_carbs_g: float = 30.0
    clock: Callable[[], datetime] = _utc_now
    _locks: weakref.WeakValueDictionary[str, asyncio.Lock] = field(
        default_factory=weakref.WeakValueDictionary, init=False, repr=False
    )

    def start(
        self,
        user_id: UUID | None = None,
        meal_id: UUID | None = None,
        clarify_portions: bool = True,
    ) -> ConversationSession | None:
        """Open a new session, or an edit session for an existing meal."""
        if meal_id is None:
            session = new_session(
                user_id=user_id,
                clarify_portions=clarify_portions,
                fallback_carbs_g=self.fallback_carbs_g,
            )
        else:
            meal = self.meal_log.get_meal(meal_id, user_id)
            if meal is None:
                return None
            session = edit_session(
                meal,
                self._now(),
                user_id=user_id,
                clarify_portions=clarify_portions,
                fallback_carbs_g=self.fallback_carbs_g,
            )
        self._store(session)
        return session

    def get(self, session_id: UUID) -> ConversationSession | None:
        session = self.sessions.get(str(session_id))
        if isinstance(session, ConversationSession):
            return session
        return None

    async def handle(
        self, session_id: UUID, event: ConversationEvent
    ) -> ConversationSession:
        """Apply a user event and every follow-up effect.

        Events for one session are applied one at a time, so a repeated
        confirmation sees the finished session instead of saving twice.
        """
        async with self._lock_for(session_id):
            session = self.get(session_id)
            if session is None:
                raise ConversationNotFoundError(str(session_id))
            pending: deque[ConversationEvent] = deque([event])
            while pending:
                result = transition(session, pending.popleft(), self._now())
                session = result.session
                for effect in result.effects:
                    pending.append(await self._execute(session, effect))
            self._store(session)
            return session

    def cancel(self, session_id: UUID) -> bool:
        """Discard a session without saving anything."""
        session = self.get(session_id)
        if session is None:
            return False
        self.sessions.delete(str(session_id))
        return True

    def _lock_for(self, session_id: UUID) -> asyncio.Lock:
        key = str(session_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _execute(
        self, session: ConversationSession, effect: ConversationEffect
    ) -> ConversationEvent:
        if isinstance(effect, UploadPhoto):
            outcome = self.photos.upload_best_effort(effect.image_data_url)
            return PhotoUploaded(image_url=outcome.url, uploaded=outcome.uploaded)
        if isinstance(effect, AnalyzePhoto):
            return PhotoAnalyzed(await self.analysis.analyze_photo(effect.image_url))
        if isinstance(effect, ClarifyAndAnalyze):
            questions = await self.analysis.clarify(effect.description)
            analysis = await self.analysis.analyze_text(effect.description)
            return DescriptionAnalyzed(questions=questions, analysis=analysis)
        if isinstance(effect, AnalyzeText):
            return PortionAnalyzed(await self.analysis.analyze_text(effect.description))
        return MealSaved(self._save(effect))

    def _save(self, effect: SaveMeal) -> MealRecord:
        draft = effect.draft
        store = self.meal_log.store
        if effect.meal_id is not None:
            updated = store.update(
                effect.meal_id,
                MealUpdate(
                    description=draft.description,
                    meal_type=effect.meal_type,
                    estimated_carbs=draft.estimated_carbs,
                    estimated_sugar=draft.estimated_sugar,
                    ai_summary=draft.ai_summary,
                    carb_source=draft.carb_source,
                    photo_url=draft.photo_url,
                ),
            )
            if updated is not None:
                return updated
            _logger.warning(
                "Edited meal no longer exists, saving a new one",
                extra={"meal_id": str(effect.meal_id)},
            )
        return store.create(
            NewMeal(
                description=draft.description or UNSPECIFIED_MEAL,
                meal_type=effect.meal_type,
                estimated_carbs=(
                    draft.estimated_carbs
                    if draft.estimated_carbs is not None
                    else self.fallback_carbs_g
                ),
                estimated_sugar=draft.estimated_sugar,
                ai_summary=draft.ai_summary,
                carb_source=draft.carb_source,
                photo_url=draft.photo_url,
                user_id=effect.user_id,
            )
        )

    def _store(self, session: ConversationSession) -> None:
        if session.step.terminal:
            self.sessions.delete(str(session.id))
        else:
            self.sessions.set(str(session.id), session, self.ttl_seconds)

    def _now(self) -> datetime:
        return self.clock().astimezone(ZoneInfo(self.timezone))
