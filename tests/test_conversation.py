"""Tests for the guided meal-logging conversation."""

import asyncio
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from meal_logger.adapters.memory_meal_repository import InMemoryMealRepository
from meal_logger.domain.analysis import ClarifyResult, PhotoAnalysis, TextAnalysis
from meal_logger.domain.conversation import (
    AnalyzePhoto,
    AnalyzeText,
    Cancelled,
    ClarifyAndAnalyze,
    Confirmed,
    ConversationSession,
    ConversationStep,
    DescriptionAnalyzed,
    DescriptionSubmitted,
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
)
from meal_logger.domain.meals import MealType, NewMeal
from meal_logger.services.analysis import DEFAULT_QUESTION, MealAnalysisGateway
from meal_logger.services.cache import InMemoryCache
from meal_logger.services.conversation import (
    UNSPECIFIED_MEAL,
    ConversationNotFoundError,
    ConversationService,
    InvalidTransitionError,
    infer_meal_type,
    new_session,
    transition,
)
from meal_logger.services.meals import MealLogService, MealStore
from meal_logger.services.photos import PhotoService
from tests.conftest import (
    PNG_DATA_URL,
    FailingAnalysisClient,
    FakeAnalysisClient,
    FakePhotoStorage,
)

LUNCHTIME = datetime(2024, 5, 14, 13, 0, tzinfo=UTC)

RICE_AND_BEANS = TextAnalysis(
    estimated_carbs=55,
    estimated_sugar=4,
    summary="Rice and beans.",
    carb_source="rice",
    recommendations=["Pair with a protein"],
)


def _service(
    analysis_client=None,  # type: ignore[no-untyped-def]
    storage: FakePhotoStorage | None = None,
    sessions: InMemoryCache | None = None,
) -> ConversationService:
    store = MealStore(primary=None, fallback=InMemoryMealRepository())
    analysis = MealAnalysisGateway(client=analysis_client, model="gpt-4o-mini")
    return ConversationService(
        sessions=sessions if sessions is not None else InMemoryCache(),
        analysis=analysis,
        photos=PhotoService(storage),
        meal_log=MealLogService(store=store, analysis=analysis),
        clock=lambda: LUNCHTIME,
    )


def test_photo_with_identified_foods_goes_straight_to_ready() -> None:
    session = new_session()

    selected = transition(session, PhotoSelected(PNG_DATA_URL), LUNCHTIME)
    uploaded = transition(
        selected.session, PhotoUploaded("https://img/meal.png", True), LUNCHTIME
    )
    analyzed = transition(
        uploaded.session,
        PhotoAnalyzed(
            PhotoAnalysis(
                foods=["rice", "grilled chicken"],
                carb_source="rice",
                estimated_carbs=45,
            )
        ),
        LUNCHTIME,
    )

    assert selected.effects and selected.effects[0].image_data_url == PNG_DATA_URL
    assert selected.session.messages[-1].role is Role.USER
    assert selected.session.messages[-1].image_url == PNG_DATA_URL
    assert uploaded.effects == [AnalyzePhoto("https://img/meal.png")]
    result = analyzed.session
    assert result.step is ConversationStep.READY_TO_LOG
    assert result.draft.description == "rice, grilled chicken"
    assert result.draft.estimated_carbs == 45
    assert result.draft.photo_url == "https://img/meal.png"
    assert result.messages[-1].text.startswith("I see rice, grilled chicken!")
    assert "~45g" in result.messages[-1].text


def test_failed_photo_analysis_asks_for_description() -> None:
    session = new_session()

    result = transition(
        session,
        PhotoAnalyzed(PhotoAnalysis(foods=[], error="AI unavailable")),
        LUNCHTIME,
    ).session

    assert result.step is ConversationStep.DESCRIBING
    assert result.advisory == "AI unavailable"
    assert "couldn't quite make out the food" in result.messages[-1].text


def test_text_path_with_portion_clarification() -> None:
    session = new_session()

    fallback = transition(session, TextFallbackChosen(), LUNCHTIME)
    described = transition(
        fallback.session, DescriptionSubmitted("  rice and beans "), LUNCHTIME
    )
    clarified = transition(
        described.session,
        DescriptionAnalyzed(
            questions=ClarifyResult(questions=["How many cups of rice?"]),
            analysis=RICE_AND_BEANS,
        ),
        LUNCHTIME,
    )
    answered = transition(clarified.session, PortionAnswered("one cup"), LUNCHTIME)
    portioned = transition(
        answered.session,
        PortionAnalyzed(RICE_AND_BEANS.model_copy(update={"estimated_carbs": 48})),
        LUNCHTIME,
    )
    typed = transition(portioned.session, MealTypeChosen(), LUNCHTIME)
    confirmed = transition(typed.session, Confirmed(), LUNCHTIME)

    assert fallback.session.step is ConversationStep.TEXT_FALLBACK
    assert described.effects == [ClarifyAndAnalyze("rice and beans")]
    assert clarified.session.step is ConversationStep.PORTION_CLARIFICATION
    assert clarified.session.messages[-1].text == "How many cups of rice?"
    assert answered.effects == [AnalyzeText("rice and beans (one cup)")]
    assert portioned.session.step is ConversationStep.MEAL_TYPE_SELECTION
    assert typed.session.step is ConversationStep.READY_TO_LOG
    assert typed.session.draft.meal_type is MealType.LUNCH
    (effect,) = confirmed.effects
    assert isinstance(effect, SaveMeal)
    assert effect.meal_type is MealType.LUNCH
    assert effect.draft.description == "rice and beans (one cup)"
    assert effect.draft.estimated_carbs == 48


def test_portion_clarification_can_be_turned_off() -> None:
    session = new_session(clarify_portions=False)
    described = transition(session, DescriptionSubmitted("pasta"), LUNCHTIME)

    result = transition(
        described.session,
        DescriptionAnalyzed(
            questions=ClarifyResult(questions=["How much pasta?"]),
            analysis=RICE_AND_BEANS,
        ),
        LUNCHTIME,
    ).session

    assert result.step is ConversationStep.READY_TO_LOG
    assert result.messages[-1].text.startswith("Got it!")


def test_explicit_meal_type_is_recorded() -> None:
    session = new_session(clarify_portions=False)
    session = transition(session, Skipped(), LUNCHTIME).session

    result = transition(session, MealTypeChosen(MealType.SNACK), LUNCHTIME).session

    assert result.draft.meal_type is MealType.SNACK
    assert result.messages[-1].role is Role.ASSISTANT


def test_blank_description_is_rejected() -> None:
    session = transition(new_session(), TextFallbackChosen(), LUNCHTIME).session

    with pytest.raises(InvalidTransitionError):
        transition(session, DescriptionSubmitted("   "), LUNCHTIME)


def test_event_not_accepted_in_step_is_rejected() -> None:
    with pytest.raises(InvalidTransitionError):
        transition(new_session(), Confirmed(), LUNCHTIME)
    with pytest.raises(InvalidTransitionError):
        transition(new_session(), PortionAnswered("a cup"), LUNCHTIME)


def test_terminal_sessions_accept_nothing() -> None:
    cancelled = transition(new_session(), Cancelled(), LUNCHTIME)

    assert cancelled.session.step is ConversationStep.CANCELLED
    assert cancelled.effects == []
    with pytest.raises(InvalidTransitionError):
        transition(cancelled.session, Skipped(), LUNCHTIME)


@pytest.mark.parametrize(
    "step",
    [
        ConversationStep.PHOTO_CAPTURE,
        ConversationStep.TEXT_FALLBACK,
        ConversationStep.DESCRIBING,
        ConversationStep.PORTION_CLARIFICATION,
        ConversationStep.MEAL_TYPE_SELECTION,
        ConversationStep.READY_TO_LOG,
    ],
)
def test_skipping_always_reaches_ready_to_log(step: ConversationStep) -> None:
    session = replace(new_session(fallback_carbs_g=30.0), step=step)

    for _ in range(3):
        if session.step is ConversationStep.READY_TO_LOG:
            break
        session = transition(session, Skipped(), LUNCHTIME).session

    assert session.step is ConversationStep.READY_TO_LOG
    saved = transition(session, Confirmed(), LUNCHTIME).effects[0]
    assert isinstance(saved, SaveMeal)
    assert saved.draft.estimated_carbs is not None
    assert saved.draft.estimated_carbs >= 0


def test_skipping_without_description_uses_placeholder() -> None:
    result = transition(new_session(), Skipped(), LUNCHTIME).session

    assert result.draft.description == UNSPECIFIED_MEAL
    assert result.draft.estimated_carbs == 30.0


@pytest.mark.parametrize(
    ("hour", "expected"),
    [
        (4, MealType.SNACK),
        (5, MealType.BREAKFAST),
        (9, MealType.BREAKFAST),
        (10, MealType.BRUNCH),
        (12, MealType.LUNCH),
        (15, MealType.SNACK),
        (17, MealType.DINNER),
        (20, MealType.DINNER),
        (21, MealType.SNACK),
    ],
)
def test_infer_meal_type(hour: int, expected: MealType) -> None:
    assert infer_meal_type(datetime(2024, 5, 14, hour, 30, tzinfo=UTC)) is expected


def test_all_fallback_path_still_logs_a_meal() -> None:
    service = _service(FailingAnalysisClient(), FakePhotoStorage(fail=True))
    session = service.start()
    assert session is not None

    after_photo = asyncio.run(service.handle(session.id, PhotoSelected(PNG_DATA_URL)))
    after_text = asyncio.run(
        service.handle(session.id, DescriptionSubmitted("rice and beans"))
    )
    asyncio.run(service.handle(session.id, Skipped()))
    ready = asyncio.run(service.handle(session.id, Skipped()))
    done = asyncio.run(service.handle(session.id, Confirmed()))

    assert after_photo.step is ConversationStep.DESCRIBING
    assert after_photo.draft.photo_url == PNG_DATA_URL
    assert after_text.step is ConversationStep.PORTION_CLARIFICATION
    assert after_text.messages[-1].text == DEFAULT_QUESTION
    assert after_text.advisory is not None
    assert ready.step is ConversationStep.READY_TO_LOG
    assert ready.draft.estimated_carbs == 30
    assert done.step is ConversationStep.DONE
    assert done.saved_meal is not None
    assert done.saved_meal.estimated_carbs == 30
    assert done.saved_meal.meal_type is MealType.LUNCH
    assert done.messages[-1].text == "Logged! Your lunch has been saved."
    assert service.get(session.id) is None
    assert service.meal_log.store.count() == 1


def test_photo_is_uploaded_before_analysis() -> None:
    client = FakeAnalysisClient()
    storage = FakePhotoStorage()
    service = _service(client, storage)
    session = service.start()
    assert session is not None

    result = asyncio.run(service.handle(session.id, PhotoSelected(PNG_DATA_URL)))

    (path,) = storage.uploads
    assert result.step is ConversationStep.READY_TO_LOG
    assert result.draft.photo_url == f"https://storage.example.com/meal-photos/{path}"
    assert client.calls[0]["image_url"] == result.draft.photo_url


def test_edit_session_updates_existing_meal() -> None:
    service = _service(FakeAnalysisClient())
    original = service.meal_log.store.create(
        NewMeal(description="toast", meal_type=MealType.LUNCH, estimated_carbs=20)
    )

    session = service.start(meal_id=original.id, clarify_portions=False)
    assert session is not None
    asyncio.run(
        service.handle(session.id, DescriptionSubmitted("rice and beans instead"))
    )
    done = asyncio.run(service.handle(session.id, Confirmed()))

    assert session.step is ConversationStep.DESCRIBING
    assert "update this meal" in session.messages[0].text
    assert done.saved_meal is not None
    assert done.saved_meal.id == original.id
    assert done.saved_meal.description == "rice and beans instead"
    assert done.saved_meal.estimated_carbs == 55
    assert service.meal_log.store.count() == 1


def test_start_for_unknown_meal_returns_none() -> None:
    assert _service().start(meal_id=uuid4()) is None


def test_unknown_session_raises() -> None:
    service = _service()

    with pytest.raises(ConversationNotFoundError):
        asyncio.run(service.handle(new_session().id, Skipped()))


def test_cancel_discards_session() -> None:
    service = _service()
    session = service.start()
    assert session is not None

    assert service.cancel(session.id)
    assert service.get(session.id) is None
    assert not service.cancel(session.id)
    assert service.meal_log.store.count() == 0


def test_sessions_expire_after_ttl() -> None:
    now = [LUNCHTIME]
    sessions = InMemoryCache(clock=lambda: now[0])
    service = _service(sessions=sessions)
    session = service.start()
    assert session is not None

    now[0] = LUNCHTIME + timedelta(seconds=service.ttl_seconds + 1)

    assert service.get(session.id) is None


class YieldingAnalysisClient(FakeAnalysisClient):
    """Gives other tasks a turn before every answer."""

    async def complete(  # type: ignore[no-untyped-def, override]
        self, **kwargs
    ) -> dict[str, object]:
        await asyncio.sleep(0)
        return await super().complete(**kwargs)


def test_repeated_confirmation_saves_one_meal() -> None:
    service = _service(FakeAnalysisClient())
    session = service.start(clarify_portions=False)
    assert session is not None
    asyncio.run(service.handle(session.id, DescriptionSubmitted("rice and beans")))

    async def confirm_twice() -> list[object]:
        return await asyncio.gather(
            service.handle(session.id, Confirmed()),
            service.handle(session.id, Confirmed()),
            return_exceptions=True,
        )

    first, second = asyncio.run(confirm_twice())

    assert isinstance(first, ConversationSession)
    assert first.step is ConversationStep.DONE
    assert isinstance(second, ConversationNotFoundError)
    assert service.meal_log.store.count() == 1


def test_events_for_one_session_are_applied_in_turn() -> None:
    service = _service(YieldingAnalysisClient())
    session = service.start()
    assert session is not None
    asyncio.run(service.handle(session.id, TextFallbackChosen()))

    async def describe_twice() -> list[object]:
        return await asyncio.gather(
            service.handle(session.id, DescriptionSubmitted("rice")),
            service.handle(session.id, DescriptionSubmitted("pasta")),
            return_exceptions=True,
        )

    first, second = asyncio.run(describe_twice())

    assert isinstance(first, ConversationSession)
    assert first.step is ConversationStep.PORTION_CLARIFICATION
    assert first.draft.description == "rice"
    assert isinstance(second, InvalidTransitionError)
