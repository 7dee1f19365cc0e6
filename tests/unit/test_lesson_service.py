"""
Unit tests for LessonService.

Tests cover:
- Lesson loading, caching and lock enforcement (including premium bypass)
- Listing enrichment, ordering, filtering and pagination
- Start/complete lifecycle with SRS updates and re-entry
- Aggregate stats rollup and its failure tolerance
- Exercise generation and validation through the registry
- Next-review selection, metrics and failure reporting
"""

import random
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from lesson_engine.db.cache import MemoryCache
from lesson_engine.enums.learning import ExerciseType, LessonEventType, LessonStatus, ProgressStatus
from lesson_engine.exceptions import (
    ExerciseGenerationError,
    ExerciseNotFoundError,
    ExerciseValidationError,
    InternalError,
    LessonLockedError,
    LessonNotFoundError,
    ProgressNotFoundError,
    UserNotAuthenticatedError,
)
from lesson_engine.models.learning import (
    Answer,
    Exercise,
    LearnerIdentity,
    Lesson,
    LessonRequest,
    UserProgress,
)
from lesson_engine.services.learning.events import RecordingEventPublisher
from lesson_engine.services.learning.exercise_generator import (
    ExerciseRegistry,
    create_default_registry,
)
from lesson_engine.services.learning.lesson_service import LessonService
from lesson_engine.services.learning.repository import (
    InMemoryLessonRepository,
    StaticSessionState,
)


@pytest.fixture
def session() -> StaticSessionState:
    return StaticSessionState(LearnerIdentity(id="user-1"))


@pytest.fixture
def events() -> RecordingEventPublisher:
    return RecordingEventPublisher()


@pytest.fixture
def repository(lesson_catalog, fixed_now) -> InMemoryLessonRepository:
    return InMemoryLessonRepository(lessons=lesson_catalog, clock=lambda: fixed_now)


@pytest.fixture
def service(repository, session, events, fixed_now) -> LessonService:
    return LessonService(
        repository,
        session,
        events,
        cache=MemoryCache(),
        registry=create_default_registry(rng=random.Random(3)),
        clock=lambda: fixed_now,
    )


@pytest.fixture
def mocked_service(mock_repository, session, events, lesson, fixed_now) -> LessonService:
    """Service over a mock repository holding one started lesson."""
    mock_repository.get_lesson_by_id = AsyncMock(return_value=lesson)
    mock_repository.get_user_progress = AsyncMock(
        return_value=[
            UserProgress(
                user_id="user-1",
                lesson_id=lesson.id,
                status=ProgressStatus.IN_PROGRESS,
                attempts=1,
            )
        ]
    )
    return LessonService(
        mock_repository,
        session,
        events,
        cache=MemoryCache(),
        clock=lambda: fixed_now,
    )


class TestGetLesson:
    """Tests for loading a single lesson."""

    @pytest.mark.asyncio
    async def test_returns_lesson_and_publishes_event(self, service, events):
        lesson = await service.get_lesson("lesson-1")

        assert lesson.id == "lesson-1"
        assert lesson.xp_reward == 10
        assert events.types() == [LessonEventType.LOADED]
        assert (await service.get_metrics()).lessons_loaded == 1

    @pytest.mark.asyncio
    async def test_missing_lesson_raises(self, service, events):
        with pytest.raises(LessonNotFoundError) as exc_info:
            await service.get_lesson("missing")

        assert exc_info.value.details == {"lesson_id": "missing"}
        error_event = events.of_type(LessonEventType.ERROR)[0]
        assert error_event.payload["error"] == "lesson_not_found"
        assert error_event.payload["operation"] == "get_lesson"
        assert (await service.get_metrics()).errors == 1

    @pytest.mark.asyncio
    async def test_unmet_prerequisites_lock_lesson(self, service):
        with pytest.raises(LessonLockedError) as exc_info:
            await service.get_lesson("lesson-3")

        assert exc_info.value.lesson_id == "lesson-3"
        assert exc_info.value.details["unmet_prerequisites"] == ["lesson-1", "lesson-2"]

    @pytest.mark.asyncio
    async def test_premium_learner_bypasses_lock(self, service, session):
        session.user = LearnerIdentity(id="user-1", is_premium=True)

        lesson = await service.get_lesson("lesson-3")

        assert lesson.id == "lesson-3"

    @pytest.mark.asyncio
    async def test_statically_locked_lesson(self, service, repository):
        repository.add_lesson(Lesson(id="bonus", title="Bonus", status=LessonStatus.LOCKED))

        with pytest.raises(LessonLockedError) as exc_info:
            await service.get_lesson("bonus")

        assert exc_info.value.unmet_prerequisites == []

    @pytest.mark.asyncio
    async def test_anonymous_caller_sees_only_unlocked_lessons(self, service, session):
        session.user = None

        assert (await service.get_lesson("lesson-1")).id == "lesson-1"
        with pytest.raises(LessonLockedError):
            await service.get_lesson("lesson-2")

    @pytest.mark.asyncio
    async def test_lesson_is_cached(self, mocked_service, mock_repository):
        await mocked_service.get_lesson("lesson-1")
        await mocked_service.get_lesson("lesson-1")

        mock_repository.get_lesson_by_id.assert_awaited_once_with("lesson-1")
        assert (await mocked_service.get_metrics()).cache.hits == 1


class TestGetLessons:
    """Tests for lesson listings."""

    @pytest.mark.asyncio
    async def test_anonymous_listing_has_no_progress(self, service, session):
        session.user = None

        items = await service.get_lessons(LessonRequest(limit=2))

        assert [item.lesson.id for item in items] == ["lesson-1", "lesson-2"]
        assert all(item.user_progress is None for item in items)
        assert [item.is_locked for item in items] == [False, True]

    @pytest.mark.asyncio
    async def test_listing_order_follows_progress(self, service):
        await service.start_lesson("lesson-1")
        await service.complete_lesson("lesson-1", score=90, time_spent_ms=1000)
        await service.start_lesson("lesson-2")

        items = await service.get_lessons()

        assert [item.lesson.id for item in items] == ["lesson-2", "lesson-3", "lesson-1"]
        assert items[0].user_progress.status == ProgressStatus.IN_PROGRESS
        assert items[1].is_locked is True
        assert items[2].user_progress.status == ProgressStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_pagination(self, service):
        items = await service.get_lessons(LessonRequest(limit=1, offset=1))

        assert [item.lesson.id for item in items] == ["lesson-2"]

    @pytest.mark.asyncio
    async def test_filter_by_difficulty(self, service):
        items = await service.get_lessons(LessonRequest(difficulty=2))

        assert [item.lesson.id for item in items] == ["lesson-2"]

    @pytest.mark.asyncio
    async def test_inactive_lessons_are_excluded(self, service, repository):
        repository.add_lesson(Lesson(id="retired", title="Retired", is_active=False))

        items = await service.get_lessons()

        assert "retired" not in [item.lesson.id for item in items]

    @pytest.mark.asyncio
    async def test_filter_always_requires_active(self, mocked_service, mock_repository):
        await mocked_service.get_lessons(LessonRequest(category="grammar"))

        mock_repository.get_lessons_by_filter.assert_awaited_once_with(
            {"type": None, "difficulty": None, "category": "grammar", "is_active": True}
        )

    @pytest.mark.asyncio
    async def test_listing_is_cached_per_request(self, mocked_service, mock_repository):
        await mocked_service.get_lessons()
        await mocked_service.get_lessons()
        await mocked_service.get_lessons(LessonRequest(limit=3))

        assert mock_repository.get_lessons_by_filter.await_count == 2

    @pytest.mark.asyncio
    async def test_progress_change_invalidates_listing(self, service):
        before = await service.get_lessons()
        assert before[0].user_progress is None

        await service.start_lesson("lesson-1")
        after = await service.get_lessons()

        assert after[0].lesson.id == "lesson-1"
        assert after[0].user_progress.status == ProgressStatus.IN_PROGRESS


class TestStartLesson:
    """Tests for moving a lesson to in_progress."""

    @pytest.mark.asyncio
    async def test_creates_fresh_progress(self, service, repository, events, fixed_now):
        result = await service.start_lesson("lesson-1")

        progress = result.progress
        assert progress.status == ProgressStatus.IN_PROGRESS
        assert progress.attempts == 1
        assert progress.started_at == fixed_now
        assert progress.srs_data.ease_factor == 2.5
        assert progress.srs_data.interval == 1
        assert progress.srs_data.review_count == 0
        assert repository.progress[("user-1", "lesson-1")].status == ProgressStatus.IN_PROGRESS
        assert events.types() == [LessonEventType.STARTED]

    @pytest.mark.asyncio
    async def test_requires_authenticated_user(self, service, session):
        session.user = None

        with pytest.raises(UserNotAuthenticatedError):
            await service.start_lesson("lesson-1")

    @pytest.mark.asyncio
    async def test_locked_for_regular_learner(self, service):
        with pytest.raises(LessonLockedError) as exc_info:
            await service.start_lesson("lesson-2")

        assert exc_info.value.unmet_prerequisites == ["lesson-1"]

    @pytest.mark.asyncio
    async def test_premium_learner_can_start_locked_lesson(self, service, session):
        session.user = LearnerIdentity(id="user-1", is_premium=True)

        result = await service.start_lesson("lesson-3")

        assert result.progress.status == ProgressStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_completed_prerequisite_unlocks_lesson(self, service):
        await service.start_lesson("lesson-1")
        await service.complete_lesson("lesson-1", score=75, time_spent_ms=1000)

        result = await service.start_lesson("lesson-2")

        assert result.lesson.id == "lesson-2"

    @pytest.mark.asyncio
    async def test_reentry_keeps_srs_data(self, service):
        await service.start_lesson("lesson-1")
        completed = await service.complete_lesson("lesson-1", score=95, time_spent_ms=1000)

        result = await service.start_lesson("lesson-1")

        assert result.progress.status == ProgressStatus.IN_PROGRESS
        assert result.progress.attempts == 2
        assert result.progress.srs_data == completed.progress.srs_data
        assert result.progress.score == 95

    @pytest.mark.asyncio
    async def test_starting_twice_resumes(self, mocked_service, mock_repository):
        result = await mocked_service.start_lesson("lesson-1")

        assert result.progress.attempts == 1
        mock_repository.update_lesson_progress.assert_not_awaited()


class TestCompleteLesson:
    """Tests for completing lessons and reviews."""

    @pytest.mark.asyncio
    async def test_completion_updates_progress_and_srs(self, service, events, fixed_now):
        await service.start_lesson("lesson-1")

        result = await service.complete_lesson("lesson-1", score=85, time_spent_ms=1200)

        progress = result.progress
        assert progress.status == ProgressStatus.COMPLETED
        assert progress.score == 85
        assert progress.completed_at == fixed_now
        assert progress.srs_data.review_count == 1
        assert progress.srs_data.next_review == fixed_now + timedelta(
            days=progress.srs_data.interval
        )
        assert result.next_review == progress.srs_data.next_review
        assert result.xp_earned == 10
        assert events.types()[-1] == LessonEventType.COMPLETED

    @pytest.mark.asyncio
    async def test_score_never_regresses(self, service):
        await service.start_lesson("lesson-1")

        first = await service.complete_lesson("lesson-1", score=55, time_spent_ms=1000)
        second = await service.complete_lesson("lesson-1", score=80, time_spent_ms=1000)
        third = await service.complete_lesson("lesson-1", score=40, time_spent_ms=1000)

        assert first.progress.score == 55
        assert second.progress.score == 80
        assert third.progress.score == 80
        assert [
            r.progress.srs_data.review_count for r in (first, second, third)
        ] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_time_and_answers_accumulate(self, service):
        await service.start_lesson("lesson-1")

        await service.complete_lesson(
            "lesson-1",
            score=70,
            time_spent_ms=1000,
            answers=[{"exercise_id": "e1", "user_answer": "casa", "is_correct": True}],
        )
        result = await service.complete_lesson(
            "lesson-1",
            score=70,
            time_spent_ms=500,
            answers=[Answer(exercise_id="e2", user_answer=2)],
        )

        assert result.progress.time_spent_ms == 1500
        assert [a.exercise_id for a in result.progress.answers] == ["e1", "e2"]

    @pytest.mark.asyncio
    async def test_score_is_clamped(self, service):
        await service.start_lesson("lesson-1")

        result = await service.complete_lesson("lesson-1", score=120, time_spent_ms=0)

        assert result.progress.score == 100

    @pytest.mark.asyncio
    async def test_requires_started_lesson(self, service):
        with pytest.raises(ProgressNotFoundError) as exc_info:
            await service.complete_lesson("lesson-1", score=90, time_spent_ms=1000)

        assert exc_info.value.details == {"user_id": "user-1", "lesson_id": "lesson-1"}

    @pytest.mark.asyncio
    async def test_requires_authenticated_user(self, service, session):
        session.user = None

        with pytest.raises(UserNotAuthenticatedError):
            await service.complete_lesson("lesson-1", score=90, time_spent_ms=1000)

    @pytest.mark.asyncio
    async def test_stats_rollup(self, service, repository, fixed_now):
        await service.start_lesson("lesson-1")
        await service.complete_lesson("lesson-1", score=55, time_spent_ms=1000)
        await service.complete_lesson("lesson-1", score=80, time_spent_ms=2000)

        stats = repository.stats["user-1"]
        assert stats.total_xp == 20
        assert stats.lessons_completed == 1
        assert stats.total_reviews == 2
        assert stats.total_time_ms == 3000
        assert stats.average_score == pytest.approx(67.5)
        assert stats.last_activity == fixed_now

    @pytest.mark.asyncio
    async def test_reentry_counts_lesson_once(self, service, repository):
        await service.start_lesson("lesson-1")
        await service.complete_lesson("lesson-1", score=90, time_spent_ms=1000)
        await service.start_lesson("lesson-1")
        await service.complete_lesson("lesson-1", score=95, time_spent_ms=1000)

        stats = repository.stats["user-1"]
        assert stats.lessons_completed == 1
        assert stats.total_reviews == 2
        assert stats.total_xp == 20

    @pytest.mark.asyncio
    async def test_stats_failure_does_not_fail_completion(
        self, mocked_service, mock_repository
    ):
        mock_repository.update_user_stats = AsyncMock(side_effect=RuntimeError("stats down"))

        result = await mocked_service.complete_lesson("lesson-1", score=90, time_spent_ms=1000)

        assert result.progress.status == ProgressStatus.COMPLETED
        mock_repository.update_lesson_progress.assert_awaited_once()
        metrics = await mocked_service.get_metrics()
        assert metrics.stats_update_failures == 1
        assert metrics.lessons_completed == 1
        assert metrics.errors == 0

    @pytest.mark.asyncio
    async def test_progress_write_failure_propagates(
        self, mocked_service, mock_repository, events
    ):
        mock_repository.update_lesson_progress = AsyncMock(side_effect=RuntimeError("db down"))

        with pytest.raises(RuntimeError, match="db down"):
            await mocked_service.complete_lesson("lesson-1", score=90, time_spent_ms=1000)

        mock_repository.update_user_stats.assert_not_awaited()
        assert events.of_type(LessonEventType.ERROR)[0].payload["error"] == "RuntimeError"

    @pytest.mark.asyncio
    async def test_collaborator_call_order(self, mocked_service, mock_repository):
        calls = []
        mock_repository.get_user_progress.side_effect = (
            lambda user_id: calls.append("read_progress") or mock_repository.get_user_progress.return_value
        )
        mock_repository.update_lesson_progress.side_effect = (
            lambda user_id, lesson_id, progress: calls.append("write_progress") or progress
        )
        mock_repository.get_user_stats.side_effect = lambda user_id: calls.append("read_stats")
        mock_repository.update_user_stats.side_effect = (
            lambda user_id, stats: calls.append("write_stats") or stats
        )

        await mocked_service.complete_lesson("lesson-1", score=90, time_spent_ms=1000)

        assert calls == ["read_progress", "write_progress", "read_stats", "write_stats"]


class TestGenerateExercises:
    """Tests for exercise generation through the registry."""

    @pytest.mark.asyncio
    async def test_generates_flashcards(self, service):
        exercises = await service.generate_exercises("lesson-1", "flashcard", count=3)

        assert len(exercises) == 3
        assert all(ex.type == ExerciseType.FLASHCARD for ex in exercises)
        assert (await service.get_metrics()).exercises_generated == 3

    @pytest.mark.asyncio
    async def test_unregistered_type_raises(self, service, events):
        with pytest.raises(ExerciseGenerationError) as exc_info:
            await service.generate_exercises("lesson-1", "listening")

        assert exc_info.value.details["exercise_type"] == "listening"
        assert exc_info.value.details["lesson_id"] == "lesson-1"
        assert events.of_type(LessonEventType.ERROR)[0].payload["exercise_type"] == "listening"

    @pytest.mark.asyncio
    async def test_generator_failure_is_wrapped(self, repository, session, events):
        broken = MagicMock()
        broken.generate.side_effect = ValueError("no vocabulary")
        registry = ExerciseRegistry()
        registry.register("flashcard", broken)
        service = LessonService(repository, session, events, registry=registry)

        with pytest.raises(ExerciseGenerationError) as exc_info:
            await service.generate_exercises("lesson-1", ExerciseType.FLASHCARD)

        assert exc_info.value.details["reason"] == "no vocabulary"
        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_count_is_clamped(self, repository, session, events):
        generator = MagicMock()
        generator.generate.return_value = []
        registry = ExerciseRegistry()
        registry.register("flashcard", generator)
        service = LessonService(repository, session, events, registry=registry)

        await service.generate_exercises("lesson-1", "flashcard", count=50)

        assert generator.generate.call_args[0][1] == 20

    @pytest.mark.asyncio
    async def test_locked_lesson_cannot_generate(self, service):
        with pytest.raises(LessonLockedError):
            await service.generate_exercises("lesson-2", "flashcard")


class TestValidateExercise:
    """Tests for validating answers to generated exercises."""

    @pytest.mark.asyncio
    async def test_validates_by_id(self, service):
        exercise = (await service.generate_exercises("lesson-1", "flashcard", count=1))[0]

        result = await service.validate_exercise(exercise.id, exercise.correct_answer, 2000)

        assert result.is_correct is True
        assert result.total == 100
        assert (await service.get_metrics()).exercises_validated == 1

    @pytest.mark.asyncio
    async def test_falls_back_to_question_text(self, service):
        exercise = (await service.generate_exercises("lesson-1", "flashcard", count=1))[0]

        result = await service.validate_exercise(exercise.question, "definitely wrong")

        assert result.is_correct is False
        assert result.total == 0

    @pytest.mark.asyncio
    async def test_multiple_choice_resolves_generator(self, service):
        exercise = (await service.generate_exercises("lesson-1", "multiple_choice", count=1))[0]
        correct_index = exercise.options.index(exercise.correct_answer)

        result = await service.validate_exercise(exercise.id, correct_index)

        assert exercise.type == ExerciseType.MULTIPLE_CHOICE_VOCAB
        assert result.is_correct is True

    @pytest.mark.asyncio
    async def test_unknown_exercise_raises(self, service):
        with pytest.raises(ExerciseNotFoundError):
            await service.validate_exercise("missing", "casa")

    @pytest.mark.asyncio
    async def test_missing_generator_raises(self, service):
        exercise = (await service.generate_exercises("lesson-1", "flashcard", count=1))[0]
        service.registry.remove("flashcard")

        with pytest.raises(ExerciseValidationError) as exc_info:
            await service.validate_exercise(exercise.id, "casa")

        assert exc_info.value.details["exercise_type"] == "flashcard"

    @pytest.mark.asyncio
    async def test_generator_failure_is_wrapped(self, repository, session, events):
        exercise = Exercise(type=ExerciseType.FLASHCARD, question="house", correct_answer="casa")
        generator = MagicMock()
        generator.generate.return_value = [exercise]
        generator.score.side_effect = RuntimeError("scoring failed")
        registry = ExerciseRegistry()
        registry.register("flashcard", generator)
        service = LessonService(repository, session, events, registry=registry)
        await service.generate_exercises("lesson-1", "flashcard", count=1)

        with pytest.raises(ExerciseValidationError) as exc_info:
            await service.validate_exercise(exercise.id, "casa")

        assert exc_info.value.details["reason"] == "scoring failed"


class TestGetNextReviewLesson:
    """Tests for picking the next lesson to study."""

    @pytest.mark.asyncio
    async def test_new_learner_gets_first_lesson(self, service):
        lesson = await service.get_next_review_lesson()

        assert lesson.id == "lesson-1"

    @pytest.mark.asyncio
    async def test_due_review_wins(self, lesson_catalog, session, events, fixed_now):
        repository = InMemoryLessonRepository(
            lessons=lesson_catalog, clock=lambda: fixed_now + timedelta(days=100)
        )
        service = LessonService(repository, session, events, clock=lambda: fixed_now)
        await service.start_lesson("lesson-1")
        await service.complete_lesson("lesson-1", score=90, time_spent_ms=1000)

        lesson = await service.get_next_review_lesson()

        assert lesson.id == "lesson-1"

    @pytest.mark.asyncio
    async def test_falls_back_to_next_unlocked_lesson(self, service):
        await service.start_lesson("lesson-1")
        await service.complete_lesson("lesson-1", score=90, time_spent_ms=1000)

        lesson = await service.get_next_review_lesson()

        assert lesson.id == "lesson-2"

    @pytest.mark.asyncio
    async def test_nothing_available(self, service):
        await service.start_lesson("lesson-1")

        assert await service.get_next_review_lesson() is None

    @pytest.mark.asyncio
    async def test_requires_authenticated_user(self, service, session):
        session.user = None

        with pytest.raises(UserNotAuthenticatedError):
            await service.get_next_review_lesson()


class TestMetricsAndCollaborators:
    """Tests for metrics, cache control and collaborator failures."""

    @pytest.mark.asyncio
    async def test_metrics_count_operations(self, service):
        await service.get_lesson("lesson-1")
        await service.start_lesson("lesson-1")
        await service.complete_lesson("lesson-1", score=90, time_spent_ms=1000)

        metrics = await service.get_metrics()

        assert metrics.lessons_loaded == 1
        assert metrics.lessons_started == 1
        assert metrics.lessons_completed == 1
        assert metrics.cache.size >= 1

    @pytest.mark.asyncio
    async def test_clear_cache(self, service):
        await service.get_lesson("lesson-1")

        await service.clear_cache()

        assert (await service.get_metrics()).cache.size == 0

    @pytest.mark.asyncio
    async def test_session_failure_is_wrapped(self, repository, events):
        session = MagicMock()
        session.get_state = AsyncMock(side_effect=ConnectionError("state store offline"))
        service = LessonService(repository, session, events)

        with pytest.raises(InternalError) as exc_info:
            await service.start_lesson("lesson-1")

        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_event_failures_do_not_break_operations(self, repository, session):
        events = MagicMock()
        events.publish = AsyncMock(side_effect=RuntimeError("bus down"))
        service = LessonService(repository, session, events)

        lesson = await service.get_lesson("lesson-1")

        assert lesson.id == "lesson-1"

    @pytest.mark.asyncio
    async def test_cache_failure_falls_back_to_repository(self, repository, session, events):
        cache = MagicMock()
        cache.get = AsyncMock(side_effect=ConnectionError("redis down"))
        cache.set = AsyncMock(side_effect=ConnectionError("redis down"))
        service = LessonService(repository, session, events, cache=cache)

        lesson = await service.get_lesson("lesson-1")

        assert lesson.id == "lesson-1"

    @pytest.mark.asyncio
    async def test_injected_logger_is_used(self, repository, session, events):
        log = MagicMock()
        service = LessonService(repository, session, events, logger=log)

        await service.get_lesson("lesson-1")

        log.info.assert_called()
