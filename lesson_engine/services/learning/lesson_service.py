"""
Lesson Service

Orchestrates the per-learner lesson lifecycle by combining the review
scheduler, the exercise generators and the cache around a repository
collaborator.

Lesson states for one (user, lesson) pair:
    locked      → prerequisites without a completed progress record
    available   → unlocked, no progress yet
    in_progress → start_lesson() was called
    completed   → complete_lesson() was called; start_lesson() re-enters

Completion is not terminal: every later complete_lesson() on the same
record is a review that advances review_count and reschedules
next_review.

Ordering inside complete_lesson():
    read progress → scheduler → progress write → stats update

The aggregate stats update is best effort. Its failures are logged and
counted but never fail the completion; progress and SRS data are the
source of truth.

Usage:
    from lesson_engine.services.learning import LessonService

    service = LessonService(repository, session, events)

    started = await service.start_lesson("lesson-1")
    exercises = await service.generate_exercises("lesson-1", "flashcard", count=5)
    result = await service.validate_exercise(exercises[0].id, "casa", time_spent_ms=3000)
    completed = await service.complete_lesson("lesson-1", score=85, time_spent_ms=240000)
"""

import json
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Union

from lesson_engine.config import settings
from lesson_engine.db.cache import (
    DEFAULT_CACHE_TTL,
    DEFAULT_LIST_TTL,
    CacheProvider,
    MemoryCache,
)
from lesson_engine.enums.learning import ExerciseType, LessonEventType, ProgressStatus
from lesson_engine.exceptions import (
    ExerciseGenerationError,
    ExerciseNotFoundError,
    ExerciseValidationError,
    InternalError,
    LessonEngineError,
    LessonLockedError,
    LessonNotFoundError,
    ProgressNotFoundError,
    UserNotAuthenticatedError,
)
from lesson_engine.models.learning import (
    Answer,
    CompleteLessonResult,
    EngineMetrics,
    Exercise,
    LearnerIdentity,
    Lesson,
    LessonEvent,
    LessonRequest,
    LessonWithProgress,
    ScoreResult,
    StartLessonResult,
    UserProgress,
    UserStats,
    utc_now,
)
from lesson_engine.services.learning.events import EventPublisher
from lesson_engine.services.learning.exercise_generator import (
    ExerciseRegistry,
    clamp_exercise_count,
    create_default_registry,
)
from lesson_engine.services.learning.lesson_utils import (
    index_progress,
    is_lesson_locked,
    listing_sort_key,
    unmet_prerequisites,
)
from lesson_engine.services.learning.repository import (
    LessonRepository,
    SessionStateProvider,
)
from lesson_engine.services.learning.srs_engine import (
    SchedulerConfig,
    clamp_performance,
    create_scheduler,
)


class LessonService:
    """
    Lesson orchestration service.

    Collaborators are injected; nothing here is a module-level singleton.
    Generated exercises are kept in memory on the instance until they are
    validated or evicted by newer ones.
    """

    def __init__(
        self,
        repository: LessonRepository,
        session: SessionStateProvider,
        events: EventPublisher,
        cache: Optional[CacheProvider] = None,
        registry: Optional[ExerciseRegistry] = None,
        scheduler_config: Optional[SchedulerConfig] = None,
        logger: Optional[logging.Logger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the lesson service.

        Args:
            repository: Persistence collaborator for lessons, progress, stats
            session: Yields the current learner
            events: Sink for lifecycle events
            cache: Cache provider (default: in-memory TTL cache)
            registry: Exercise generators (default: flashcard + multiple choice)
            scheduler_config: Review scheduler parameters (default: settings)
            logger: Logger for diagnostics (default: module logger)
            clock: Source of the current UTC time
        """
        self.repository = repository
        self.session = session
        self.events = events
        self.cache: CacheProvider = cache if cache is not None else MemoryCache()
        self.registry = registry if registry is not None else create_default_registry()
        self.scheduler = create_scheduler(scheduler_config)
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock or utc_now

        self.lesson_ttl = DEFAULT_CACHE_TTL
        self.list_ttl = DEFAULT_LIST_TTL
        self.max_stored_exercises = settings.CACHE_MAX_SIZE

        self._exercises: OrderedDict[str, Exercise] = OrderedDict()
        self._metrics = EngineMetrics()

    # ===========================================
    # Public operations
    # ===========================================

    async def get_lesson(self, lesson_id: str) -> Lesson:
        """
        Fetch a lesson the current learner may open.

        Raises:
            LessonNotFoundError: No lesson with that ID
            LessonLockedError: Non-premium learner with unmet prerequisites
        """
        self.logger.info(f"Loading lesson {lesson_id}")
        try:
            user = await self._current_user("get_lesson", required=False)
            lesson, _ = await self._load_accessible_lesson(lesson_id, user)
        except Exception as e:
            await self._report_failure("get_lesson", e, lesson_id=lesson_id)
            raise

        self._metrics.lessons_loaded += 1
        await self._publish(
            LessonEventType.LOADED,
            {"lesson_id": lesson.id, "user_id": user.id if user else None},
        )
        return lesson

    async def get_lessons(
        self, request: Optional[LessonRequest] = None
    ) -> list[LessonWithProgress]:
        """
        List active lessons matching the request filter.

        For an authenticated learner each lesson is enriched with its
        progress record and lock state, then ordered: in progress first,
        then not started, then completed, each group by `order`.
        """
        request = request or LessonRequest()
        try:
            return await self._list_lessons(request)
        except Exception as e:
            await self._report_failure(
                "get_lessons", e, request=request.model_dump(mode="json")
            )
            raise

    async def start_lesson(self, lesson_id: str) -> StartLessonResult:
        """
        Move a lesson to in_progress for the current learner.

        A fresh progress record starts with default SRS data. A completed
        record is re-entered: SRS data, best score and answers are kept and
        attempts is incremented. Starting a lesson already in progress
        resumes it without writing.
        """
        self.logger.info(f"Starting lesson {lesson_id}")
        try:
            user = await self._current_user("start_lesson")
            lesson, progress_by_lesson = await self._load_accessible_lesson(lesson_id, user)
            existing = progress_by_lesson.get(lesson.id)
            now = self._clock()

            if existing is not None and existing.status == ProgressStatus.IN_PROGRESS:
                self.logger.info(f"Resuming lesson {lesson.id} for user {user.id}")
                progress = existing
            else:
                if existing is None or existing.status == ProgressStatus.NOT_STARTED:
                    progress = UserProgress(
                        user_id=user.id,
                        lesson_id=lesson.id,
                        status=ProgressStatus.IN_PROGRESS,
                        started_at=now,
                        attempts=(existing.attempts if existing else 0) + 1,
                    )
                else:
                    progress = existing.model_copy(
                        update={
                            "status": ProgressStatus.IN_PROGRESS,
                            "started_at": now,
                            "attempts": existing.attempts + 1,
                        }
                    )
                await self.repository.update_lesson_progress(user.id, lesson.id, progress)
                await self._invalidate_user(user.id)
        except Exception as e:
            await self._report_failure("start_lesson", e, lesson_id=lesson_id)
            raise

        self._metrics.lessons_started += 1
        await self._publish(
            LessonEventType.STARTED,
            {
                "lesson_id": lesson.id,
                "user_id": user.id,
                "attempts": progress.attempts,
            },
        )
        self.logger.info(f"Lesson {lesson.id} started for user {user.id}")
        return StartLessonResult(lesson=lesson, progress=progress)

    async def complete_lesson(
        self,
        lesson_id: str,
        score: float,
        time_spent_ms: int,
        answers: Optional[Iterable[Union[Answer, dict[str, Any]]]] = None,
    ) -> CompleteLessonResult:
        """
        Record a completed attempt or review of a lesson.

        Args:
            lesson_id: Lesson being completed
            score: Performance 0-100 (clamped)
            time_spent_ms: Time spent on this attempt
            answers: Answers given during the attempt

        Returns:
            CompleteLessonResult with updated progress, XP earned and the
            next review date

        Raises:
            ProgressNotFoundError: The lesson was never started
        """
        self.logger.info(
            f"Completing lesson {lesson_id} (score={score}, time_spent_ms={time_spent_ms})"
        )
        try:
            user = await self._current_user("complete_lesson")
            lesson, progress_by_lesson = await self._load_accessible_lesson(lesson_id, user)

            previous = progress_by_lesson.get(lesson.id)
            if previous is None:
                raise ProgressNotFoundError(user.id, lesson.id)

            performance = clamp_performance(score)
            now = self._clock()
            srs_data = self.scheduler.calculate_srs_update(
                lesson.difficulty, previous.srs_data, performance, now=now
            )
            new_answers = [
                answer if isinstance(answer, Answer) else Answer.model_validate(answer)
                for answer in (answers or [])
            ]

            progress = previous.model_copy(
                update={
                    "status": ProgressStatus.COMPLETED,
                    "score": max(previous.score, performance),
                    "completed_at": now,
                    "time_spent_ms": previous.time_spent_ms + max(0, int(time_spent_ms)),
                    "answers": [*previous.answers, *new_answers],
                    "srs_data": srs_data,
                }
            )
            await self.repository.update_lesson_progress(user.id, lesson.id, progress)
            await self._invalidate_user(user.id)
        except Exception as e:
            await self._report_failure("complete_lesson", e, lesson_id=lesson_id)
            raise

        await self._update_user_stats(
            user.id,
            lesson,
            performance,
            max(0, int(time_spent_ms)),
            first_completion=previous.completed_at is None,
        )

        self._metrics.lessons_completed += 1
        await self._publish(
            LessonEventType.COMPLETED,
            {
                "lesson_id": lesson.id,
                "user_id": user.id,
                "score": performance,
                "xp_earned": lesson.xp_reward,
                "interval": srs_data.interval,
                "ease_factor": srs_data.ease_factor,
                "next_review": srs_data.next_review.isoformat(),
            },
        )
        self.logger.info(
            f"Lesson {lesson.id} completed by {user.id}: next review in "
            f"{srs_data.interval} days"
        )
        return CompleteLessonResult(
            lesson=lesson,
            progress=progress,
            xp_earned=lesson.xp_reward,
            next_review=srs_data.next_review,
        )

    async def generate_exercises(
        self,
        lesson_id: str,
        exercise_type: Union[str, ExerciseType],
        count: int = settings.EXERCISE_DEFAULT_COUNT,
    ) -> list[Exercise]:
        """
        Build exercises for a lesson with the registered generator.

        `count` is clamped into the configured limits. Generated exercises
        are retained for validate_exercise().

        Raises:
            ExerciseGenerationError: Unregistered type or a failing generator
        """
        type_name = (
            exercise_type.value
            if isinstance(exercise_type, ExerciseType)
            else str(exercise_type)
        )
        self.logger.info(f"Generating {count} {type_name} exercises for lesson {lesson_id}")
        try:
            user = await self._current_user("generate_exercises", required=False)
            lesson, _ = await self._load_accessible_lesson(lesson_id, user)

            if not self.registry.has(type_name):
                raise ExerciseGenerationError(lesson_id, type_name, "no generator registered")
            generator = self.registry.get(type_name)

            try:
                exercises = generator.generate(lesson, clamp_exercise_count(count))
            except LessonEngineError:
                raise
            except Exception as e:
                raise ExerciseGenerationError(lesson_id, type_name, str(e)) from e
        except Exception as e:
            await self._report_failure(
                "generate_exercises", e, lesson_id=lesson_id, exercise_type=type_name
            )
            raise

        for exercise in exercises:
            self._store_exercise(exercise)
        self._metrics.exercises_generated += len(exercises)
        return exercises

    async def validate_exercise(
        self, exercise_id: str, user_answer: Any, time_spent_ms: int = 0
    ) -> ScoreResult:
        """
        Score an answer to a previously generated exercise.

        The exercise is looked up by ID, falling back to its question text
        or source word.

        Raises:
            ExerciseNotFoundError: No retained exercise matches
            ExerciseValidationError: No generator for its type, or it failed
        """
        self.logger.info(f"Validating exercise {exercise_id}")
        try:
            exercise = self._find_exercise(exercise_id)
            if exercise is None:
                raise ExerciseNotFoundError(exercise_id)

            generator = self.registry.get_for_exercise(exercise)
            if generator is None:
                raise ExerciseValidationError(
                    exercise.id, exercise.type.value, "no generator registered"
                )

            try:
                result = generator.score(exercise, user_answer, max(0, int(time_spent_ms)))
            except Exception as e:
                raise ExerciseValidationError(exercise.id, exercise.type.value, str(e)) from e
        except Exception as e:
            await self._report_failure("validate_exercise", e, exercise_id=exercise_id)
            raise

        self._metrics.exercises_validated += 1
        self.logger.info(
            f"Exercise {exercise.id}: correct={result.is_correct} total={result.total}"
        )
        return result

    async def get_next_review_lesson(self) -> Optional[Lesson]:
        """
        The lesson the learner should study next.

        A due review wins; otherwise the first unlocked lesson the learner
        has not started. Returns None when there is neither.
        """
        try:
            user = await self._current_user("get_next_review_lesson")
            lesson = await self.repository.get_next_review_lesson(user.id)
            if lesson is not None:
                return lesson

            for item in await self._list_lessons(LessonRequest()):
                not_started = (
                    item.user_progress is None
                    or item.user_progress.status == ProgressStatus.NOT_STARTED
                )
                if not_started and not item.is_locked:
                    return item.lesson
            return None
        except Exception as e:
            await self._report_failure("get_next_review_lesson", e)
            raise

    async def get_metrics(self) -> EngineMetrics:
        """Operation counters plus cache hit/miss/size."""
        metrics = self._metrics.model_copy()
        metrics.cache = await self.cache.get_metrics()
        return metrics

    async def clear_cache(self) -> None:
        await self.cache.clear()
        self.logger.info("Lesson cache cleared")

    # ===========================================
    # Lessons and locks
    # ===========================================

    async def _list_lessons(self, request: LessonRequest) -> list[LessonWithProgress]:
        user = await self._current_user("get_lessons", required=False)
        filters = request.to_filter()
        cache_key = self._list_cache_key(user, request)

        cached = await self._cache_get(cache_key)
        if cached is not None:
            return [LessonWithProgress.model_validate(item) for item in cached]

        lessons = await self.repository.get_lessons_by_filter(filters)

        if user is None:
            items = [
                LessonWithProgress(lesson=lesson, is_locked=is_lesson_locked(lesson, {}))
                for lesson in lessons
            ]
        else:
            progress_by_lesson = index_progress(
                await self.repository.get_user_progress(user.id)
            )
            items = [
                LessonWithProgress(
                    lesson=lesson,
                    user_progress=progress_by_lesson.get(lesson.id),
                    is_locked=is_lesson_locked(lesson, progress_by_lesson, user.is_premium),
                )
                for lesson in lessons
            ]
            items.sort(key=lambda item: listing_sort_key(item.lesson, item.user_progress))

        page = items[request.offset : request.offset + request.limit]
        await self._cache_set(
            cache_key, [item.model_dump(mode="json") for item in page], self.list_ttl
        )
        return page

    async def _load_lesson(self, lesson_id: str) -> Lesson:
        cache_key = f"lesson:{lesson_id}"
        cached = await self._cache_get(cache_key)
        if cached is not None:
            return Lesson.model_validate(cached)

        lesson = await self.repository.get_lesson_by_id(lesson_id)
        if lesson is None:
            raise LessonNotFoundError(lesson_id)

        await self._cache_set(cache_key, lesson.model_dump(mode="json"), self.lesson_ttl)
        return lesson

    async def _load_accessible_lesson(
        self, lesson_id: str, user: Optional[LearnerIdentity]
    ) -> tuple[Lesson, dict[str, UserProgress]]:
        """
        Load a lesson and enforce its lock for the given learner.

        Anonymous callers have no progress, so every prerequisite counts
        as unmet. Returns the lesson with the learner's progress by lesson.
        """
        lesson = await self._load_lesson(lesson_id)

        progress_by_lesson: dict[str, UserProgress] = {}
        if user is not None:
            progress_by_lesson = index_progress(
                await self.repository.get_user_progress(user.id)
            )

        is_premium = user.is_premium if user else False
        if is_lesson_locked(lesson, progress_by_lesson, is_premium):
            raise LessonLockedError(lesson.id, unmet_prerequisites(lesson, progress_by_lesson))

        return lesson, progress_by_lesson

    # ===========================================
    # Exercises
    # ===========================================

    def _store_exercise(self, exercise: Exercise) -> None:
        self._exercises[exercise.id] = exercise
        while len(self._exercises) > self.max_stored_exercises:
            self._exercises.popitem(last=False)

    def _find_exercise(self, exercise_id: str) -> Optional[Exercise]:
        exercise = self._exercises.get(exercise_id)
        if exercise is not None:
            return exercise
        # Newest first, so a regenerated question wins over a stale one
        for candidate in reversed(self._exercises.values()):
            if candidate.question == exercise_id or candidate.metadata.get("word") == exercise_id:
                return candidate
        return None

    # ===========================================
    # Stats
    # ===========================================

    async def _update_user_stats(
        self,
        user_id: str,
        lesson: Lesson,
        score: float,
        time_spent_ms: int,
        first_completion: bool,
    ) -> None:
        """Roll the completion into aggregate stats; failures are logged only."""
        try:
            stats = await self.repository.get_user_stats(user_id) or UserStats(user_id=user_id)
            total_reviews = stats.total_reviews + 1
            average = (stats.average_score * stats.total_reviews + score) / total_reviews

            updated = stats.model_copy(
                update={
                    "total_xp": stats.total_xp + lesson.xp_reward,
                    "lessons_completed": stats.lessons_completed + (1 if first_completion else 0),
                    "total_time_ms": stats.total_time_ms + time_spent_ms,
                    "total_reviews": total_reviews,
                    "average_score": round(average, 2),
                    "last_activity": self._clock(),
                }
            )
            await self.repository.update_user_stats(user_id, updated)
            self.logger.info(
                f"Stats updated for {user_id}: xp={updated.total_xp} "
                f"completed={updated.lessons_completed}"
            )
        except Exception as e:
            self._metrics.stats_update_failures += 1
            self.logger.error(f"Failed to update stats for {user_id}: {e}")

    # ===========================================
    # Collaborator helpers
    # ===========================================

    async def _current_user(
        self, operation: str, required: bool = True
    ) -> Optional[LearnerIdentity]:
        try:
            state = await self.session.get_state()
        except Exception as e:
            raise InternalError.wrap(f"{operation}: session lookup", e) from e

        if state.user is None and required:
            raise UserNotAuthenticatedError(operation)
        return state.user

    def _list_cache_key(self, user: Optional[LearnerIdentity], request: LessonRequest) -> str:
        owner = user.id if user else "anonymous"
        serialized = json.dumps(request.model_dump(mode="json"), sort_keys=True)
        return f"lessons:{owner}:{serialized}"

    async def _invalidate_user(self, user_id: str) -> None:
        try:
            removed = await self.cache.invalidate_prefix(f"lessons:{user_id}:")
            self.logger.debug(f"Invalidated {removed} cached listings for {user_id}")
        except Exception as e:
            self.logger.warning(f"Cache invalidation failed for {user_id}: {e}")

    async def _cache_get(self, key: str) -> Optional[Any]:
        try:
            return await self.cache.get(key)
        except Exception as e:
            self.logger.warning(f"Cache read failed for {key}: {e}")
            return None

    async def _cache_set(self, key: str, value: Any, ttl: int) -> None:
        try:
            await self.cache.set(key, value, ttl)
        except Exception as e:
            self.logger.warning(f"Cache write failed for {key}: {e}")

    async def _publish(self, event_type: LessonEventType, payload: dict[str, Any]) -> None:
        try:
            await self.events.publish(LessonEvent(type=event_type, payload=payload))
        except Exception as e:
            self.logger.warning(f"Failed to publish {event_type.value}: {e}")

    async def _report_failure(self, operation: str, error: Exception, **context: Any) -> None:
        self._metrics.errors += 1
        self.logger.error(f"{operation} failed: {error}", extra={"context": context})

        payload: dict[str, Any] = {"operation": operation, **context}
        if isinstance(error, LessonEngineError):
            payload.update(error.to_dict())
        else:
            payload.update({"error": type(error).__name__, "message": str(error)})
        await self._publish(LessonEventType.ERROR, payload)
