"""
Learning Services

Services for SM-2 style spaced repetition, exercise generation and the
lesson lifecycle.

Modules:
- srs_engine: Review scheduler (intervals, ease factor, forecast)
- answer_matching: Fuzzy answer comparison helpers
- exercise_generator: Flashcard and multiple-choice generators, registry
- lesson_utils: Lesson data validation, unlock rules, listing order
- repository: Repository and session ports with in-memory implementations
- events: Lifecycle event publishers
- lesson_service: Lesson orchestration

Usage:
    from lesson_engine.services.learning import (
        LessonService,
        InMemoryLessonRepository,
        StaticSessionState,
        RecordingEventPublisher,
    )
"""

from lesson_engine.services.learning.srs_engine import (
    REVIEW_SCHEDULES,
    ReviewResult,
    SchedulerConfig,
    SRSScheduler,
    create_scheduler,
    get_next_review_date,
    get_review_forecast,
)
from lesson_engine.services.learning.exercise_generator import (
    ExerciseGenerator,
    ExerciseRegistry,
    FlashcardGenerator,
    MultipleChoiceGenerator,
    create_default_registry,
)
from lesson_engine.services.learning.repository import (
    InMemoryLessonRepository,
    LessonRepository,
    SessionStateProvider,
    StaticSessionState,
)
from lesson_engine.services.learning.events import (
    EventPublisher,
    LoggingEventPublisher,
    RecordingEventPublisher,
)
from lesson_engine.services.learning.lesson_service import LessonService

__all__ = [
    # Scheduler
    "REVIEW_SCHEDULES",
    "ReviewResult",
    "SchedulerConfig",
    "SRSScheduler",
    "create_scheduler",
    "get_next_review_date",
    "get_review_forecast",
    # Exercises
    "ExerciseGenerator",
    "ExerciseRegistry",
    "FlashcardGenerator",
    "MultipleChoiceGenerator",
    "create_default_registry",
    # Ports
    "InMemoryLessonRepository",
    "LessonRepository",
    "SessionStateProvider",
    "StaticSessionState",
    "EventPublisher",
    "LoggingEventPublisher",
    "RecordingEventPublisher",
    # Orchestration
    "LessonService",
]
