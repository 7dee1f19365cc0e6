"""
Learning System Enums

Defines enums for lesson state tracking, spaced repetition performance
bands, exercise types, and lesson lifecycle events.
"""

from enum import Enum


class LessonStatus(str, Enum):
    """
    Authoring-time lock status of a lesson.

    A LOCKED lesson still unlocks for a learner once every prerequisite
    lesson has a completed progress record (premium learners bypass locks).
    """

    LOCKED = "locked"
    AVAILABLE = "available"


class ProgressStatus(str, Enum):
    """
    Per (user, lesson) progress states.

    State transitions:
    - NOT_STARTED → IN_PROGRESS (start_lesson)
    - IN_PROGRESS → COMPLETED (complete_lesson)
    - COMPLETED → IN_PROGRESS (re-entry for another review cycle)
    - COMPLETED → COMPLETED (a review completed without re-entry)
    """

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class PerformanceBand(str, Enum):
    """
    Coarse classification of a 0-100 performance score.

    Bands (default thresholds):
    - score < 60: POOR
    - 60 <= score < 80: FAIR
    - 80 <= score < 90: GOOD
    - score >= 90: EXCELLENT
    """

    POOR = "poor"
    FAIR = "fair"
    GOOD = "good"
    EXCELLENT = "excellent"


class DifficultyLevel(int, Enum):
    """Lesson difficulty levels."""

    BEGINNER = 1
    ELEMENTARY = 2
    INTERMEDIATE = 3
    ADVANCED = 4
    EXPERT = 5


class ExerciseType(str, Enum):
    """
    Types of generated exercises.

    FLASHCARD and MULTIPLE_CHOICE are the registered generator keys.
    The vocab/grammar variants tag individual multiple-choice exercises
    by their source material and are validated by the multiple-choice
    generator.
    """

    FLASHCARD = "flashcard"
    MULTIPLE_CHOICE = "multiple_choice"
    MULTIPLE_CHOICE_VOCAB = "multiple_choice_vocab"
    MULTIPLE_CHOICE_GRAMMAR = "multiple_choice_grammar"


class LessonEventType(str, Enum):
    """Lesson lifecycle events broadcast through the event publisher."""

    LOADED = "lesson_loaded"
    STARTED = "lesson_started"
    COMPLETED = "lesson_completed"
    ERROR = "lesson_error"


# XP awarded for completing a lesson, keyed by difficulty level
XP_REWARDS: dict[int, int] = {
    DifficultyLevel.BEGINNER.value: 10,
    DifficultyLevel.ELEMENTARY.value: 25,
    DifficultyLevel.INTERMEDIATE.value: 50,
    DifficultyLevel.ADVANCED.value: 100,
    DifficultyLevel.EXPERT.value: 200,
}
