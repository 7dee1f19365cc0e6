"""
Centralized enum definitions for the lesson engine.

Usage:
    from lesson_engine.enums import ExerciseType, ProgressStatus
"""

from lesson_engine.enums.learning import (
    DifficultyLevel,
    ExerciseType,
    LessonEventType,
    LessonStatus,
    PerformanceBand,
    ProgressStatus,
    XP_REWARDS,
)

__all__ = [
    "XP_REWARDS",
    "DifficultyLevel",
    "ExerciseType",
    "LessonEventType",
    "LessonStatus",
    "PerformanceBand",
    "ProgressStatus",
]
