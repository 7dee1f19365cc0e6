"""Pydantic models for the lesson engine."""

from lesson_engine.models.base import StrictRequest, StrictResponse
from lesson_engine.models.learning import (
    Answer,
    CacheMetrics,
    CompleteLessonResult,
    EngineMetrics,
    Exercise,
    GrammarPoint,
    LearnerIdentity,
    Lesson,
    LessonContent,
    LessonEvent,
    LessonRequest,
    LessonWithProgress,
    ScoreResult,
    SessionState,
    SRSData,
    StartLessonResult,
    UserProgress,
    UserStats,
    ValidationResult,
    VocabularyItem,
    utc_now,
)

__all__ = [
    "StrictRequest",
    "StrictResponse",
    "Answer",
    "CacheMetrics",
    "CompleteLessonResult",
    "EngineMetrics",
    "Exercise",
    "GrammarPoint",
    "LearnerIdentity",
    "Lesson",
    "LessonContent",
    "LessonEvent",
    "LessonRequest",
    "LessonWithProgress",
    "ScoreResult",
    "SessionState",
    "SRSData",
    "StartLessonResult",
    "UserProgress",
    "UserStats",
    "ValidationResult",
    "VocabularyItem",
    "utc_now",
]
