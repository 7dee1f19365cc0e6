"""
Learning System Models (Pydantic)

Data model for lessons, learner progress, spaced repetition state,
generated exercises and the result shapes returned by LessonService.

ARCHITECTURE NOTE:
    Lessons are read-only content owned by the authoring side. Progress
    records are created and mutated by LessonService and persisted by the
    repository collaborator. Exercises are ephemeral and never persisted.

    Data flows: Repository → Pydantic → LessonService → Repository
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from lesson_engine.config import settings
from lesson_engine.enums.learning import (
    XP_REWARDS,
    ExerciseType,
    LessonEventType,
    LessonStatus,
    ProgressStatus,
)
from lesson_engine.models.base import StrictRequest, StrictResponse


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# ===========================================
# Lesson Content Models
# ===========================================


class VocabularyItem(BaseModel):
    """A word/translation pair used as exercise source material."""

    word: str
    translation: str
    phonetic: Optional[str] = None
    example: Optional[str] = None
    part_of_speech: Optional[str] = None
    difficulty: Optional[int] = Field(None, ge=1, le=5)


class GrammarPoint(BaseModel):
    """
    A grammar rule with a question, its answer and distractors.

    When `options` is given it is used verbatim as the option list;
    otherwise options are built from `correct_answer` and `distractors`.
    """

    title: str = ""
    rule: Optional[str] = None
    question: Optional[str] = None
    correct_answer: str
    distractors: list[str] = Field(default_factory=list)
    options: Optional[list[str]] = None
    difficulty: Optional[int] = Field(None, ge=1, le=5)


class LessonContent(BaseModel):
    """Vocabulary items and optional grammar points of a lesson."""

    vocabulary: list[VocabularyItem] = Field(default_factory=list)
    grammar_points: list[GrammarPoint] = Field(default_factory=list)


class Lesson(StrictResponse):
    """
    Immutable content unit.

    `xp_reward` defaults to the reward table entry for the lesson's
    difficulty when the stored record does not carry one.
    """

    model_config = ConfigDict(extra="ignore", frozen=True, from_attributes=True)

    id: str
    title: str
    difficulty: int = Field(1, ge=1, le=5, description="Difficulty level (1-5)")
    xp_reward: int = Field(0, ge=0, description="XP awarded on completion")
    prerequisites: list[str] = Field(
        default_factory=list, description="Ordered prerequisite lesson IDs"
    )
    content: LessonContent = Field(default_factory=LessonContent)
    status: LessonStatus = LessonStatus.AVAILABLE
    order: int = 0
    category: Optional[str] = None
    type: Optional[str] = None
    is_active: bool = True

    @model_validator(mode="before")
    @classmethod
    def _default_xp_reward(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("xp_reward") is None:
            data = dict(data)
            data["xp_reward"] = XP_REWARDS.get(data.get("difficulty", 1), 0)
        return data


# ===========================================
# Progress & Spaced Repetition Models
# ===========================================


class SRSData(BaseModel):
    """
    Spaced repetition state for one (user, lesson) pair.

    Fresh records start at the default ease factor with a one-day
    interval and no reviews.
    """

    ease_factor: float = Field(default_factory=lambda: settings.SRS_DEFAULT_EASE_FACTOR)
    interval: int = Field(1, ge=1, description="Current interval in days")
    next_review: Optional[datetime] = None
    review_count: int = Field(0, ge=0)
    streak: int = Field(0, ge=0, description="Consecutive successful reviews")
    last_reviewed: Optional[datetime] = None


class Answer(BaseModel):
    """A learner's response to one exercise."""

    exercise_id: str
    user_answer: Union[int, str]
    is_correct: bool = False
    score: float = 0.0
    time_spent_ms: int = Field(0, ge=0)
    answered_at: datetime = Field(default_factory=utc_now)


class UserProgress(StrictResponse):
    """One progress record per (user, lesson) pair."""

    user_id: str
    lesson_id: str
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    score: float = Field(0.0, description="Highest score seen")
    time_spent_ms: int = Field(0, ge=0, description="Cumulative time spent")
    answers: list[Answer] = Field(default_factory=list)
    srs_data: SRSData = Field(default_factory=SRSData)
    attempts: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class UserStats(StrictResponse):
    """Aggregate per-user rollup maintained after each completion."""

    user_id: str
    total_xp: int = 0
    lessons_completed: int = 0
    total_time_ms: int = 0
    total_reviews: int = 0
    average_score: float = 0.0
    last_activity: Optional[datetime] = None


# ===========================================
# Exercise Models
# ===========================================


class Exercise(BaseModel):
    """
    A generated practice item.

    Exercises are produced per session by a generator and kept in memory
    only long enough to validate the learner's answer.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: ExerciseType
    question: str
    correct_answer: str
    options: list[str] = Field(default_factory=list)
    hint: Optional[str] = None
    example: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    lesson_id: Optional[str] = None


class ValidationResult(BaseModel):
    """Outcome of checking a single answer."""

    is_correct: bool
    score: float = Field(..., ge=0, le=100)


class ScoreResult(BaseModel):
    """Score breakdown for a single answer, total clamped to [0, 100]."""

    score: float
    time_bonus: float
    total: int = Field(..., ge=0, le=100)
    is_correct: bool = False


# ===========================================
# Request / Result Models
# ===========================================


class LessonRequest(StrictRequest):
    """Filter and pagination for lesson listings."""

    type: Optional[str] = None
    difficulty: Optional[int] = Field(None, ge=1, le=5)
    category: Optional[str] = None
    limit: int = Field(10, ge=1)
    offset: int = Field(0, ge=0)

    def to_filter(self) -> dict[str, Any]:
        """Repository filter; inactive lessons are never listed."""
        return {
            "type": self.type,
            "difficulty": self.difficulty,
            "category": self.category,
            "is_active": True,
        }


class LessonWithProgress(BaseModel):
    """A lesson enriched with the current learner's progress and lock state."""

    lesson: Lesson
    user_progress: Optional[UserProgress] = None
    is_locked: bool = False


class StartLessonResult(BaseModel):
    lesson: Lesson
    progress: UserProgress


class CompleteLessonResult(BaseModel):
    lesson: Lesson
    progress: UserProgress
    xp_earned: int
    next_review: Optional[datetime] = None


# ===========================================
# Session & Event Models
# ===========================================


class LearnerIdentity(BaseModel):
    """The authenticated learner for the current invocation."""

    id: str
    is_premium: bool = False


class SessionState(BaseModel):
    """Snapshot returned by the session collaborator."""

    user: Optional[LearnerIdentity] = None


class LessonEvent(BaseModel):
    """A lesson lifecycle notification."""

    type: LessonEventType
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)


# ===========================================
# Metrics
# ===========================================


class CacheMetrics(BaseModel):
    hits: int = 0
    misses: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class EngineMetrics(BaseModel):
    """Operation counters for LessonService plus cache statistics."""

    lessons_loaded: int = 0
    lessons_started: int = 0
    lessons_completed: int = 0
    exercises_generated: int = 0
    exercises_validated: int = 0
    stats_update_failures: int = 0
    errors: int = 0
    cache: CacheMetrics = Field(default_factory=CacheMetrics)
