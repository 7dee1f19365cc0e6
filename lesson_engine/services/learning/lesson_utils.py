"""
Lesson Helpers

Content validation, unlock rules and listing order shared by
LessonService and callers that prepare lesson data.
"""

from typing import Any, Iterable, Mapping, Optional

from pydantic import BaseModel, Field

from lesson_engine.enums.learning import XP_REWARDS, LessonStatus, ProgressStatus
from lesson_engine.models.learning import Lesson, UserProgress


class LessonDataValidation(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)


def validate_lesson_data(lesson_data: Any) -> LessonDataValidation:
    """
    Check raw lesson data before it is turned into a Lesson.

    Collects every problem instead of stopping at the first one.
    """
    errors: list[str] = []
    if not isinstance(lesson_data, Mapping):
        return LessonDataValidation(is_valid=False, errors=["lesson data must be a mapping"])

    lesson_id = lesson_data.get("id")
    if not lesson_id:
        errors.append("lesson id required")
    elif not isinstance(lesson_id, str):
        errors.append("lesson id must be string")

    title = lesson_data.get("title")
    if not title:
        errors.append("title required")
    elif not isinstance(title, str):
        errors.append("title must be string")

    difficulty = lesson_data.get("difficulty")
    if difficulty is not None and difficulty not in XP_REWARDS:
        errors.append("difficulty must be between 1 and 5")

    prerequisites = lesson_data.get("prerequisites", [])
    if not isinstance(prerequisites, list):
        errors.append("prerequisites must be a list")
    elif lesson_id and lesson_id in prerequisites:
        errors.append("lesson cannot be its own prerequisite")

    content = lesson_data.get("content", {})
    if not isinstance(content, Mapping):
        errors.append("content must be a mapping")
    else:
        for field in ("vocabulary", "grammar_points"):
            if not isinstance(content.get(field, []), list):
                errors.append(f"content.{field} must be a list")

    return LessonDataValidation(is_valid=not errors, errors=errors)


def get_xp_reward(difficulty: int) -> int:
    """XP for completing a lesson of the given difficulty (0 if unknown)."""
    return XP_REWARDS.get(difficulty, 0)


def index_progress(records: Iterable[UserProgress]) -> dict[str, UserProgress]:
    return {record.lesson_id: record for record in records}


def unmet_prerequisites(
    lesson: Lesson, progress_by_lesson: Mapping[str, UserProgress]
) -> list[str]:
    """Prerequisite IDs without a completed progress record, in declared order."""
    return [
        prerequisite
        for prerequisite in lesson.prerequisites
        if (record := progress_by_lesson.get(prerequisite)) is None
        or record.status != ProgressStatus.COMPLETED
    ]


def is_lesson_locked(
    lesson: Lesson,
    progress_by_lesson: Mapping[str, UserProgress],
    is_premium: bool = False,
) -> bool:
    """Premium learners are never locked out."""
    if is_premium:
        return False
    if lesson.status == LessonStatus.LOCKED:
        return True
    return bool(unmet_prerequisites(lesson, progress_by_lesson))


# in_progress first, then not started, then completed
_LISTING_RANK = {
    ProgressStatus.IN_PROGRESS: 0,
    ProgressStatus.NOT_STARTED: 1,
    ProgressStatus.COMPLETED: 2,
}


def listing_sort_key(lesson: Lesson, progress: Optional[UserProgress]) -> tuple[int, int]:
    status = progress.status if progress else ProgressStatus.NOT_STARTED
    return (_LISTING_RANK[status], lesson.order)
