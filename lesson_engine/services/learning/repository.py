"""
Lesson Repository and Session Ports

Collaborator interfaces consumed by LessonService, plus in-memory
implementations used by tests and local bootstrap.

The repository owns persistence. Every method is a coroutine and may
raise; LessonService propagates those failures unchanged except for the
aggregate stats update.

Usage:
    from lesson_engine.services.learning.repository import (
        InMemoryLessonRepository,
        StaticSessionState,
    )

    repository = InMemoryLessonRepository(lessons=[lesson_1, lesson_2])
    session = StaticSessionState(LearnerIdentity(id="user-1"))
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Optional, Protocol

from lesson_engine.enums.learning import ProgressStatus
from lesson_engine.models.learning import (
    LearnerIdentity,
    Lesson,
    SessionState,
    UserProgress,
    UserStats,
    utc_now,
)

logger = logging.getLogger(__name__)


class LessonRepository(Protocol):
    """Persistence collaborator for lessons, progress and stats."""

    async def get_lesson_by_id(self, lesson_id: str) -> Optional[Lesson]:
        ...

    async def get_lessons_by_filter(self, filters: dict[str, Any]) -> list[Lesson]:
        """Lessons matching every non-None key of `filters`."""
        ...

    async def update_lesson_progress(
        self, user_id: str, lesson_id: str, progress: UserProgress
    ) -> UserProgress:
        ...

    async def get_user_progress(self, user_id: str) -> list[UserProgress]:
        ...

    async def get_next_review_lesson(self, user_id: str) -> Optional[Lesson]:
        """The lesson whose review is most overdue, if any is due."""
        ...

    async def get_user_stats(self, user_id: str) -> Optional[UserStats]:
        ...

    async def update_user_stats(self, user_id: str, stats: UserStats) -> UserStats:
        ...


class SessionStateProvider(Protocol):
    """Yields the learner for the current invocation."""

    async def get_state(self) -> SessionState:
        ...


class StaticSessionState:
    """Session provider with a fixed (or swappable) learner."""

    def __init__(self, user: Optional[LearnerIdentity] = None) -> None:
        self.user = user

    async def get_state(self) -> SessionState:
        return SessionState(user=self.user)


class InMemoryLessonRepository:
    """
    Dict-backed repository.

    Stored progress and stats are deep copies, so callers mutating a
    returned model never change repository state.
    """

    def __init__(
        self,
        lessons: Iterable[Lesson] = (),
        clock=utc_now,
    ) -> None:
        self.lessons: dict[str, Lesson] = {lesson.id: lesson for lesson in lessons}
        self.progress: dict[tuple[str, str], UserProgress] = {}
        self.stats: dict[str, UserStats] = {}
        self._clock = clock

    def add_lesson(self, lesson: Lesson) -> None:
        self.lessons[lesson.id] = lesson

    async def get_lesson_by_id(self, lesson_id: str) -> Optional[Lesson]:
        return self.lessons.get(lesson_id)

    async def get_lessons_by_filter(self, filters: dict[str, Any]) -> list[Lesson]:
        criteria = {key: value for key, value in filters.items() if value is not None}
        return [
            lesson
            for lesson in self.lessons.values()
            if all(getattr(lesson, key, None) == value for key, value in criteria.items())
        ]

    async def update_lesson_progress(
        self, user_id: str, lesson_id: str, progress: UserProgress
    ) -> UserProgress:
        stored = progress.model_copy(deep=True)
        self.progress[(user_id, lesson_id)] = stored
        logger.debug(f"Stored progress for {user_id}/{lesson_id}: {stored.status.value}")
        return stored.model_copy(deep=True)

    async def get_user_progress(self, user_id: str) -> list[UserProgress]:
        return [
            progress.model_copy(deep=True)
            for (owner, _), progress in self.progress.items()
            if owner == user_id
        ]

    async def get_next_review_lesson(self, user_id: str) -> Optional[Lesson]:
        now: datetime = self._clock()
        due = [
            progress
            for (owner, _), progress in self.progress.items()
            if owner == user_id
            and progress.status == ProgressStatus.COMPLETED
            and progress.srs_data.next_review is not None
            and progress.srs_data.next_review <= now
            and progress.lesson_id in self.lessons
        ]
        if not due:
            return None
        most_overdue = min(due, key=lambda p: p.srs_data.next_review)
        return self.lessons[most_overdue.lesson_id]

    async def get_user_stats(self, user_id: str) -> Optional[UserStats]:
        stats = self.stats.get(user_id)
        return stats.model_copy(deep=True) if stats else None

    async def update_user_stats(self, user_id: str, stats: UserStats) -> UserStats:
        self.stats[user_id] = stats.model_copy(deep=True)
        return stats
