"""
Lesson Engine Error Taxonomy

Typed failure conditions raised by LessonService and the exercise
generators. Every error carries a machine-readable `error_code` and a
`details` dict so a presentation layer can map code → localized message
without string matching.

Usage:
    from lesson_engine.exceptions import LessonLockedError

    try:
        await service.start_lesson("lesson-2")
    except LessonLockedError as e:
        show_locked_banner(e.details["unmet_prerequisites"])

Propagation policy:
    - Lock and validation errors are built with enough context to show the
      learner directly and are never retried.
    - Failures of the aggregate stats rollup are logged, not raised.
    - Any other repository failure propagates unchanged.
"""

from typing import Any, Optional


class LessonEngineError(Exception):
    """
    Base exception for lesson engine errors.

    Provides consistent error handling with:
    - HTTP-style status code for callers that expose an API
    - Error code for categorization
    - Optional details for the learner UI and for debugging

    Example:
        raise LessonEngineError("Something went wrong", details={"lesson_id": "l1"})
    """

    status_code: int = 500
    error_code: str = "lesson_engine_error"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code:
            self.status_code = status_code
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for logging and event payloads."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class LessonNotFoundError(LessonEngineError):
    """Raised when the repository has no lesson with the requested ID."""

    status_code = 404
    error_code = "lesson_not_found"

    def __init__(self, lesson_id: str):
        super().__init__(
            f"Lesson {lesson_id} not found",
            details={"lesson_id": lesson_id},
        )
        self.lesson_id = lesson_id


class LessonLockedError(LessonEngineError):
    """
    Raised when a non-premium learner opens a lesson with unmet prerequisites.

    `unmet_prerequisites` lists the prerequisite lesson IDs that have no
    completed progress record, in the lesson's declared order.
    """

    status_code = 403
    error_code = "lesson_locked"

    def __init__(self, lesson_id: str, unmet_prerequisites: list[str]):
        super().__init__(
            f"Lesson {lesson_id} is locked; complete its prerequisites first",
            details={
                "lesson_id": lesson_id,
                "unmet_prerequisites": list(unmet_prerequisites),
            },
        )
        self.lesson_id = lesson_id
        self.unmet_prerequisites = list(unmet_prerequisites)


class ExerciseGenerationError(LessonEngineError):
    """Raised for an unregistered exercise type or a failing generator."""

    status_code = 422
    error_code = "exercise_generation_failed"

    def __init__(self, lesson_id: str, exercise_type: str, reason: str = ""):
        message = f"Could not generate {exercise_type} exercises for lesson {lesson_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            details={
                "lesson_id": lesson_id,
                "exercise_type": exercise_type,
                "reason": reason,
            },
        )
        self.lesson_id = lesson_id
        self.exercise_type = exercise_type


class ExerciseNotFoundError(LessonEngineError):
    """Raised when validating an exercise that was never generated."""

    status_code = 404
    error_code = "exercise_not_found"

    def __init__(self, exercise_id: str):
        super().__init__(
            f"Exercise {exercise_id} not found",
            details={"exercise_id": exercise_id},
        )
        self.exercise_id = exercise_id


class ExerciseValidationError(LessonEngineError):
    """Raised when no generator can validate an exercise or validation fails."""

    status_code = 422
    error_code = "exercise_validation_failed"

    def __init__(self, exercise_id: str, exercise_type: str, reason: str = ""):
        super().__init__(
            f"Could not validate exercise {exercise_id} of type {exercise_type}",
            details={
                "exercise_id": exercise_id,
                "exercise_type": exercise_type,
                "reason": reason,
            },
        )


class ProgressNotFoundError(LessonEngineError):
    """Raised when completing a lesson that was never started."""

    status_code = 404
    error_code = "progress_not_found"

    def __init__(self, user_id: str, lesson_id: str):
        super().__init__(
            f"No progress for lesson {lesson_id}; start the lesson first",
            details={"user_id": user_id, "lesson_id": lesson_id},
        )


class UserNotAuthenticatedError(LessonEngineError):
    """Raised when the session collaborator yields no learner identity."""

    status_code = 401
    error_code = "user_not_authenticated"

    def __init__(self, operation: str = ""):
        super().__init__(
            "User is not authenticated",
            details={"operation": operation} if operation else None,
        )


class RegistryFullError(LessonEngineError):
    """Raised when registering more generators than the registry allows."""

    status_code = 500
    error_code = "registry_full"

    def __init__(self, max_generators: int):
        super().__init__(
            f"Exercise registry is full (max_generators={max_generators})",
            details={"max_generators": max_generators},
        )


class InternalError(LessonEngineError):
    """
    Wraps an unexpected collaborator failure.

    The original exception is kept as `__cause__` and summarized in
    `details`.
    """

    status_code = 500
    error_code = "internal_error"

    @classmethod
    def wrap(cls, operation: str, error: Exception) -> "InternalError":
        wrapped = cls(
            f"Unexpected failure during {operation}",
            details={
                "operation": operation,
                "exception": type(error).__name__,
                "message": str(error),
            },
        )
        wrapped.__cause__ = error
        return wrapped
