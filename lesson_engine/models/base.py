"""
Strict Base Models

Base classes with shared validation settings for the lesson engine's
request and response shapes.

Usage:
    # For caller-supplied requests (strictest validation)
    class LessonRequest(StrictRequest):
        limit: int = 10

    # For records handed back from a repository (tolerates extra fields)
    class UserProgress(StrictResponse):
        lesson_id: str

Architecture:
    Caller → StrictRequest (extra="forbid") → LessonService
    Repository record → StrictResponse (extra="ignore") → LessonService
"""

from pydantic import BaseModel, ConfigDict


class StrictRequest(BaseModel):
    """
    Base model for caller-supplied request objects.

    Features:
        - extra="forbid": Unknown fields raise a ValidationError
        - validate_default=True: Validates default values
        - str_strip_whitespace=True: Trims whitespace from strings
    """

    model_config = ConfigDict(
        extra="forbid",
        validate_default=True,
        str_strip_whitespace=True,
        from_attributes=True,
    )


class StrictResponse(BaseModel):
    """
    Base model for records that cross the repository boundary.

    More lenient than StrictRequest: stored records may carry fields this
    core does not know about, and those are ignored.
    """

    model_config = ConfigDict(
        extra="ignore",
        validate_default=True,
        from_attributes=True,
    )
