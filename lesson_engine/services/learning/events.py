"""
Lesson Lifecycle Events

Outbound notification port used by LessonService. Publishing is
fire-and-forget: the service never reads anything back from the sink.

Usage:
    from lesson_engine.services.learning.events import RecordingEventPublisher

    events = RecordingEventPublisher()
    service = LessonService(repository, session, events)
    ...
    assert events.types() == [LessonEventType.STARTED]
"""

import logging
from typing import Optional, Protocol

from lesson_engine.enums.learning import LessonEventType
from lesson_engine.models.learning import LessonEvent

logger = logging.getLogger(__name__)


class EventPublisher(Protocol):
    """Sink for lesson lifecycle events."""

    async def publish(self, event: LessonEvent) -> None:
        ...


class RecordingEventPublisher:
    """Keeps every published event in memory, in publish order."""

    def __init__(self) -> None:
        self.events: list[LessonEvent] = []

    async def publish(self, event: LessonEvent) -> None:
        self.events.append(event)

    def types(self) -> list[LessonEventType]:
        return [event.type for event in self.events]

    def of_type(self, event_type: LessonEventType) -> list[LessonEvent]:
        return [event for event in self.events if event.type == event_type]

    def clear(self) -> None:
        self.events.clear()


class LoggingEventPublisher:
    """Writes each event to a logger; errors at WARNING, the rest at INFO."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self.log = log or logger

    async def publish(self, event: LessonEvent) -> None:
        level = logging.WARNING if event.type == LessonEventType.ERROR else logging.INFO
        self.log.log(level, f"{event.type.value}: {event.payload}")
