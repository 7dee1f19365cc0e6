"""
Shared Test Fixtures and Configuration

This module provides pytest fixtures used across the unit tests.
"""

import os
import random
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from dotenv import load_dotenv

# Load .env file from project root BEFORE any fixtures run
_env_file = Path(__file__).parent.parent / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


# ============================================================================
# Environment Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment() -> Generator[None, None, None]:
    """
    Set up test environment variables before any tests run.

    Overrides values from .env files so tests run with predictable
    configuration.
    """
    original_env = os.environ.copy()

    os.environ.update(
        {
            "REDIS_URL": os.environ.get("REDIS_URL", "redis://localhost:6379/1"),
            "DEBUG": "true",
        }
    )

    yield

    os.environ.clear()
    os.environ.update(original_env)


# ============================================================================
# Sample Lesson Data
# ============================================================================


FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def rng() -> random.Random:
    """Seeded random source for reproducible exercises."""
    return random.Random(1234)


@pytest.fixture
def vocabulary_data() -> list[dict[str, Any]]:
    return [
        {"word": "house", "translation": "casa", "phonetic": "haʊs", "part_of_speech": "noun"},
        {"word": "dog", "translation": "perro", "phonetic": "dɒɡ", "part_of_speech": "noun"},
        {"word": "cat", "translation": "gato", "phonetic": "kæt", "part_of_speech": "noun"},
        {"word": "water", "translation": "agua", "phonetic": "ˈwɔːtə", "part_of_speech": "noun"},
        {"word": "to eat", "translation": "comer", "part_of_speech": "verb"},
        {"word": "red", "translation": "rojo", "part_of_speech": "adjective"},
    ]


@pytest.fixture
def grammar_data() -> list[dict[str, Any]]:
    return [
        {
            "title": "ser vs estar",
            "rule": "Use estar for temporary states",
            "question": "Yo ___ cansado.",
            "correct_answer": "estoy",
            "distractors": ["soy", "es"],
        },
        {
            "title": "articles",
            "question": "___ casa es grande.",
            "correct_answer": "La",
            "options": ["El", "La", "Los", "Las"],
        },
    ]


@pytest.fixture
def lesson_data(vocabulary_data, grammar_data) -> dict[str, Any]:
    return {
        "id": "lesson-1",
        "title": "Basics",
        "difficulty": 1,
        "content": {"vocabulary": vocabulary_data, "grammar_points": grammar_data},
        "order": 1,
        "category": "vocabulary",
        "type": "standard",
    }


@pytest.fixture
def lesson(lesson_data):
    from lesson_engine.models.learning import Lesson

    return Lesson.model_validate(lesson_data)


@pytest.fixture
def lesson_catalog(vocabulary_data):
    """Three lessons: an entry lesson and two that build on it."""
    from lesson_engine.models.learning import Lesson

    content = {"vocabulary": vocabulary_data}
    return [
        Lesson(id="lesson-1", title="Basics", difficulty=1, order=1, content=content),
        Lesson(
            id="lesson-2",
            title="Food",
            difficulty=2,
            order=2,
            prerequisites=["lesson-1"],
            content=content,
        ),
        Lesson(
            id="lesson-3",
            title="Travel",
            difficulty=3,
            order=3,
            prerequisites=["lesson-1", "lesson-2"],
            content=content,
        ),
    ]


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_redis() -> MagicMock:
    """
    Create a mock Redis client for unit testing.

    This allows testing Redis-dependent code without a real Redis server.
    """
    mock = MagicMock()
    mock.get = AsyncMock(return_value=None)
    mock.setex = AsyncMock(return_value=True)
    mock.delete = AsyncMock(return_value=1)
    mock.keys = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def mock_repository() -> MagicMock:
    """Repository double with every coroutine mocked."""
    mock = MagicMock()
    mock.get_lesson_by_id = AsyncMock(return_value=None)
    mock.get_lessons_by_filter = AsyncMock(return_value=[])
    mock.update_lesson_progress = AsyncMock(side_effect=lambda user_id, lesson_id, progress: progress)
    mock.get_user_progress = AsyncMock(return_value=[])
    mock.get_next_review_lesson = AsyncMock(return_value=None)
    mock.get_user_stats = AsyncMock(return_value=None)
    mock.update_user_stats = AsyncMock(side_effect=lambda user_id, stats: stats)
    return mock
