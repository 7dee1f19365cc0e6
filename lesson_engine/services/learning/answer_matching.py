"""
Answer Matching Utilities

Fuzzy string comparison used to grade typed answers. Tolerates minor
spelling slips without accepting wrong answers.

Usage:
    from lesson_engine.services.learning.answer_matching import (
        normalize_answer,
        similarity_ratio,
    )

    similarity_ratio(normalize_answer(" Casa "), "cassa")  # 0.8
"""

import re

_UNSAFE_CHARS = re.compile(r"[<>/\"'`]")


def normalize_answer(text: str) -> str:
    """Trim surrounding whitespace and lowercase for comparison."""
    return str(text).strip().lower()


def sanitize_input(text: str = "") -> str:
    """Strip characters that are unsafe to echo back into markup."""
    return _UNSAFE_CHARS.sub("", text)


def levenshtein_distance(a: str, b: str) -> int:
    """
    Edit distance between two strings (insert, delete, substitute).

    Uses two rolling rows, so memory is O(len(b)).
    """
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current[j] = min(
                current[j - 1] + 1,
                previous[j] + 1,
                previous[j - 1] + cost,
            )
        previous = current

    return previous[len(b)]


def similarity_ratio(a: str, b: str) -> float:
    """
    Normalized similarity in [0, 1].

    Computed as (longer - distance) / longer, where `longer` is the length
    of the longer string. Two empty strings are identical.
    """
    longer = max(len(a), len(b))
    if longer == 0:
        return 1.0
    return (longer - levenshtein_distance(a, b)) / float(longer)


def similarity_percentage(a: str, b: str) -> int:
    """similarity_ratio scaled to a rounded 0-100 percentage."""
    return round(similarity_ratio(a, b) * 100)
