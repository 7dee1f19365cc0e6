"""Lesson engine: spaced repetition scheduling, exercises and lesson progress."""

__version__ = "0.1.0"
