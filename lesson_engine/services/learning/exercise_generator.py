"""
Exercise Generator Service

Pluggable strategies that turn lesson content into concrete exercises and
grade a learner's answers.

Every generator implements the same capability set:
- generate(lesson, count): build up to `count` exercises from lesson content
- validate(exercise, user_answer): correctness and a 0-100 score
- score(exercise, user_answer, time_spent_ms): score plus time bonus

Variants:
- FlashcardGenerator: typed-answer recall graded with fuzzy matching
- MultipleChoiceGenerator: vocabulary and grammar questions answered by
  option index

Randomness (item sampling, distractor choice, option order) comes from an
injected `random.Random`, so a fixed seed yields reproducible exercises.

Usage:
    from lesson_engine.services.learning.exercise_generator import (
        create_default_registry,
    )

    registry = create_default_registry(rng=random.Random(42))
    generator = registry.get("flashcard")
    exercises = generator.generate(lesson, count=5)
    result = generator.score(exercises[0], "casa", time_spent_ms=4000)
"""

import logging
import random
import re
from typing import Any, Optional, Protocol, Sequence, TypeVar, Union

from lesson_engine.config import settings
from lesson_engine.enums.learning import ExerciseType
from lesson_engine.exceptions import RegistryFullError
from lesson_engine.models.learning import (
    Exercise,
    GrammarPoint,
    Lesson,
    ScoreResult,
    ValidationResult,
    VocabularyItem,
)
from lesson_engine.services.learning.answer_matching import (
    normalize_answer,
    similarity_ratio,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Multiple-choice sessions lead with at most this many vocabulary questions
# when the lesson also has grammar points
MC_VOCABULARY_QUOTA = 3

DEFAULT_GRAMMAR_QUESTION = "Which option is correct?"

_INTEGER_PATTERN = re.compile(r"^[+-]?\d+$")


def clamp_exercise_count(count: int) -> int:
    """Clamp a requested exercise count into the configured limits."""
    return max(settings.EXERCISE_MIN_COUNT, min(settings.EXERCISE_MAX_COUNT, int(count)))


class ExerciseGenerator(Protocol):
    """Protocol for exercise generation strategies."""

    def generate(self, lesson: Lesson, count: int) -> list[Exercise]:
        """Build up to `count` exercises from the lesson's content."""
        ...

    def validate(self, exercise: Exercise, user_answer: Any) -> ValidationResult:
        """Check an answer. Must not raise for malformed answers."""
        ...

    def score(
        self, exercise: Exercise, user_answer: Any, time_spent_ms: int
    ) -> ScoreResult:
        """Score an answer; always derived from validate()."""
        ...


class _GeneratorBase:
    """Shared sampling and time-bonus scoring for generators with an injected RNG."""

    rng: random.Random
    option_count: int
    max_time_bonus: float
    ms_per_bonus_point: float

    def validate(self, exercise: Exercise, user_answer: Any) -> ValidationResult:
        raise NotImplementedError

    def score(self, exercise: Exercise, user_answer: Any, time_spent_ms: int = 0) -> ScoreResult:
        """
        Validate, then add a bonus that decays linearly with answer time.

        Incorrect answers score zero with no bonus; the total is capped at 100.
        """
        validation = self.validate(exercise, user_answer)
        if not validation.is_correct:
            return ScoreResult(score=0, time_bonus=0, total=0, is_correct=False)

        time_bonus = max(0.0, self.max_time_bonus - time_spent_ms / self.ms_per_bonus_point)
        total = max(0, min(100, round(validation.score + time_bonus)))
        return ScoreResult(
            score=validation.score,
            time_bonus=time_bonus,
            total=total,
            is_correct=True,
        )

    def _select_random_items(self, items: Sequence[T], count: int) -> list[T]:
        """Sample without replacement; returns fewer items if the pool is small."""
        if count <= 0 or not items:
            return []
        return self.rng.sample(list(items), min(count, len(items)))

    def _build_options(self, pool: Sequence[str], correct_answer: str) -> list[str]:
        """
        Correct answer plus up to option_count - 1 distinct distractors, shuffled.

        Distractors never duplicate the correct answer or each other.
        """
        seen: set[str] = {correct_answer}
        candidates: list[str] = []
        for value in pool:
            if value and value not in seen:
                seen.add(value)
                candidates.append(value)

        distractors = self._select_random_items(candidates, self.option_count - 1)
        options = [*distractors, correct_answer]
        self.rng.shuffle(options)
        return options


class FlashcardGenerator(_GeneratorBase):
    """
    Typed-answer vocabulary recall.

    The learner sees a word and types its translation. Answers are
    compared case-insensitively after trimming; near misses with
    similarity above the configured threshold still count as correct.
    """

    exercise_type = ExerciseType.FLASHCARD
    max_time_bonus = 20.0
    ms_per_bonus_point = 1000.0

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        option_count: int = settings.EXERCISE_OPTION_COUNT,
        similarity_threshold: float = settings.ANSWER_SIMILARITY_THRESHOLD,
    ):
        self.rng = rng or random.Random()
        self.option_count = option_count
        self.similarity_threshold = similarity_threshold

    def generate(self, lesson: Lesson, count: int = settings.EXERCISE_DEFAULT_COUNT) -> list[Exercise]:
        vocabulary = lesson.content.vocabulary
        translations = [item.translation for item in vocabulary]
        selected = self._select_random_items(vocabulary, count)

        return [
            Exercise(
                type=self.exercise_type,
                question=item.word,
                correct_answer=item.translation,
                options=self._build_options(translations, item.translation),
                hint=item.phonetic,
                example=item.example,
                metadata={
                    "source": "vocabulary",
                    "word": item.word,
                    "part_of_speech": item.part_of_speech,
                    "difficulty": item.difficulty or lesson.difficulty,
                },
                lesson_id=lesson.id,
            )
            for item in selected
        ]

    def validate(self, exercise: Exercise, user_answer: Any) -> ValidationResult:
        if user_answer is None:
            return ValidationResult(is_correct=False, score=0)

        given = normalize_answer(user_answer)
        expected = normalize_answer(exercise.correct_answer)

        if given == expected:
            return ValidationResult(is_correct=True, score=100)

        similarity = similarity_ratio(given, expected)
        if similarity > self.similarity_threshold:
            return ValidationResult(is_correct=True, score=round(similarity * 100))

        return ValidationResult(is_correct=False, score=0)


class MultipleChoiceGenerator(_GeneratorBase):
    """
    Choice-based vocabulary and grammar questions.

    Answers are option indices. Anything that is not an integer index
    within the option list is graded as incorrect.
    """

    exercise_type = ExerciseType.MULTIPLE_CHOICE
    max_time_bonus = 10.0
    ms_per_bonus_point = 2000.0

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        option_count: int = settings.EXERCISE_OPTION_COUNT,
    ):
        self.rng = rng or random.Random()
        self.option_count = option_count

    def generate(self, lesson: Lesson, count: int = settings.EXERCISE_DEFAULT_COUNT) -> list[Exercise]:
        vocabulary = lesson.content.vocabulary
        grammar_points = lesson.content.grammar_points

        vocab_target = min(MC_VOCABULARY_QUOTA, count) if grammar_points else count
        vocab_indices = self._select_random_items(range(len(vocabulary)), vocab_target)
        grammar_selected = self._select_random_items(
            grammar_points, count - len(vocab_indices)
        )

        # Top up with unused vocabulary when grammar points ran short
        shortfall = count - len(vocab_indices) - len(grammar_selected)
        if shortfall > 0:
            used = set(vocab_indices)
            unused = [i for i in range(len(vocabulary)) if i not in used]
            vocab_indices += self._select_random_items(unused, shortfall)

        translations = [item.translation for item in vocabulary]
        exercises = [
            self._vocabulary_exercise(lesson, vocabulary[i], translations)
            for i in vocab_indices
        ]
        exercises += [self._grammar_exercise(lesson, point) for point in grammar_selected]
        return exercises[:count]

    def _vocabulary_exercise(
        self, lesson: Lesson, item: VocabularyItem, translations: list[str]
    ) -> Exercise:
        return Exercise(
            type=ExerciseType.MULTIPLE_CHOICE_VOCAB,
            question=f'What does "{item.word}" mean?',
            correct_answer=item.translation,
            options=self._build_options(translations, item.translation),
            hint=item.part_of_speech,
            example=item.example,
            metadata={
                "source": "vocabulary",
                "word": item.word,
                "phonetic": item.phonetic,
                "difficulty": item.difficulty or lesson.difficulty,
            },
            lesson_id=lesson.id,
        )

    def _grammar_exercise(self, lesson: Lesson, point: GrammarPoint) -> Exercise:
        return Exercise(
            type=ExerciseType.MULTIPLE_CHOICE_GRAMMAR,
            question=point.question or DEFAULT_GRAMMAR_QUESTION,
            correct_answer=point.correct_answer,
            options=self._grammar_options(point),
            hint=point.rule,
            metadata={
                "source": "grammar",
                "grammar_point": point.title,
                "difficulty": point.difficulty or lesson.difficulty,
            },
            lesson_id=lesson.id,
        )

    def _grammar_options(self, point: GrammarPoint) -> list[str]:
        if point.options:
            options = list(point.options)
            if point.correct_answer not in options:
                options.append(point.correct_answer)
            self.rng.shuffle(options)
            return options

        options = self._build_options(point.distractors, point.correct_answer)
        label = len(options)
        while len(options) < self.option_count:
            label += 1
            placeholder = f"Option {label}"
            if placeholder not in options:
                options.append(placeholder)
        self.rng.shuffle(options)
        return options

    @staticmethod
    def _parse_choice(user_answer: Any) -> Optional[int]:
        """Integer option index, or None for anything that is not an integer."""
        if isinstance(user_answer, bool):
            return None
        if isinstance(user_answer, int):
            return user_answer
        if isinstance(user_answer, str) and _INTEGER_PATTERN.match(user_answer.strip()):
            return int(user_answer.strip())
        return None

    def validate(self, exercise: Exercise, user_answer: Any) -> ValidationResult:
        choice = self._parse_choice(user_answer)
        if choice is None or choice < 0 or choice >= len(exercise.options):
            return ValidationResult(is_correct=False, score=0)

        is_correct = exercise.options[choice] == exercise.correct_answer
        return ValidationResult(is_correct=is_correct, score=100 if is_correct else 0)


# ===========================================
# Generator Registry
# ===========================================

# Exercise types produced by a generator registered under another key
_VALIDATING_GENERATOR: dict[str, str] = {
    ExerciseType.MULTIPLE_CHOICE_VOCAB.value: ExerciseType.MULTIPLE_CHOICE.value,
    ExerciseType.MULTIPLE_CHOICE_GRAMMAR.value: ExerciseType.MULTIPLE_CHOICE.value,
}


def _type_key(exercise_type: Union[str, ExerciseType]) -> str:
    return exercise_type.value if isinstance(exercise_type, ExerciseType) else str(exercise_type)


class ExerciseRegistry:
    """
    Registry of exercise generators keyed by exercise type.

    Registering an already-registered type logs a warning and keeps the
    existing generator.
    """

    def __init__(self, max_generators: int = settings.EXERCISE_MAX_GENERATORS):
        self._generators: dict[str, ExerciseGenerator] = {}
        self.max_generators = max_generators

    def register(self, exercise_type: Union[str, ExerciseType], generator: ExerciseGenerator) -> None:
        key = _type_key(exercise_type)
        if key in self._generators:
            logger.warning(f"Generator already registered: {key}")
            return
        if len(self._generators) >= self.max_generators:
            raise RegistryFullError(self.max_generators)
        self._generators[key] = generator

    def has(self, exercise_type: Union[str, ExerciseType]) -> bool:
        return _type_key(exercise_type) in self._generators

    def get(self, exercise_type: Union[str, ExerciseType]) -> Optional[ExerciseGenerator]:
        key = _type_key(exercise_type)
        generator = self._generators.get(key)
        if generator is None:
            logger.warning(f"Generator not found: {key}")
        return generator

    def get_for_exercise(self, exercise: Exercise) -> Optional[ExerciseGenerator]:
        """Generator able to validate `exercise`, following type aliases."""
        key = _type_key(exercise.type)
        return self.get(_VALIDATING_GENERATOR.get(key, key))

    def list(self) -> list[str]:
        return list(self._generators)

    def remove(self, exercise_type: Union[str, ExerciseType]) -> None:
        key = _type_key(exercise_type)
        if key not in self._generators:
            logger.warning(f"Cannot remove non-existent generator: {key}")
            return
        del self._generators[key]

    def clear(self) -> None:
        self._generators.clear()


def create_default_registry(rng: Optional[random.Random] = None) -> ExerciseRegistry:
    """Registry with the flashcard and multiple-choice generators sharing `rng`."""
    rng = rng or random.Random()
    registry = ExerciseRegistry()
    registry.register(ExerciseType.FLASHCARD, FlashcardGenerator(rng=rng))
    registry.register(ExerciseType.MULTIPLE_CHOICE, MultipleChoiceGenerator(rng=rng))
    return registry
