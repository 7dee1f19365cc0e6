"""
SM-2 Family Review Scheduler

Pure scheduling functions for the spaced repetition system. Given a
previous interval, an ease factor and a 0-100 performance score, the
scheduler produces the next interval (days) and ease factor.

Two-stage design:
    1. A static per-difficulty schedule supplies the *baseline* interval,
       indexed by how many times the item has been reviewed.
    2. The scheduler *modulates* that baseline by actual performance and
       the item's ease factor.

New items are therefore reviewed soon regardless of ease factor, while
mature items drift toward intervals proportional to demonstrated
retention.

Performance bands (default thresholds):
    POOR      (< 60)   interval → 1, ease − step
    FAIR      (60-79)  interval → round(prev × 0.7), ease − step/2
    GOOD      (80-89)  interval → round(prev × ease × modifier), ease + step
    EXCELLENT (>= 90)  interval → round(prev × ease × modifier), ease + step

Usage:
    from lesson_engine.services.learning.srs_engine import create_scheduler

    scheduler = create_scheduler()
    result = scheduler.next_review(previous_interval=6, ease_factor=2.5, performance=95)
    # ReviewResult(interval=15, ease_factor=2.6)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from lesson_engine.config import settings
from lesson_engine.enums.learning import PerformanceBand
from lesson_engine.models.learning import SRSData, UserProgress

logger = logging.getLogger(__name__)


# Baseline intervals (days) per difficulty, indexed by review count.
# Harder lessons start with shorter intervals.
REVIEW_SCHEDULES: dict[int, list[int]] = {
    1: [1, 3, 7, 14, 30, 60, 90],
    2: [1, 2, 5, 10, 21, 40, 70],
    3: [1, 1, 3, 7, 14, 28, 56],
    4: [1, 1, 2, 5, 10, 20, 40],
    5: [1, 1, 1, 3, 7, 14, 28],
}
DEFAULT_SCHEDULE_DIFFICULTY = 2


@dataclass(frozen=True)
class SchedulerConfig:
    """
    Tunable parameters of the scheduler.

    Defaults come from settings so deployments can adjust them through
    the environment.
    """

    passing_threshold: float = settings.SRS_PASSING_THRESHOLD
    good_threshold: float = settings.SRS_GOOD_THRESHOLD
    excellent_threshold: float = settings.SRS_EXCELLENT_THRESHOLD
    min_ease_factor: float = settings.SRS_MIN_EASE_FACTOR
    max_ease_factor: float = settings.SRS_MAX_EASE_FACTOR
    default_ease_factor: float = settings.SRS_DEFAULT_EASE_FACTOR
    ease_factor_step: float = settings.SRS_EASE_FACTOR_STEP
    interval_modifier: float = settings.SRS_INTERVAL_MODIFIER
    fair_interval_multiplier: float = settings.SRS_FAIR_INTERVAL_MULTIPLIER
    initial_interval: int = settings.SRS_INITIAL_INTERVAL_DAYS
    streak_threshold: float = settings.SRS_STREAK_THRESHOLD

    def __post_init__(self) -> None:
        if self.min_ease_factor > self.max_ease_factor:
            raise ValueError("min_ease_factor must not exceed max_ease_factor")
        if not (
            self.passing_threshold <= self.good_threshold <= self.excellent_threshold
        ):
            raise ValueError(
                "thresholds must satisfy passing <= good <= excellent"
            )


@dataclass(frozen=True)
class ReviewResult:
    """Output of a single scheduling step."""

    interval: int
    ease_factor: float


def clamp_performance(performance: float) -> float:
    """Clamp a performance score into [0, 100]."""
    return max(0.0, min(100.0, float(performance)))


class SRSScheduler:
    """
    SM-2 family scheduler.

    Stateless apart from its configuration; every method is a pure
    function of its arguments.
    """

    def __init__(self, config: Optional[SchedulerConfig] = None):
        self.config = config or SchedulerConfig()

    def _clamp_ease(self, ease_factor: float) -> float:
        bounded = max(
            self.config.min_ease_factor,
            min(self.config.max_ease_factor, ease_factor),
        )
        return round(bounded, 2)

    def classify_performance(self, performance: float) -> PerformanceBand:
        """Map a 0-100 score (clamped) to a performance band."""
        score = clamp_performance(performance)
        if score < self.config.passing_threshold:
            return PerformanceBand.POOR
        if score < self.config.good_threshold:
            return PerformanceBand.FAIR
        if score < self.config.excellent_threshold:
            return PerformanceBand.GOOD
        return PerformanceBand.EXCELLENT

    def next_review(
        self,
        previous_interval: float,
        ease_factor: float,
        performance: float,
    ) -> ReviewResult:
        """
        Compute the next interval and ease factor.

        Args:
            previous_interval: Baseline interval in days (usually taken from
                review_schedule)
            ease_factor: Current ease factor; clamped into bounds before use
            performance: Score 0-100; clamped before banding

        Returns:
            ReviewResult with interval >= 1 and ease factor within bounds
        """
        band = self.classify_performance(performance)
        ease = self._clamp_ease(ease_factor)
        previous = max(float(previous_interval), float(self.config.initial_interval))
        step = self.config.ease_factor_step

        if band is PerformanceBand.POOR:
            interval = self.config.initial_interval
            new_ease = ease - step
        elif band is PerformanceBand.FAIR:
            interval = round(previous * self.config.fair_interval_multiplier)
            new_ease = ease - step * 0.5
        else:
            interval = round(previous * ease * self.config.interval_modifier)
            new_ease = ease + step

        return ReviewResult(
            interval=max(1, int(interval)),
            ease_factor=self._clamp_ease(new_ease),
        )

    def adjust_ease_factor(self, current_ease: float, performance: float) -> float:
        """
        Adjust an ease factor without computing an interval.

        >= 90 raises by a full step, 70-89 keeps it, 50-69 lowers by half a
        step and anything lower drops a full step.
        """
        score = clamp_performance(performance)
        step = self.config.ease_factor_step
        if score >= 90:
            return self._clamp_ease(current_ease + step)
        if score >= 70:
            return self._clamp_ease(current_ease)
        if score >= 50:
            return self._clamp_ease(current_ease - step * 0.5)
        return self._clamp_ease(current_ease - step)

    def review_schedule(self, difficulty: int) -> list[int]:
        """Baseline intervals for a difficulty; unknown levels use level 2."""
        schedule = REVIEW_SCHEDULES.get(difficulty)
        if schedule is None:
            schedule = REVIEW_SCHEDULES[DEFAULT_SCHEDULE_DIFFICULTY]
        return list(schedule)

    def baseline_interval(self, difficulty: int, review_count: int) -> int:
        """Schedule entry for the review count, clamped to the last entry."""
        schedule = self.review_schedule(difficulty)
        index = min(max(review_count, 0), len(schedule) - 1)
        return schedule[index]

    def calculate_srs_update(
        self,
        difficulty: int,
        current: SRSData,
        score: float,
        now: Optional[datetime] = None,
    ) -> SRSData:
        """
        Produce the SRS state after one completed review.

        The baseline interval comes from the difficulty schedule at the
        current review count; the scheduler then modulates it by `score`.
        """
        now = now or datetime.now(timezone.utc)
        baseline = self.baseline_interval(difficulty, current.review_count)
        result = self.next_review(baseline, current.ease_factor, score)

        streak = (
            current.streak + 1
            if clamp_performance(score) >= self.config.streak_threshold
            else 0
        )

        logger.debug(
            f"SRS update: difficulty={difficulty} reviews={current.review_count} "
            f"baseline={baseline} score={score} → interval={result.interval} "
            f"ease={result.ease_factor}"
        )

        return SRSData(
            ease_factor=result.ease_factor,
            interval=result.interval,
            next_review=get_next_review_date(now, result.interval),
            review_count=current.review_count + 1,
            streak=streak,
            last_reviewed=now,
        )


def get_next_review_date(last_review: datetime, interval: int) -> datetime:
    """Date of the next review, `interval` days after `last_review`."""
    return last_review + timedelta(days=interval)


def create_scheduler(config: Optional[SchedulerConfig] = None) -> SRSScheduler:
    """
    Create a configured scheduler.

    Args:
        config: Scheduler parameters (defaults from settings)

    Returns:
        Configured SRSScheduler instance
    """
    return SRSScheduler(config)


def get_review_forecast(
    progress_records: Iterable[UserProgress],
    as_of: Optional[datetime] = None,
) -> dict[str, int]:
    """
    Get forecast of upcoming reviews.

    Records that have never been reviewed are skipped.

    Args:
        progress_records: Progress records with embedded SRS data
        as_of: Reference time (default: now)

    Returns:
        Dict with counts: overdue, today, tomorrow, this_week, later
    """
    as_of = as_of or datetime.now(timezone.utc)
    today_start = as_of.replace(hour=0, minute=0, second=0, microsecond=0)
    tomorrow_start = today_start + timedelta(days=1)
    week_end = today_start + timedelta(days=7)

    forecast = {
        "overdue": 0,
        "today": 0,
        "tomorrow": 0,
        "this_week": 0,
        "later": 0,
    }

    for progress in progress_records:
        due = progress.srs_data.next_review
        if progress.srs_data.review_count == 0 or due is None:
            continue

        if due < today_start:
            forecast["overdue"] += 1
        elif due < tomorrow_start:
            forecast["today"] += 1
        elif due < tomorrow_start + timedelta(days=1):
            forecast["tomorrow"] += 1
        elif due < week_end:
            forecast["this_week"] += 1
        else:
            forecast["later"] += 1

    return forecast
