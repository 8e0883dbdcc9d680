"""
Efficiency engine for worker performance scoring.

This module provides pure functions that turn a worker's history (completed
batches, supervisor feedback, configured standard output) into three
sub-scores, a weighted composite and a 1-5 star rating:

- Output efficiency: average completed batch size against the worker's
  standard output per shift, capped at 100
- Punctuality: share of completed batches finished within the on-time
  threshold (12 hours unless overridden)
- Feedback: 50 with no feedback, otherwise
  ((positive - negative) / total) * 50 + 50, clamped to [0, 100]
- Composite: 0.4 * output + 0.4 * punctuality + 0.2 * feedback

Transaction boundary: Pure computation (no database access). The
persistence side lives in worker_efficiency_service.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence, Tuple

from ..models.enums import FeedbackTag
from ..utils.constants import (
    FEEDBACK_WEIGHT,
    NEUTRAL_FEEDBACK_SCORE,
    ON_TIME_THRESHOLD,
    OUTPUT_WEIGHT,
    PUNCTUALITY_WEIGHT,
    STAR_BUCKETS,
)
from ..utils.datetime_utils import as_utc

# Binary float noise (e.g. 59.99999999999999) must not move a score across
# a star boundary
COMPOSITE_PRECISION = 9


@dataclass(frozen=True)
class CompletedBatch:
    """The parts of a completed batch the engine scores.

    Attributes:
        batch_size: Output of the batch
        start_time: When the batch started
        end_time: When it finished; None counts as late
    """

    batch_size: float
    start_time: datetime
    end_time: Optional[datetime] = None


@dataclass(frozen=True)
class WorkerHistory:
    """Everything the engine needs to score one worker.

    Attributes:
        worker_id: Worker being scored
        batches: Completed batches the worker was assigned to
        feedback_tags: Tags of every feedback entry for the worker
        standard_output_per_shift: Expected output; 0 means unset
    """

    worker_id: str
    batches: Sequence[CompletedBatch] = field(default_factory=tuple)
    feedback_tags: Sequence[str] = field(default_factory=tuple)
    standard_output_per_shift: float = 0.0


@dataclass(frozen=True)
class EfficiencyResult:
    """Scores derived from a WorkerHistory."""

    worker_id: str
    output_efficiency: float
    punctuality_score: float
    feedback_score: float
    composite_score: float
    efficiency_rating: int
    total_batches: int
    on_time_batches: int
    excellent_count: int
    good_count: int
    needs_improvement_count: int
    late_count: int

    @property
    def positive_feedback_count(self) -> int:
        return self.excellent_count + self.good_count

    @property
    def negative_feedback_count(self) -> int:
        return self.needs_improvement_count + self.late_count


def calculate_output_efficiency(batch_sizes: Sequence[float], standard_output: float) -> float:
    """Average batch size as a percentage of standard output, capped at 100.

    Examples:
        >>> calculate_output_efficiency([80, 120], 200)
        50.0
        >>> calculate_output_efficiency([80], 0)
        0.0
    """
    if not batch_sizes or not standard_output or standard_output <= 0:
        return 0.0
    average = sum(float(s) for s in batch_sizes) / len(batch_sizes)
    return max(0.0, min(100.0, average / float(standard_output) * 100))


def is_on_time(
    start_time: datetime,
    end_time: Optional[datetime],
    threshold: timedelta = ON_TIME_THRESHOLD,
) -> bool:
    """True when the batch finished within ``threshold`` of its start."""
    if start_time is None or end_time is None:
        return False
    return as_utc(end_time) - as_utc(start_time) <= threshold


def calculate_punctuality_score(
    batches: Sequence[CompletedBatch], threshold: timedelta = ON_TIME_THRESHOLD
) -> Tuple[float, int]:
    """
    Share of on-time batches.

    Returns:
        Tuple of (score 0-100, on-time batch count); (0.0, 0) with no batches
    """
    if not batches:
        return 0.0, 0
    on_time = sum(1 for b in batches if is_on_time(b.start_time, b.end_time, threshold))
    return on_time / len(batches) * 100, on_time


def calculate_feedback_score(tags: Sequence[str]) -> float:
    """
    Feedback score from tags.

    Examples:
        >>> calculate_feedback_score([])
        50.0
        >>> calculate_feedback_score(["Excellent", "Late"])
        50.0
        >>> calculate_feedback_score(["Good"])
        100.0
    """
    if not tags:
        return NEUTRAL_FEEDBACK_SCORE
    positive = sum(1 for t in tags if t in (FeedbackTag.EXCELLENT, FeedbackTag.GOOD))
    negative = sum(1 for t in tags if t in (FeedbackTag.NEEDS_IMPROVEMENT, FeedbackTag.LATE))
    score = (positive - negative) / len(tags) * 50 + 50
    return max(0.0, min(100.0, score))


def calculate_composite_score(output: float, punctuality: float, feedback: float) -> float:
    """Weighted 0-100 composite of the three sub-scores."""
    composite = OUTPUT_WEIGHT * output + PUNCTUALITY_WEIGHT * punctuality + FEEDBACK_WEIGHT * feedback
    return round(composite, COMPOSITE_PRECISION)


def convert_to_star_rating(score: float) -> int:
    """
    Bucket a 0-100 score into 1-5 stars.

    Bucket upper bounds are inclusive: 20 -> 1, 40 -> 2, 60 -> 3, 80 -> 4,
    anything above 80 -> 5.

    Examples:
        >>> convert_to_star_rating(60.0)
        3
        >>> convert_to_star_rating(60.0001)
        4
    """
    for upper, stars in STAR_BUCKETS:
        if score <= upper:
            return stars
    return 5


def _count_tags(tags: Iterable[str]) -> dict:
    counts = {tag: 0 for tag in FeedbackTag}
    for tag in tags:
        try:
            counts[FeedbackTag(tag)] += 1
        except ValueError:
            continue
    return counts


def compute_efficiency(
    history: WorkerHistory, *, on_time_threshold: timedelta = ON_TIME_THRESHOLD
) -> EfficiencyResult:
    """Score one worker.

    Transaction boundary: Pure computation (no database access).

    Deterministic: the same history and threshold always produce an equal
    result.

    Args:
        history: Completed batches, feedback tags and standard output
        on_time_threshold: Longest start-to-end duration that counts as on time

    Returns:
        EfficiencyResult with sub-scores, composite, stars and counts
    """
    output = calculate_output_efficiency(
        [b.batch_size for b in history.batches], history.standard_output_per_shift
    )
    punctuality, on_time = calculate_punctuality_score(history.batches, on_time_threshold)
    feedback = calculate_feedback_score(history.feedback_tags)
    composite = calculate_composite_score(output, punctuality, feedback)
    counts = _count_tags(history.feedback_tags)

    return EfficiencyResult(
        worker_id=history.worker_id,
        output_efficiency=output,
        punctuality_score=punctuality,
        feedback_score=feedback,
        composite_score=composite,
        efficiency_rating=convert_to_star_rating(composite),
        total_batches=len(history.batches),
        on_time_batches=on_time,
        excellent_count=counts[FeedbackTag.EXCELLENT],
        good_count=counts[FeedbackTag.GOOD],
        needs_improvement_count=counts[FeedbackTag.NEEDS_IMPROVEMENT],
        late_count=counts[FeedbackTag.LATE],
    )
