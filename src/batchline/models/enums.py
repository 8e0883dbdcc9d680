"""
Enumerations for batch production.

This module contains enums used across production-related models:
- BatchStatus: Lifecycle states of a production batch, with the allowed
  transitions between them
- FeedbackTag: Supervisor feedback classification for a worker on a batch
- QualityCheckResult: Outcome of a quality check
- StockOperation: Direction of a manual stock adjustment
"""

from enum import Enum
from typing import Dict, FrozenSet


class BatchStatus(str, Enum):
    """
    Production batch lifecycle.

    Values:
        PLANNED: Created, materials reserved, not started
        IN_PROGRESS: Production running
        QUALITY_CHECK: Production finished, awaiting quality sign-off
        COMPLETED: Terminal; counts toward worker efficiency
        CANCELLED: Terminal; reachable from any non-terminal state
    """

    PLANNED = "Planned"
    IN_PROGRESS = "InProgress"
    QUALITY_CHECK = "QualityCheck"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    def can_transition_to(self, target: "BatchStatus") -> bool:
        """Check whether ``self -> target`` is an edge of the state machine."""
        return target in BATCH_TRANSITIONS[self]


BATCH_TRANSITIONS: Dict[BatchStatus, FrozenSet[BatchStatus]] = {
    BatchStatus.PLANNED: frozenset({BatchStatus.IN_PROGRESS, BatchStatus.CANCELLED}),
    BatchStatus.IN_PROGRESS: frozenset({BatchStatus.QUALITY_CHECK, BatchStatus.CANCELLED}),
    BatchStatus.QUALITY_CHECK: frozenset({BatchStatus.COMPLETED, BatchStatus.CANCELLED}),
    BatchStatus.COMPLETED: frozenset(),
    BatchStatus.CANCELLED: frozenset(),
}


class FeedbackTag(str, Enum):
    """Supervisor feedback tags for a worker's contribution to a batch."""

    EXCELLENT = "Excellent"
    GOOD = "Good"
    NEEDS_IMPROVEMENT = "Needs Improvement"
    LATE = "Late"


class QualityCheckResult(str, Enum):
    """Outcome of a quality check."""

    PASS = "pass"
    FAIL = "fail"
    CONDITIONAL = "conditional"


class StockOperation(str, Enum):
    """Direction of a manual stock adjustment."""

    ADD = "add"
    SUBTRACT = "subtract"
