"""
Worker performance models.

This module contains:
- WorkerFeedback: Append-only supervisor feedback on a worker for a batch
- WorkerEfficiency: Per-worker cached efficiency record, rebuilt in full
  from batch and feedback history on every recalculation

Workers are identified by the external user id supplied by authentication;
there is no local user table.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import FeedbackTag

_TAG_VALUES = ", ".join(f"'{t.value}'" for t in FeedbackTag)


class WorkerFeedback(BaseModel):
    """
    Supervisor feedback on a worker's contribution to a batch.

    Attributes:
        worker_id: Worker the feedback is about
        batch_id: Batch the worker was assigned to
        tag: FeedbackTag value
        comment: Optional free text
        supervisor_id: Who gave the feedback
    """

    __tablename__ = "worker_feedback"

    worker_id = Column(String(64), nullable=False)
    batch_id = Column(Integer, ForeignKey("batches.id", ondelete="RESTRICT"), nullable=False)
    tag = Column(String(30), nullable=False)
    comment = Column(Text, nullable=True)
    supervisor_id = Column(String(64), nullable=True)

    batch = relationship("Batch")

    __table_args__ = (
        Index("idx_worker_feedback_worker", "worker_id"),
        Index("idx_worker_feedback_batch", "batch_id"),
        CheckConstraint(f"tag IN ({_TAG_VALUES})", name="ck_worker_feedback_tag"),
    )

    def __repr__(self) -> str:
        return f"WorkerFeedback(id={self.id}, worker_id='{self.worker_id}', tag='{self.tag}')"

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(False)
        if self.batch is not None:
            result["batch_code"] = self.batch.batch_code
        return result


class WorkerEfficiency(BaseModel):
    """
    Cached efficiency record for one worker.

    Everything except standard_output_per_shift is derived and is
    overwritten on each recalculation.

    Attributes:
        worker_id: Worker (unique)
        standard_output_per_shift: Configured expected output; 0 means unset
        output_efficiency: 0-100
        punctuality_score: 0-100
        feedback_score: 0-100
        composite_score: Weighted 0-100
        efficiency_rating: 1-5 stars (0 until first calculation)
        total_batches_completed: Completed batches the worker was assigned to
        on_time_batches: Of those, how many finished within the threshold
        excellent_count / good_count / needs_improvement_count / late_count:
            Feedback tag counts
        last_calculated: When the derived fields were last rebuilt
    """

    __tablename__ = "worker_efficiency"

    worker_id = Column(String(64), nullable=False, unique=True)
    standard_output_per_shift = Column(Numeric(14, 4), nullable=False, default=0)

    output_efficiency = Column(Float, nullable=False, default=0.0)
    punctuality_score = Column(Float, nullable=False, default=0.0)
    feedback_score = Column(Float, nullable=False, default=0.0)
    composite_score = Column(Float, nullable=False, default=0.0)
    efficiency_rating = Column(Integer, nullable=False, default=0)

    total_batches_completed = Column(Integer, nullable=False, default=0)
    on_time_batches = Column(Integer, nullable=False, default=0)

    excellent_count = Column(Integer, nullable=False, default=0)
    good_count = Column(Integer, nullable=False, default=0)
    needs_improvement_count = Column(Integer, nullable=False, default=0)
    late_count = Column(Integer, nullable=False, default=0)

    last_calculated = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_worker_efficiency_rating", "efficiency_rating"),
        CheckConstraint(
            "standard_output_per_shift >= 0", name="ck_worker_efficiency_standard_output"
        ),
        CheckConstraint(
            "efficiency_rating >= 0 AND efficiency_rating <= 5",
            name="ck_worker_efficiency_rating_range",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"WorkerEfficiency(worker_id='{self.worker_id}', "
            f"efficiency_rating={self.efficiency_rating})"
        )

    @property
    def positive_feedback_count(self) -> int:
        return (self.excellent_count or 0) + (self.good_count or 0)

    @property
    def negative_feedback_count(self) -> int:
        return (self.needs_improvement_count or 0) + (self.late_count or 0)

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(False)
        result["positive_feedback_count"] = self.positive_feedback_count
        result["negative_feedback_count"] = self.negative_feedback_count
        result["feedback_tags"] = {
            FeedbackTag.EXCELLENT.value: self.excellent_count,
            FeedbackTag.GOOD.value: self.good_count,
            FeedbackTag.NEEDS_IMPROVEMENT.value: self.needs_improvement_count,
            FeedbackTag.LATE.value: self.late_count,
        }
        return result
