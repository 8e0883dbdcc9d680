"""Worker Efficiency Service - persistence side of efficiency scoring.

This module gathers a worker's history from the database, runs the pure
efficiency engine over it and upserts the cached WorkerEfficiency record.
It also owns supervisor feedback and the worker-facing read operations
(efficiency listing, batch history, feedback history).

Recalculations for the same worker are serialised with a per-worker lock;
different workers recalculate independently. The record is rebuilt from
scratch each time, so recalculating is idempotent.
"""

import logging
import threading
from contextlib import nullcontext
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..models import Batch, BatchStatus, BatchWorker, FeedbackTag, WorkerEfficiency, WorkerFeedback
from ..utils.config import get_config
from ..utils.constants import ATTENTION_RATING, SUPERVISOR_ROLES
from ..utils.datetime_utils import utc_now
from .authorization import Actor, require_role
from .database import session_scope
from .dto import PaginatedResult, PaginationParams, paginate
from .efficiency_engine import CompletedBatch, EfficiencyResult, WorkerHistory, compute_efficiency
from .exceptions import BatchNotFound, ServiceError, ValidationError, WorkerEfficiencyNotFound
from .logging_utils import get_service_logger, log_operation
from .requirement_calculator import quantize_quantity, to_quantity

logger = get_service_logger(__name__)

_worker_locks: Dict[str, threading.Lock] = {}
_worker_locks_guard = threading.Lock()

SORT_FIELDS = {
    "rating": WorkerEfficiency.efficiency_rating,
    "composite": WorkerEfficiency.composite_score,
    "punctuality": WorkerEfficiency.punctuality_score,
    "batches": WorkerEfficiency.total_batches_completed,
    "worker_id": WorkerEfficiency.worker_id,
}


def _worker_lock(worker_id: str) -> threading.Lock:
    with _worker_locks_guard:
        lock = _worker_locks.get(worker_id)
        if lock is None:
            lock = threading.Lock()
            _worker_locks[worker_id] = lock
        return lock


def _completed_batches_query(sess: Session, worker_id: str):
    return (
        sess.query(Batch)
        .join(BatchWorker, BatchWorker.batch_id == Batch.id)
        .filter(
            BatchWorker.worker_id == worker_id,
            Batch.status == BatchStatus.COMPLETED.value,
        )
    )


def gather_worker_history(worker_id: str, session: Session) -> WorkerHistory:
    """
    Read the engine's inputs for one worker.

    Args:
        worker_id: Worker to gather for
        session: Database session

    Returns:
        WorkerHistory with completed batches (oldest first), every feedback
        tag and the configured standard output (0 when unset)
    """
    batches = _completed_batches_query(session, worker_id).order_by(Batch.start_time, Batch.id).all()
    tags = [
        row.tag
        for row in session.query(WorkerFeedback.tag)
        .filter(WorkerFeedback.worker_id == worker_id)
        .order_by(WorkerFeedback.id)
    ]
    record = (
        session.query(WorkerEfficiency).filter(WorkerEfficiency.worker_id == worker_id).first()
    )
    standard_output = float(record.standard_output_per_shift or 0) if record else 0.0

    return WorkerHistory(
        worker_id=worker_id,
        batches=tuple(
            CompletedBatch(
                batch_size=float(b.batch_size),
                start_time=b.start_time,
                end_time=b.end_time,
            )
            for b in batches
        ),
        feedback_tags=tuple(tags),
        standard_output_per_shift=standard_output,
    )


def _apply_result(record: WorkerEfficiency, result: EfficiencyResult, calculated_at: datetime) -> None:
    record.output_efficiency = result.output_efficiency
    record.punctuality_score = result.punctuality_score
    record.feedback_score = result.feedback_score
    record.composite_score = result.composite_score
    record.efficiency_rating = result.efficiency_rating
    record.total_batches_completed = result.total_batches
    record.on_time_batches = result.on_time_batches
    record.excellent_count = result.excellent_count
    record.good_count = result.good_count
    record.needs_improvement_count = result.needs_improvement_count
    record.late_count = result.late_count
    record.last_calculated = calculated_at


def _get_or_create_record(sess: Session, worker_id: str) -> WorkerEfficiency:
    record = sess.query(WorkerEfficiency).filter(WorkerEfficiency.worker_id == worker_id).first()
    if record is None:
        record = WorkerEfficiency(worker_id=worker_id, standard_output_per_shift=Decimal("0"))
        sess.add(record)
    return record


def recalculate_worker_efficiency(
    worker_id: str,
    on_time_threshold: Optional[timedelta] = None,
    calculated_at: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> WorkerEfficiency:
    """
    Rebuild a worker's efficiency record from history.

    Transaction boundary: Own transaction unless a session is passed.

    Args:
        worker_id: Worker to recalculate
        on_time_threshold: Override of the configured on-time threshold
        calculated_at: Timestamp stored as last_calculated (default: now)
        session: Optional database session

    Returns:
        The upserted WorkerEfficiency record
    """
    if not worker_id:
        raise ValidationError(["worker_id is required"])
    threshold = on_time_threshold
    if threshold is None:
        threshold = get_config().on_time_threshold

    with _worker_lock(worker_id):
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as sess:
            history = gather_worker_history(worker_id, sess)
            result = compute_efficiency(history, on_time_threshold=threshold)
            record = _get_or_create_record(sess, worker_id)
            _apply_result(record, result, calculated_at or utc_now())
            sess.flush()

            log_operation(
                logger,
                operation="recalculate_worker_efficiency",
                outcome="success",
                level=logging.DEBUG,
                worker_id=worker_id,
                composite_score=result.composite_score,
                efficiency_rating=result.efficiency_rating,
                total_batches=result.total_batches,
            )
            return record


def recalculate_workers(worker_ids: Iterable[str]) -> Dict[str, Optional[WorkerEfficiency]]:
    """
    Recalculate several workers, each in its own transaction.

    A failure for one worker is logged and does not stop the others.

    Returns:
        Mapping of worker id to its record, or None where it failed
    """
    results: Dict[str, Optional[WorkerEfficiency]] = {}
    for worker_id in worker_ids:
        try:
            results[worker_id] = recalculate_worker_efficiency(worker_id)
        except (ServiceError, SQLAlchemyError) as e:
            log_operation(
                logger,
                operation="recalculate_worker_efficiency",
                outcome="error",
                level=logging.ERROR,
                worker_id=worker_id,
                error=str(e),
            )
            results[worker_id] = None
    return results


def get_worker_efficiency(
    worker_id: str, recalculate: bool = True, session: Optional[Session] = None
) -> WorkerEfficiency:
    """
    Get a worker's efficiency record.

    Args:
        worker_id: Worker to look up
        recalculate: Rebuild from history first (default). When False the
            cached record is served as-is with its last_calculated time.
        session: Optional database session

    Raises:
        WorkerEfficiencyNotFound: If recalculate is False and no record exists
    """
    if recalculate:
        return recalculate_worker_efficiency(worker_id, session=session)

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        record = (
            sess.query(WorkerEfficiency).filter(WorkerEfficiency.worker_id == worker_id).first()
        )
        if record is None:
            raise WorkerEfficiencyNotFound(worker_id)
        return record


def list_worker_efficiencies(
    sort_by: str = "rating",
    descending: bool = True,
    min_rating: Optional[int] = None,
    max_rating: Optional[int] = None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    List cached efficiency records with summary statistics.

    Args:
        sort_by: One of rating, composite, punctuality, batches, worker_id
        descending: Sort direction
        min_rating: Only records rated at least this
        max_rating: Only records rated at most this
        session: Optional database session

    Returns:
        Dict with "workers" (records) and "stats": total_workers,
        avg_rating (over all records), top_performer, need_attention
        (records rated below 3)
    """
    if sort_by not in SORT_FIELDS:
        raise ValidationError(
            [f"sort_by must be one of {', '.join(sorted(SORT_FIELDS))}, got '{sort_by}'"]
        )

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        column = SORT_FIELDS[sort_by]
        ordering = column.desc() if descending else column.asc()
        query = sess.query(WorkerEfficiency).order_by(ordering, WorkerEfficiency.worker_id)
        all_records = query.all()

        workers = [
            r
            for r in all_records
            if (min_rating is None or r.efficiency_rating >= min_rating)
            and (max_rating is None or r.efficiency_rating <= max_rating)
        ]

        if all_records:
            avg_rating = round(
                sum(r.efficiency_rating for r in all_records) / len(all_records), 2
            )
            top = max(all_records, key=lambda r: (r.efficiency_rating, r.composite_score))
            top_performer = {
                "worker_id": top.worker_id,
                "efficiency_rating": top.efficiency_rating,
                "composite_score": top.composite_score,
            }
        else:
            avg_rating = 0.0
            top_performer = None

        return {
            "workers": workers,
            "stats": {
                "total_workers": len(all_records),
                "avg_rating": avg_rating,
                "top_performer": top_performer,
                "need_attention": sum(
                    1 for r in all_records if r.efficiency_rating < ATTENTION_RATING
                ),
            },
        }


def set_standard_output(
    worker_id: str,
    quantity,
    recalculate: bool = True,
    *,
    actor: Actor,
    session: Optional[Session] = None,
) -> WorkerEfficiency:
    """
    Configure a worker's expected output per shift.

    This is the only externally configured field of the efficiency record;
    recalculations preserve it.

    Raises:
        PermissionDenied: If the actor is not a supervisor
        ValidationError: If quantity is not positive
    """
    require_role(actor, SUPERVISOR_ROLES)
    qty = to_quantity(quantity, "standard_output_per_shift")
    if qty <= 0:
        raise ValidationError(["standard_output_per_shift must be greater than 0"])
    if not worker_id:
        raise ValidationError(["worker_id is required"])

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        with _worker_lock(worker_id):
            record = _get_or_create_record(sess, worker_id)
            record.standard_output_per_shift = quantize_quantity(qty)
            sess.flush()

        log_operation(
            logger,
            operation="set_standard_output",
            outcome="success",
            worker_id=worker_id,
            standard_output=str(qty),
            user_id=actor.user_id,
        )
        if recalculate:
            record = recalculate_worker_efficiency(worker_id, session=sess)
        return record


def get_worker_batch_history(
    worker_id: str,
    status: Optional[str] = None,
    pagination: Optional[PaginationParams] = None,
    session: Optional[Session] = None,
) -> PaginatedResult[Batch]:
    """
    List batches a worker was assigned to, newest first.

    Args:
        worker_id: Worker to look up
        status: Optional BatchStatus value filter
        pagination: Optional page; None returns everything
        session: Optional database session
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        query = (
            sess.query(Batch)
            .join(BatchWorker, BatchWorker.batch_id == Batch.id)
            .filter(BatchWorker.worker_id == worker_id)
            .options(
                selectinload(Batch.worker_assignments),
                selectinload(Batch.formulation_version),
            )
        )
        if status is not None:
            try:
                query = query.filter(Batch.status == BatchStatus(status).value)
            except ValueError:
                raise ValidationError([f"Unknown batch status '{status}'"])

        query = query.order_by(Batch.start_time.desc(), Batch.id.desc())
        return paginate(query, pagination)


def record_worker_feedback(
    worker_id: str,
    batch_id: int,
    tag,
    comment: Optional[str] = None,
    *,
    actor: Actor,
    session: Optional[Session] = None,
) -> WorkerFeedback:
    """
    Append supervisor feedback for a worker on a batch, then recalculate.

    Raises:
        PermissionDenied: If the actor is not a supervisor
        ValidationError: If the tag is unknown or the worker was not
            assigned to the batch
        BatchNotFound: If the batch does not exist
    """
    require_role(actor, SUPERVISOR_ROLES)
    try:
        feedback_tag = FeedbackTag(tag)
    except ValueError:
        raise ValidationError(
            [f"tag must be one of {', '.join(t.value for t in FeedbackTag)}, got '{tag}'"]
        )

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        batch = sess.get(Batch, batch_id)
        if batch is None:
            raise BatchNotFound(batch_id)
        if worker_id not in batch.worker_ids:
            raise ValidationError([f"Worker '{worker_id}' was not assigned to this batch"])

        feedback = WorkerFeedback(
            worker_id=worker_id,
            batch_id=batch.id,
            tag=feedback_tag.value,
            comment=comment,
            supervisor_id=actor.user_id,
        )
        feedback.batch = batch
        sess.add(feedback)
        sess.flush()

        log_operation(
            logger,
            operation="record_worker_feedback",
            outcome="success",
            worker_id=worker_id,
            batch_id=batch.id,
            tag=feedback_tag.value,
            supervisor_id=actor.user_id,
        )
        recalculate_worker_efficiency(worker_id, session=sess)
        return feedback


def get_worker_feedback(
    worker_id: str,
    tag: Optional[str] = None,
    pagination: Optional[PaginationParams] = None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Get a worker's feedback history, newest first, with per-tag counts.

    The tag counts cover all of the worker's feedback regardless of the
    tag filter or page.

    Returns:
        Dict with "feedback" (PaginatedResult of WorkerFeedback) and
        "tag_counts" ({tag value: count})
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        base = sess.query(WorkerFeedback).filter(WorkerFeedback.worker_id == worker_id)

        counts = {t.value: 0 for t in FeedbackTag}
        for row in base.with_entities(WorkerFeedback.tag):
            counts[row.tag] = counts.get(row.tag, 0) + 1

        query = base.options(selectinload(WorkerFeedback.batch))
        if tag is not None:
            try:
                query = query.filter(WorkerFeedback.tag == FeedbackTag(tag).value)
            except ValueError:
                raise ValidationError([f"Unknown feedback tag '{tag}'"])

        query = query.order_by(WorkerFeedback.created_at.desc(), WorkerFeedback.id.desc())
        return {"feedback": paginate(query, pagination), "tag_counts": counts}
