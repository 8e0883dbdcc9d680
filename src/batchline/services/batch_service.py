"""Batch Service - production batch registry and state machine.

This module provides:
- create_batch: reserve materials and register a Planned batch, all or nothing
- update_batch_status: move a batch along the state machine with an
  optimistic version check
- append_batch_photos / append_quality_check: floor-level evidence
- get_batch / get_batch_by_code / resolve_traceability_payload / list_batches
- get_batch_stats_overview / get_batch_report: read-side summaries

Batch creation sequence (one transaction, under LEDGER_LOCK):
    1. Validate input
    2. Resolve the formulation version; it must be locked
    3. Calculate material requirements
    4. Check availability against the stock ledger
    5. Allocate a batch code and build the traceability payload
    6. Persist the batch with its worker and material-usage rows
    7. Conditionally decrement each material
Any failure rolls back every step. A batch code that collides with one
inserted concurrently retries the whole transaction with a fresh code.

State machine:
    Planned -> InProgress -> QualityCheck -> Completed
    any non-terminal state -> Cancelled
Completed and Cancelled are terminal. Moving into Completed triggers an
efficiency recalculation for every assigned worker.
"""

import logging
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import PurePath
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload
from sqlalchemy.orm.exc import StaleDataError

from ..models import (
    Batch,
    BatchMaterial,
    BatchPhoto,
    BatchQualityCheck,
    BatchStatus,
    BatchWorker,
    FormulationIngredient,
    FormulationVersion,
    QualityCheckResult,
)
from ..utils.constants import (
    ALLOWED_PHOTO_EXTENSIONS,
    FLOOR_ROLES,
    MAX_BATCH_CODE_ATTEMPTS,
    MAX_PHOTO_BYTES,
    MAX_PHOTOS_PER_UPLOAD,
    PHOTO_TYPES,
    PRODUCTION_ROLES,
)
from ..utils.datetime_utils import as_utc, utc_now
from .authorization import Actor, PhotoStorage, require_role
from .batch_code_generator import (
    build_traceability_payload,
    generate_batch_code,
    parse_traceability_payload,
)
from .database import session_scope
from .dto import PaginatedResult, PaginationParams, paginate
from .exceptions import (
    BatchNotFound,
    ConcurrentModification,
    FormulationVersionNotFound,
    InsufficientMaterials,
    InvalidStatusTransition,
    StorageFailure,
    ValidationError,
)
from .logging_utils import get_service_logger, log_operation
from .requirement_calculator import aggregate_requirements, calculate_requirements, to_quantity
from .stock_ledger_service import LEDGER_LOCK, check_availability, reserve_materials
from .worker_efficiency_service import recalculate_worker_efficiency, recalculate_workers

logger = get_service_logger(__name__)


@dataclass(frozen=True)
class PhotoFile:
    """One uploaded photo: original file name and raw bytes."""

    filename: str
    content: bytes


class _BatchCodeCollision(Exception):
    """A concurrently inserted batch took our code; retry with a fresh one."""


def _batch_query(sess: Session):
    return sess.query(Batch).options(
        joinedload(Batch.formulation_version).joinedload(FormulationVersion.formulation),
        selectinload(Batch.worker_assignments),
        selectinload(Batch.materials_used).joinedload(BatchMaterial.material),
        selectinload(Batch.photos),
        selectinload(Batch.quality_checks),
    )


def _load_batch(sess: Session, batch_id: int) -> Batch:
    batch = _batch_query(sess).populate_existing().filter(Batch.id == batch_id).one_or_none()
    if batch is None:
        raise BatchNotFound(batch_id)
    return batch


def _coerce_status(value: Union[str, BatchStatus]) -> BatchStatus:
    try:
        return BatchStatus(value)
    except ValueError:
        raise ValidationError(
            [f"status must be one of {', '.join(s.value for s in BatchStatus)}, got '{value}'"]
        )


def _coerce_datetime(value, field: str) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    raise ValidationError([f"{field} must be a datetime or ISO 8601 string"])


def _storage_failure(operation: str, error: SQLAlchemyError, **context) -> StorageFailure:
    log_operation(
        logger,
        operation=operation,
        outcome="storage_failure",
        level=logging.ERROR,
        error=str(error),
        **context,
    )
    return StorageFailure(f"could not complete {operation}", original_error=error)


# ============================================================================
# Creation
# ============================================================================


def _validate_create_input(
    product_name, formulation_version_id, batch_size, workers, shift, start_time
) -> Tuple[str, str, Decimal, List[str], datetime]:
    errors = []
    if not isinstance(product_name, str) or not product_name.strip():
        errors.append("product_name is required and must be text")
    if formulation_version_id is None:
        errors.append("formulation_version_id is required")
    if not isinstance(shift, str) or not shift.strip():
        errors.append("shift is required and must be text")

    size = None
    try:
        size = to_quantity(batch_size, "batch_size")
        if size <= 0:
            errors.append("batch_size must be greater than 0")
    except ValidationError as e:
        errors.extend(e.errors)

    worker_ids: List[str] = []
    if not workers or isinstance(workers, str):
        errors.append("At least one worker is required")
    else:
        for worker in workers:
            if not worker or not str(worker).strip():
                errors.append("Worker ids cannot be empty")
                continue
            if str(worker).strip() not in worker_ids:
                worker_ids.append(str(worker).strip())

    start = None
    try:
        start = _coerce_datetime(start_time, "start_time")
        if start is None:
            errors.append("start_time is required")
    except ValidationError as e:
        errors.extend(e.errors)

    if errors:
        raise ValidationError(errors)
    return product_name.strip(), shift.strip(), size, worker_ids, as_utc(start)


def _allocate_batch_code(sess: Session, product_name: str) -> str:
    for _ in range(MAX_BATCH_CODE_ATTEMPTS):
        code = generate_batch_code(product_name)
        taken = sess.query(Batch.id).filter(Batch.batch_code == code).first()
        if taken is None:
            return code
        log_operation(
            logger,
            operation="allocate_batch_code",
            outcome="collision",
            level=logging.WARNING,
            batch_code=code,
        )
    raise StorageFailure("could not allocate a unique batch code")


def _create_batch_impl(
    sess: Session,
    product_name: str,
    formulation_version_id: int,
    size: Decimal,
    worker_ids: List[str],
    shift: str,
    start: datetime,
    notes: Optional[str],
    actor: Actor,
) -> Batch:
    version = (
        sess.query(FormulationVersion)
        .options(
            selectinload(FormulationVersion.ingredients).joinedload(
                FormulationIngredient.material
            )
        )
        .filter(FormulationVersion.id == formulation_version_id)
        .one_or_none()
    )
    if version is None:
        raise FormulationVersionNotFound(formulation_version_id)

    requirements = aggregate_requirements(calculate_requirements(version, size))

    availability = check_availability(requirements, session=sess, lock_rows=True)
    if not availability.available:
        log_operation(
            logger,
            operation="create_batch",
            outcome="insufficient_materials",
            level=logging.WARNING,
            formulation_version_id=version.id,
            batch_size=str(size),
            shortages=[s.material_name for s in availability.shortages],
        )
        raise InsufficientMaterials(availability.shortages)

    code = _allocate_batch_code(sess, product_name)
    payload = build_traceability_payload(
        batch_code=code,
        product_name=product_name,
        formulation_version=version.version_number,
        batch_size=size,
        start_time=start,
    )

    batch = Batch(
        batch_code=code,
        product_name=product_name,
        formulation_version=version,
        batch_size=size,
        shift=shift,
        status=BatchStatus.PLANNED.value,
        start_time=start,
        production_notes=notes,
        supervisor_id=actor.user_id,
        qr_code_data=payload,
    )
    batch.worker_assignments = [BatchWorker(worker_id=w) for w in worker_ids]
    batch.materials_used = [
        BatchMaterial(
            material_id=req.material_id,
            quantity_used=req.quantity_required,
            unit=req.unit,
        )
        for req in requirements
    ]
    sess.add(batch)
    try:
        sess.flush()
    except IntegrityError as e:
        if "batch_code" in str(e.orig):
            raise _BatchCodeCollision(code) from e
        raise

    reserve_materials(requirements, session=sess)
    sess.flush()

    log_operation(
        logger,
        operation="create_batch",
        outcome="success",
        batch_id=batch.id,
        batch_code=code,
        formulation_version_id=version.id,
        batch_size=str(size),
        worker_count=len(worker_ids),
        supervisor_id=actor.user_id,
    )
    return _load_batch(sess, batch.id)


def create_batch(
    product_name: str,
    formulation_version_id: int,
    batch_size,
    workers: Sequence[str],
    shift: str,
    start_time,
    notes: Optional[str] = None,
    *,
    actor: Actor,
    session: Optional[Session] = None,
) -> Batch:
    """
    Create a Planned batch and reserve its materials, all or nothing.

    Args:
        product_name: Product being made
        formulation_version_id: Locked formulation version to produce from
        batch_size: Positive target size
        workers: Assigned worker ids (duplicates are ignored)
        shift: Shift label
        start_time: Start datetime (or ISO 8601 string); naive means UTC
        notes: Optional production notes
        actor: Acting user, must hold a production role; recorded as supervisor
        session: Optional database session. The caller's transaction then
            holds the reservation until it commits, and a batch code
            collision is not retried.

    Returns:
        The created Batch with workers, materials and formulation loaded

    Raises:
        PermissionDenied: If the actor may not create batches
        ValidationError: If the input is malformed (no side effects)
        FormulationVersionNotFound: If the version does not exist
        VersionNotLocked: If the version is a draft
        InsufficientMaterials: If stock does not cover the requirements
        StorageFailure: On persistence errors
    """
    require_role(actor, PRODUCTION_ROLES)
    try:
        product_name, shift, size, worker_ids, start = _validate_create_input(
            product_name, formulation_version_id, batch_size, workers, shift, start_time
        )
    except ValidationError as e:
        log_operation(
            logger,
            operation="create_batch",
            outcome="validation_failed",
            level=logging.WARNING,
            errors=e.errors,
        )
        raise

    attempts = 1 if session is not None else MAX_BATCH_CODE_ATTEMPTS
    for attempt in range(1, attempts + 1):
        try:
            with LEDGER_LOCK:
                cm = nullcontext(session) if session is not None else session_scope()
                with cm as sess:
                    return _create_batch_impl(
                        sess,
                        product_name,
                        formulation_version_id,
                        size,
                        worker_ids,
                        shift,
                        start,
                        notes,
                        actor,
                    )
        except _BatchCodeCollision as e:
            log_operation(
                logger,
                operation="create_batch",
                outcome="batch_code_collision",
                level=logging.WARNING,
                attempt=attempt,
                batch_code=str(e),
            )
        except SQLAlchemyError as e:
            raise _storage_failure(
                "create_batch", e, formulation_version_id=formulation_version_id
            )

    raise StorageFailure("could not allocate a unique batch code")


# ============================================================================
# State machine
# ============================================================================


def update_batch_status(
    batch_id: int,
    new_status: Union[str, BatchStatus],
    end_time=None,
    notes: Optional[str] = None,
    expected_version: Optional[int] = None,
    *,
    actor: Actor,
    session: Optional[Session] = None,
) -> Batch:
    """
    Move a batch to a new status.

    Args:
        batch_id: Batch to transition
        new_status: Target BatchStatus (or its value)
        end_time: Completion time; defaults to now when entering Completed
        notes: Appended to the batch's production notes
        expected_version: The batch's version_id as the caller last saw it;
            a mismatch raises ConcurrentModification
        actor: Acting user, must hold a production role
        session: Optional database session. Efficiency recalculation then
            runs inside the caller's transaction.

    Returns:
        The updated Batch

    Raises:
        PermissionDenied, ValidationError, BatchNotFound,
        InvalidStatusTransition, ConcurrentModification, StorageFailure
    """
    require_role(actor, PRODUCTION_ROLES)
    target = _coerce_status(new_status)
    end = _coerce_datetime(end_time, "end_time")

    cm = nullcontext(session) if session is not None else session_scope()
    try:
        with cm as sess:
            batch = sess.get(Batch, batch_id)
            if batch is None:
                raise BatchNotFound(batch_id)

            if expected_version is not None and batch.version_id != expected_version:
                log_operation(
                    logger,
                    operation="update_batch_status",
                    outcome="version_conflict",
                    level=logging.WARNING,
                    batch_id=batch_id,
                    expected_version=expected_version,
                    actual_version=batch.version_id,
                )
                raise ConcurrentModification(batch_id, expected_version, batch.version_id)

            current = batch.status_enum
            if not current.can_transition_to(target):
                log_operation(
                    logger,
                    operation="update_batch_status",
                    outcome="invalid_transition",
                    level=logging.WARNING,
                    batch_id=batch_id,
                    current_status=current.value,
                    requested_status=target.value,
                )
                raise InvalidStatusTransition(current.value, target.value)

            if end is None and target is BatchStatus.COMPLETED and batch.end_time is None:
                end = utc_now()
            if end is not None:
                if as_utc(end) < as_utc(batch.start_time):
                    raise ValidationError(["end_time cannot be before start_time"])
                batch.end_time = as_utc(end)

            batch.status = target.value
            if notes:
                batch.production_notes = (
                    f"{batch.production_notes}\n{notes}" if batch.production_notes else notes
                )
            sess.flush()

            log_operation(
                logger,
                operation="update_batch_status",
                outcome="success",
                batch_id=batch_id,
                from_status=current.value,
                to_status=target.value,
                version_id=batch.version_id,
                user_id=actor.user_id,
            )

            batch = _load_batch(sess, batch_id)
            worker_ids = batch.worker_ids
            if target is BatchStatus.COMPLETED and session is not None:
                for worker_id in worker_ids:
                    recalculate_worker_efficiency(worker_id, session=sess)
    except StaleDataError:
        log_operation(
            logger,
            operation="update_batch_status",
            outcome="concurrent_modification",
            level=logging.WARNING,
            batch_id=batch_id,
        )
        raise ConcurrentModification(batch_id)
    except SQLAlchemyError as e:
        raise _storage_failure("update_batch_status", e, batch_id=batch_id)

    if target is BatchStatus.COMPLETED and session is None:
        recalculate_workers(worker_ids)
    return batch


# ============================================================================
# Floor evidence
# ============================================================================


def _validate_photos(files: Sequence[Union[PhotoFile, Tuple[str, bytes]]]) -> List[PhotoFile]:
    if not files:
        raise ValidationError(["No photos uploaded"])
    if len(files) > MAX_PHOTOS_PER_UPLOAD:
        raise ValidationError([f"At most {MAX_PHOTOS_PER_UPLOAD} photos per upload"])

    photos = []
    errors = []
    for item in files:
        photo = item if isinstance(item, PhotoFile) else PhotoFile(*item)
        suffix = PurePath(photo.filename or "").suffix.lower()
        if suffix not in ALLOWED_PHOTO_EXTENSIONS:
            errors.append(f"{photo.filename}: only jpeg, jpg, png and gif images are allowed")
        elif len(photo.content) > MAX_PHOTO_BYTES:
            errors.append(f"{photo.filename}: larger than {MAX_PHOTO_BYTES // (1024 * 1024)}MB")
        photos.append(photo)
    if errors:
        raise ValidationError(errors)
    return photos


def append_batch_photos(
    batch_id: int,
    photo_type: Optional[str],
    files: Sequence[Union[PhotoFile, Tuple[str, bytes]]],
    notes: Optional[str] = None,
    *,
    storage: PhotoStorage,
    actor: Actor,
    session: Optional[Session] = None,
) -> Batch:
    """
    Store photos through the file store and attach them to a batch.

    Args:
        batch_id: Batch to attach to
        photo_type: before, after, quality_check or general (default general)
        files: PhotoFile objects or (filename, content) tuples, 1-10 of them
        notes: Optional notes stored on every photo
        storage: File store that returns a URL per saved photo
        actor: Acting user, must hold a floor role
        session: Optional database session

    Raises:
        PermissionDenied, ValidationError, BatchNotFound, StorageFailure
    """
    require_role(actor, FLOOR_ROLES)
    photo_type = photo_type or "general"
    if photo_type not in PHOTO_TYPES:
        raise ValidationError([f"photo_type must be one of {', '.join(PHOTO_TYPES)}"])
    photos = _validate_photos(files)

    cm = nullcontext(session) if session is not None else session_scope()
    try:
        with cm as sess:
            batch = sess.get(Batch, batch_id)
            if batch is None:
                raise BatchNotFound(batch_id)

            taken_at = utc_now()
            for photo in photos:
                try:
                    url = storage.save(batch.id, photo.filename, photo.content)
                except OSError as e:
                    log_operation(
                        logger,
                        operation="append_batch_photos",
                        outcome="file_store_error",
                        level=logging.ERROR,
                        batch_id=batch_id,
                        error=str(e),
                    )
                    raise StorageFailure("could not store photo", original_error=e)
                sess.add(
                    BatchPhoto(
                        batch_id=batch.id,
                        photo_type=photo_type,
                        url=url,
                        notes=notes,
                        uploaded_by=actor.user_id,
                        taken_at=taken_at,
                    )
                )
            sess.flush()

            log_operation(
                logger,
                operation="append_batch_photos",
                outcome="success",
                batch_id=batch_id,
                photo_count=len(photos),
                photo_type=photo_type,
            )
            return _load_batch(sess, batch_id)
    except SQLAlchemyError as e:
        raise _storage_failure("append_batch_photos", e, batch_id=batch_id)


def append_quality_check(
    batch_id: int,
    check_type: str,
    result: Union[str, QualityCheckResult],
    notes: Optional[str] = None,
    inspector_id: Optional[str] = None,
    *,
    actor: Actor,
    session: Optional[Session] = None,
) -> Batch:
    """
    Record a quality check against a batch.

    The inspector defaults to the acting user.

    Raises:
        PermissionDenied, ValidationError, BatchNotFound, StorageFailure
    """
    require_role(actor, FLOOR_ROLES)
    errors = []
    if not check_type or not str(check_type).strip():
        errors.append("check_type is required")
    try:
        outcome = QualityCheckResult(result)
    except ValueError:
        errors.append(
            f"result must be one of {', '.join(r.value for r in QualityCheckResult)}"
        )
    if errors:
        raise ValidationError(errors)

    cm = nullcontext(session) if session is not None else session_scope()
    try:
        with cm as sess:
            batch = sess.get(Batch, batch_id)
            if batch is None:
                raise BatchNotFound(batch_id)
            sess.add(
                BatchQualityCheck(
                    batch_id=batch.id,
                    check_type=check_type.strip(),
                    result=outcome.value,
                    notes=notes,
                    inspector_id=inspector_id or actor.user_id,
                )
            )
            sess.flush()
            log_operation(
                logger,
                operation="append_quality_check",
                outcome="success",
                batch_id=batch_id,
                check_type=check_type,
                result=outcome.value,
            )
            return _load_batch(sess, batch_id)
    except SQLAlchemyError as e:
        raise _storage_failure("append_quality_check", e, batch_id=batch_id)


# ============================================================================
# Reads
# ============================================================================


def get_batch(batch_id: int, session: Optional[Session] = None) -> Batch:
    """Get a batch with all its detail rows loaded."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        return _load_batch(sess, batch_id)


def get_batch_by_code(batch_code: str, session: Optional[Session] = None) -> Batch:
    """
    Get a batch by its batch code (case-insensitive).

    Raises:
        BatchNotFound: If no batch has this code
    """
    code = (batch_code or "").strip().upper()
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        batch = _batch_query(sess).filter(Batch.batch_code == code).one_or_none()
        if batch is None:
            raise BatchNotFound(code)
        return batch


def resolve_traceability_payload(payload, session: Optional[Session] = None) -> Batch:
    """
    Resolve a scanned QR payload back to its batch.

    Only batchCode is used for the lookup; the other payload fields are
    informational.

    Raises:
        ValidationError: If the payload is malformed
        BatchNotFound: If the code does not resolve
    """
    data = parse_traceability_payload(payload)
    return get_batch_by_code(data["batchCode"], session=session)


def _apply_date_range(query, start_date, end_date):
    start = _coerce_datetime(start_date, "start_date")
    end = _coerce_datetime(end_date, "end_date")
    if start is not None:
        query = query.filter(Batch.start_time >= as_utc(start))
    if end is not None:
        query = query.filter(Batch.start_time <= as_utc(end))
    return query


def list_batches(
    status: Optional[str] = None,
    product_name: Optional[str] = None,
    supervisor_id: Optional[str] = None,
    start_date=None,
    end_date=None,
    worker_id: Optional[str] = None,
    pagination: Optional[PaginationParams] = None,
    session: Optional[Session] = None,
) -> PaginatedResult[Batch]:
    """
    List batches, newest first.

    Args:
        status: Only batches in this status
        product_name: Case-insensitive substring of the product name
        supervisor_id: Only batches created by this supervisor
        start_date / end_date: Inclusive bounds on start_time
        worker_id: Only batches this worker is assigned to
        pagination: Optional page; None returns everything
        session: Optional database session
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        query = _batch_query(sess)
        if status is not None:
            query = query.filter(Batch.status == _coerce_status(status).value)
        if product_name:
            query = query.filter(func.lower(Batch.product_name).contains(product_name.lower()))
        if supervisor_id:
            query = query.filter(Batch.supervisor_id == supervisor_id)
        if worker_id:
            query = query.filter(
                Batch.worker_assignments.any(BatchWorker.worker_id == worker_id)
            )
        query = _apply_date_range(query, start_date, end_date)

        query = query.order_by(Batch.created_at.desc(), Batch.id.desc())
        return paginate(query, pagination)


def get_batch_stats_overview(
    start_date=None, end_date=None, session: Optional[Session] = None
) -> Dict[str, Any]:
    """
    Summarise batches started within an optional date range.

    Returns:
        Dict with total_batches, completed, in_progress, total_output and
        avg_batch_size (both over completed batches, Decimals),
        completion_rate (percent) and status_distribution ({status: count}
        for every status)
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        base = _apply_date_range(sess.query(Batch), start_date, end_date)

        distribution = {s.value: 0 for s in BatchStatus}
        for status, count in (
            base.with_entities(Batch.status, func.count(Batch.id)).group_by(Batch.status).all()
        ):
            distribution[status] = count

        completed_sizes = [
            Decimal(str(row.batch_size))
            for row in base.filter(Batch.status == BatchStatus.COMPLETED.value).with_entities(
                Batch.batch_size
            )
        ]
        total = sum(distribution.values())
        completed = distribution[BatchStatus.COMPLETED.value]
        total_output = sum(completed_sizes, Decimal("0"))

        return {
            "total_batches": total,
            "completed": completed,
            "in_progress": distribution[BatchStatus.IN_PROGRESS.value],
            "total_output": total_output,
            "avg_batch_size": (total_output / len(completed_sizes)) if completed_sizes else Decimal("0"),
            "completion_rate": (completed / total * 100) if total else 0.0,
            "status_distribution": distribution,
        }


def get_batch_report(batch_id: int, session: Optional[Session] = None) -> Dict[str, Any]:
    """
    Assemble a production report for one batch.

    Production hours run from start_time to end_time, or to now for a batch
    that has not finished. The quality pass rate is None when no checks
    were recorded.
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        batch = _load_batch(sess, batch_id)

        end = as_utc(batch.end_time) if batch.end_time else utc_now()
        production_hours = (end - as_utc(batch.start_time)).total_seconds() / 3600

        checks = batch.quality_checks
        passed = sum(1 for c in checks if c.result == QualityCheckResult.PASS.value)
        pass_rate = (passed / len(checks) * 100) if checks else None

        version = batch.formulation_version
        return {
            "batch_info": {
                "batch_code": batch.batch_code,
                "product_name": batch.product_name,
                "formulation_name": version.formulation.name,
                "formulation_version": version.version_number,
                "batch_size": batch.batch_size,
                "status": batch.status,
                "shift": batch.shift,
                "start_time": batch.start_time,
                "end_time": batch.end_time,
                "supervisor_id": batch.supervisor_id,
                "workers": batch.worker_ids,
            },
            "materials": [
                {
                    "material_id": m.material_id,
                    "material_name": m.material.name,
                    "quantity_used": m.quantity_used,
                    "unit": m.unit,
                }
                for m in batch.materials_used
            ],
            "quality": {
                "checks": [c.to_dict() for c in checks],
                "pass_rate": pass_rate,
            },
            "photos": [p.to_dict() for p in batch.photos],
            "production_notes": batch.production_notes,
            "efficiency": {
                "production_hours": production_hours,
                "output_per_hour": (
                    float(batch.batch_size) / production_hours if production_hours > 0 else 0.0
                ),
            },
        }
