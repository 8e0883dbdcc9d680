"""Stock Ledger Service - material quantities, reservations and alerts.

This module owns every change to ``Material.current_qty``: material intake,
manual adjustments, and the conditional decrement that reserves stock for a
batch. It also answers availability questions for the batch workflow.

All functions are stateless and follow the session pattern:
- If session provided: caller owns transaction, don't commit
- If session is None: create own transaction via session_scope()

Concurrency:
    Reservations and subtractions run under LEDGER_LOCK, a process-wide lock
    that serialises every read-check-decrement sequence. Inside the lock the
    material rows are read FOR UPDATE (honoured by row-locking databases) and
    each decrement is a conditional UPDATE:

        UPDATE materials SET current_qty = current_qty - :q
        WHERE id = :id AND current_qty >= :q

    A zero rowcount means the stock moved underneath us, and the caller's
    transaction is aborted with InsufficientMaterials.
"""

import logging
import threading
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import Material, StockOperation
from ..utils.constants import STOCK_ROLES
from ..utils.datetime_utils import utc_now
from .authorization import Actor, require_role
from .database import session_scope
from .dto import AvailabilityResult, LowStockAlert, Shortage
from .exceptions import InsufficientMaterials, MaterialNotFound, ValidationError
from .logging_utils import get_service_logger, log_operation
from .requirement_calculator import MaterialRequirement, quantize_quantity, to_quantity

logger = get_service_logger(__name__)

# Serialises availability-check-then-decrement across threads of this process
LEDGER_LOCK = threading.RLock()

ALERT_CRITICAL = "CRITICAL"
ALERT_WARNING = "WARNING"


# ============================================================================
# Material records
# ============================================================================


def create_material(
    name: str,
    unit: str,
    current_qty=Decimal("0"),
    min_threshold=Decimal("0"),
    category: Optional[str] = None,
    notes: Optional[str] = None,
    *,
    actor: Actor,
    session: Optional[Session] = None,
) -> Material:
    """
    Register a new material (inventory intake).

    Args:
        name: Unique material name
        unit: Unit quantities are held in
        current_qty: Opening stock, >= 0
        min_threshold: Low-stock threshold, >= 0
        category: Optional grouping
        notes: Optional notes
        actor: Acting user, must hold a stock role
        session: Optional database session

    Returns:
        The created Material

    Raises:
        PermissionDenied: If the actor may not manage stock
        ValidationError: If any field is invalid or the name is taken
    """
    require_role(actor, STOCK_ROLES)

    errors = []
    if not name or not str(name).strip():
        errors.append("Material name is required")
    if not unit or not str(unit).strip():
        errors.append("Unit is required")
    qty = to_quantity(current_qty, "current_qty")
    threshold = to_quantity(min_threshold, "min_threshold")
    if qty < 0:
        errors.append("current_qty cannot be negative")
    if threshold < 0:
        errors.append("min_threshold cannot be negative")
    if errors:
        raise ValidationError(errors)

    def _do_create(sess: Session) -> Material:
        name_clean = name.strip()
        if sess.query(Material).filter(Material.name == name_clean).first() is not None:
            raise ValidationError([f"Material '{name_clean}' already exists"])

        material = Material(
            name=name_clean,
            unit=unit.strip(),
            current_qty=quantize_quantity(qty),
            min_threshold=quantize_quantity(threshold),
            category=category,
            notes=notes,
        )
        sess.add(material)
        try:
            sess.flush()
        except IntegrityError:
            raise ValidationError([f"Material '{name_clean}' already exists"])

        log_operation(
            logger,
            operation="create_material",
            outcome="success",
            material_id=material.id,
            material_name=material.name,
            user_id=actor.user_id,
        )
        return material

    if session is not None:
        return _do_create(session)
    with session_scope() as sess:
        return _do_create(sess)


def get_material(material_id: int, session: Optional[Session] = None) -> Material:
    """
    Get a material by ID.

    Raises:
        MaterialNotFound: If the material does not exist
    """

    def _do_get(sess: Session) -> Material:
        material = sess.get(Material, material_id)
        if material is None:
            raise MaterialNotFound(material_id)
        return material

    if session is not None:
        return _do_get(session)
    with session_scope() as sess:
        return _do_get(sess)


def list_materials(
    category: Optional[str] = None,
    include_inactive: bool = False,
    low_stock_only: bool = False,
    session: Optional[Session] = None,
) -> List[Material]:
    """
    List materials ordered by name.

    Args:
        category: Only materials in this category
        include_inactive: Include soft-retired materials
        low_stock_only: Only materials at or below their threshold
        session: Optional database session
    """

    def _do_list(sess: Session) -> List[Material]:
        query = sess.query(Material)
        if not include_inactive:
            query = query.filter(Material.is_active.is_(True))
        if category:
            query = query.filter(Material.category == category)
        if low_stock_only:
            query = query.filter(Material.current_qty <= Material.min_threshold)
        return query.order_by(Material.name).all()

    if session is not None:
        return _do_list(session)
    with session_scope() as sess:
        return _do_list(sess)


# ============================================================================
# Availability and reservation
# ============================================================================


def _load_materials(
    sess: Session, material_ids: Iterable[int], lock_rows: bool
) -> Dict[int, Material]:
    ids = sorted({mid for mid in material_ids if mid is not None})
    if not ids:
        return {}
    query = sess.query(Material).filter(Material.id.in_(ids)).populate_existing()
    if lock_rows:
        # Fixed id order so two row-locking transactions cannot deadlock
        query = query.order_by(Material.id).with_for_update()
    return {m.id: m for m in query.all()}


def check_availability(
    requirements: List[MaterialRequirement],
    session: Optional[Session] = None,
    lock_rows: bool = False,
) -> AvailabilityResult:
    """
    Compare requirements against current stock.

    Missing or inactive materials count as zero available.

    Args:
        requirements: Per-material requirements (aggregate duplicates first)
        session: Optional database session; pass the reservation session so
            the check and the decrement see the same data
        lock_rows: Read the material rows FOR UPDATE

    Returns:
        AvailabilityResult with one Shortage per uncovered material
    """

    def _do_check(sess: Session) -> AvailabilityResult:
        materials = _load_materials(sess, (r.material_id for r in requirements), lock_rows)
        shortages = []
        for req in requirements:
            material = materials.get(req.material_id)
            if material is None or not material.is_active:
                available = Decimal("0")
            else:
                available = Decimal(str(material.current_qty))
            if available < req.quantity_required:
                shortages.append(
                    Shortage(
                        material_id=req.material_id,
                        material_name=material.name if material else req.material_name,
                        required=req.quantity_required,
                        available=available,
                        unit=req.unit,
                    )
                )
        return AvailabilityResult(available=not shortages, shortages=shortages)

    if session is not None:
        return _do_check(session)
    with session_scope() as sess:
        return _do_check(sess)


def _conditional_decrement(sess: Session, material_id: int, quantity: Decimal) -> bool:
    result = sess.execute(
        update(Material)
        .where(
            Material.id == material_id,
            Material.is_active.is_(True),
            Material.current_qty >= quantity,
        )
        .values(current_qty=Material.current_qty - quantity, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def reserve_materials(requirements: List[MaterialRequirement], session: Session) -> None:
    """
    Decrement stock for every requirement inside the caller's transaction.

    Must be called while holding LEDGER_LOCK, after check_availability
    passed in the same session. If any decrement finds less stock than
    required, the remaining requirements are re-checked and
    InsufficientMaterials is raised; the caller's transaction rollback
    undoes any decrements already applied.

    Raises:
        InsufficientMaterials: If a conditional decrement matched no row
    """
    for index, req in enumerate(requirements):
        if req.quantity_required <= 0:
            continue
        if not _conditional_decrement(session, req.material_id, req.quantity_required):
            recheck = check_availability(requirements[index:], session=session)
            shortages = recheck.shortages or [
                Shortage(
                    material_id=req.material_id,
                    material_name=req.material_name,
                    required=req.quantity_required,
                    available=Decimal("0"),
                    unit=req.unit,
                )
            ]
            log_operation(
                logger,
                operation="reserve_materials",
                outcome="conditional_decrement_failed",
                level=logging.WARNING,
                material_id=req.material_id,
            )
            raise InsufficientMaterials(shortages)

    # The bulk UPDATEs bypass the identity map
    for obj in list(session.identity_map.values()):
        if isinstance(obj, Material):
            session.expire(obj, ["current_qty", "updated_at"])


# ============================================================================
# Manual adjustments
# ============================================================================


def adjust_stock(
    material_id: int,
    quantity,
    operation=StockOperation.ADD,
    notes: Optional[str] = None,
    *,
    actor: Actor,
    session: Optional[Session] = None,
) -> Material:
    """
    Manually add to or subtract from a material's stock.

    Subtractions use the same conditional decrement as batch reservations
    and never drive stock negative.

    Args:
        material_id: Material to adjust
        quantity: Positive amount to move
        operation: StockOperation.ADD or StockOperation.SUBTRACT (or "add"/"subtract")
        notes: Optional reason, kept in the log record
        actor: Acting user, must hold a stock role
        session: Optional database session

    Returns:
        The updated Material

    Raises:
        PermissionDenied: If the actor may not manage stock
        ValidationError: If quantity/operation are invalid
        MaterialNotFound: If the material does not exist
        InsufficientMaterials: If a subtraction exceeds current stock
    """
    require_role(actor, STOCK_ROLES)

    qty = to_quantity(quantity, "quantity")
    if qty <= 0:
        raise ValidationError(["quantity must be greater than 0"])
    qty = quantize_quantity(qty)
    try:
        op = StockOperation(operation)
    except ValueError:
        raise ValidationError([f"operation must be 'add' or 'subtract', got '{operation}'"])

    def _do_adjust(sess: Session) -> Material:
        material = sess.get(Material, material_id)
        if material is None:
            raise MaterialNotFound(material_id)
        previous = Decimal(str(material.current_qty))

        if op is StockOperation.ADD:
            sess.execute(
                update(Material)
                .where(Material.id == material_id)
                .values(current_qty=Material.current_qty + qty, updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )
        elif not _conditional_decrement(sess, material_id, qty):
            sess.refresh(material)
            shortage = Shortage(
                material_id=material.id,
                material_name=material.name,
                required=qty,
                available=Decimal(str(material.current_qty)),
                unit=material.unit,
            )
            log_operation(
                logger,
                operation="adjust_stock",
                outcome="insufficient_stock",
                level=logging.WARNING,
                material_id=material_id,
                quantity=str(qty),
            )
            raise InsufficientMaterials([shortage])

        sess.refresh(material)
        log_operation(
            logger,
            operation="adjust_stock",
            outcome="success",
            material_id=material_id,
            stock_operation=op.value,
            quantity=str(qty),
            previous_qty=str(previous),
            new_qty=str(material.current_qty),
            user_id=actor.user_id,
            reason=notes,
        )
        return material

    with LEDGER_LOCK:
        if session is not None:
            return _do_adjust(session)
        with session_scope() as sess:
            return _do_adjust(sess)


# ============================================================================
# Alerts
# ============================================================================


def get_low_stock_alerts(session: Optional[Session] = None) -> List[LowStockAlert]:
    """
    List active materials at or below their threshold.

    Severity is CRITICAL for materials that are out of stock and WARNING
    otherwise. Critical alerts come first, then by name.
    """

    def _do_alerts(sess: Session) -> List[LowStockAlert]:
        alerts = []
        for material in list_materials(low_stock_only=True, session=sess):
            qty = Decimal(str(material.current_qty))
            alerts.append(
                LowStockAlert(
                    material_id=material.id,
                    material_name=material.name,
                    current_qty=qty,
                    min_threshold=Decimal(str(material.min_threshold)),
                    unit=material.unit,
                    severity=ALERT_CRITICAL if qty <= 0 else ALERT_WARNING,
                )
            )
        alerts.sort(key=lambda a: (a.severity != ALERT_CRITICAL, a.material_name))
        return alerts

    if session is not None:
        return _do_alerts(session)
    with session_scope() as sess:
        return _do_alerts(sess)
