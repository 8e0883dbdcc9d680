"""Formulation Service - versioned product recipes.

A formulation owns numbered versions (1, 2, 3, ...). Each version is a
draft until a manager locks it; a locked version's ingredient list is
immutable and only locked versions can be used to create batches.
Rolling back creates a new draft that copies an earlier version's
ingredients, so history is never rewritten.

Ingredient input format (list of dicts):
    {"material_id": 3, "percentage": "62.5", "unit": "kg", "notes": None}

All functions accept an optional ``session`` for transaction composition.
"""

import logging
from contextlib import nullcontext
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from ..models import Formulation, FormulationIngredient, FormulationVersion, Material
from ..utils.config import get_config
from ..utils.constants import COMPOSITION_TOLERANCE, MANAGER_ROLES
from ..utils.datetime_utils import utc_now
from .authorization import Actor, require_role
from .database import session_scope
from .exceptions import (
    FormulationNotFound,
    FormulationVersionNotFound,
    MaterialNotFound,
    ValidationError,
    VersionLocked,
)
from .logging_utils import get_service_logger, log_operation
from .requirement_calculator import to_quantity

logger = get_service_logger(__name__)


def _scope(session: Optional[Session]):
    return nullcontext(session) if session is not None else session_scope()


def _version_query(sess: Session):
    return sess.query(FormulationVersion).options(
        selectinload(FormulationVersion.formulation),
        selectinload(FormulationVersion.ingredients).selectinload(
            FormulationIngredient.material
        ),
    )


def _build_ingredients(sess: Session, ingredients: List[Dict[str, Any]]) -> List[FormulationIngredient]:
    """Validate ingredient dicts and build (unsaved) ingredient rows."""
    if not ingredients:
        raise ValidationError(["At least one ingredient is required"])

    errors = []
    rows = []
    # Rows are attached to a material before their version exists
    with sess.no_autoflush:
        for position, item in enumerate(ingredients):
            label = f"Ingredient {position + 1}"
            material_id = item.get("material_id")
            unit = (item.get("unit") or "").strip()
            try:
                percentage = to_quantity(item.get("percentage"), f"{label} percentage")
            except ValidationError as e:
                errors.extend(e.errors)
                continue
            if percentage < 0:
                errors.append(f"{label}: percentage cannot be negative")
            if not unit:
                errors.append(f"{label}: unit is required")
            if material_id is None:
                errors.append(f"{label}: material_id is required")
                continue
            material = sess.get(Material, material_id)
            if material is None:
                raise MaterialNotFound(material_id)
            rows.append(
                FormulationIngredient(
                    material=material,
                    percentage=percentage,
                    unit=unit,
                    notes=item.get("notes"),
                    position=position,
                )
            )
    if errors:
        raise ValidationError(errors)
    return rows


def _next_version_number(sess: Session, formulation_id: int) -> int:
    current = (
        sess.query(func.max(FormulationVersion.version_number))
        .filter(FormulationVersion.formulation_id == formulation_id)
        .scalar()
    )
    return (current or 0) + 1


def _get_formulation(sess: Session, formulation_id: int) -> Formulation:
    formulation = sess.get(Formulation, formulation_id)
    if formulation is None:
        raise FormulationNotFound(formulation_id)
    return formulation


def _load_version(sess: Session, version_id: int) -> FormulationVersion:
    version = (
        _version_query(sess)
        .populate_existing()
        .filter(FormulationVersion.id == version_id)
        .one_or_none()
    )
    if version is None:
        raise FormulationVersionNotFound(version_id)
    return version


def create_formulation(
    name: str,
    ingredients: List[Dict[str, Any]],
    description: Optional[str] = None,
    notes: Optional[str] = None,
    *,
    actor: Actor,
    session: Optional[Session] = None,
) -> FormulationVersion:
    """
    Create a formulation together with its first (draft) version.

    Args:
        name: Unique formulation name
        ingredients: Ingredient dicts for version 1
        description: Optional description
        notes: Notes for version 1 (default "Initial version")
        actor: Acting user, must be a manager
        session: Optional database session

    Returns:
        Version 1 of the new formulation (draft)

    Raises:
        PermissionDenied, ValidationError, MaterialNotFound
    """
    require_role(actor, MANAGER_ROLES)
    if not name or not name.strip():
        raise ValidationError(["Formulation name is required"])
    name = name.strip()

    with _scope(session) as sess:
        if sess.query(Formulation).filter(Formulation.name == name).first() is not None:
            raise ValidationError([f"Formulation '{name}' already exists"])

        formulation = Formulation(
            name=name, description=description, created_by=actor.user_id
        )
        version = FormulationVersion(
            formulation=formulation,
            version_number=1,
            is_locked=False,
            created_by=actor.user_id,
            notes=notes or "Initial version",
        )
        version.ingredients = _build_ingredients(sess, ingredients)
        sess.add(formulation)
        sess.flush()

        log_operation(
            logger,
            operation="create_formulation",
            outcome="success",
            formulation_id=formulation.id,
            version_id=version.id,
            user_id=actor.user_id,
        )
        return _load_version(sess, version.id)


def create_version(
    formulation_id: int,
    ingredients: List[Dict[str, Any]],
    notes: Optional[str] = None,
    *,
    actor: Actor,
    session: Optional[Session] = None,
) -> FormulationVersion:
    """
    Add a new draft version with the next version number.

    Raises:
        PermissionDenied, FormulationNotFound, ValidationError, MaterialNotFound
    """
    require_role(actor, MANAGER_ROLES)

    with _scope(session) as sess:
        formulation = _get_formulation(sess, formulation_id)
        number = _next_version_number(sess, formulation.id)
        version = FormulationVersion(
            formulation=formulation,
            version_number=number,
            is_locked=False,
            created_by=actor.user_id,
            notes=notes or f"Version {number}",
        )
        version.ingredients = _build_ingredients(sess, ingredients)
        sess.add(version)
        sess.flush()

        log_operation(
            logger,
            operation="create_version",
            outcome="success",
            formulation_id=formulation.id,
            version_id=version.id,
            version_number=number,
        )
        return _load_version(sess, version.id)


def update_version_ingredients(
    version_id: int,
    ingredients: List[Dict[str, Any]],
    *,
    actor: Actor,
    session: Optional[Session] = None,
) -> FormulationVersion:
    """
    Replace a draft version's ingredient list.

    Raises:
        PermissionDenied, FormulationVersionNotFound, VersionLocked,
        ValidationError, MaterialNotFound
    """
    require_role(actor, MANAGER_ROLES)

    with _scope(session) as sess:
        version = _load_version(sess, version_id)
        if version.is_locked:
            raise VersionLocked(version.id)
        version.ingredients = _build_ingredients(sess, ingredients)
        sess.flush()
        log_operation(
            logger,
            operation="update_version_ingredients",
            outcome="success",
            version_id=version.id,
            ingredient_count=len(version.ingredients),
        )
        return _load_version(sess, version.id)


def lock_version(
    version_id: int,
    notes: Optional[str] = None,
    enforce_composition: Optional[bool] = None,
    *,
    actor: Actor,
    session: Optional[Session] = None,
) -> FormulationVersion:
    """
    Approve a draft version for production.

    When composition enforcement is on (the configured default), the
    ingredient percentages must add up to 100 within COMPOSITION_TOLERANCE.
    Locking is one-way.

    Args:
        version_id: Version to lock
        notes: Replaces the version notes when given
        enforce_composition: Override the configured composition check
        actor: Acting user, must be a manager
        session: Optional database session

    Raises:
        PermissionDenied, FormulationVersionNotFound, VersionLocked,
        ValidationError
    """
    require_role(actor, MANAGER_ROLES)
    if enforce_composition is None:
        enforce_composition = get_config().enforce_composition

    with _scope(session) as sess:
        version = _load_version(sess, version_id)
        if version.is_locked:
            raise VersionLocked(version.id)
        if not version.ingredients:
            raise ValidationError(["Cannot lock a version with no ingredients"])

        total = version.total_percentage
        if enforce_composition and abs(total - Decimal(100)) > COMPOSITION_TOLERANCE:
            log_operation(
                logger,
                operation="lock_version",
                outcome="composition_invalid",
                level=logging.WARNING,
                version_id=version.id,
                total_percentage=str(total),
            )
            raise ValidationError(
                [f"Ingredient percentages must sum to 100 (currently {total})"]
            )

        version.is_locked = True
        version.locked_at = utc_now()
        version.locked_by = actor.user_id
        if notes:
            version.notes = notes
        sess.flush()

        log_operation(
            logger,
            operation="lock_version",
            outcome="success",
            version_id=version.id,
            formulation_id=version.formulation_id,
            user_id=actor.user_id,
        )
        return version


def rollback_to_version(
    formulation_id: int,
    version_number: int,
    notes: Optional[str] = None,
    *,
    actor: Actor,
    session: Optional[Session] = None,
) -> FormulationVersion:
    """
    Create a new draft version copying an earlier version's ingredients.

    Raises:
        PermissionDenied, FormulationNotFound, FormulationVersionNotFound
    """
    require_role(actor, MANAGER_ROLES)

    with _scope(session) as sess:
        formulation = _get_formulation(sess, formulation_id)
        source = get_version_by_number(formulation.id, version_number, session=sess)
        number = _next_version_number(sess, formulation.id)

        version = FormulationVersion(
            formulation=formulation,
            version_number=number,
            is_locked=False,
            created_by=actor.user_id,
            notes=notes or f"Rollback to version {source.version_number}",
        )
        version.ingredients = [
            FormulationIngredient(
                material_id=i.material_id,
                percentage=i.percentage,
                unit=i.unit,
                notes=i.notes,
                position=i.position,
            )
            for i in source.ingredients
        ]
        sess.add(version)
        sess.flush()

        log_operation(
            logger,
            operation="rollback_to_version",
            outcome="success",
            formulation_id=formulation.id,
            source_version=source.version_number,
            new_version=number,
        )
        return _load_version(sess, version.id)


def get_version(version_id: int, session: Optional[Session] = None) -> FormulationVersion:
    """Get a version (with ingredients and materials loaded) by ID."""
    with _scope(session) as sess:
        return _load_version(sess, version_id)


def get_version_by_number(
    formulation_id: int, version_number: int, session: Optional[Session] = None
) -> FormulationVersion:
    """
    Get a formulation's version by its number.

    Raises:
        FormulationVersionNotFound: If no such version exists
    """
    with _scope(session) as sess:
        version = (
            _version_query(sess)
            .filter(
                FormulationVersion.formulation_id == formulation_id,
                FormulationVersion.version_number == version_number,
            )
            .one_or_none()
        )
        if version is None:
            raise FormulationVersionNotFound(version_number)
        return version


def get_formulation(formulation_id: int, session: Optional[Session] = None) -> Formulation:
    """Get a formulation with all versions loaded."""
    with _scope(session) as sess:
        formulation = (
            sess.query(Formulation)
            .options(
                selectinload(Formulation.versions)
                .selectinload(FormulationVersion.ingredients)
                .selectinload(FormulationIngredient.material)
            )
            .filter(Formulation.id == formulation_id)
            .one_or_none()
        )
        if formulation is None:
            raise FormulationNotFound(formulation_id)
        return formulation


def list_formulations(
    locked: Optional[bool] = None, session: Optional[Session] = None
) -> List[Formulation]:
    """
    List formulations ordered by name.

    Args:
        locked: True for formulations with at least one locked version,
            False for formulations with none, None for all
    """
    with _scope(session) as sess:
        formulations = (
            sess.query(Formulation)
            .options(selectinload(Formulation.versions))
            .order_by(Formulation.name)
            .all()
        )
        if locked is True:
            return [f for f in formulations if any(v.is_locked for v in f.versions)]
        if locked is False:
            return [f for f in formulations if not any(v.is_locked for v in f.versions)]
        return formulations


def compare_versions(
    formulation_id: int,
    version1: int,
    version2: int,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Diff the ingredient lists of two versions of one formulation.

    Returns:
        Dict with "version1"/"version2" summaries and "changes": one entry
        per material that was added, removed or modified going from
        version1 to version2.
    """
    with _scope(session) as sess:
        v1 = get_version_by_number(formulation_id, version1, session=sess)
        v2 = get_version_by_number(formulation_id, version2, session=sess)

        before = {i.material_id: i for i in v1.ingredients}
        after = {i.material_id: i for i in v2.ingredients}
        changes = []

        for material_id, new in after.items():
            old = before.get(material_id)
            if old is None:
                changes.append(
                    {
                        "type": "added",
                        "material_id": material_id,
                        "material_name": new.material.name,
                        "v2_percentage": str(new.percentage),
                        "v2_unit": new.unit,
                    }
                )
            elif Decimal(str(old.percentage)) != Decimal(str(new.percentage)) or old.unit != new.unit:
                changes.append(
                    {
                        "type": "modified",
                        "material_id": material_id,
                        "material_name": new.material.name,
                        "v1_percentage": str(old.percentage),
                        "v1_unit": old.unit,
                        "v2_percentage": str(new.percentage),
                        "v2_unit": new.unit,
                    }
                )

        for material_id, old in before.items():
            if material_id not in after:
                changes.append(
                    {
                        "type": "removed",
                        "material_id": material_id,
                        "material_name": old.material.name,
                        "v1_percentage": str(old.percentage),
                        "v1_unit": old.unit,
                    }
                )

        def _summary(v: FormulationVersion) -> Dict[str, Any]:
            return {
                "version_number": v.version_number,
                "is_locked": v.is_locked,
                "created_at": v.created_at.isoformat() if v.created_at else None,
                "ingredient_count": len(v.ingredients),
                "total_percentage": str(v.total_percentage),
            }

        return {
            "version1": _summary(v1),
            "version2": _summary(v2),
            "changes": changes,
        }
