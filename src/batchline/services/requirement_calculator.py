"""
Requirement calculator for batch production.

Turns a locked formulation version's percentage composition into absolute
material quantities for a given batch size:

    quantity = (percentage / 100) * batch_size

Quantities are Decimals quantized to the storage precision of the quantity
columns (4 places, ROUND_HALF_UP) and carried in the ingredient's unit.

Transaction boundary: Pure computation (no database writes). Reading the
version's ingredients may lazy-load them through the version's session.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, List

from ..utils.constants import QUANTITY_PLACES
from .exceptions import ValidationError, VersionNotLocked


@dataclass(frozen=True)
class MaterialRequirement:
    """Absolute quantity of one material needed for a batch.

    Attributes:
        material_id: Material to draw from the stock ledger
        material_name: Display name, for shortage reports and logs
        quantity_required: Quantity in ``unit``
        unit: Unit declared on the ingredient
    """

    material_id: int
    material_name: str
    quantity_required: Decimal
    unit: str


def to_quantity(value, field: str = "quantity") -> Decimal:
    """
    Coerce a user-supplied quantity to a finite Decimal.

    Floats go through str() so 0.1 becomes Decimal('0.1'), not its binary
    expansion.

    Raises:
        ValidationError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValidationError([f"{field} must be a number"])
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError([f"{field} must be a number"])
    if not result.is_finite():
        raise ValidationError([f"{field} must be a finite number"])
    return result


def quantize_quantity(value: Decimal) -> Decimal:
    """Round a quantity to storage precision."""
    return value.quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)


def calculate_requirements(version, batch_size) -> List[MaterialRequirement]:
    """Calculate material requirements for one batch.

    Transaction boundary: Pure computation (no database writes).

    Args:
        version: Locked FormulationVersion (anything exposing ``id``,
            ``is_locked`` and ``ingredients`` works)
        batch_size: Target batch size, must be > 0

    Returns:
        One MaterialRequirement per ingredient, in ingredient order

    Raises:
        ValidationError: If batch_size is not a positive number
        VersionNotLocked: If the version is still a draft

    Examples:
        An ingredient at 12.5% in a batch of 200 requires 25.0000.
    """
    size = to_quantity(batch_size, "batch_size")
    if size <= 0:
        raise ValidationError(["batch_size must be greater than 0"])

    if not version.is_locked:
        raise VersionNotLocked(version.id)

    requirements = []
    for ingredient in version.ingredients:
        percentage = to_quantity(ingredient.percentage, "percentage")
        quantity = quantize_quantity(percentage / Decimal(100) * size)
        material = ingredient.material
        material_id = ingredient.material_id
        if material_id is None and material is not None:
            material_id = material.id
        requirements.append(
            MaterialRequirement(
                material_id=material_id,
                material_name=material.name if material is not None else str(material_id),
                quantity_required=quantity,
                unit=ingredient.unit,
            )
        )
    return requirements


def aggregate_requirements(requirements: List[MaterialRequirement]) -> List[MaterialRequirement]:
    """Merge requirements that draw on the same material.

    A version may list one material on several lines; the stock ledger and
    the batch's usage rows work per material. First-seen order is kept.

    Raises:
        ValidationError: If one material is listed in different units
    """
    merged: Dict[int, MaterialRequirement] = {}
    for req in requirements:
        existing = merged.get(req.material_id)
        if existing is None:
            merged[req.material_id] = req
            continue
        if existing.unit != req.unit:
            raise ValidationError(
                [
                    f"Material '{req.material_name}' is listed in both "
                    f"'{existing.unit}' and '{req.unit}'"
                ]
            )
        merged[req.material_id] = MaterialRequirement(
            material_id=req.material_id,
            material_name=existing.material_name,
            quantity_required=existing.quantity_required + req.quantity_required,
            unit=existing.unit,
        )
    return list(merged.values())
