"""Tests for the requirement calculator."""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from batchline.services.exceptions import ValidationError, VersionNotLocked
from batchline.services.requirement_calculator import (
    MaterialRequirement,
    aggregate_requirements,
    calculate_requirements,
    quantize_quantity,
    to_quantity,
)


def _version(*lines, locked=True):
    """Stand-in version: lines are (material_id, name, percentage, unit)."""
    ingredients = [
        SimpleNamespace(
            material_id=material_id,
            material=SimpleNamespace(id=material_id, name=name),
            percentage=percentage,
            unit=unit,
        )
        for material_id, name, percentage, unit in lines
    ]
    return SimpleNamespace(id=7, is_locked=locked, ingredients=ingredients)


class TestCalculateRequirements:
    def test_quantity_is_percentage_of_batch_size(self):
        version = _version((1, "Glycerin", Decimal("12.5"), "kg"))

        [req] = calculate_requirements(version, 200)

        assert req == MaterialRequirement(1, "Glycerin", Decimal("25.0000"), "kg")

    def test_quantities_sum_back_to_percentages(self):
        version = _version(
            (1, "Glycerin", Decimal("33.33"), "kg"),
            (2, "Lye", Decimal("33.33"), "kg"),
            (3, "Water", Decimal("33.34"), "l"),
        )

        reqs = calculate_requirements(version, Decimal("150"))

        total = sum(r.quantity_required for r in reqs)
        assert total / Decimal("150") * 100 == pytest.approx(Decimal("100"))

    def test_keeps_ingredient_order_and_units(self):
        version = _version(
            (2, "Lye", Decimal("40"), "kg"),
            (1, "Fragrance", Decimal("60"), "ml"),
        )

        reqs = calculate_requirements(version, "10")

        assert [(r.material_id, r.unit) for r in reqs] == [(2, "kg"), (1, "ml")]
        assert [r.quantity_required for r in reqs] == [Decimal("4.0000"), Decimal("6.0000")]

    def test_rounds_half_up_to_four_places(self):
        version = _version((1, "Glycerin", Decimal("33.33335"), "kg"))

        [req] = calculate_requirements(version, 1)

        assert req.quantity_required == Decimal("0.3333")

    def test_draft_version_rejected(self):
        version = _version((1, "Glycerin", Decimal("100"), "kg"), locked=False)

        with pytest.raises(VersionNotLocked):
            calculate_requirements(version, 10)

    @pytest.mark.parametrize("size", [0, -5, "abc", None, float("nan")])
    def test_invalid_batch_size_rejected(self, size):
        version = _version((1, "Glycerin", Decimal("100"), "kg"))

        with pytest.raises(ValidationError):
            calculate_requirements(version, size)


class TestAggregateRequirements:
    def test_merges_same_material(self):
        reqs = [
            MaterialRequirement(1, "Glycerin", Decimal("2"), "kg"),
            MaterialRequirement(2, "Lye", Decimal("1"), "kg"),
            MaterialRequirement(1, "Glycerin", Decimal("3"), "kg"),
        ]

        merged = aggregate_requirements(reqs)

        assert merged == [
            MaterialRequirement(1, "Glycerin", Decimal("5"), "kg"),
            MaterialRequirement(2, "Lye", Decimal("1"), "kg"),
        ]

    def test_mixed_units_rejected(self):
        reqs = [
            MaterialRequirement(1, "Glycerin", Decimal("2"), "kg"),
            MaterialRequirement(1, "Glycerin", Decimal("3"), "l"),
        ]

        with pytest.raises(ValidationError, match="Glycerin"):
            aggregate_requirements(reqs)


class TestQuantityHelpers:
    def test_float_goes_through_str(self):
        assert to_quantity(0.1) == Decimal("0.1")

    def test_bool_is_not_a_quantity(self):
        with pytest.raises(ValidationError):
            to_quantity(True)

    def test_infinity_rejected(self):
        with pytest.raises(ValidationError):
            to_quantity("Infinity")

    def test_quantize(self):
        assert quantize_quantity(Decimal("1.23455")) == Decimal("1.2346")
