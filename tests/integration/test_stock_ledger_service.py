"""Tests for the stock ledger service."""

from decimal import Decimal

import pytest

from batchline.models import StockOperation
from batchline.services import stock_ledger_service
from batchline.services.exceptions import (
    InsufficientMaterials,
    MaterialNotFound,
    PermissionDenied,
    ValidationError,
)
from batchline.services.requirement_calculator import MaterialRequirement
from batchline.services.stock_ledger_service import ALERT_CRITICAL, ALERT_WARNING


class TestCreateMaterial:
    def test_create(self, test_db, admin):
        material = stock_ledger_service.create_material(
            "Sodium Hydroxide", "kg", current_qty="25.5", min_threshold=5, category="Base", actor=admin
        )

        assert material.id is not None
        assert material.current_qty == Decimal("25.5")
        assert material.is_active is True

    def test_duplicate_name_rejected(self, test_db, admin):
        stock_ledger_service.create_material("Glycerin", "kg", actor=admin)

        with pytest.raises(ValidationError, match="already exists"):
            stock_ledger_service.create_material("Glycerin", "l", actor=admin)

    def test_negative_quantity_rejected(self, test_db, admin):
        with pytest.raises(ValidationError):
            stock_ledger_service.create_material("Glycerin", "kg", current_qty=-1, actor=admin)

    def test_worker_may_not_create(self, test_db, floor_worker):
        with pytest.raises(PermissionDenied):
            stock_ledger_service.create_material("Glycerin", "kg", actor=floor_worker)


class TestReads:
    def test_get_missing_material(self, test_db):
        with pytest.raises(MaterialNotFound):
            stock_ledger_service.get_material(999)

    def test_list_ordered_by_name(self, materials):
        names = [m.name for m in stock_ledger_service.list_materials()]

        assert names == ["Glycerin", "Lye"]

    def test_list_low_stock_only(self, materials, admin):
        stock_ledger_service.adjust_stock(
            materials["lye"].id, 46, StockOperation.SUBTRACT, actor=admin
        )

        low = stock_ledger_service.list_materials(low_stock_only=True)

        assert [m.name for m in low] == ["Lye"]


class TestAvailability:
    def test_sufficient(self, materials):
        reqs = [MaterialRequirement(materials["glycerin"].id, "Glycerin", Decimal("100"), "kg")]

        result = stock_ledger_service.check_availability(reqs)

        assert result.available
        assert result.shortages == []

    def test_shortage_detail(self, materials):
        reqs = [
            MaterialRequirement(materials["glycerin"].id, "Glycerin", Decimal("10"), "kg"),
            MaterialRequirement(materials["lye"].id, "Lye", Decimal("60"), "kg"),
        ]

        result = stock_ledger_service.check_availability(reqs)

        assert not result.available
        [shortage] = result.shortages
        assert shortage.material_name == "Lye"
        assert shortage.required == Decimal("60")
        assert shortage.available == Decimal("50")
        assert shortage.missing == Decimal("10")
        assert shortage.to_dict()["missing"] == "10.0000"

    def test_unknown_material_counts_as_zero(self, test_db):
        reqs = [MaterialRequirement(404, "Ghost", Decimal("1"), "kg")]

        result = stock_ledger_service.check_availability(reqs)

        assert result.shortages[0].available == Decimal("0")


class TestAdjustStock:
    def test_add(self, materials, inventory_manager):
        material = stock_ledger_service.adjust_stock(
            materials["glycerin"].id, "12.5", actor=inventory_manager
        )

        assert material.current_qty == Decimal("112.5")

    def test_subtract(self, materials, admin):
        material = stock_ledger_service.adjust_stock(
            materials["glycerin"].id, 40, "subtract", actor=admin
        )

        assert material.current_qty == Decimal("60")

    def test_subtract_never_goes_negative(self, materials, admin):
        with pytest.raises(InsufficientMaterials) as exc_info:
            stock_ledger_service.adjust_stock(
                materials["lye"].id, 51, StockOperation.SUBTRACT, actor=admin
            )

        assert exc_info.value.shortages[0].available == Decimal("50")
        assert stock_ledger_service.get_material(materials["lye"].id).current_qty == Decimal("50")

    @pytest.mark.parametrize("quantity", [0, -3, "lots"])
    def test_invalid_quantity(self, materials, admin, quantity):
        with pytest.raises(ValidationError):
            stock_ledger_service.adjust_stock(materials["lye"].id, quantity, actor=admin)

    def test_unknown_operation(self, materials, admin):
        with pytest.raises(ValidationError):
            stock_ledger_service.adjust_stock(materials["lye"].id, 1, "multiply", actor=admin)

    def test_unknown_material(self, test_db, admin):
        with pytest.raises(MaterialNotFound):
            stock_ledger_service.adjust_stock(999, 1, actor=admin)


class TestLowStockAlerts:
    def test_critical_before_warning(self, materials, admin):
        stock_ledger_service.adjust_stock(materials["lye"].id, 50, "subtract", actor=admin)
        stock_ledger_service.adjust_stock(materials["glycerin"].id, 95, "subtract", actor=admin)

        alerts = stock_ledger_service.get_low_stock_alerts()

        assert [(a.material_name, a.severity) for a in alerts] == [
            ("Lye", ALERT_CRITICAL),
            ("Glycerin", ALERT_WARNING),
        ]
        assert alerts[1].to_dict()["current_qty"] == "5.0000"

    def test_no_alerts_when_stocked(self, materials):
        assert stock_ledger_service.get_low_stock_alerts() == []
