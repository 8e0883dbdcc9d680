"""
Material model for the stock ledger.

A Material is a raw material held in stock (e.g., "Citric Acid", "Glycerin")
with a single running quantity and a reorder threshold. Quantities only move
through the stock ledger service: batch reservations decrement them, intake
and manual adjustments increment or decrement them.
"""

from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Column, Index, Numeric, String, Text
from sqlalchemy.orm import relationship

from .base import BaseModel


class Material(BaseModel):
    """
    Material model representing a stocked raw material.

    Attributes:
        name: Material display name (unique)
        unit: Unit the quantities are held in (e.g., 'kg', 'l')
        category: Optional grouping (e.g., 'Acid', 'Solvent')
        current_qty: Quantity on hand; never negative
        min_threshold: Low-stock threshold
        is_active: Soft lifecycle flag; materials are never deleted
        notes: User notes

    Relationships:
        formulation_ingredients: Ingredients referencing this material
        batch_usages: BatchMaterial rows that consumed this material
    """

    __tablename__ = "materials"

    name = Column(String(200), nullable=False, unique=True)
    unit = Column(String(20), nullable=False)
    category = Column(String(100), nullable=True)
    current_qty = Column(Numeric(14, 4), nullable=False, default=Decimal("0.0000"))
    min_threshold = Column(Numeric(14, 4), nullable=False, default=Decimal("0.0000"))
    is_active = Column(Boolean, nullable=False, default=True)
    notes = Column(Text, nullable=True)

    formulation_ingredients = relationship(
        "FormulationIngredient",
        back_populates="material",
        lazy="select",
    )
    batch_usages = relationship(
        "BatchMaterial",
        back_populates="material",
        lazy="select",
    )

    __table_args__ = (
        Index("idx_material_name", "name"),
        Index("idx_material_category", "category"),
        CheckConstraint("current_qty >= 0", name="ck_material_qty_non_negative"),
        CheckConstraint("min_threshold >= 0", name="ck_material_threshold_non_negative"),
    )

    def __repr__(self) -> str:
        """String representation of material."""
        return f"Material(id={self.id}, name='{self.name}', current_qty={self.current_qty})"

    @property
    def is_low_stock(self) -> bool:
        """True when stock is at or below the threshold."""
        return Decimal(str(self.current_qty)) <= Decimal(str(self.min_threshold))

    def to_dict(self, include_relationships: bool = False) -> dict:
        """
        Convert material to dictionary.

        Args:
            include_relationships: Ignored; materials are serialized flat

        Returns:
            Dictionary representation with low-stock status
        """
        result = super().to_dict(False)
        result["is_low_stock"] = self.is_low_stock
        result["stock_status"] = "LOW_STOCK" if self.is_low_stock else "OK"
        return result
