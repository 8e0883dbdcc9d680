"""
Formulation models for versioned product recipes.

This module contains:
- Formulation: A named product recipe
- FormulationVersion: One numbered revision of a formulation's ingredient
  list; a draft until locked, immutable and production-eligible afterwards
- FormulationIngredient: One material line (composition percentage) within
  a version
"""

from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class Formulation(BaseModel):
    """
    Formulation model representing a named product recipe.

    Attributes:
        name: Unique formulation name
        description: Optional description
        created_by: Id of the user who authored it

    Relationships:
        versions: All versions, ordered by version_number
    """

    __tablename__ = "formulations"

    name = Column(String(200), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)

    versions = relationship(
        "FormulationVersion",
        back_populates="formulation",
        cascade="all, delete-orphan",
        order_by="FormulationVersion.version_number",
    )

    def __repr__(self) -> str:
        return f"Formulation(id={self.id}, name='{self.name}')"

    @property
    def latest_version(self):
        """Highest-numbered version, or None."""
        return self.versions[-1] if self.versions else None

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(False)
        result["version_count"] = len(self.versions)
        latest = self.latest_version
        result["latest_version_number"] = latest.version_number if latest else None
        if include_relationships:
            result["versions"] = [v.to_dict(True) for v in self.versions]
        return result


class FormulationVersion(BaseModel):
    """
    One numbered revision of a formulation.

    Version numbers start at 1 and increase by one per formulation. A locked
    version's ingredient list never changes; only locked versions can be
    used to create a batch.

    Attributes:
        formulation_id: Parent formulation
        version_number: 1-based, unique within the formulation
        is_locked: True once approved for production
        locked_at: When it was locked
        locked_by: Who locked it
        created_by: Who authored it
        notes: Revision notes (rollbacks record their source here)
    """

    __tablename__ = "formulation_versions"

    formulation_id = Column(
        Integer, ForeignKey("formulations.id", ondelete="CASCADE"), nullable=False
    )
    version_number = Column(Integer, nullable=False)
    is_locked = Column(Boolean, nullable=False, default=False)
    locked_at = Column(DateTime, nullable=True)
    locked_by = Column(String(64), nullable=True)
    created_by = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)

    formulation = relationship("Formulation", back_populates="versions")
    ingredients = relationship(
        "FormulationIngredient",
        back_populates="version",
        cascade="all, delete-orphan",
        order_by="FormulationIngredient.position",
    )
    batches = relationship("Batch", back_populates="formulation_version")

    __table_args__ = (
        UniqueConstraint(
            "formulation_id", "version_number", name="uq_formulation_version_number"
        ),
        Index("idx_formulation_version_formulation", "formulation_id"),
        CheckConstraint("version_number >= 1", name="ck_formulation_version_positive"),
    )

    def __repr__(self) -> str:
        return (
            f"FormulationVersion(id={self.id}, formulation_id={self.formulation_id}, "
            f"version_number={self.version_number}, is_locked={self.is_locked})"
        )

    @property
    def total_percentage(self) -> Decimal:
        """Sum of the ingredient composition percentages."""
        return sum(
            (Decimal(str(i.percentage)) for i in self.ingredients), Decimal("0")
        )

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(False)
        result["total_percentage"] = str(self.total_percentage)
        if self.formulation is not None:
            result["formulation_name"] = self.formulation.name
        if include_relationships:
            result["ingredients"] = [i.to_dict() for i in self.ingredients]
        return result


class FormulationIngredient(BaseModel):
    """
    One material line within a formulation version.

    Attributes:
        version_id: Owning version
        material_id: Material consumed
        percentage: Share of the batch size, in percent (non-negative)
        unit: Unit the resulting requirement is expressed in
        notes: Optional line notes
        position: Display/calculation order within the version
    """

    __tablename__ = "formulation_ingredients"

    version_id = Column(
        Integer, ForeignKey("formulation_versions.id", ondelete="CASCADE"), nullable=False
    )
    material_id = Column(
        Integer, ForeignKey("materials.id", ondelete="RESTRICT"), nullable=False
    )
    percentage = Column(Numeric(9, 4), nullable=False)
    unit = Column(String(20), nullable=False)
    notes = Column(Text, nullable=True)
    position = Column(Integer, nullable=False, default=0)

    version = relationship("FormulationVersion", back_populates="ingredients")
    material = relationship("Material", back_populates="formulation_ingredients")

    __table_args__ = (
        Index("idx_formulation_ingredient_version", "version_id"),
        Index("idx_formulation_ingredient_material", "material_id"),
        CheckConstraint("percentage >= 0", name="ck_formulation_ingredient_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"FormulationIngredient(version_id={self.version_id}, "
            f"material_id={self.material_id}, percentage={self.percentage})"
        )

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(False)
        if self.material is not None:
            result["material_name"] = self.material.name
        return result
