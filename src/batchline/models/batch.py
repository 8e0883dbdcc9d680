"""
Batch models for production runs.

This module contains:
- Batch: One production run of a product from a locked formulation version
- BatchWorker: Assignment of a worker to a batch
- BatchMaterial: Immutable record of a material quantity a batch consumed
- BatchPhoto: Photo attached to a batch (before/after/quality evidence)
- BatchQualityCheck: Quality check result recorded against a batch

Batches are never deleted: they are the traceability record and the input
to worker efficiency scoring.
"""

from decimal import Decimal
from typing import List

from sqlalchemy import (
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
from .enums import BatchStatus
from ..utils.datetime_utils import utc_now

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in BatchStatus)


class Batch(BaseModel):
    """
    Batch model for a production run.

    Attributes:
        batch_code: Unique human-readable code (e.g., 'SOA-LX3K9Q2A-7H2KQ9ZP')
        product_name: Product being made
        formulation_version_id: Locked version the batch was produced from
        batch_size: Target output quantity (> 0)
        shift: Shift label (e.g., 'Morning')
        status: BatchStatus value
        start_time: Planned/actual start
        end_time: Completion time, set when the batch finishes
        production_notes: Free-text notes, appended on transitions
        supervisor_id: Id of the user who created the batch
        qr_code_data: JSON traceability payload
        version_id: Optimistic-lock counter, bumped on every update

    Relationships:
        formulation_version: Many-to-One with FormulationVersion
        worker_assignments: One-to-Many with BatchWorker
        materials_used: One-to-Many with BatchMaterial
        photos: One-to-Many with BatchPhoto
        quality_checks: One-to-Many with BatchQualityCheck
    """

    __tablename__ = "batches"

    batch_code = Column(String(40), nullable=False, unique=True)
    product_name = Column(String(200), nullable=False)
    formulation_version_id = Column(
        Integer, ForeignKey("formulation_versions.id", ondelete="RESTRICT"), nullable=False
    )
    batch_size = Column(Numeric(14, 4), nullable=False)
    shift = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default=BatchStatus.PLANNED.value)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    production_notes = Column(Text, nullable=True)
    supervisor_id = Column(String(64), nullable=True)
    qr_code_data = Column(Text, nullable=False)
    version_id = Column(Integer, nullable=False, default=1)

    formulation_version = relationship("FormulationVersion", back_populates="batches")
    worker_assignments = relationship(
        "BatchWorker",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="BatchWorker.id",
    )
    materials_used = relationship(
        "BatchMaterial",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="BatchMaterial.id",
    )
    photos = relationship(
        "BatchPhoto",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="BatchPhoto.id",
    )
    quality_checks = relationship(
        "BatchQualityCheck",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="BatchQualityCheck.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        Index("idx_batch_status", "status"),
        Index("idx_batch_product_name", "product_name"),
        Index("idx_batch_supervisor", "supervisor_id"),
        Index("idx_batch_start_time", "start_time"),
        Index("idx_batch_formulation_version", "formulation_version_id"),
        CheckConstraint("batch_size > 0", name="ck_batch_size_positive"),
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_batch_status_valid"),
    )

    def __repr__(self) -> str:
        return f"Batch(id={self.id}, batch_code='{self.batch_code}', status='{self.status}')"

    @property
    def status_enum(self) -> BatchStatus:
        return BatchStatus(self.status)

    @property
    def worker_ids(self) -> List[str]:
        """Assigned worker ids in assignment order."""
        return [a.worker_id for a in self.worker_assignments]

    def to_dict(self, include_relationships: bool = False) -> dict:
        """
        Convert batch to dictionary.

        Args:
            include_relationships: If True, include materials, photos and
                quality checks

        Returns:
            Dictionary representation with worker ids and formulation info
        """
        result = super().to_dict(False)
        result["workers"] = self.worker_ids
        if self.formulation_version is not None:
            result["formulation_version_number"] = self.formulation_version.version_number
            result["formulation_id"] = self.formulation_version.formulation_id

        if include_relationships:
            result["materials_used"] = [m.to_dict() for m in self.materials_used]
            result["photos"] = [p.to_dict() for p in self.photos]
            result["quality_checks"] = [q.to_dict() for q in self.quality_checks]

        return result


class BatchWorker(BaseModel):
    """Assignment of one worker (external user id) to one batch."""

    __tablename__ = "batch_workers"

    batch_id = Column(Integer, ForeignKey("batches.id", ondelete="CASCADE"), nullable=False)
    worker_id = Column(String(64), nullable=False)

    batch = relationship("Batch", back_populates="worker_assignments")

    __table_args__ = (
        UniqueConstraint("batch_id", "worker_id", name="uq_batch_worker"),
        Index("idx_batch_worker_worker", "worker_id"),
    )


class BatchMaterial(BaseModel):
    """
    Material consumed by a batch.

    One row per material; written together with the stock decrement and
    never modified afterwards.
    """

    __tablename__ = "batch_materials"

    batch_id = Column(Integer, ForeignKey("batches.id", ondelete="CASCADE"), nullable=False)
    material_id = Column(
        Integer, ForeignKey("materials.id", ondelete="RESTRICT"), nullable=False
    )
    quantity_used = Column(Numeric(14, 4), nullable=False, default=Decimal("0.0000"))
    unit = Column(String(20), nullable=False)

    batch = relationship("Batch", back_populates="materials_used")
    material = relationship("Material", back_populates="batch_usages")

    __table_args__ = (
        Index("idx_batch_material_batch", "batch_id"),
        Index("idx_batch_material_material", "material_id"),
        CheckConstraint("quantity_used >= 0", name="ck_batch_material_non_negative"),
    )

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(False)
        if self.material is not None:
            result["material_name"] = self.material.name
        return result


class BatchPhoto(BaseModel):
    """Photo stored by the external file store and attached to a batch."""

    __tablename__ = "batch_photos"

    batch_id = Column(Integer, ForeignKey("batches.id", ondelete="CASCADE"), nullable=False)
    photo_type = Column(String(20), nullable=False, default="general")
    url = Column(String(500), nullable=False)
    notes = Column(Text, nullable=True)
    uploaded_by = Column(String(64), nullable=True)
    taken_at = Column(DateTime, nullable=False, default=utc_now)

    batch = relationship("Batch", back_populates="photos")

    __table_args__ = (Index("idx_batch_photo_batch", "batch_id"),)


class BatchQualityCheck(BaseModel):
    """Quality check recorded against a batch."""

    __tablename__ = "batch_quality_checks"

    batch_id = Column(Integer, ForeignKey("batches.id", ondelete="CASCADE"), nullable=False)
    check_type = Column(String(100), nullable=False)
    result = Column(String(20), nullable=False)
    notes = Column(Text, nullable=True)
    inspector_id = Column(String(64), nullable=True)
    checked_at = Column(DateTime, nullable=False, default=utc_now)

    batch = relationship("Batch", back_populates="quality_checks")

    __table_args__ = (
        Index("idx_batch_quality_check_batch", "batch_id"),
        CheckConstraint(
            "result IN ('pass', 'fail', 'conditional')", name="ck_quality_check_result"
        ),
    )
