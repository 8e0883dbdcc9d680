"""
Database models package.

This package contains all SQLAlchemy ORM models for the application.
"""

from .base import Base, BaseModel
from .enums import (
    BATCH_TRANSITIONS,
    BatchStatus,
    FeedbackTag,
    QualityCheckResult,
    StockOperation,
)
from .material import Material
from .formulation import Formulation, FormulationVersion, FormulationIngredient
from .batch import Batch, BatchWorker, BatchMaterial, BatchPhoto, BatchQualityCheck
from .worker import WorkerFeedback, WorkerEfficiency

__all__ = [
    "Base",
    "BaseModel",
    # Enums
    "BATCH_TRANSITIONS",
    "BatchStatus",
    "FeedbackTag",
    "QualityCheckResult",
    "StockOperation",
    # Stock ledger
    "Material",
    # Formulation catalog
    "Formulation",
    "FormulationVersion",
    "FormulationIngredient",
    # Batch registry
    "Batch",
    "BatchWorker",
    "BatchMaterial",
    "BatchPhoto",
    "BatchQualityCheck",
    # Worker performance
    "WorkerFeedback",
    "WorkerEfficiency",
]
