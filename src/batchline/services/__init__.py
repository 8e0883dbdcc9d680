"""Services package - Business logic layer for batchline.

This package contains all service modules that provide business logic
and database operations for the application.

Architecture:
- Services: Stateless functions organized by domain (stock, formulation,
  batch, worker efficiency, reports)
- Transactions: Managed via session_scope() context manager
- Exceptions: Consistent error handling via ServiceError hierarchy
- Validation: Input validation before database operations

Service Modules:
- stock_ledger_service: Materials, availability checks, stock adjustments, alerts
- formulation_service: Versioned formulations, locking, rollback, comparison
- batch_service: Batch registry, state machine, photos, quality checks, reports
- worker_efficiency_service: Efficiency records, standard output, feedback
- report_service: Monthly worker reports (Excel, JSON)

Pure computation:
- requirement_calculator: Percentage composition to absolute quantities
- batch_code_generator: Batch codes and traceability payloads
- efficiency_engine: Worker scoring

Infrastructure:
- exceptions: Custom exception classes for service layer errors
- database: Session management and database utilities
- logging_utils: Structured operation logging
"""

from . import (
    database,
    stock_ledger_service,
    formulation_service,
    batch_service,
    worker_efficiency_service,
    report_service,
)

from .exceptions import (
    ServiceError,
    ValidationError,
    UnsupportedReportFormat,
    MaterialNotFound,
    FormulationNotFound,
    FormulationVersionNotFound,
    BatchNotFound,
    WorkerEfficiencyNotFound,
    VersionNotLocked,
    VersionLocked,
    InsufficientMaterials,
    InvalidStatusTransition,
    ConcurrentModification,
    PermissionDenied,
    StorageFailure,
)

from .authorization import Actor, PhotoStorage
from .dto import PaginatedResult, PaginationParams

__all__ = [
    # Modules
    "database",
    "stock_ledger_service",
    "formulation_service",
    "batch_service",
    "worker_efficiency_service",
    "report_service",
    # Exceptions
    "ServiceError",
    "ValidationError",
    "UnsupportedReportFormat",
    "MaterialNotFound",
    "FormulationNotFound",
    "FormulationVersionNotFound",
    "BatchNotFound",
    "WorkerEfficiencyNotFound",
    "VersionNotLocked",
    "VersionLocked",
    "InsufficientMaterials",
    "InvalidStatusTransition",
    "ConcurrentModification",
    "PermissionDenied",
    "StorageFailure",
    # Shared types
    "Actor",
    "PhotoStorage",
    "PaginatedResult",
    "PaginationParams",
]
