"""Service layer exception classes for batchline.

This module defines all custom exceptions used by the service layer to provide
consistent error handling across the application.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    │   └── UnsupportedReportFormat
    ├── MaterialNotFound
    ├── FormulationNotFound
    ├── FormulationVersionNotFound
    ├── BatchNotFound
    ├── WorkerEfficiencyNotFound
    ├── VersionNotLocked
    ├── VersionLocked
    ├── InsufficientMaterials
    ├── InvalidStatusTransition
    ├── ConcurrentModification
    ├── PermissionDenied
    └── StorageFailure
"""

from typing import Iterable, List


class ServiceError(Exception):
    """Base exception for all service layer errors.

    All service-specific exceptions should inherit from this class.
    """

    pass


class ValidationError(ServiceError):
    """Raised when input validation fails, before any side effect.

    Args:
        errors: List of human-readable problems with the input
    """

    def __init__(self, errors: list):
        self.errors = list(errors)
        error_msg = "; ".join(str(e) for e in self.errors)
        super().__init__(f"Validation failed: {error_msg}")


class UnsupportedReportFormat(ValidationError):
    """Raised when a report is requested in a format that is not rendered.

    Example:
        >>> raise UnsupportedReportFormat("pdf")
        UnsupportedReportFormat: Validation failed: Unsupported report format 'pdf'
    """

    def __init__(self, fmt: str):
        self.fmt = fmt
        super().__init__([f"Unsupported report format '{fmt}'"])


class MaterialNotFound(ServiceError):
    """Raised when a material cannot be found by ID."""

    def __init__(self, material_id: int):
        self.material_id = material_id
        super().__init__(f"Material with ID {material_id} not found")


class FormulationNotFound(ServiceError):
    """Raised when a formulation cannot be found by ID."""

    def __init__(self, formulation_id: int):
        self.formulation_id = formulation_id
        super().__init__(f"Formulation with ID {formulation_id} not found")


class FormulationVersionNotFound(ServiceError):
    """Raised when a formulation version cannot be found.

    Args:
        version_id: The version ID (or version number when looked up
            within a formulation) that was not found
    """

    def __init__(self, version_id: int):
        self.version_id = version_id
        super().__init__(f"Formulation version {version_id} not found")


class BatchNotFound(ServiceError):
    """Raised when a batch cannot be found by ID or batch code.

    Example:
        >>> raise BatchNotFound("SOA-LX3K9Q2A-7H2KQ9ZP")
        BatchNotFound: Batch 'SOA-LX3K9Q2A-7H2KQ9ZP' not found
    """

    def __init__(self, identifier):
        self.identifier = identifier
        if isinstance(identifier, int):
            super().__init__(f"Batch with ID {identifier} not found")
        else:
            super().__init__(f"Batch '{identifier}' not found")


class WorkerEfficiencyNotFound(ServiceError):
    """Raised when a worker has no efficiency record and none is computed."""

    def __init__(self, worker_id: str):
        self.worker_id = worker_id
        super().__init__(f"No efficiency record for worker '{worker_id}'")


class VersionNotLocked(ServiceError):
    """Raised when a draft formulation version is used for production."""

    def __init__(self, version_id: int):
        self.version_id = version_id
        super().__init__(
            f"Formulation version {version_id} is not locked and cannot be used for production"
        )


class VersionLocked(ServiceError):
    """Raised when attempting to modify a locked formulation version."""

    def __init__(self, version_id: int):
        self.version_id = version_id
        super().__init__(f"Formulation version {version_id} is locked and cannot be modified")


class InsufficientMaterials(ServiceError):
    """Raised when stock cannot cover a batch's requirements.

    Args:
        shortages: Shortage records (material_id, material_name, required,
            available, unit) for every material that is short
    """

    def __init__(self, shortages: Iterable):
        self.shortages: List = list(shortages)
        names = ", ".join(
            f"{s.material_name} (required {s.required}, available {s.available})"
            for s in self.shortages
        )
        super().__init__(f"Insufficient materials: {names}")


class InvalidStatusTransition(ServiceError):
    """Raised when a batch status change is not an edge of the state machine.

    Example:
        >>> raise InvalidStatusTransition("Planned", "Completed")
        InvalidStatusTransition: Cannot move batch from 'Planned' to 'Completed'
    """

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move batch from '{current}' to '{requested}'")


class ConcurrentModification(ServiceError):
    """Raised when a batch was changed by someone else since it was read."""

    def __init__(self, batch_id: int, expected=None, actual=None):
        self.batch_id = batch_id
        self.expected = expected
        self.actual = actual
        detail = ""
        if expected is not None and actual is not None:
            detail = f" (expected version {expected}, found {actual})"
        super().__init__(f"Batch {batch_id} was modified concurrently{detail}")


class PermissionDenied(ServiceError):
    """Raised when the acting user's role may not perform an operation."""

    def __init__(self, role: str, allowed: Iterable[str]):
        self.role = role
        self.allowed = sorted(allowed)
        super().__init__(
            f"Role '{role}' is not permitted; requires one of: {', '.join(self.allowed)}"
        )


class StorageFailure(ServiceError):
    """Raised when the persistence layer fails.

    The message shown to callers is generic; the original error is kept for
    logging.
    """

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(f"Storage failure: {message}")
