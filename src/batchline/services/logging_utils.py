"""Service layer logging utilities.

Provides structured logging functions for service operations, enabling
consistent log format and context across batch, stock, formulation and
efficiency operations.

Usage:
    from batchline.services.logging_utils import get_service_logger, log_operation

    logger = get_service_logger(__name__)

    # Log successful operation
    log_operation(
        logger,
        operation="create_batch",
        outcome="success",
        batch_id=123,
        batch_code="SOA-LX3K9Q2A-7H2KQ9ZP",
    )

    # Log a rejection
    log_operation(
        logger,
        operation="create_batch",
        outcome="insufficient_materials",
        level=logging.WARNING,
        formulation_version_id=7,
        shortages=["Glycerin"],
    )

Context keys are attached to the LogRecord, so they must not collide with
LogRecord attributes such as ``name``, ``message`` or ``filename``.
"""

import logging
from typing import Any


def get_service_logger(name: str) -> logging.Logger:
    """
    Get a logger configured for service operations.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger instance with the 'batchline.services' prefix.

    Example:
        >>> logger = get_service_logger(__name__)
        >>> logger.name
        'batchline.services.batch_service'
    """
    if "." in name:
        name = name.split(".")[-1]
    return logging.getLogger(f"batchline.services.{name}")


def log_operation(
    logger: logging.Logger,
    operation: str,
    outcome: str,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    """
    Log a service operation with structured context.

    The context is passed via the 'extra' parameter for structured logging.

    Args:
        logger: Logger instance to use
        operation: Operation name (e.g., "create_batch", "update_batch_status")
        outcome: Outcome description (e.g., "success", "invalid_transition", "error")
        level: Log level (default: INFO). Use DEBUG for verbose/frequent logs.
        **context: Additional context fields (entity IDs, error details, etc.)
            Common fields:
            - batch_id / batch_code: Batch being processed
            - worker_id: Worker whose efficiency was touched
            - material_id: Material whose stock moved
            - error: Error message if outcome is "error"
            - shortages: Names of short materials for rejected creations
    """
    extra = {
        "operation": operation,
        "outcome": outcome,
        **context,
    }
    logger.log(level, f"{operation}: {outcome}", extra=extra)
