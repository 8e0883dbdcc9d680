"""Data Transfer Objects for the service layer.

Plain-value results handed back to callers: stock shortages and alerts,
availability answers, and pages of batches or feedback.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Generic, List, Optional, TypeVar

from sqlalchemy.orm import Query

from .exceptions import ValidationError

T = TypeVar("T")

MAX_PER_PAGE = 500


# ============================================================================
# Stock
# ============================================================================


@dataclass(frozen=True)
class Shortage:
    """A material whose stock does not cover its requirement."""

    material_id: int
    material_name: str
    required: Decimal
    available: Decimal
    unit: str

    @property
    def missing(self) -> Decimal:
        return self.required - self.available

    def to_dict(self) -> dict:
        return {
            "material_id": self.material_id,
            "material_name": self.material_name,
            "required": str(self.required),
            "available": str(self.available),
            "missing": str(self.missing),
            "unit": self.unit,
        }


@dataclass
class AvailabilityResult:
    """Outcome of comparing requirements against the stock ledger.

    Attributes:
        available: True when every requirement is covered
        shortages: One entry per uncovered material
    """

    available: bool
    shortages: List[Shortage] = field(default_factory=list)


@dataclass(frozen=True)
class LowStockAlert:
    """Material at or below its reorder threshold."""

    material_id: int
    material_name: str
    current_qty: Decimal
    min_threshold: Decimal
    unit: str
    severity: str

    def to_dict(self) -> dict:
        return {
            "material_id": self.material_id,
            "material_name": self.material_name,
            "current_qty": str(self.current_qty),
            "min_threshold": str(self.min_threshold),
            "unit": self.unit,
            "severity": self.severity,
        }


# ============================================================================
# Pagination
# ============================================================================


@dataclass
class PaginationParams:
    """Page request for batch and feedback listings.

    Pass None instead of a PaginationParams to get every row.

    Raises:
        ValidationError: If page < 1 or per_page is outside 1..MAX_PER_PAGE
    """

    page: int = 1
    per_page: int = 50

    def __post_init__(self) -> None:
        errors = []
        if self.page < 1:
            errors.append("page must be >= 1")
        if not 1 <= self.per_page <= MAX_PER_PAGE:
            errors.append(f"per_page must be between 1 and {MAX_PER_PAGE}")
        if errors:
            raise ValidationError(errors)

    def offset(self) -> int:
        """
        Examples:
            >>> PaginationParams(page=3, per_page=25).offset()
            50
        """
        return (self.page - 1) * self.per_page


@dataclass
class PaginatedResult(Generic[T]):
    """One page of rows plus the total across all pages."""

    items: List[T]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        """Total pages (1 for an empty result)."""
        return max(1, -(-self.total // self.per_page))

    @property
    def has_next(self) -> bool:
        return self.page < self.pages


def paginate(query: Query, pagination: Optional[PaginationParams]) -> PaginatedResult:
    """
    Run an ordered query as one page, or whole when pagination is None.

    The total is counted before OFFSET/LIMIT are applied.
    """
    total = query.count()
    if pagination is None:
        return PaginatedResult(items=query.all(), total=total, page=1, per_page=max(total, 1))
    items = query.offset(pagination.offset()).limit(pagination.per_page).all()
    return PaginatedResult(
        items=items, total=total, page=pagination.page, per_page=pagination.per_page
    )
