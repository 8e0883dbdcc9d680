"""
Constants for the batchline production application.

This module defines system-wide constants including:
- Application metadata
- Actor roles and the role sets each operation requires
- Photo upload limits
- Efficiency scoring parameters
"""

from datetime import timedelta
from decimal import Decimal
from typing import FrozenSet, List

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME = "batchline"
APP_VERSION = "0.1.0"
DATABASE_FILENAME = "batchline.db"

# ============================================================================
# Roles
# ============================================================================

ROLE_ADMIN = "Admin"
ROLE_PRODUCTION_MANAGER = "ProductionManager"
ROLE_INVENTORY_MANAGER = "InventoryManager"
ROLE_SUPERVISOR = "Supervisor"
ROLE_WORKER = "Worker"

# Create batches and move them through the state machine
PRODUCTION_ROLES: FrozenSet[str] = frozenset({ROLE_ADMIN, ROLE_SUPERVISOR})

# Append photos / quality checks from the floor
FLOOR_ROLES: FrozenSet[str] = frozenset({ROLE_ADMIN, ROLE_SUPERVISOR, ROLE_WORKER})

# Lock and roll back formulation versions
MANAGER_ROLES: FrozenSet[str] = frozenset({ROLE_ADMIN, ROLE_PRODUCTION_MANAGER})

# Record feedback, set standard output
SUPERVISOR_ROLES: FrozenSet[str] = frozenset(
    {ROLE_ADMIN, ROLE_PRODUCTION_MANAGER, ROLE_SUPERVISOR}
)

# Manual stock adjustments and material intake
STOCK_ROLES: FrozenSet[str] = frozenset(
    {ROLE_ADMIN, ROLE_PRODUCTION_MANAGER, ROLE_INVENTORY_MANAGER, ROLE_SUPERVISOR}
)

# ============================================================================
# Photos and quality checks
# ============================================================================

PHOTO_TYPES: List[str] = ["before", "after", "quality_check", "general"]
ALLOWED_PHOTO_EXTENSIONS: FrozenSet[str] = frozenset({".jpeg", ".jpg", ".png", ".gif"})
MAX_PHOTO_BYTES = 10 * 1024 * 1024
MAX_PHOTOS_PER_UPLOAD = 10

# ============================================================================
# Quantities
# ============================================================================

# Storage precision of every quantity column (Numeric(14, 4))
QUANTITY_PLACES = Decimal("0.0001")

# Tolerance when checking that a version's percentages add up to 100
COMPOSITION_TOLERANCE = Decimal("0.01")

# ============================================================================
# Efficiency scoring
# ============================================================================

# A completed batch is on time when it finished within this window.
# Fixed window, not derived from formulation or batch size.
ON_TIME_THRESHOLD = timedelta(hours=12)

OUTPUT_WEIGHT = 0.4
PUNCTUALITY_WEIGHT = 0.4
FEEDBACK_WEIGHT = 0.2

NEUTRAL_FEEDBACK_SCORE = 50.0

# Upper bounds (inclusive) of the 1-4 star buckets; anything above is 5 stars
STAR_BUCKETS = (
    (20.0, 1),
    (40.0, 2),
    (60.0, 3),
    (80.0, 4),
)

# Ratings below this are flagged as needing attention in worker listings
ATTENTION_RATING = 3

# ============================================================================
# Batch codes
# ============================================================================

BATCH_CODE_PREFIX_LENGTH = 3
BATCH_CODE_SUFFIX_LENGTH = 8
MAX_BATCH_CODE_ATTEMPTS = 5
