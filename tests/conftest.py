"""Pytest configuration and fixtures for batchline tests."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker

import batchline.models  # noqa: F401  (registers every table with Base)
from batchline.models.base import Base
from batchline.services.authorization import Actor
from batchline.utils.config import reset_config
from batchline.utils.constants import (
    ROLE_ADMIN,
    ROLE_INVENTORY_MANAGER,
    ROLE_PRODUCTION_MANAGER,
    ROLE_SUPERVISOR,
    ROLE_WORKER,
)


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Run every test against a freshly-read, environment-free config."""
    for var in (
        "BATCHLINE_ENV",
        "BATCHLINE_DATABASE_URL",
        "BATCHLINE_ON_TIME_HOURS",
        "BATCHLINE_ENFORCE_COMPOSITION",
        "BATCHLINE_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture(scope="function")
def test_db():
    """Provide a clean test database for each test function.

    This fixture:
    1. Creates an in-memory SQLite database
    2. Creates all tables
    3. Provides the database to the test
    4. Drops all tables after the test completes
    """
    engine = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(engine)

    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    Session = scoped_session(session_factory)

    # Monkey-patch the global session factory for tests
    import batchline.services.database as db_module

    original_get_session = db_module.get_session_factory
    db_module.get_session_factory = lambda: Session

    yield Session

    Session.remove()
    Base.metadata.drop_all(engine)
    engine.dispose()

    db_module.get_session_factory = original_get_session


@pytest.fixture(scope="function")
def file_db(tmp_path):
    """File-backed SQLite database for tests that use several threads.

    Each thread gets its own session from the scoped registry, so the
    threads really do run separate transactions.
    """
    import batchline.services.database as db_module

    engine = db_module.create_database_engine(f"sqlite:///{tmp_path / 'batchline.db'}")
    Base.metadata.create_all(engine)
    Session = scoped_session(sessionmaker(bind=engine, expire_on_commit=False))

    original_get_session = db_module.get_session_factory
    db_module.get_session_factory = lambda: Session

    yield Session

    Session.remove()
    engine.dispose()
    db_module.get_session_factory = original_get_session


# =============================================================================
# Actors
# =============================================================================


@pytest.fixture
def admin():
    return Actor(user_id="admin-1", role=ROLE_ADMIN)


@pytest.fixture
def manager():
    return Actor(user_id="pm-1", role=ROLE_PRODUCTION_MANAGER)


@pytest.fixture
def supervisor():
    return Actor(user_id="sup-1", role=ROLE_SUPERVISOR)


@pytest.fixture
def inventory_manager():
    return Actor(user_id="inv-1", role=ROLE_INVENTORY_MANAGER)


@pytest.fixture
def floor_worker():
    return Actor(user_id="W-1", role=ROLE_WORKER)


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def materials(test_db, admin):
    """Glycerin (100 kg, threshold 10) and Lye (50 kg, threshold 5)."""
    from batchline.services import stock_ledger_service

    glycerin = stock_ledger_service.create_material(
        "Glycerin", "kg", current_qty=Decimal("100"), min_threshold=Decimal("10"), actor=admin
    )
    lye = stock_ledger_service.create_material(
        "Lye", "kg", current_qty=Decimal("50"), min_threshold=Decimal("5"), actor=admin
    )
    return {"glycerin": glycerin, "lye": lye}


@pytest.fixture
def locked_version(test_db, materials, manager):
    """Locked version 1 of 'Lavender Soap': 60% Glycerin, 40% Lye."""
    from batchline.services import formulation_service

    version = formulation_service.create_formulation(
        "Lavender Soap",
        [
            {"material_id": materials["glycerin"].id, "percentage": "60", "unit": "kg"},
            {"material_id": materials["lye"].id, "percentage": "40", "unit": "kg"},
        ],
        actor=manager,
    )
    return formulation_service.lock_version(version.id, actor=manager)


@pytest.fixture
def start_time():
    return datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_batch(locked_version, supervisor, start_time):
    """Factory creating a Planned batch from the locked Lavender Soap version."""
    from batchline.services import batch_service

    def _make(batch_size="10", workers=("W-1",), start=None, **kwargs):
        return batch_service.create_batch(
            product_name=kwargs.pop("product_name", "Lavender Soap"),
            formulation_version_id=locked_version.id,
            batch_size=batch_size,
            workers=workers if isinstance(workers, str) else list(workers),
            shift=kwargs.pop("shift", "Morning"),
            start_time=start or start_time,
            actor=kwargs.pop("actor", supervisor),
            **kwargs,
        )

    return _make


@pytest.fixture
def complete_batch(supervisor):
    """Walk a batch Planned -> InProgress -> QualityCheck -> Completed."""
    from batchline.services import batch_service

    def _complete(batch_id, end_time=None):
        batch_service.update_batch_status(batch_id, "InProgress", actor=supervisor)
        batch_service.update_batch_status(batch_id, "QualityCheck", actor=supervisor)
        return batch_service.update_batch_status(
            batch_id, "Completed", end_time=end_time, actor=supervisor
        )

    return _complete
