"""
Shared fixtures: a file-backed SQLite database per test.

A file (not :memory:) so that several connections, one per thread, see the
same data and contend for the same database lock.
"""

import pytest
from datetime import date
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rental_engine.database import build_engine, create_tables, get_db
from rental_engine.services.booking_coordinator import BookingCoordinator
from rental_engine.services.inventory_ledger import InventoryLedger
from rental_engine.services.pricing import FlatRateTax


AUG_2026 = date(2026, 8, 1)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'rental_engine.db'}")
    create_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def ledger(db):
    return InventoryLedger(db)


@pytest.fixture
def tent(db, ledger):
    """Product "Tent" with 5 units at 25.00 per day."""
    product = ledger.register_product(
        sku="TENT-4P", name="Tent", total_quantity=5, base_rate=Decimal("25.00")
    )
    db.commit()
    return product


@pytest.fixture
def camera(db, ledger):
    product = ledger.register_product(
        sku="CAM-01", name="Camera", total_quantity=2, base_rate=Decimal("40.00"),
        min_duration=2, max_duration=14,
    )
    db.commit()
    return product


@pytest.fixture
def make_coordinator():
    """Coordinator factory with a fixed clock, 10% tax and no real sleeping."""
    def factory(session, **overrides):
        options = {
            "tax_policy": FlatRateTax(Decimal("0.10")),
            "clock": lambda: AUG_2026,
            "sleep": lambda seconds: None,
        }
        options.update(overrides)
        return BookingCoordinator(session, **options)
    return factory


@pytest.fixture
def coordinator(db, make_coordinator):
    return make_coordinator(db)


@pytest.fixture
def client(session_factory):
    """Test client bound to the per-test database, rate limits off."""
    from rental_engine.main import app
    from rental_engine.utils.rate_limiter import limiter

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    limiter.enabled = False
    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        limiter.enabled = True
