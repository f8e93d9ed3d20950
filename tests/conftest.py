"""Shared test fixtures for the COD settlements tests.

Uses a SQLite file database so tests run without PostgreSQL.
"""

from __future__ import annotations

import os

# Override DATABASE_URL before importing anything from cod_settlements: the
# Settings model reads .env eagerly via pydantic-settings, and the module-level
# ``engine`` in cod_settlements.core.database would try to connect to PostgreSQL.
os.environ["DATABASE_URL"] = "sqlite:///./test.db"

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from cod_settlements.core.config import Settings
from cod_settlements.core.database import Base, get_db
from cod_settlements.main import app
from cod_settlements.models.carrier import Carrier, CarrierZone
from cod_settlements.models.order import Order
from cod_settlements.services.dispatch.manager import DispatchSessionManager

# Use SQLite file-based database for tests (no PostgreSQL needed)
TEST_DATABASE_URL = "sqlite:///./test.db"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
)


# Foreign keys on, and let SQLAlchemy own BEGIN so SAVEPOINTs work with pysqlite
@event.listens_for(engine, "connect")
def _set_sqlite_pragma(dbapi_conn, connection_record):
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


@event.listens_for(engine, "begin")
def _do_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session):
    """FastAPI test client with overridden DB dependency."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def config() -> Settings:
    return Settings(
        database_url="sqlite://",
        test_database_url="sqlite://",
        fallback_shipping_rate=Decimal("20000"),
    )


# ── Builders ─────────────────────────────────────────────────────────


@pytest.fixture
def make_carrier(db_session):
    def _make(**overrides) -> Carrier:
        values = {
            "name": "Rapido Express",
            "settlement_type": "gross",
            "charges_failed_attempts": True,
            "failed_attempt_fee_percent": Decimal("50"),
            "payment_schedule": "weekly",
        }
        values.update(overrides)
        carrier = Carrier(**values)
        db_session.add(carrier)
        db_session.commit()
        return carrier

    return _make


@pytest.fixture
def make_zone(db_session):
    def _make(carrier: Carrier, zone_name: str, rate, **overrides) -> CarrierZone:
        zone = CarrierZone(
            carrier_id=carrier.id, zone_name=zone_name, rate=Decimal(str(rate)), **overrides
        )
        db_session.add(zone)
        db_session.commit()
        return zone

    return _make


@pytest.fixture
def make_orders(db_session):
    """Create ``count`` orders; COD ("efectivo") unless told otherwise."""

    def _make(count: int, total_price=100_000, **overrides) -> list[Order]:
        orders = []
        for _ in range(count):
            values = {
                "order_number": f"#{uuid.uuid4().hex[:6].upper()}",
                "customer_name": "Cliente",
                "shipping_city": "Asunción",
                "total_price": Decimal(str(total_price)),
                "payment_method": "efectivo",
            }
            values.update(overrides)
            order = Order(**values)
            db_session.add(order)
            orders.append(order)
        db_session.commit()
        return orders

    return _make


@pytest.fixture
def dispatched_session(db_session, config):
    """Open and dispatch a session for ``carrier`` holding ``orders``."""

    def _dispatch(carrier: Carrier, orders: list[Order], dispatch_date: date = date(2026, 10, 1)):
        manager = DispatchSessionManager(db_session, config)
        session = manager.create(carrier.id, dispatch_date, [o.id for o in orders])
        return manager.mark_dispatched(session.id)

    return _dispatch
