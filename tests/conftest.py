"""
Shared fixtures for the stock ledger test suite.

Database selection:
    DATABASE_URL set   -> that database (PostgreSQL for the lock tests).
    DATABASE_URL unset -> in-memory SQLite.

Every ``session`` runs inside an outer transaction that is rolled back at
teardown; ``session.commit()`` inside orchestrators only releases a
savepoint, so tests never see each other's rows.
"""

import json
import logging
import os
from collections.abc import Generator
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from io import StringIO
from itertools import count
from uuid import UUID, uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from stock_config import StockLedgerConfig
from stock_kernel.db.base import Base
from stock_kernel.db.engine import create_tables, drop_tables, init_engine_from_url, reset_engine
from stock_kernel.db.immutability import register_immutability_listeners
from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.domain.dtos import (
    ActorContext,
    CostCentre,
    DeliveryLineInput,
    LocationType,
    StockLineInput,
    Unit,
)
from stock_kernel.logging_config import LogContext, StructuredFormatter, configure_logging, reset_logging
from stock_kernel.services.master_data_service import ItemInfo, LocationInfo, SupplierInfo
from stock_services import (
    DeliveryOrchestrator,
    IssueOrchestrator,
    KernelServices,
    NCRService,
    PeriodCloseCoordinator,
    ReconciliationService,
    TransferOrchestrator,
)

SQLITE_URL = "sqlite://"

JANUARY = (date(2025, 1, 1), date(2025, 1, 31))


def _database_url() -> str:
    return os.environ.get("DATABASE_URL", SQLITE_URL)


def pytest_collection_modifyitems(config, items):
    """Skip PostgreSQL-only tests when running against SQLite."""
    if _database_url().startswith("postgresql"):
        return
    skip_pg = pytest.mark.skip(reason="needs DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture stock_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, deliver):
            deliver(...)
            logs = captured_logs()
            assert any(r["message"] == "delivery_posted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("stock_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def db_engine():
    engine = init_engine_from_url(_database_url(), echo=False)
    yield engine
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create the schema once per run and register the immutability listeners."""
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield
    drop_tables()


@pytest.fixture
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    Uses the SQLAlchemy 2.0 ``join_transaction_mode`` pattern:
    - Opens a dedicated connection with an outer transaction
    - Creates a session that *joins* the outer transaction
    - Any ``session.commit()`` inside the test releases a savepoint; it
      does NOT actually commit to the database
    - At teardown the outer transaction is rolled back, undoing ALL data
      changes made during the test
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


@pytest.fixture
def pg_session_factory(db_tables, db_engine):
    """
    Real committing sessions for the PostgreSQL lock tests.

    Rows are truncated afterwards since nothing is rolled back.
    """
    if db_engine.dialect.name != "postgresql":
        pytest.skip("needs PostgreSQL")
    factory = sessionmaker(bind=db_engine, expire_on_commit=False)
    yield factory
    tables = ", ".join(t.name for t in Base.metadata.sorted_tables)
    with db_engine.begin() as conn:
        conn.execute(text(f"TRUNCATE {tables} CASCADE"))


# ---------------------------------------------------------------------------
# Actors, clock, config
# ---------------------------------------------------------------------------


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """2025-01-15 09:00 UTC until advanced."""
    return DeterministicClock()


@pytest.fixture
def test_actor_id() -> UUID:
    return uuid4()


@pytest.fixture
def supervisor(test_actor_id) -> ActorContext:
    return ActorContext(user_id=test_actor_id, role="SUPERVISOR")


@pytest.fixture
def admin() -> ActorContext:
    return ActorContext(user_id=uuid4(), role="ADMIN")


@pytest.fixture
def config() -> StockLedgerConfig:
    return StockLedgerConfig.with_defaults()


@pytest.fixture
def kernel(session, deterministic_clock, config) -> KernelServices:
    return KernelServices(session, deterministic_clock, config)


# ---------------------------------------------------------------------------
# Orchestrators
# ---------------------------------------------------------------------------


@pytest.fixture
def coordinator(session, kernel) -> PeriodCloseCoordinator:
    return PeriodCloseCoordinator(session, kernel=kernel)


@pytest.fixture
def deliveries(session, kernel) -> DeliveryOrchestrator:
    return DeliveryOrchestrator(session, kernel=kernel)


@pytest.fixture
def issues(session, kernel) -> IssueOrchestrator:
    return IssueOrchestrator(session, kernel=kernel)


@pytest.fixture
def transfers(session, kernel) -> TransferOrchestrator:
    return TransferOrchestrator(session, kernel=kernel)


@pytest.fixture
def ncrs(session, kernel) -> NCRService:
    return NCRService(session, kernel=kernel)


@pytest.fixture
def reconciliation(session, kernel) -> ReconciliationService:
    return ReconciliationService(session, kernel=kernel)


# ---------------------------------------------------------------------------
# Master data and periods
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Restaurant:
    """Two locations, three items and one supplier."""

    kitchen: LocationInfo
    store: LocationInfo
    flour: ItemInfo
    oil: ItemInfo
    chicken: ItemInfo
    supplier: SupplierInfo


@pytest.fixture
def restaurant(session, kernel, test_actor_id) -> Restaurant:
    md = kernel.master_data
    data = Restaurant(
        kitchen=md.create_location("KIT", "Main Kitchen", test_actor_id, LocationType.KITCHEN),
        store=md.create_location("STR", "Dry Store", test_actor_id, LocationType.STORE),
        flour=md.create_item("FLOUR", "Flour 25kg", test_actor_id, Unit.KG, "Dry goods"),
        oil=md.create_item("OIL", "Sunflower oil", test_actor_id, Unit.LTR, "Dry goods"),
        chicken=md.create_item("CHICKEN", "Whole chicken", test_actor_id, Unit.KG, "Poultry"),
        supplier=md.create_supplier("SUP1", "Fresh Foods Co", test_actor_id),
    )
    session.commit()
    return data


@pytest.fixture
def draft_period(session, kernel, coordinator, restaurant, admin):
    """January 2025 in DRAFT with flour at 5.00 and oil at 8.00; chicken unpriced."""
    period = coordinator.create_period(admin, "2025-01", "January 2025", *JANUARY)
    kernel.prices.set_price(restaurant.flour.id, period.id, Decimal("5.00"), admin.user_id)
    kernel.prices.set_price(restaurant.oil.id, period.id, Decimal("8.00"), admin.user_id)
    session.commit()
    return period


@pytest.fixture
def open_period(coordinator, draft_period, admin):
    """January 2025, OPEN."""
    return coordinator.open_period(admin, draft_period.id).period


@pytest.fixture
def deliver(deliveries, restaurant, supervisor):
    """
    Post a single-line delivery.

    deliver(location, item, qty, price, on=date(2025, 1, 10), invoice=None)
    """
    invoices = count(1)

    def _deliver(location, item, quantity, unit_price, on=date(2025, 1, 10), invoice=None, ctx=None):
        return deliveries.post_delivery(
            ctx or supervisor,
            location.id,
            restaurant.supplier.id,
            invoice or f"INV-{next(invoices):04d}",
            on,
            [DeliveryLineInput(item.id, Decimal(str(quantity)), Decimal(str(unit_price)))],
        )

    return _deliver


@pytest.fixture
def issue(issues, supervisor):
    """issue(location, item, qty, on=date(2025, 1, 12), cost_centre=FOOD)"""

    def _issue(location, item, quantity, on=date(2025, 1, 12), cost_centre=CostCentre.FOOD):
        return issues.post_issue(
            supervisor,
            location.id,
            cost_centre,
            on,
            [StockLineInput(item.id, Decimal(str(quantity)))],
        )

    return _issue


@pytest.fixture
def position(kernel):
    """position(period, location, item) -> StockPosition | None"""

    def _position(period, location, item):
        return kernel.ledger.get_entry(period.id, location.id, item.id)

    return _position
