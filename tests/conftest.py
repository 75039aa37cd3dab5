"""
Pytest fixtures for the billing kernel test suite.

Provides:
- Database sessions with per-test rollback
- A file-backed engine for tests that need real commits
- Counterparty and movement record factories
- Wired services and selectors

Environment Variables:
- DATABASE_URL: connection URL for the session-scoped engine.  Defaults to
  an in-memory SQLite database.  Point it at PostgreSQL to run the
  ``postgres`` marked tests against the production backend.
"""

import json
import logging
import os
from datetime import date
from decimal import Decimal
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session, sessionmaker

from billing_config import BillingConfig
from billing_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    init_engine_from_url,
    reset_engine,
)
from billing_kernel.domain.dtos import InvoiceRequest, MaterialLine
from billing_kernel.domain.tax import TaxCalculator
from billing_kernel.domain.values import InvoiceType
from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from billing_kernel.models.counterparty import Counterparty, CounterpartyKind
from billing_kernel.models.movement import MovementDirection
from billing_kernel.selectors.invoice_selector import InvoiceSelector
from billing_kernel.services.consolidation_service import build_consolidation_service
from billing_kernel.services.linkage_guard import LinkageGuard
from billing_kernel.services.movement_service import MovementRecordService
from billing_kernel.services.sequence_service import SequenceAllocator

DEFAULT_TEST_DATABASE_URL = "sqlite://"

JAN_15 = date(2026, 1, 15)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


def get_database_url() -> str:
    """Get database URL from environment, or use in-memory SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_TEST_DATABASE_URL)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
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
    Capture billing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, consolidation):
            consolidation.create_invoice(request)
            logs = captured_logs()
            assert any(r["message"] == "invoice_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("billing_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Session-scoped DB infrastructure (create engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    eng = init_engine_from_url(get_database_url(), echo=False)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end."""
    drop_tables(db_engine)
    create_tables(db_engine)
    yield
    drop_tables(db_engine)


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection.
    Savepoints opened by the services nest inside it, and the outer
    transaction is rolled back at teardown, undoing every change the test
    made.
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


# =============================================================================
# Real-commit fixtures (concurrency, session_scope, run_in_transaction)
# =============================================================================


@pytest.fixture
def file_engine(tmp_path):
    """A private file-backed SQLite engine whose transactions really commit.

    Each test gets its own database file, so no cleanup between tests is
    needed beyond disposing the engine.
    """
    eng = build_engine(f"sqlite:///{tmp_path / 'billing.db'}")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def file_session_factory(file_engine) -> sessionmaker[Session]:
    return sessionmaker(bind=file_engine, expire_on_commit=False)


# =============================================================================
# Configuration
# =============================================================================


@pytest.fixture
def billing_config() -> BillingConfig:
    """Default configuration against an in-memory database."""
    return BillingConfig(database_url=DEFAULT_TEST_DATABASE_URL)


# =============================================================================
# Services and selectors
# =============================================================================


@pytest.fixture
def allocator(session, billing_config) -> SequenceAllocator:
    return SequenceAllocator.from_config(session, billing_config)


@pytest.fixture
def linkage(session) -> LinkageGuard:
    return LinkageGuard(session)


@pytest.fixture
def calculator(billing_config) -> TaxCalculator:
    return TaxCalculator.from_config(billing_config)


@pytest.fixture
def consolidation(session, billing_config):
    return build_consolidation_service(session, billing_config)


@pytest.fixture
def movements(session, allocator) -> MovementRecordService:
    return MovementRecordService(session, allocator)


@pytest.fixture
def invoice_selector(session) -> InvoiceSelector:
    return InvoiceSelector(session)


# =============================================================================
# Test data factories
# =============================================================================


@pytest.fixture
def make_counterparty(session):
    """Factory for companies and transporters."""

    def _make(kind: CounterpartyKind = CounterpartyKind.COMPANY, name: str | None = None):
        counterparty = Counterparty(
            kind=kind.value,
            name=name or f"Test {kind.value}",
            gst_number="27AAAAA0000A1Z5",
        )
        session.add(counterparty)
        session.flush()
        return counterparty

    return _make


@pytest.fixture
def company(make_counterparty):
    return make_counterparty(CounterpartyKind.COMPANY, "Acme Chemicals")


@pytest.fixture
def transporter(make_counterparty):
    return make_counterparty(CounterpartyKind.TRANSPORTER, "Rapid Haulage")


@pytest.fixture
def make_record(movements, company, transporter):
    """Factory for movement records.

    Inward records default to ``company`` and outward ones to
    ``transporter``; rate defaults to 100 per unit.
    """

    def _make(
        manifest_no: str,
        direction: MovementDirection = MovementDirection.INWARD,
        quantity: Decimal = Decimal("6"),
        rate: Decimal | None = Decimal("100"),
        record_date: date = JAN_15,
        counterparty_id=None,
        **kwargs,
    ):
        if counterparty_id is None:
            counterparty_id = (
                company.id if direction is MovementDirection.INWARD else transporter.id
            )
        return movements.register(
            direction=direction,
            record_date=record_date,
            counterparty_id=counterparty_id,
            manifest_no=manifest_no,
            material_name="Spent solvent",
            quantity=quantity,
            unit="MT",
            rate=rate,
            **kwargs,
        )

    return _make


@pytest.fixture
def inward_request(company):
    """Factory for Inward invoice requests billing ``company``."""

    def _make(records=(), materials=None, **kwargs):
        if materials is None:
            materials = (
                MaterialLine(
                    material_name="Spent solvent",
                    quantity=Decimal("10"),
                    rate=Decimal("100"),
                    unit="MT",
                ),
            )
        fields = {
            "invoice_type": InvoiceType.INWARD,
            "invoice_date": JAN_15,
            "company_id": company.id,
            "materials": tuple(materials),
            "manifest_numbers": tuple(r.manifest_no for r in records),
            "movement_record_ids": tuple(r.id for r in records),
        }
        fields.update(kwargs)
        return InvoiceRequest(**fields)

    return _make
