"""Shared test fixtures for the invoicing test suite."""

import os
import pytest
from datetime import timedelta
from decimal import Decimal
from uuid import UUID
from pathlib import Path

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from clients.government_client import DisabledGovernmentClient
from core.audit import AuditLogger
from core.config import GovernmentAPIConfig, InvoicingConfig
from core.event_bus import EventBus
from core.models import InvoiceCreate, LineItemInput
from core.services.invoice_service import InvoiceService
from core.services.payment_service import PaymentService
from core.services.submission_service import SubmissionService
from fakes import InMemoryInvoiceStore, RecordingFormatter
from utils.timezone import business_today


# =============================================================================
# TEST TENANT CONSTANTS
# =============================================================================

# Primary organization and user - use for single-tenant tests
TEST_ORG_ID = UUID("00000000-0000-0000-0000-0000000000a1")
TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")

# Secondary organization - use for tenant isolation tests
TEST_ORG_B_ID = UUID("00000000-0000-0000-0000-0000000000b2")
TEST_USER_B_ID = UUID("00000000-0000-0000-0000-000000000002")


@pytest.fixture
def org_id() -> UUID:
    """The primary test organization's ID."""
    return TEST_ORG_ID


@pytest.fixture
def org_b_id() -> UUID:
    """The secondary test organization's ID (for isolation tests)."""
    return TEST_ORG_B_ID


@pytest.fixture
def user_id() -> UUID:
    """The primary test user's ID."""
    return TEST_USER_ID


@pytest.fixture
def user_b_id() -> UUID:
    return TEST_USER_B_ID


# =============================================================================
# CORE FIXTURES (in-memory store)
# =============================================================================


@pytest.fixture
def invoicing_config() -> InvoicingConfig:
    return InvoicingConfig()


@pytest.fixture
def today(invoicing_config):
    """Today in the configured business time zone."""
    return business_today(invoicing_config.business_timezone)


@pytest.fixture
def store() -> InMemoryInvoiceStore:
    return InMemoryInvoiceStore()


@pytest.fixture
def audit() -> AuditLogger:
    return AuditLogger()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def published(event_bus):
    """Every event published on the bus, in order."""
    events = []
    for name in (
        "InvoiceCreated", "InvoiceSubmitted", "InvoiceCancelled",
        "GovernmentSubmissionCompleted", "GovernmentStatusChanged",
        "PaymentRecorded", "InvoicePaid",
    ):
        event_bus.subscribe(name, events.append)
    return events


@pytest.fixture
def formatter() -> RecordingFormatter:
    return RecordingFormatter()


@pytest.fixture
def government_client():
    """Switched-off authority: every submission is validated deterministically."""
    return DisabledGovernmentClient(GovernmentAPIConfig(enabled=False))


@pytest.fixture
def invoice_service(store, audit, event_bus, invoicing_config):
    return InvoiceService(store, audit, event_bus, invoicing_config)


@pytest.fixture
def submission_service(store, government_client, formatter, audit, event_bus):
    return SubmissionService(store, government_client, formatter, audit, event_bus)


@pytest.fixture
def payment_service(store, audit, event_bus, invoicing_config):
    return PaymentService(store, audit, event_bus, invoicing_config)


# =============================================================================
# TEST DATA FIXTURES
# =============================================================================


@pytest.fixture
def customer(store, org_id):
    return store.add_customer(org_id, name="Acme Trading", email="billing@acmetrading.com", tax_id="C1234567890")


@pytest.fixture
def make_invoice_data(customer, today):
    """Factory for InvoiceCreate payloads. Defaults to 2 x 100.00 at 10% tax."""

    def _make(**overrides) -> InvoiceCreate:
        values = {
            "customer_id": customer.id,
            "invoice_date": today,
            "due_date": today + timedelta(days=30),
            "currency": "MYR",
            "line_items": [
                LineItemInput(
                    description="Consulting",
                    quantity=Decimal("2"),
                    unit_price=Decimal("100.00"),
                    tax_rate=Decimal("10"),
                ),
            ],
        }
        values.update(overrides)
        return InvoiceCreate(**values)

    return _make


@pytest.fixture
def draft_invoice(invoice_service, org_id, user_id, make_invoice_data):
    """A DRAFT invoice totalling 220.00."""
    return invoice_service.create(org_id, user_id, make_invoice_data())


@pytest.fixture
def validated_invoice(submission_service, draft_invoice, org_id, user_id):
    """An invoice the authority has VALIDATED."""
    return submission_service.submit_to_government(draft_invoice.id, org_id, user_id=user_id).invoice


# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture(scope="session")
def db():
    """Session-scoped PostgresClient. Skips unless TEST_DATABASE_URL is set."""
    url = os.getenv("TEST_DATABASE_URL")
    if not url:
        pytest.skip("TEST_DATABASE_URL not set")

    from clients.postgres_client import PostgresClient

    client = PostgresClient(url)
    schema = (Path(__file__).parent.parent / "db" / "schema.sql").read_text()
    client.execute(schema)
    yield client
    client.close()


@pytest.fixture
def clean_db(db):
    """Reset invoicing tables and seed both test organizations."""
    db.execute("""
        TRUNCATE
            audit_log, submission_history, payments, invoice_sequences,
            invoice_line_items, invoices, customers, organizations
        CASCADE
    """)
    db.execute("""
        INSERT INTO organizations (id, name)
        VALUES (%s, 'Test Org A'), (%s, 'Test Org B')
    """, (TEST_ORG_ID, TEST_ORG_B_ID))
    yield db
