"""API test fixtures - TestClient over in-memory services with gateway headers."""

import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient

from api.actions import create_actions_router
from api.data import create_data_router
from api.errors import register_error_handlers
from api.middleware import RequestContextMiddleware, RequestIDMiddleware


# =============================================================================
# SERVICES DICT
# =============================================================================


@pytest.fixture
def services(invoice_service, submission_service, payment_service):
    return {
        "invoice": invoice_service,
        "submission": submission_service,
        "payment": payment_service,
    }


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def app(services):
    """FastAPI app with context middleware, error handlers, and data/actions routes."""
    app = FastAPI()
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_data_router(services), prefix="/api")
    app.include_router(create_actions_router(services), prefix="/api")

    return app


@pytest.fixture
def client(app, org_id, user_id):
    """Client whose requests carry the gateway's organization and user headers."""
    c = TestClient(app, raise_server_exceptions=False)
    c.headers.update({"X-Organization-ID": str(org_id), "X-User-ID": str(user_id)})
    return c


@pytest.fixture
def org_b_client(app, org_b_id, user_b_id):
    c = TestClient(app, raise_server_exceptions=False)
    c.headers.update({"X-Organization-ID": str(org_b_id), "X-User-ID": str(user_b_id)})
    return c


@pytest.fixture
def unauthed_client(app):
    """Client without context headers."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def invoice_payload(customer, today):
    """JSON body for invoice.create: 2 x 100.00 at 10% tax."""
    return {
        "customer_id": str(customer.id),
        "invoice_date": today.isoformat(),
        "currency": "MYR",
        "line_items": [
            {"description": "Consulting", "quantity": "2", "unit_price": "100.00", "tax_rate": "10"},
        ],
    }


@pytest.fixture
def act(client):
    """POST /api/actions shortcut returning the raw response."""

    def _act(domain: str, action: str, data: dict):
        return client.post("/api/actions", json={"domain": domain, "action": action, "data": data})

    return _act
