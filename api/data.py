"""GET /api/data - unified read endpoint."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, Request

from api.base import success_response
from core.models import InvoiceFilter, InvoiceStatus


VALID_TYPES = {
    "invoices",
    "payments",
    "submissions",
    "history",
    "overdue",
    "invoice_stats",
    "compliance_stats",
    "payment_stats",
}

# Types that read one invoice and need ?id=
_PER_INVOICE_TYPES = {"payments", "submissions", "history"}


def create_data_router(services: dict) -> APIRouter:
    router = APIRouter()

    invoice_svc = services["invoice"]
    submission_svc = services["submission"]
    payment_svc = services["payment"]

    @router.get("/data")
    def get_data(
        request: Request,
        type: str | None = Query(None),
        id: str | None = Query(None),
        status: InvoiceStatus | None = Query(None),
        customer_id: UUID | None = Query(None),
        search: str | None = Query(None, max_length=200),
        date_from: date | None = Query(None),
        date_to: date | None = Query(None),
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=100),
    ):
        if type is None:
            raise ValueError("'type' query parameter is required")

        if type not in VALID_TYPES:
            raise ValueError(f"Unknown type '{type}'. Valid types: {', '.join(sorted(VALID_TYPES))}")

        ctx = request.state.context
        request_id = request.state.request_id

        if type in _PER_INVOICE_TYPES and not id:
            raise ValueError(f"'id' query parameter is required for type '{type}'")

        if type == "invoices":
            data = _handle_invoices(
                invoice_svc, ctx, id, status, customer_id, search, date_from, date_to, page, limit
            )
        elif type == "payments":
            payments = payment_svc.list_payments(UUID(id), ctx.organization_id)
            data = [p.model_dump(mode="json") for p in payments]
        elif type == "submissions":
            data = submission_svc.get_submission_history(UUID(id), ctx.organization_id).model_dump(mode="json")
        elif type == "history":
            data = [_jsonable(entry) for entry in invoice_svc.history(UUID(id), ctx.organization_id)]
        elif type == "overdue":
            data = [i.model_dump(mode="json") for i in payment_svc.overdue_invoices(ctx.organization_id)]
        elif type == "invoice_stats":
            data = invoice_svc.stats(ctx.organization_id).model_dump(mode="json")
        elif type == "compliance_stats":
            data = submission_svc.compliance_stats(ctx.organization_id).model_dump(mode="json")
        else:
            data = payment_svc.payment_stats(ctx.organization_id).model_dump(mode="json")

        return success_response(data, request_id).model_dump(mode="json")

    return router


def _jsonable(entry: dict) -> dict:
    return {key: value if isinstance(value, (dict, list, str, int, type(None))) else str(value)
            for key, value in entry.items()}


def _handle_invoices(invoice_svc, ctx, id, status, customer_id, search, date_from, date_to, page, limit):
    if id:
        return invoice_svc.get(UUID(id), ctx.organization_id).model_dump(mode="json")

    filters = InvoiceFilter(
        status=status,
        customer_id=customer_id,
        search=search,
        date_from=date_from,
        date_to=date_to,
    )
    result = invoice_svc.list(ctx.organization_id, filters, page=page, limit=limit)
    return {
        "invoices": [i.model_dump(mode="json") for i in result.invoices],
        "pagination": {
            "page": result.page,
            "limit": result.limit,
            "total": result.total,
            "total_pages": result.total_pages,
        },
    }
