"""POST /api/actions - unified mutation endpoint."""

from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel

from api.base import success_response
from core.models import (
    InvoiceCreate,
    InvoiceUpdate,
    PaymentCreate,
    RequestContext,
)


class ActionRequest(BaseModel):
    domain: str
    action: str
    data: dict


def create_actions_router(services: dict) -> APIRouter:
    router = APIRouter()

    handlers = {
        "invoice": InvoiceHandler(services["invoice"]),
        "compliance": ComplianceHandler(services["submission"]),
        "payment": PaymentHandler(services["payment"]),
    }

    @router.post("/actions")
    def perform_action(request: Request, body: ActionRequest):
        handler = handlers.get(body.domain)
        if handler is None:
            raise ValueError(
                f"Unknown domain '{body.domain}'. "
                f"Valid domains: {', '.join(sorted(handlers.keys()))}"
            )

        if body.action not in handler.ALLOWED_ACTIONS:
            raise ValueError(
                f"Action '{body.action}' not allowed on '{body.domain}'. "
                f"Allowed: {', '.join(sorted(handler.ALLOWED_ACTIONS))}"
            )

        method = getattr(handler, f"_handle_{body.action}")
        result = method(request.state.context, body.data)
        return success_response(result, request.state.request_id).model_dump(mode="json")

    return router


def _require_id(data: dict, key: str = "id") -> UUID:
    if key not in data:
        raise ValueError(f"'{key}' is required")
    return UUID(str(data.pop(key)))


# =============================================================================
# HANDLER CLASSES
# =============================================================================


class InvoiceHandler:
    ALLOWED_ACTIONS = {"create", "update", "delete", "submit", "cancel"}

    def __init__(self, service):
        self.service = service

    def _handle_create(self, ctx: RequestContext, data: dict):
        invoice = self.service.create(ctx.organization_id, ctx.user_id, InvoiceCreate(**data))
        return invoice.model_dump(mode="json")

    def _handle_update(self, ctx: RequestContext, data: dict):
        invoice_id = _require_id(data)
        invoice = self.service.update(invoice_id, ctx.organization_id, InvoiceUpdate(**data), user_id=ctx.user_id)
        return invoice.model_dump(mode="json")

    def _handle_delete(self, ctx: RequestContext, data: dict):
        self.service.delete(_require_id(data), ctx.organization_id, user_id=ctx.user_id)
        return {"deleted": True}

    def _handle_submit(self, ctx: RequestContext, data: dict):
        invoice = self.service.submit(_require_id(data), ctx.organization_id, user_id=ctx.user_id)
        return invoice.model_dump(mode="json")

    def _handle_cancel(self, ctx: RequestContext, data: dict):
        invoice = self.service.cancel(_require_id(data), ctx.organization_id, user_id=ctx.user_id)
        return invoice.model_dump(mode="json")


class ComplianceHandler:
    ALLOWED_ACTIONS = {"submit", "check_status", "retry"}

    def __init__(self, service):
        self.service = service

    def _handle_submit(self, ctx: RequestContext, data: dict):
        outcome = self.service.submit_to_government(_require_id(data), ctx.organization_id, user_id=ctx.user_id)
        return outcome.model_dump(mode="json")

    def _handle_check_status(self, ctx: RequestContext, data: dict):
        invoice = self.service.check_government_status(_require_id(data), ctx.organization_id, user_id=ctx.user_id)
        return invoice.model_dump(mode="json")

    def _handle_retry(self, ctx: RequestContext, data: dict):
        outcome = self.service.retry_submission(_require_id(data), ctx.organization_id, user_id=ctx.user_id)
        return outcome.model_dump(mode="json")


class PaymentHandler:
    ALLOWED_ACTIONS = {"record", "delete"}

    def __init__(self, service):
        self.service = service

    def _handle_record(self, ctx: RequestContext, data: dict):
        invoice_id = _require_id(data, "invoice_id")
        payment, invoice = self.service.record_payment(
            invoice_id, ctx.organization_id, PaymentCreate(**data), user_id=ctx.user_id
        )
        return {
            "payment": payment.model_dump(mode="json"),
            "invoice": invoice.model_dump(mode="json"),
        }

    def _handle_delete(self, ctx: RequestContext, data: dict):
        invoice = self.service.delete_payment(_require_id(data), ctx.organization_id, user_id=ctx.user_id)
        return {"deleted": True, "invoice": invoice.model_dump(mode="json")}
