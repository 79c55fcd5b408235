"""Per-request authorization context."""

from uuid import UUID

from pydantic import BaseModel


class RequestContext(BaseModel):
    """
    Who is acting, and for which tenant.

    Resolved once per request (see api.middleware.RequestContextMiddleware)
    and passed explicitly into every core operation. Every lookup is scoped
    by organization_id, so a context can only ever see its own tenant.
    """

    organization_id: UUID
    user_id: UUID

    model_config = {"frozen": True}
