"""Request-scoped middleware for API requests."""

import logging
from typing import Callable
from uuid import UUID, uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from core.models import RequestContext

logger = logging.getLogger(__name__)

ContextResolver = Callable[[Request], RequestContext | None]


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a unique request ID to every request."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def header_context_resolver(request: Request) -> RequestContext | None:
    """
    Resolve the context from X-Organization-ID and X-User-ID headers.

    For deployments behind a gateway that has already authenticated the
    caller and stamps these headers. Missing or malformed headers resolve
    to None.
    """
    organization_id = request.headers.get("X-Organization-ID")
    user_id = request.headers.get("X-User-ID")
    if not organization_id or not user_id:
        return None

    try:
        return RequestContext(organization_id=UUID(organization_id), user_id=UUID(user_id))
    except ValueError:
        logger.warning("Malformed context headers on %s", request.url.path)
        return None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Resolves the RequestContext once per request.

    The resolver decides who is calling and for which organization; the
    result is stored in request.state.context and passed explicitly into
    every core operation. Requests that resolve to no context get 401.

    Public paths bypass resolution entirely.
    """

    PUBLIC_PATHS = [
        "/health",
        "/docs",
        "/openapi.json",
    ]

    def __init__(self, app, resolver: ContextResolver = header_context_resolver):
        super().__init__(app)
        self._resolver = resolver

    def _is_public_path(self, path: str) -> bool:
        """Check if path is in public paths list."""
        for public_path in self.PUBLIC_PATHS:
            if path == public_path or path.startswith(public_path):
                return True
        return False

    async def dispatch(self, request: Request, call_next):
        """Process request through middleware."""
        if self._is_public_path(request.url.path):
            return await call_next(request)

        context = self._resolver(request)
        if context is None:
            return JSONResponse(
                status_code=401,
                content=error_response(
                    ErrorCodes.NOT_AUTHENTICATED,
                    "Authentication required",
                    request_id=getattr(request.state, "request_id", None),
                ).model_dump(mode="json"),
            )

        request.state.context = context
        return await call_next(request)
