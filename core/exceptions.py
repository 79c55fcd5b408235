"""Typed exceptions for invoicing business-rule failures.

Services raise these for expected violations; api.errors turns each class into
an error envelope with a stable code and HTTP status. Anything else reaching
the API boundary is an internal error.
"""

from typing import Any


class InvoicingError(Exception):
    """Base class for expected business-rule failures."""

    code = "INVOICING_ERROR"

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None):
        self.message = message
        self.field = field
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for API responses and logs."""
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.field is not None:
            data["field"] = self.field
        if self.details:
            data["details"] = self.details
        return data


class NotFoundError(InvoicingError):
    """Invoice, customer or payment absent, or owned by another organization."""

    code = "NOT_FOUND"


class InvalidInputError(InvoicingError):
    """Input violates a rule pydantic cannot check alone (e.g. dates vs today)."""

    code = "INVALID_INPUT"


class ConflictError(InvoicingError):
    """Operation not permitted in the invoice's current state."""

    code = "CONFLICT"


class InvalidStateError(InvoicingError):
    """Ledger rule violated, e.g. payments would exceed the invoice total."""

    code = "INVALID_STATE"


class ExternalFailureError(InvoicingError):
    """
    Government authority unreachable, timed out, or refused the document.

    Carries the authority's message and validation errors in details.
    """

    code = "EXTERNAL_FAILURE"
