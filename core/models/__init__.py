"""Core domain models."""

from core.models.context import RequestContext
from core.models.customer import Customer
from core.models.line_item import LineItem, LineItemInput
from core.models.submission import (
    GovernmentStatus,
    ValidationIssue,
    ValidationResult,
    SubmissionResponse,
    StatusResponse,
    SubmissionRecord,
    ComplianceStats,
)
from core.models.invoice import (
    Invoice,
    InvoiceCreate,
    InvoiceUpdate,
    InvoiceFilter,
    InvoicePage,
    InvoiceStats,
    SubmissionOutcome,
    SubmissionHistory,
    InvoiceStatus,
    PaymentStatus,
    SUBMITTABLE_STATUSES,
    CANCELLABLE_STATUSES,
)
from core.models.payment import Payment, PaymentCreate, PaymentMethod, PaymentStats

__all__ = [
    # Context
    "RequestContext",
    # Customer
    "Customer",
    # LineItem
    "LineItem", "LineItemInput",
    # Submission
    "GovernmentStatus", "ValidationIssue", "ValidationResult",
    "SubmissionResponse", "StatusResponse", "SubmissionRecord", "ComplianceStats",
    # Invoice
    "Invoice", "InvoiceCreate", "InvoiceUpdate", "InvoiceFilter", "InvoicePage",
    "InvoiceStats", "InvoiceStatus", "PaymentStatus", "SubmissionOutcome", "SubmissionHistory",
    "SUBMITTABLE_STATUSES", "CANCELLABLE_STATUSES",
    # Payment
    "Payment", "PaymentCreate", "PaymentMethod", "PaymentStats",
]
