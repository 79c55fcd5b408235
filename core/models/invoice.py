"""Invoice domain models.

Amounts are Decimal with 2 decimal places. Tax rates are percentages (0-100).
Monetary fields on Invoice are derived from line items and never set directly.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from core.models.line_item import LineItem, LineItemInput
from core.models.submission import GovernmentStatus, SubmissionRecord, SubmissionResponse


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    SUBMITTED = "SUBMITTED"
    VALIDATED = "VALIDATED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    """Stored payment state. OVERDUE is derived, see Invoice.is_overdue."""

    UNPAID = "UNPAID"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"


# Statuses from which the internal submit action is allowed
SUBMITTABLE_STATUSES = frozenset({InvoiceStatus.DRAFT, InvoiceStatus.PENDING_APPROVAL})

# Statuses from which an invoice may be cancelled
CANCELLABLE_STATUSES = frozenset({
    InvoiceStatus.DRAFT,
    InvoiceStatus.PENDING_APPROVAL,
    InvoiceStatus.APPROVED,
    InvoiceStatus.SUBMITTED,
    InvoiceStatus.REJECTED,
})


class InvoiceCreate(BaseModel):
    """Data required to create an invoice."""

    customer_id: UUID
    invoice_date: date
    due_date: date | None = None
    currency: str | None = Field(None, pattern="^[A-Z]{3}$")  # None: InvoicingConfig.default_currency
    notes: str | None = Field(None, max_length=2000)
    line_items: list[LineItemInput] = Field(..., min_length=1, max_length=100)


class InvoiceUpdate(BaseModel):
    """Data that can be updated on an invoice. All fields optional.

    line_items, when present, replaces every existing line item.
    """

    customer_id: UUID | None = None
    invoice_date: date | None = None
    due_date: date | None = None
    currency: str | None = Field(None, pattern="^[A-Z]{3}$")
    notes: str | None = Field(None, max_length=2000)
    line_items: list[LineItemInput] | None = Field(None, min_length=1, max_length=100)


class InvoiceFilter(BaseModel):
    """Filter for invoice listings and aggregates.

    government_statuses may contain None to match invoices with no
    authority outcome recorded.
    """

    status: InvoiceStatus | None = None
    statuses: list[InvoiceStatus] | None = None
    customer_id: UUID | None = None
    search: str | None = Field(None, max_length=200)
    date_from: date | None = None
    date_to: date | None = None
    has_government_id: bool | None = None
    government_statuses: list[GovernmentStatus | None] | None = None
    payment_statuses: list[PaymentStatus] | None = None
    due_before: date | None = None

    @model_validator(mode="after")
    def check_date_range(self) -> "InvoiceFilter":
        """Reject inverted date ranges."""
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    organization_id: UUID
    customer_id: UUID
    created_by: UUID
    invoice_number: str
    invoice_date: date
    due_date: date | None
    currency: str
    status: InvoiceStatus
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    payment_status: PaymentStatus
    paid_amount: Decimal
    payment_date: date | None
    government_id: str | None
    government_status: GovernmentStatus | None
    submitted_at: datetime | None
    validated_at: datetime | None
    cancelled_at: datetime | None
    document: str | None
    notes: str | None
    created_at: datetime
    updated_at: datetime
    line_items: list[LineItem] = Field(default_factory=list)

    model_config = {"from_attributes": True}

    @property
    def balance_due(self) -> Decimal:
        """Remaining amount to be paid."""
        return self.total_amount - self.paid_amount

    @property
    def is_draft(self) -> bool:
        """Whether line items and totals may still change."""
        return self.status == InvoiceStatus.DRAFT

    @property
    def has_government_outcome(self) -> bool:
        """Whether the authority has already been contacted for this invoice."""
        return self.government_id is not None or self.government_status is not None

    def is_overdue(self, today: date) -> bool:
        """Display-only overdue state: unpaid balance past the due date."""
        return (
            self.due_date is not None
            and self.due_date < today
            and self.payment_status != PaymentStatus.PAID
            and self.status != InvoiceStatus.CANCELLED
        )


class InvoicePage(BaseModel):
    """One page of an invoice listing."""

    invoices: list[Invoice]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        """Number of pages at the current limit."""
        return -(-self.total // self.limit) if self.limit else 0


class InvoiceStats(BaseModel):
    """Per-organization invoice counts by lifecycle status."""

    total: int
    draft: int
    submitted: int
    validated: int
    rejected: int
    total_amount: Decimal


class SubmissionOutcome(BaseModel):
    """Invoice as persisted after a government submission, plus the raw response."""

    invoice: Invoice
    submission: SubmissionResponse


class SubmissionHistory(BaseModel):
    """All authority submissions recorded for one invoice, newest first."""

    invoice: Invoice
    submissions: list[SubmissionRecord]
