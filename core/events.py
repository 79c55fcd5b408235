"""
Domain events for invoicing.

Immutable event objects that represent state changes in the invoicing domain.
A service publishes what happened after its transaction commits, and handlers
react without the publisher knowing who's listening.

Event Categories:
- InvoiceEvent: Invoice lifecycle (create, submit, cancel)
- ComplianceEvent: Government authority outcomes (submission, status change)
- PaymentEvent: Payment ledger (payment recorded, invoice paid)

Events carry the full domain object so handlers don't need to re-fetch state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class InvoicingEvent:
    """Base class for all invoicing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(InvoicingEvent):
    """Events related to invoice lifecycle."""
    pass


@dataclass(frozen=True)
class InvoiceCreated(InvoiceEvent):
    """A new invoice was created in DRAFT status."""
    invoice: Any = None  # Invoice

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceCreated":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceSubmitted(InvoiceEvent):
    """Invoice moved to SUBMITTED through the internal submit action."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceSubmitted":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceCancelled(InvoiceEvent):
    """Invoice was cancelled."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceCancelled":
        return cls(invoice=invoice)


# =============================================================================
# COMPLIANCE EVENTS
# =============================================================================


@dataclass(frozen=True)
class ComplianceEvent(InvoicingEvent):
    """Events related to government authority outcomes."""
    pass


@dataclass(frozen=True)
class GovernmentSubmissionCompleted(ComplianceEvent):
    """The authority answered a submission, accepted or not."""
    invoice: Any = None
    submission: Any = None  # SubmissionResponse

    @classmethod
    def create(cls, invoice: Any, submission: Any) -> "GovernmentSubmissionCompleted":
        return cls(invoice=invoice, submission=submission)


@dataclass(frozen=True)
class GovernmentStatusChanged(ComplianceEvent):
    """A status poll found a different authority status than recorded."""
    invoice: Any = None
    previous_status: Any = None  # GovernmentStatus | None

    @classmethod
    def create(cls, invoice: Any, previous_status: Any) -> "GovernmentStatusChanged":
        return cls(invoice=invoice, previous_status=previous_status)


# =============================================================================
# PAYMENT EVENTS
# =============================================================================


@dataclass(frozen=True)
class PaymentEvent(InvoicingEvent):
    """Events related to the payment ledger."""
    pass


@dataclass(frozen=True)
class PaymentRecorded(PaymentEvent):
    """A payment was recorded against an invoice."""
    invoice: Any = None
    payment: Any = None

    @classmethod
    def create(cls, invoice: Any, payment: Any) -> "PaymentRecorded":
        return cls(invoice=invoice, payment=payment)


@dataclass(frozen=True)
class InvoicePaid(PaymentEvent):
    """Invoice became fully paid."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoicePaid":
        return cls(invoice=invoice)
