"""Payment domain models."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class PaymentMethod(str, Enum):
    """How a payment was made."""

    BANK_TRANSFER = "BANK_TRANSFER"
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    CASH = "CASH"
    CHECK = "CHECK"
    PAYPAL = "PAYPAL"
    STRIPE = "STRIPE"
    OTHER = "OTHER"


class PaymentCreate(BaseModel):
    """Data required to record a payment."""

    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    payment_date: date
    payment_method: PaymentMethod
    reference: str | None = Field(None, max_length=255)
    notes: str | None = Field(None, max_length=2000)


class Payment(BaseModel):
    """Full payment entity as stored."""

    id: UUID
    invoice_id: UUID
    organization_id: UUID
    amount: Decimal
    payment_date: date
    payment_method: PaymentMethod
    reference: str | None
    notes: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentStats(BaseModel):
    """Revenue figures over government-validated invoices."""

    total_invoices: int
    paid_invoices: int
    partially_paid: int
    unpaid_invoices: int
    overdue_invoices: int
    total_revenue: Decimal
    outstanding_amount: Decimal
