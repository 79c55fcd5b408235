"""Invoice line item domain models.

Line items belong to exactly one invoice and are replaced wholesale on edit.
tax_amount and total_amount are derived by core.money.line_total.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


class LineItemInput(BaseModel):
    """A billable entry as supplied by the caller."""

    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(..., gt=0, max_digits=12, decimal_places=4)
    unit_price: Decimal = Field(..., ge=0, max_digits=15, decimal_places=4)
    tax_rate: Decimal = Field(Decimal("0"), ge=0, le=100, max_digits=5, decimal_places=2)


class LineItem(BaseModel):
    """Full line item entity as stored."""

    id: UUID
    invoice_id: UUID
    position: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    created_at: datetime

    model_config = {"from_attributes": True}
