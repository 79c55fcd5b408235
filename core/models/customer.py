"""Customer domain models.

Customers are managed elsewhere; the invoicing core only reads them to check
tenant ownership and to hand party details to the document formatter.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr


class Customer(BaseModel):
    """Customer entity as stored."""

    id: UUID
    organization_id: UUID
    name: str
    email: EmailStr | None = None
    tax_id: str | None = None
    country: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
