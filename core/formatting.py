"""Document formatter seam.

Rendering the legal e-invoice document (UBL XML, JSON, PDF...) belongs to an
external formatter. The submission orchestrator only needs the formatted
payload as a string to validate, submit and keep on the invoice.
"""

from typing import Protocol

from core.models import Customer, Invoice


class DocumentFormatter(Protocol):
    """Anything that can turn an invoice and its customer into a document."""

    def format(self, invoice: Invoice, customer: Customer) -> str:
        ...
