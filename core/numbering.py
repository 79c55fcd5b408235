"""
Invoice number allocation.

Numbers look like INV-YYYYMMDD-NNNN: the business day the invoice was created
on, then a per-organization counter for that day. The counter lives in
invoice_sequences and is bumped with a single atomic upsert, so two
concurrent creates can never read the same value. Numbers of deleted drafts
are not reused.
"""

import logging
from datetime import date
from uuid import UUID

from core.config import InvoicingConfig

logger = logging.getLogger(__name__)

INVOICE_NUMBER_PREFIX = "INV"


def day_prefix(business_day: date) -> str:
    """Common prefix of every invoice number issued on a business day."""
    return f"{INVOICE_NUMBER_PREFIX}-{business_day:%Y%m%d}-"


def format_invoice_number(sequence: int, business_day: date) -> str:
    """
    Render an invoice number.

    Sequences above 9999 widen the last group rather than wrapping.
    """
    if sequence < 1:
        raise ValueError(f"Invoice sequence must be positive, got {sequence}")
    return f"{day_prefix(business_day)}{sequence:04d}"


def parse_sequence(invoice_number: str) -> int:
    """Sequence part of an invoice number."""
    try:
        return int(invoice_number.rsplit("-", 1)[1])
    except (IndexError, ValueError):
        raise ValueError(f"Not an invoice number: {invoice_number!r}")


class SequenceAllocator:
    """
    Hands out per-organization, per-day invoice sequence values.

    Must be called inside the transaction that inserts the invoice; a rolled
    back create also rolls back its allocation.
    """

    def __init__(self, config: InvoicingConfig):
        self.config = config

    def next_sequence(self, tx, organization_id: UUID, business_day: date, at_least: int = 1) -> int:
        """Allocate the next sequence value for an organization's business day."""
        sequence = tx.allocate_sequence(
            organization_id,
            business_day,
            self.config.business_timezone,
            day_prefix(business_day),
            at_least=at_least,
        )
        logger.debug(f"Allocated sequence {sequence} for organization {organization_id} on {business_day}")
        return sequence

    def next_invoice_number(self, tx, organization_id: UUID, business_day: date, at_least: int = 1) -> str:
        """Allocate and format the next invoice number."""
        sequence = self.next_sequence(tx, organization_id, business_day, at_least=at_least)
        return format_invoice_number(sequence, business_day)
