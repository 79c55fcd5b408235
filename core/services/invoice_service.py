"""
Invoice service: creation, editing and the internal lifecycle.

Totals are always derived from line items (core.money) and are only mutable
while the invoice is a DRAFT. Invoice numbers come from the per-day sequence
allocator inside the creating transaction.

Government submission lives in SubmissionService and payments in
PaymentService; both load invoices through load_invoice() below.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List
from uuid import UUID, uuid4

from core.audit import AuditLogger, AuditAction, compute_changes
from core.config import InvoicingConfig
from core.event_bus import EventBus
from core.events import InvoiceCreated, InvoiceSubmitted, InvoiceCancelled
from core.exceptions import ConflictError, InvalidInputError, InvalidStateError, NotFoundError
from core.models import (
    CANCELLABLE_STATUSES,
    SUBMITTABLE_STATUSES,
    Invoice,
    InvoiceCreate,
    InvoiceFilter,
    InvoicePage,
    InvoiceStats,
    InvoiceStatus,
    InvoiceUpdate,
    LineItem,
    LineItemInput,
    PaymentStatus,
)
from core.money import invoice_totals, line_total
from core.numbering import SequenceAllocator, parse_sequence
from core.store import DuplicateInvoiceNumberError, InvoiceStore
from utils.timezone import business_today, now_utc

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def load_invoice(tx, invoice_id: UUID, organization_id: UUID, for_update: bool = False) -> Invoice:
    """
    Load an invoice with its line items, scoped to the organization.

    Raises:
        NotFoundError: No such invoice in this organization
    """
    row = tx.get_invoice(invoice_id, organization_id, for_update=for_update)
    if row is None:
        raise NotFoundError(f"Invoice {invoice_id} not found", field="invoice_id")

    invoice = Invoice.model_validate(row)
    invoice.line_items = [LineItem.model_validate(item) for item in tx.get_line_items(invoice_id)]
    return invoice


def payment_status_for(paid_amount: Decimal, total_amount: Decimal) -> PaymentStatus:
    """Derive the stored payment status from paid and total amounts."""
    if paid_amount <= 0:
        return PaymentStatus.UNPAID
    if paid_amount >= total_amount:
        return PaymentStatus.PAID
    return PaymentStatus.PARTIALLY_PAID


def _line_item_rows(invoice_id: UUID, items: list[LineItemInput]) -> list[dict]:
    now = now_utc()
    rows = []
    for position, item in enumerate(items, start=1):
        totals = line_total(item.quantity, item.unit_price, item.tax_rate)
        rows.append({
            "id": uuid4(),
            "invoice_id": invoice_id,
            "position": position,
            "description": item.description,
            "quantity": item.quantity,
            "unit_price": item.unit_price,
            "tax_rate": item.tax_rate,
            "tax_amount": totals.tax_amount,
            "total_amount": totals.total,
            "created_at": now,
        })
    return rows


class InvoiceService:
    """Service for invoice operations."""

    def __init__(
        self,
        store: InvoiceStore,
        audit: AuditLogger,
        event_bus: EventBus,
        config: InvoicingConfig | None = None,
    ):
        self.store = store
        self.audit = audit
        self.event_bus = event_bus
        self.config = config or InvoicingConfig()
        self.allocator = SequenceAllocator(self.config)

    def _today(self) -> date:
        return business_today(self.config.business_timezone)

    def _check_dates(self, invoice_date: date, due_date: date | None, check_invoice_date: bool = True) -> None:
        if check_invoice_date and invoice_date > self._today():
            raise InvalidInputError("Invoice date cannot be in the future", field="invoice_date")
        if due_date is not None and due_date < invoice_date:
            raise InvalidInputError("Due date must be on or after the invoice date", field="due_date")

    def _check_line_items(self, items: list[LineItemInput]) -> None:
        if not items:
            raise InvalidInputError("At least one line item is required", field="line_items")
        if len(items) > self.config.max_line_items:
            raise InvalidInputError(
                f"An invoice can have at most {self.config.max_line_items} line items",
                field="line_items",
            )

    def _require_customer(self, tx, customer_id: UUID, organization_id: UUID) -> None:
        if tx.get_customer(customer_id, organization_id) is None:
            raise NotFoundError(f"Customer {customer_id} not found", field="customer_id")

    def create(self, organization_id: UUID, created_by: UUID, data: InvoiceCreate) -> Invoice:
        """
        Create a DRAFT invoice with its line items.

        Args:
            organization_id: Owning organization
            created_by: User creating the invoice
            data: Invoice fields and 1..max_line_items line items

        Returns:
            Created invoice, line items included

        Raises:
            NotFoundError: Customer not in this organization
            InvalidInputError: Dates or line item count out of bounds
            ConflictError: No unique invoice number after all allocation attempts
        """
        self._check_dates(data.invoice_date, data.due_date)
        self._check_line_items(data.line_items)

        totals = invoice_totals(data.line_items)
        attempts = self.config.number_allocation_attempts
        at_least = 1

        for attempt in range(1, attempts + 1):
            try:
                with self.store.transaction() as tx:
                    self._require_customer(tx, data.customer_id, organization_id)

                    invoice_id = uuid4()
                    invoice_number = self.allocator.next_invoice_number(
                        tx, organization_id, self._today(), at_least=at_least
                    )
                    now = now_utc()

                    row = tx.insert_invoice({
                        "id": invoice_id,
                        "organization_id": organization_id,
                        "customer_id": data.customer_id,
                        "created_by": created_by,
                        "invoice_number": invoice_number,
                        "invoice_date": data.invoice_date,
                        "due_date": data.due_date,
                        "currency": data.currency or self.config.default_currency,
                        "status": InvoiceStatus.DRAFT,
                        "subtotal": totals.subtotal,
                        "tax_amount": totals.tax_amount,
                        "total_amount": totals.total_amount,
                        "payment_status": PaymentStatus.UNPAID,
                        "paid_amount": Decimal("0"),
                        "notes": data.notes,
                        "created_at": now,
                        "updated_at": now,
                    })
                    item_rows = tx.replace_line_items(invoice_id, _line_item_rows(invoice_id, data.line_items))

                    invoice = Invoice.model_validate(row)
                    invoice.line_items = [LineItem.model_validate(item) for item in item_rows]

                    self.audit.log_change(
                        tx,
                        organization_id=organization_id,
                        entity_type="invoice",
                        entity_id=invoice.id,
                        action=AuditAction.CREATE,
                        changes={"created": invoice.model_dump(mode="json", exclude={"line_items"})},
                        user_id=created_by,
                    )
                break
            except DuplicateInvoiceNumberError as e:
                logger.warning(f"Invoice number collision on attempt {attempt}/{attempts}: {e}")
                at_least = parse_sequence(e.invoice_number) + 1
        else:
            raise ConflictError(
                "Could not allocate a unique invoice number, please retry",
                field="invoice_number",
            )

        logger.info(f"Created invoice {invoice.invoice_number} ({invoice.id}) total {invoice.total_amount}")
        self.event_bus.publish(InvoiceCreated.create(invoice=invoice))

        return invoice

    def get(self, invoice_id: UUID, organization_id: UUID) -> Invoice:
        """
        Get an invoice with its line items.

        Raises:
            NotFoundError: No such invoice in this organization
        """
        with self.store.transaction() as tx:
            return load_invoice(tx, invoice_id, organization_id)

    def list(
        self,
        organization_id: UUID,
        filters: InvoiceFilter | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> InvoicePage:
        """
        List invoices, newest first. Line items are not loaded.

        Raises:
            InvalidInputError: page < 1 or limit outside 1..100
        """
        if page < 1:
            raise InvalidInputError("page must be at least 1", field="page")
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise InvalidInputError(f"limit must be between 1 and {MAX_PAGE_SIZE}", field="limit")

        with self.store.transaction() as tx:
            rows = tx.list_invoices(organization_id, filters, limit=limit, offset=(page - 1) * limit)
            total = tx.count_invoices(organization_id, filters)

        return InvoicePage(
            invoices=[Invoice.model_validate(row) for row in rows],
            page=page,
            limit=limit,
            total=total,
        )

    def update(
        self,
        invoice_id: UUID,
        organization_id: UUID,
        data: InvoiceUpdate,
        user_id: UUID | None = None,
    ) -> Invoice:
        """
        Apply a partial update.

        A line_items patch replaces every line item and recomputes totals,
        which is only allowed while the invoice is a DRAFT.

        Raises:
            NotFoundError: Invoice or new customer not in this organization
            ConflictError: line_items patched on a non-DRAFT invoice
            InvalidStateError: New total below the amount already paid
            InvalidInputError: Dates out of bounds
        """
        patch = data.model_dump(exclude_unset=True)

        with self.store.transaction() as tx:
            current = load_invoice(tx, invoice_id, organization_id, for_update=True)

            if "line_items" in patch and not current.is_draft:
                raise ConflictError(
                    f"Line items can only be changed while the invoice is DRAFT (currently {current.status.value})",
                    field="line_items",
                )

            values = {}
            for field in ("customer_id", "invoice_date", "currency"):
                if patch.get(field) is not None:
                    values[field] = patch[field]
            for field in ("due_date", "notes"):
                if field in patch:
                    values[field] = patch[field]

            if "customer_id" in values and values["customer_id"] != current.customer_id:
                self._require_customer(tx, values["customer_id"], organization_id)

            if "invoice_date" in values or "due_date" in values:
                self._check_dates(
                    values.get("invoice_date", current.invoice_date),
                    values.get("due_date", current.due_date),
                    check_invoice_date="invoice_date" in values,
                )

            if data.line_items is not None:
                self._check_line_items(data.line_items)
                totals = invoice_totals(data.line_items)
                if current.paid_amount > totals.total_amount:
                    raise InvalidStateError(
                        f"New total {totals.total_amount} is below the {current.paid_amount} already paid",
                        field="line_items",
                        details={"paid_amount": str(current.paid_amount), "total_amount": str(totals.total_amount)},
                    )
                values.update({
                    "subtotal": totals.subtotal,
                    "tax_amount": totals.tax_amount,
                    "total_amount": totals.total_amount,
                })
                payment_status = payment_status_for(current.paid_amount, totals.total_amount)
                if payment_status != current.payment_status:
                    values["payment_status"] = payment_status
                    values["payment_date"] = (
                        max(row["payment_date"] for row in tx.list_payments(invoice_id))
                        if payment_status == PaymentStatus.PAID else None
                    )

            values["updated_at"] = now_utc()
            row = tx.update_invoice(invoice_id, values)

            updated = Invoice.model_validate(row)
            if data.line_items is not None:
                item_rows = tx.replace_line_items(invoice_id, _line_item_rows(invoice_id, data.line_items))
                updated.line_items = [LineItem.model_validate(item) for item in item_rows]
            else:
                updated.line_items = current.line_items

            changes = compute_changes(
                current.model_dump(mode="json", exclude={"line_items"}),
                updated.model_dump(mode="json", exclude={"line_items"}),
            )
            if data.line_items is not None:
                changes["line_items"] = {
                    "old": len(current.line_items),
                    "new": len(updated.line_items),
                }
            if changes:
                self.audit.log_change(
                    tx,
                    organization_id=organization_id,
                    entity_type="invoice",
                    entity_id=invoice_id,
                    action=AuditAction.UPDATE,
                    changes=changes,
                    user_id=user_id,
                )

        logger.info(f"Updated invoice {updated.invoice_number}: {', '.join(sorted(changes)) or 'no changes'}")
        return updated

    def delete(self, invoice_id: UUID, organization_id: UUID, user_id: UUID | None = None) -> None:
        """
        Delete a DRAFT invoice. Its number is not reused.

        Raises:
            NotFoundError: No such invoice in this organization
            ConflictError: Invoice is not a DRAFT
        """
        with self.store.transaction() as tx:
            current = load_invoice(tx, invoice_id, organization_id, for_update=True)
            if not current.is_draft:
                raise ConflictError(
                    f"Only DRAFT invoices can be deleted (currently {current.status.value})",
                    field="status",
                )

            tx.delete_invoice(invoice_id)
            self.audit.log_change(
                tx,
                organization_id=organization_id,
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.DELETE,
                changes={"deleted": current.model_dump(mode="json")},
                user_id=user_id,
            )

        logger.info(f"Deleted draft invoice {current.invoice_number} ({invoice_id})")

    def submit(self, invoice_id: UUID, organization_id: UUID, user_id: UUID | None = None) -> Invoice:
        """
        Internal submit: DRAFT or PENDING_APPROVAL -> SUBMITTED.

        Raises:
            NotFoundError: No such invoice in this organization
            ConflictError: Invoice not in a submittable status
        """
        with self.store.transaction() as tx:
            current = load_invoice(tx, invoice_id, organization_id, for_update=True)
            if current.status not in SUBMITTABLE_STATUSES:
                raise ConflictError(
                    f"Invoice {current.invoice_number} cannot be submitted from {current.status.value}",
                    field="status",
                )

            now = now_utc()
            row = tx.update_invoice(invoice_id, {
                "status": InvoiceStatus.SUBMITTED,
                "submitted_at": now,
                "updated_at": now,
            })
            updated = Invoice.model_validate(row)
            updated.line_items = current.line_items

            self.audit.log_change(
                tx,
                organization_id=organization_id,
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes={
                    "status": {"old": current.status.value, "new": InvoiceStatus.SUBMITTED.value},
                    "submitted_at": {"old": None, "new": now.isoformat()},
                },
                user_id=user_id,
            )

        logger.info(f"Invoice {updated.invoice_number} submitted")
        self.event_bus.publish(InvoiceSubmitted.create(invoice=updated))

        return updated

    def cancel(self, invoice_id: UUID, organization_id: UUID, user_id: UUID | None = None) -> Invoice:
        """
        Cancel an invoice. CANCELLED is terminal.

        VALIDATED invoices are legally registered with the authority and
        cannot be cancelled here, nor can invoices that received payments.

        Raises:
            NotFoundError: No such invoice in this organization
            ConflictError: Invoice not cancellable
        """
        with self.store.transaction() as tx:
            current = load_invoice(tx, invoice_id, organization_id, for_update=True)
            if current.status not in CANCELLABLE_STATUSES:
                raise ConflictError(
                    f"Invoice {current.invoice_number} cannot be cancelled from {current.status.value}",
                    field="status",
                )
            if current.paid_amount > 0:
                raise ConflictError(
                    f"Invoice {current.invoice_number} has recorded payments and cannot be cancelled",
                    field="paid_amount",
                )

            now = now_utc()
            row = tx.update_invoice(invoice_id, {
                "status": InvoiceStatus.CANCELLED,
                "cancelled_at": now,
                "updated_at": now,
            })
            updated = Invoice.model_validate(row)
            updated.line_items = current.line_items

            self.audit.log_change(
                tx,
                organization_id=organization_id,
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes={
                    "status": {"old": current.status.value, "new": InvoiceStatus.CANCELLED.value},
                    "cancelled_at": {"old": None, "new": now.isoformat()},
                },
                user_id=user_id,
            )

        logger.info(f"Invoice {updated.invoice_number} cancelled")
        self.event_bus.publish(InvoiceCancelled.create(invoice=updated))

        return updated

    def stats(self, organization_id: UUID) -> InvoiceStats:
        """Counts by status, and the summed total of SUBMITTED + VALIDATED invoices."""
        with self.store.transaction() as tx:
            def count(status: InvoiceStatus | None) -> int:
                filters = InvoiceFilter(status=status) if status else None
                return tx.count_invoices(organization_id, filters)

            amounts = tx.sum_invoice_amounts(
                organization_id,
                InvoiceFilter(statuses=[InvoiceStatus.SUBMITTED, InvoiceStatus.VALIDATED]),
            )

            return InvoiceStats(
                total=count(None),
                draft=count(InvoiceStatus.DRAFT),
                submitted=count(InvoiceStatus.SUBMITTED),
                validated=count(InvoiceStatus.VALIDATED),
                rejected=count(InvoiceStatus.REJECTED),
                total_amount=amounts["total_amount"],
            )

    def history(self, invoice_id: UUID, organization_id: UUID) -> List[Dict[str, Any]]:
        """
        Audit trail of an invoice, newest first.

        Raises:
            NotFoundError: No such invoice in this organization
        """
        with self.store.transaction() as tx:
            load_invoice(tx, invoice_id, organization_id)
            return self.audit.get_entity_history(tx, "invoice", invoice_id)
