"""
Payment reconciliation ledger.

Payments are append-only except for explicit deletion. The invoice's
paid_amount, payment_status and payment_date are always recomputed from the
remaining payments under the invoice row lock, and payments may never add up
to more than the invoice total.

Revenue reporting (overdue invoices, payment stats) only counts invoices the
government authority has VALIDATED.
"""

import logging
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from core.audit import AuditLogger, AuditAction
from core.config import InvoicingConfig
from core.event_bus import EventBus
from core.events import InvoicePaid, PaymentRecorded
from core.exceptions import ConflictError, InvalidStateError, NotFoundError
from core.models import (
    GovernmentStatus,
    Invoice,
    InvoiceFilter,
    InvoiceStatus,
    Payment,
    PaymentCreate,
    PaymentStats,
    PaymentStatus,
)
from core.services.invoice_service import load_invoice, payment_status_for
from core.store import InvoiceStore
from utils.timezone import business_today, now_utc

logger = logging.getLogger(__name__)

_VALIDATED_ONLY = [GovernmentStatus.VALIDATED]
_NOT_FULLY_PAID = [PaymentStatus.UNPAID, PaymentStatus.PARTIALLY_PAID]


class PaymentService:
    """Service for payment operations."""

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

    def _reconcile(self, tx, invoice: Invoice, payments: list[Payment]) -> Invoice:
        """Recompute and persist the invoice's payment fields from its payments."""
        paid_amount = sum((p.amount for p in payments), Decimal("0"))
        status = payment_status_for(paid_amount, invoice.total_amount)
        payment_date = max(p.payment_date for p in payments) if status == PaymentStatus.PAID else None

        row = tx.update_invoice(invoice.id, {
            "paid_amount": paid_amount,
            "payment_status": status,
            "payment_date": payment_date,
            "updated_at": now_utc(),
        })
        updated = Invoice.model_validate(row)
        updated.line_items = invoice.line_items
        return updated

    def record_payment(
        self,
        invoice_id: UUID,
        organization_id: UUID,
        data: PaymentCreate,
        user_id: UUID | None = None,
    ) -> tuple[Payment, Invoice]:
        """
        Record a payment against an invoice.

        Returns:
            (payment, invoice with recomputed payment fields)

        Raises:
            NotFoundError: No such invoice in this organization
            ConflictError: Invoice is cancelled
            InvalidStateError: Payments would exceed the invoice total
        """
        with self.store.transaction() as tx:
            invoice = load_invoice(tx, invoice_id, organization_id, for_update=True)

            if invoice.status == InvoiceStatus.CANCELLED:
                raise ConflictError(
                    f"Invoice {invoice.invoice_number} is cancelled and cannot receive payments",
                    field="status",
                )

            existing = [Payment.model_validate(row) for row in tx.list_payments(invoice_id)]
            previously_paid = sum((p.amount for p in existing), Decimal("0"))
            remaining = invoice.total_amount - previously_paid

            if data.amount > remaining:
                raise InvalidStateError(
                    f"Payment amount exceeds invoice total. Remaining: {remaining}",
                    field="amount",
                    details={"remaining": str(remaining), "total_amount": str(invoice.total_amount)},
                )

            row = tx.insert_payment({
                "id": uuid4(),
                "invoice_id": invoice_id,
                "organization_id": organization_id,
                "amount": data.amount,
                "payment_date": data.payment_date,
                "payment_method": data.payment_method,
                "reference": data.reference,
                "notes": data.notes,
                "created_at": now_utc(),
            })
            payment = Payment.model_validate(row)
            updated = self._reconcile(tx, invoice, existing + [payment])

            self.audit.log_change(
                tx,
                organization_id=organization_id,
                entity_type="payment",
                entity_id=payment.id,
                action=AuditAction.CREATE,
                changes={"created": payment.model_dump(mode="json")},
                user_id=user_id,
            )
            self.audit.log_change(
                tx,
                organization_id=organization_id,
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes={
                    "paid_amount": {"old": str(invoice.paid_amount), "new": str(updated.paid_amount)},
                    "payment_status": {"old": invoice.payment_status.value, "new": updated.payment_status.value},
                    "payment_recorded": str(payment.amount),
                },
                user_id=user_id,
            )

        logger.info(
            f"Recorded {payment.amount} {invoice.currency} on {invoice.invoice_number}: "
            f"{updated.payment_status.value}, {updated.balance_due} outstanding"
        )

        self.event_bus.publish(PaymentRecorded.create(invoice=updated, payment=payment))
        if updated.payment_status == PaymentStatus.PAID:
            self.event_bus.publish(InvoicePaid.create(invoice=updated))

        return payment, updated

    def list_payments(self, invoice_id: UUID, organization_id: UUID) -> list[Payment]:
        """
        Payments of an invoice, oldest first.

        Raises:
            NotFoundError: No such invoice in this organization
        """
        with self.store.transaction() as tx:
            load_invoice(tx, invoice_id, organization_id)
            return [Payment.model_validate(row) for row in tx.list_payments(invoice_id)]

    def delete_payment(self, payment_id: UUID, organization_id: UUID, user_id: UUID | None = None) -> Invoice:
        """
        Delete a payment and recompute its invoice's payment fields.

        Returns:
            The invoice after reconciliation

        Raises:
            NotFoundError: Payment absent, or its invoice belongs to another organization
        """
        with self.store.transaction() as tx:
            row = tx.get_payment(payment_id, organization_id)
            if row is None:
                raise NotFoundError(f"Payment {payment_id} not found", field="payment_id")
            payment = Payment.model_validate(row)

            invoice = load_invoice(tx, payment.invoice_id, organization_id, for_update=True)
            tx.delete_payment(payment_id)

            remaining = [Payment.model_validate(r) for r in tx.list_payments(invoice.id)]
            updated = self._reconcile(tx, invoice, remaining)

            self.audit.log_change(
                tx,
                organization_id=organization_id,
                entity_type="payment",
                entity_id=payment_id,
                action=AuditAction.DELETE,
                changes={"deleted": payment.model_dump(mode="json")},
                user_id=user_id,
            )

        logger.info(
            f"Deleted payment {payment_id} from {invoice.invoice_number}: {updated.payment_status.value}"
        )
        return updated

    def overdue_invoices(self, organization_id: UUID, today: date | None = None) -> list[Invoice]:
        """Validated invoices past their due date and not fully paid, oldest due first."""
        today = today or business_today(self.config.business_timezone)
        filters = InvoiceFilter(
            government_statuses=_VALIDATED_ONLY,
            payment_statuses=_NOT_FULLY_PAID,
            due_before=today,
        )

        with self.store.transaction() as tx:
            rows = tx.list_invoices(organization_id, filters)

        invoices = [Invoice.model_validate(row) for row in rows]
        return sorted(
            (invoice for invoice in invoices if invoice.is_overdue(today)),
            key=lambda invoice: invoice.due_date,
        )

    def payment_stats(self, organization_id: UUID, today: date | None = None) -> PaymentStats:
        """Revenue figures over government-validated invoices."""
        today = today or business_today(self.config.business_timezone)
        validated = InvoiceFilter(government_statuses=_VALIDATED_ONLY)

        def by_status(status: PaymentStatus) -> InvoiceFilter:
            return InvoiceFilter(government_statuses=_VALIDATED_ONLY, payment_statuses=[status])

        with self.store.transaction() as tx:
            total_invoices = tx.count_invoices(organization_id, validated)
            paid = tx.count_invoices(organization_id, by_status(PaymentStatus.PAID))
            partially_paid = tx.count_invoices(organization_id, by_status(PaymentStatus.PARTIALLY_PAID))
            unpaid = tx.count_invoices(organization_id, by_status(PaymentStatus.UNPAID))
            overdue = tx.count_invoices(
                organization_id,
                InvoiceFilter(
                    government_statuses=_VALIDATED_ONLY,
                    payment_statuses=_NOT_FULLY_PAID,
                    due_before=today,
                ),
            )
            revenue = tx.sum_invoice_amounts(organization_id, by_status(PaymentStatus.PAID))
            open_amounts = tx.sum_invoice_amounts(
                organization_id,
                InvoiceFilter(government_statuses=_VALIDATED_ONLY, payment_statuses=_NOT_FULLY_PAID),
            )

        outstanding = Decimal(open_amounts["total_amount"]) - Decimal(open_amounts["paid_amount"])

        return PaymentStats(
            total_invoices=total_invoices,
            paid_invoices=paid,
            partially_paid=partially_paid,
            unpaid_invoices=unpaid,
            overdue_invoices=overdue,
            total_revenue=Decimal(revenue["total_amount"]),
            outstanding_amount=outstanding,
        )
