"""
Compliance submission orchestrator.

Drives an invoice through the government authority: format the document,
validate it, submit it, and record the outcome on the invoice together with a
submission history entry. An invoice is submitted to the authority exactly
once; retry_submission is the only path that clears a recorded outcome and
submits again.

The invoice row stays locked (SELECT ... FOR UPDATE) from the guard check
until the outcome is committed, so two concurrent submits of the same invoice
cannot both reach the authority.
"""

import logging
from decimal import Decimal
from uuid import UUID, uuid4

from clients.government_client import GovernmentAPIError, GovernmentClient
from core.audit import AuditLogger, AuditAction, compute_changes
from core.event_bus import EventBus
from core.events import GovernmentStatusChanged, GovernmentSubmissionCompleted
from core.exceptions import ConflictError, ExternalFailureError, NotFoundError
from core.formatting import DocumentFormatter
from core.models import (
    ComplianceStats,
    Customer,
    GovernmentStatus,
    Invoice,
    InvoiceFilter,
    InvoiceStatus,
    SubmissionHistory,
    SubmissionOutcome,
    SubmissionRecord,
    SubmissionResponse,
)
from core.money import round_money
from core.services.invoice_service import load_invoice
from core.store import InvoiceStore
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

# Authority statuses that leave a SUBMITTED invoice awaiting an outcome
_AWAITING_STATUSES = [None, GovernmentStatus.PENDING, GovernmentStatus.SUBMITTED]

# Invoice status recorded for each authority status
_INVOICE_STATUS_FOR = {
    GovernmentStatus.PENDING: InvoiceStatus.SUBMITTED,
    GovernmentStatus.SUBMITTED: InvoiceStatus.SUBMITTED,
    GovernmentStatus.VALIDATED: InvoiceStatus.VALIDATED,
    GovernmentStatus.REJECTED: InvoiceStatus.REJECTED,
    GovernmentStatus.CANCELLED: InvoiceStatus.CANCELLED,
}

_GOVERNMENT_FIELDS_CLEARED = {
    "government_id": None,
    "government_status": None,
    "submitted_at": None,
    "validated_at": None,
    "document": None,
}


class SubmissionService:
    """Service for government e-invoice submission."""

    def __init__(
        self,
        store: InvoiceStore,
        client: GovernmentClient,
        formatter: DocumentFormatter,
        audit: AuditLogger,
        event_bus: EventBus,
    ):
        self.store = store
        self.client = client
        self.formatter = formatter
        self.audit = audit
        self.event_bus = event_bus

    def _load_customer(self, tx, invoice: Invoice) -> Customer:
        row = tx.get_customer(invoice.customer_id, invoice.organization_id)
        if row is None:
            raise NotFoundError(f"Customer {invoice.customer_id} not found", field="customer_id")
        return Customer.model_validate(row)

    def _record_history(
        self,
        tx,
        invoice: Invoice,
        request: dict,
        response: SubmissionResponse,
    ) -> SubmissionRecord:
        row = tx.insert_submission({
            "id": uuid4(),
            "invoice_id": invoice.id,
            "organization_id": invoice.organization_id,
            "submission_id": response.submission_id,
            "government_id": response.government_id,
            "status": response.status,
            "request": request,
            "response": response.model_dump(mode="json"),
            "errors": response.validation_errors or None,
            "submitted_at": response.submitted_at,
            "created_at": now_utc(),
        })
        return SubmissionRecord.model_validate(row)

    def _submit_locked(
        self,
        tx,
        invoice: Invoice,
        user_id: UUID | None,
    ) -> tuple[Invoice, SubmissionResponse, bool]:
        """
        Format, validate, submit and persist, inside the caller's transaction.

        Returns (invoice, response, submitted). submitted is False when the
        document failed validation; only the history entry was written then,
        and the caller raises once the transaction has committed.
        """
        customer = self._load_customer(tx, invoice)
        document = self.formatter.format(invoice, customer)
        request = {
            "invoice_number": invoice.invoice_number,
            "issue_date": invoice.invoice_date.isoformat(),
            "total_amount": str(invoice.total_amount),
            "currency": invoice.currency,
            "provider": self.client.provider.value,
        }

        validation = self.client.validate(document)
        if not validation.is_valid:
            messages = [f"{issue.field}: {issue.message}" for issue in validation.errors] or ["Validation failed"]
            response = SubmissionResponse(
                success=False,
                submission_id=f"validation-{uuid4()}",
                status=GovernmentStatus.REJECTED,
                message="Document failed authority validation",
                validation_errors=messages,
                submitted_at=now_utc(),
            )
            self._record_history(tx, invoice, request, response)
            logger.warning(f"Invoice {invoice.invoice_number} failed authority validation: {'; '.join(messages)}")
            return invoice, response, False

        for warning in validation.warnings:
            logger.warning(f"Invoice {invoice.invoice_number} validation warning: {warning.field}: {warning.message}")

        response = self.client.submit(
            invoice.invoice_number,
            document,
            invoice.invoice_date,
            invoice.total_amount,
            invoice.currency,
        )

        values = {
            "status": _INVOICE_STATUS_FOR[response.status],
            "government_id": response.government_id,
            "government_status": response.status,
            "submitted_at": response.submitted_at,
            "validated_at": response.submitted_at if response.status == GovernmentStatus.VALIDATED else None,
            "document": document,
            "updated_at": now_utc(),
        }
        row = tx.update_invoice(invoice.id, values)
        updated = Invoice.model_validate(row)
        updated.line_items = invoice.line_items

        self._record_history(tx, updated, request, response)
        self.audit.log_change(
            tx,
            organization_id=invoice.organization_id,
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.UPDATE,
            changes=compute_changes(
                invoice.model_dump(mode="json", exclude={"line_items", "document"}),
                updated.model_dump(mode="json", exclude={"line_items", "document"}),
            ),
            user_id=user_id,
        )

        logger.info(
            f"Invoice {invoice.invoice_number} submitted to government: "
            f"{response.status.value} (submission {response.submission_id})"
        )
        return updated, response, True

    def _finish(self, updated: Invoice, response: SubmissionResponse, submitted: bool) -> SubmissionOutcome:
        if not submitted:
            raise ExternalFailureError(
                response.message or "Document failed authority validation",
                details={"validation_errors": response.validation_errors},
            )

        self.event_bus.publish(GovernmentSubmissionCompleted.create(invoice=updated, submission=response))
        return SubmissionOutcome(invoice=updated, submission=response)

    def submit_to_government(
        self,
        invoice_id: UUID,
        organization_id: UUID,
        user_id: UUID | None = None,
    ) -> SubmissionOutcome:
        """
        Submit an invoice to the government authority.

        A refusal by the authority is not an error: the invoice comes back
        REJECTED and the response carries the reasons.

        Raises:
            NotFoundError: No such invoice in this organization
            ConflictError: Already submitted, or invoice cancelled
            ExternalFailureError: Document failed pre-submission validation
        """
        with self.store.transaction() as tx:
            invoice = load_invoice(tx, invoice_id, organization_id, for_update=True)

            if invoice.has_government_outcome:
                raise ConflictError(
                    f"Invoice {invoice.invoice_number} has already been submitted to the government "
                    f"(status {invoice.government_status.value if invoice.government_status else 'unknown'}); "
                    f"use retry to resubmit",
                    field="government_id",
                )
            if invoice.status == InvoiceStatus.CANCELLED:
                raise ConflictError(
                    f"Invoice {invoice.invoice_number} is cancelled and cannot be submitted",
                    field="status",
                )

            updated, response, submitted = self._submit_locked(tx, invoice, user_id)

        return self._finish(updated, response, submitted)

    def retry_submission(
        self,
        invoice_id: UUID,
        organization_id: UUID,
        user_id: UUID | None = None,
    ) -> SubmissionOutcome:
        """
        Clear the recorded authority outcome and submit again, atomically.

        Raises:
            NotFoundError: No such invoice in this organization
            ConflictError: Invoice cancelled
            ExternalFailureError: Document failed pre-submission validation
        """
        with self.store.transaction() as tx:
            invoice = load_invoice(tx, invoice_id, organization_id, for_update=True)

            if invoice.status == InvoiceStatus.CANCELLED:
                raise ConflictError(
                    f"Invoice {invoice.invoice_number} is cancelled and cannot be resubmitted",
                    field="status",
                )

            logger.info(
                f"Retrying government submission of {invoice.invoice_number} "
                f"(was {invoice.status.value}/{invoice.government_status.value if invoice.government_status else '-'})"
            )

            row = tx.update_invoice(invoice_id, {
                **_GOVERNMENT_FIELDS_CLEARED,
                "status": InvoiceStatus.DRAFT,
                "updated_at": now_utc(),
            })
            reset = Invoice.model_validate(row)
            reset.line_items = invoice.line_items

            updated, response, submitted = self._submit_locked(tx, reset, user_id)

        return self._finish(updated, response, submitted)

    def check_government_status(
        self,
        invoice_id: UUID,
        organization_id: UUID,
        user_id: UUID | None = None,
    ) -> Invoice:
        """
        Poll the authority and record a changed status.

        The poll itself runs outside any transaction; the update re-reads the
        invoice under lock and is skipped if it was resubmitted meanwhile.

        Raises:
            NotFoundError: No such invoice in this organization
            ConflictError: Invoice was never submitted to the authority
            ExternalFailureError: Authority unreachable
        """
        invoice = self._get(invoice_id, organization_id)
        if invoice.government_id is None:
            raise ConflictError(
                f"Invoice {invoice.invoice_number} has not yet been submitted to the government",
                field="government_id",
            )

        try:
            status = self.client.check_status(invoice.government_id)
        except GovernmentAPIError as e:
            raise ExternalFailureError(
                f"Failed to check invoice status: {e.message}",
                details={"status_code": e.status_code, "errors": e.errors},
            ) from e

        if status.status == invoice.government_status:
            return invoice

        with self.store.transaction() as tx:
            current = load_invoice(tx, invoice_id, organization_id, for_update=True)
            if current.government_id != invoice.government_id:
                logger.info(f"Invoice {current.invoice_number} was resubmitted during status check, skipping")
                return current

            values = {
                "government_status": status.status,
                "status": _INVOICE_STATUS_FOR[status.status],
                "updated_at": now_utc(),
            }
            if status.status == GovernmentStatus.VALIDATED:
                values["validated_at"] = status.validated_at or now_utc()

            row = tx.update_invoice(invoice_id, values)
            updated = Invoice.model_validate(row)
            updated.line_items = current.line_items

            self.audit.log_change(
                tx,
                organization_id=organization_id,
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes=compute_changes(
                    current.model_dump(mode="json", exclude={"line_items", "document"}),
                    updated.model_dump(mode="json", exclude={"line_items", "document"}),
                ),
                user_id=user_id,
            )

        logger.info(
            f"Invoice {updated.invoice_number} government status "
            f"{current.government_status.value if current.government_status else '-'} -> {status.status.value}"
        )
        self.event_bus.publish(GovernmentStatusChanged.create(invoice=updated, previous_status=current.government_status))

        return updated

    def _get(self, invoice_id: UUID, organization_id: UUID) -> Invoice:
        with self.store.transaction() as tx:
            return load_invoice(tx, invoice_id, organization_id)

    def get_submission_history(self, invoice_id: UUID, organization_id: UUID) -> SubmissionHistory:
        """
        All authority submissions of an invoice, newest first.

        Raises:
            NotFoundError: No such invoice in this organization
        """
        with self.store.transaction() as tx:
            invoice = load_invoice(tx, invoice_id, organization_id)
            rows = tx.list_submissions(invoice_id)

        return SubmissionHistory(
            invoice=invoice,
            submissions=[SubmissionRecord.model_validate(row) for row in rows],
        )

    def compliance_stats(self, organization_id: UUID) -> ComplianceStats:
        """Submission counts and the validated share of submitted invoices."""
        with self.store.transaction() as tx:
            submitted = tx.count_invoices(
                organization_id,
                InvoiceFilter(government_statuses=[s for s in GovernmentStatus]),
            )
            validated = tx.count_invoices(
                organization_id,
                InvoiceFilter(government_statuses=[GovernmentStatus.VALIDATED]),
            )
            rejected = tx.count_invoices(
                organization_id,
                InvoiceFilter(government_statuses=[GovernmentStatus.REJECTED]),
            )
            pending = tx.count_invoices(
                organization_id,
                InvoiceFilter(status=InvoiceStatus.SUBMITTED, government_statuses=_AWAITING_STATUSES),
            )

        rate = round_money(Decimal(validated) * 100 / Decimal(submitted)) if submitted else Decimal("0.00")
        return ComplianceStats(
            submitted=submitted,
            validated=validated,
            rejected=rejected,
            pending=pending,
            compliance_rate=rate,
        )
