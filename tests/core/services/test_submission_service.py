"""Tests for SubmissionService."""

import threading

import pytest

from clients.government_client import GovernmentAPIError
from core.config import GovernmentProvider
from core.exceptions import ConflictError, ExternalFailureError, NotFoundError
from core.models import (
    GovernmentStatus,
    InvoiceStatus,
    StatusResponse,
    SubmissionResponse,
    ValidationIssue,
    ValidationResult,
)
from core.services.submission_service import SubmissionService
from utils.timezone import now_utc


class ScriptedGovernmentClient:
    """Authority stand-in whose answers are set by the test."""

    provider = GovernmentProvider.MOCK

    def __init__(self):
        self.submit_status = GovernmentStatus.VALIDATED
        self.is_valid = True
        self.poll_status = GovernmentStatus.VALIDATED
        self.poll_error = None
        self.submitted = []

    def validate(self, document):
        if self.is_valid:
            return ValidationResult(is_valid=True, warnings=[ValidationIssue(field="notes", message="too long")])
        return ValidationResult(
            is_valid=False,
            errors=[ValidationIssue(field="buyer.tin", message="Buyer TIN missing")],
        )

    def submit(self, invoice_number, document, issue_date, total_amount, currency):
        self.submitted.append(invoice_number)
        accepted = self.submit_status != GovernmentStatus.REJECTED
        return SubmissionResponse(
            success=accepted,
            submission_id=f"SUB-{len(self.submitted)}",
            government_id=f"GID-{invoice_number}-{len(self.submitted)}" if accepted else None,
            status=self.submit_status,
            message=None if accepted else "Document rejected",
            validation_errors=[] if accepted else ["Buyer TIN invalid"],
            submitted_at=now_utc(),
        )

    def check_status(self, government_id):
        if self.poll_error is not None:
            raise self.poll_error
        return StatusResponse(government_id=government_id, status=self.poll_status, validated_at=now_utc())


@pytest.fixture
def scripted_client():
    return ScriptedGovernmentClient()


@pytest.fixture
def scripted_service(store, scripted_client, formatter, audit, event_bus):
    return SubmissionService(store, scripted_client, formatter, audit, event_bus)


# =============================================================================
# SUBMIT (authority integration disabled)
# =============================================================================


class TestSubmitWithDisabledAuthority:

    def test_validates_deterministically(self, submission_service, draft_invoice, org_id, user_id):
        outcome = submission_service.submit_to_government(draft_invoice.id, org_id, user_id=user_id)

        assert outcome.submission.success is True
        assert outcome.submission.status == GovernmentStatus.VALIDATED
        assert outcome.submission.submission_id == f"MOCK-{draft_invoice.invoice_number}"
        assert outcome.invoice.status == InvoiceStatus.VALIDATED
        assert outcome.invoice.government_status == GovernmentStatus.VALIDATED
        assert outcome.invoice.government_id == f"GOV-{draft_invoice.invoice_number}"
        assert outcome.invoice.submitted_at is not None
        assert outcome.invoice.validated_at is not None

    def test_stores_formatted_document(self, submission_service, formatter, draft_invoice, org_id):
        outcome = submission_service.submit_to_government(draft_invoice.id, org_id)

        assert len(formatter.calls) == 1
        invoice, customer = formatter.calls[0]
        assert invoice.id == draft_invoice.id
        assert customer.name == "Acme Trading"
        assert draft_invoice.invoice_number in outcome.invoice.document

    def test_records_history_and_audit(self, store, submission_service, draft_invoice, org_id, user_id):
        submission_service.submit_to_government(draft_invoice.id, org_id, user_id=user_id)

        history = submission_service.get_submission_history(draft_invoice.id, org_id)
        assert len(history.submissions) == 1
        record = history.submissions[0]
        assert record.status == GovernmentStatus.VALIDATED
        assert record.request["invoice_number"] == draft_invoice.invoice_number
        assert record.request["provider"] == "none"
        assert record.response["government_id"] == f"GOV-{draft_invoice.invoice_number}"

        entry = store.audit_for(draft_invoice.id)[-1]
        assert entry["changes"]["status"] == {"old": "DRAFT", "new": "VALIDATED"}
        assert entry["user_id"] == user_id

    def test_publishes_completion(self, submission_service, draft_invoice, org_id, published):
        submission_service.submit_to_government(draft_invoice.id, org_id)

        assert type(published[-1]).__name__ == "GovernmentSubmissionCompleted"
        assert published[-1].submission.status == GovernmentStatus.VALIDATED

    def test_submitting_twice_is_a_conflict(self, submission_service, validated_invoice, org_id):
        with pytest.raises(ConflictError) as exc_info:
            submission_service.submit_to_government(validated_invoice.id, org_id)

        assert exc_info.value.field == "government_id"

    def test_cancelled_cannot_be_submitted(self, submission_service, invoice_service, draft_invoice, org_id):
        invoice_service.cancel(draft_invoice.id, org_id)

        with pytest.raises(ConflictError):
            submission_service.submit_to_government(draft_invoice.id, org_id)

    def test_internally_submitted_invoice_can_go_to_authority(
        self, submission_service, invoice_service, draft_invoice, org_id
    ):
        invoice_service.submit(draft_invoice.id, org_id)

        outcome = submission_service.submit_to_government(draft_invoice.id, org_id)

        assert outcome.invoice.status == InvoiceStatus.VALIDATED

    def test_other_organization_not_found(self, submission_service, draft_invoice, org_b_id):
        with pytest.raises(NotFoundError):
            submission_service.submit_to_government(draft_invoice.id, org_b_id)


# =============================================================================
# SUBMIT (scripted authority)
# =============================================================================


class TestSubmitOutcomes:

    def test_rejection_is_recorded_not_raised(self, scripted_service, scripted_client, draft_invoice, org_id):
        scripted_client.submit_status = GovernmentStatus.REJECTED

        outcome = scripted_service.submit_to_government(draft_invoice.id, org_id)

        assert outcome.submission.success is False
        assert outcome.submission.validation_errors == ["Buyer TIN invalid"]
        assert outcome.invoice.status == InvoiceStatus.REJECTED
        assert outcome.invoice.government_status == GovernmentStatus.REJECTED
        assert outcome.invoice.validated_at is None

    def test_rejected_invoice_needs_retry(self, scripted_service, scripted_client, draft_invoice, org_id):
        scripted_client.submit_status = GovernmentStatus.REJECTED
        scripted_service.submit_to_government(draft_invoice.id, org_id)

        with pytest.raises(ConflictError):
            scripted_service.submit_to_government(draft_invoice.id, org_id)

    def test_submitted_awaits_outcome(self, scripted_service, scripted_client, draft_invoice, org_id):
        scripted_client.submit_status = GovernmentStatus.SUBMITTED

        outcome = scripted_service.submit_to_government(draft_invoice.id, org_id)

        assert outcome.invoice.status == InvoiceStatus.SUBMITTED
        assert outcome.invoice.government_status == GovernmentStatus.SUBMITTED
        assert outcome.invoice.validated_at is None

    def test_failed_validation_raises_after_recording_history(
        self, scripted_service, scripted_client, draft_invoice, org_id
    ):
        scripted_client.is_valid = False

        with pytest.raises(ExternalFailureError) as exc_info:
            scripted_service.submit_to_government(draft_invoice.id, org_id)

        assert exc_info.value.details["validation_errors"] == ["buyer.tin: Buyer TIN missing"]
        assert scripted_client.submitted == []

        history = scripted_service.get_submission_history(draft_invoice.id, org_id)
        assert history.invoice.status == InvoiceStatus.DRAFT
        assert history.invoice.government_id is None
        assert len(history.submissions) == 1
        assert history.submissions[0].status == GovernmentStatus.REJECTED
        assert history.submissions[0].submission_id.startswith("validation-")
        assert history.submissions[0].errors == ["buyer.tin: Buyer TIN missing"]

    def test_concurrent_submissions_reach_authority_once(
        self, scripted_service, scripted_client, draft_invoice, org_id
    ):
        outcomes = []
        conflicts = []
        lock = threading.Lock()

        def submit():
            try:
                outcome = scripted_service.submit_to_government(draft_invoice.id, org_id)
                with lock:
                    outcomes.append(outcome)
            except ConflictError as e:
                with lock:
                    conflicts.append(e)

        threads = [threading.Thread(target=submit) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(outcomes) == 1
        assert len(conflicts) == 4
        assert scripted_client.submitted == [draft_invoice.invoice_number]


# =============================================================================
# RETRY
# =============================================================================


class TestRetry:

    def test_retry_after_rejection(self, scripted_service, scripted_client, draft_invoice, org_id):
        scripted_client.submit_status = GovernmentStatus.REJECTED
        scripted_service.submit_to_government(draft_invoice.id, org_id)

        scripted_client.submit_status = GovernmentStatus.VALIDATED
        outcome = scripted_service.retry_submission(draft_invoice.id, org_id)

        assert outcome.invoice.status == InvoiceStatus.VALIDATED
        assert outcome.invoice.government_id == f"GID-{draft_invoice.invoice_number}-2"

        history = scripted_service.get_submission_history(draft_invoice.id, org_id)
        assert [s.status for s in history.submissions] == [GovernmentStatus.VALIDATED, GovernmentStatus.REJECTED]

    def test_retry_replaces_recorded_outcome(self, scripted_service, scripted_client, draft_invoice, org_id):
        scripted_client.submit_status = GovernmentStatus.SUBMITTED
        first = scripted_service.submit_to_government(draft_invoice.id, org_id)

        second = scripted_service.retry_submission(draft_invoice.id, org_id)

        assert second.invoice.government_id != first.invoice.government_id
        assert len(scripted_client.submitted) == 2

    def test_retry_with_failed_validation_leaves_draft(
        self, scripted_service, scripted_client, draft_invoice, org_id
    ):
        scripted_client.submit_status = GovernmentStatus.REJECTED
        scripted_service.submit_to_government(draft_invoice.id, org_id)
        scripted_client.is_valid = False

        with pytest.raises(ExternalFailureError):
            scripted_service.retry_submission(draft_invoice.id, org_id)

        invoice = scripted_service.get_submission_history(draft_invoice.id, org_id).invoice
        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.government_id is None
        assert invoice.government_status is None
        assert invoice.document is None

    def test_cancelled_cannot_be_retried(self, scripted_service, invoice_service, draft_invoice, org_id):
        invoice_service.cancel(draft_invoice.id, org_id)

        with pytest.raises(ConflictError):
            scripted_service.retry_submission(draft_invoice.id, org_id)


# =============================================================================
# STATUS POLLING
# =============================================================================


class TestCheckStatus:

    @pytest.fixture
    def awaiting_invoice(self, scripted_service, scripted_client, draft_invoice, org_id):
        scripted_client.submit_status = GovernmentStatus.SUBMITTED
        return scripted_service.submit_to_government(draft_invoice.id, org_id).invoice

    def test_never_submitted_is_a_conflict(self, scripted_service, draft_invoice, org_id):
        with pytest.raises(ConflictError):
            scripted_service.check_government_status(draft_invoice.id, org_id)

    def test_records_new_status(self, store, scripted_service, awaiting_invoice, org_id, published):
        updated = scripted_service.check_government_status(awaiting_invoice.id, org_id)

        assert updated.government_status == GovernmentStatus.VALIDATED
        assert updated.status == InvoiceStatus.VALIDATED
        assert updated.validated_at is not None
        assert store.audit_for(awaiting_invoice.id)[-1]["changes"]["government_status"] == {
            "old": "SUBMITTED", "new": "VALIDATED",
        }
        assert type(published[-1]).__name__ == "GovernmentStatusChanged"
        assert published[-1].previous_status == GovernmentStatus.SUBMITTED

    def test_rejection_on_poll(self, scripted_service, scripted_client, awaiting_invoice, org_id):
        scripted_client.poll_status = GovernmentStatus.REJECTED

        updated = scripted_service.check_government_status(awaiting_invoice.id, org_id)

        assert updated.status == InvoiceStatus.REJECTED
        assert updated.validated_at is None

    def test_unchanged_status_writes_nothing(self, store, scripted_service, scripted_client, awaiting_invoice, org_id):
        scripted_client.poll_status = GovernmentStatus.SUBMITTED
        entries_before = len(store.audit_entries)

        invoice = scripted_service.check_government_status(awaiting_invoice.id, org_id)

        assert invoice.status == InvoiceStatus.SUBMITTED
        assert len(store.audit_entries) == entries_before

    def test_authority_failure_is_external(self, scripted_service, scripted_client, awaiting_invoice, org_id):
        scripted_client.poll_error = GovernmentAPIError("Service unavailable", status_code=503)

        with pytest.raises(ExternalFailureError) as exc_info:
            scripted_service.check_government_status(awaiting_invoice.id, org_id)

        assert "Service unavailable" in exc_info.value.message
        assert exc_info.value.details["status_code"] == 503


# =============================================================================
# STATS
# =============================================================================


class TestComplianceStats:

    def test_counts_and_rate(self, store, scripted_service, scripted_client, invoice_service,
                             org_id, user_id, make_invoice_data):
        validated = invoice_service.create(org_id, user_id, make_invoice_data())
        rejected = invoice_service.create(org_id, user_id, make_invoice_data())
        awaiting = invoice_service.create(org_id, user_id, make_invoice_data())
        invoice_service.create(org_id, user_id, make_invoice_data())

        scripted_service.submit_to_government(validated.id, org_id)
        scripted_client.submit_status = GovernmentStatus.REJECTED
        scripted_service.submit_to_government(rejected.id, org_id)
        invoice_service.submit(awaiting.id, org_id)

        stats = scripted_service.compliance_stats(org_id)

        assert stats.submitted == 2
        assert stats.validated == 1
        assert stats.rejected == 1
        assert stats.pending == 1
        assert str(stats.compliance_rate) == "50.00"

    def test_zero_rate_when_nothing_submitted(self, submission_service, draft_invoice, org_id):
        stats = submission_service.compliance_stats(org_id)

        assert stats.submitted == 0
        assert str(stats.compliance_rate) == "0.00"

    def test_scoped_to_organization(self, submission_service, validated_invoice, org_b_id):
        assert submission_service.compliance_stats(org_b_id).submitted == 0
