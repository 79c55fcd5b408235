"""
National e-invoice authorities and the client factory.

Each provider supplies its endpoint paths and a mapping from its native
status vocabulary onto GovernmentStatus. Statuses missing from a mapping
fall back to the normalized names, then to PENDING with a warning.
"""

import logging
from typing import Any

import requests

from clients.government_client import (
    DisabledGovernmentClient,
    GovernmentClient,
    MockGovernmentClient,
)
from core.config import GovernmentAPIConfig, GovernmentProvider
from core.models import GovernmentStatus

logger = logging.getLogger(__name__)


class MyInvoisClient(GovernmentClient):
    """MyInvois (Malaysia), operated by IRBM. JSON documents, OAuth 2.0."""

    provider = GovernmentProvider.MYINVOIS
    display_name = "MyInvois (Malaysia)"

    TOKEN_PATH = "/connect/token"
    SUBMIT_PATH = "/api/v1.0/documentsubmissions"
    STATUS_PATH = "/api/v1.0/documents"
    VALIDATE_PATH = "/api/v1.0/documents/validate"

    STATUS_MAP = {
        "submitted": GovernmentStatus.SUBMITTED,
        "inprogress": GovernmentStatus.PENDING,
        "valid": GovernmentStatus.VALIDATED,
        "invalid": GovernmentStatus.REJECTED,
        "cancelled": GovernmentStatus.CANCELLED,
    }

    def _parse_submission(self, data: dict[str, Any]) -> dict[str, Any]:
        fields = super()._parse_submission(data)
        accepted = data.get("acceptedDocuments") or []
        rejected = data.get("rejectedDocuments") or []

        fields["submission_id"] = data.get("submissionUid") or fields["submission_id"]
        if accepted:
            fields["government_id"] = accepted[0].get("uuid") or fields["government_id"]
            fields["status"] = fields["status"] or "Submitted"
        elif rejected:
            fields["status"] = "Invalid"
            error = rejected[0].get("error") or {}
            fields["errors"] = error.get("details") or [error.get("message") or "Document rejected"]
        return fields

    def _parse_status(self, data: dict[str, Any]) -> dict[str, Any]:
        fields = super()._parse_status(data)
        fields["validated_at"] = data.get("dateTimeValidated") or fields["validated_at"]
        fields["rejection_reason"] = data.get("documentStatusReason") or fields["rejection_reason"]
        return fields


class ZatcaClient(GovernmentClient):
    """ZATCA Fatoora (Saudi Arabia). UBL 2.1 XML with cryptographic stamps."""

    provider = GovernmentProvider.ZATCA
    display_name = "ZATCA (Saudi Arabia)"

    TOKEN_PATH = "/compliance/invoices"
    SUBMIT_PATH = "/invoices/reporting/single"
    STATUS_PATH = "/invoices/clearance/single"
    VALIDATE_PATH = "/compliance/invoices"

    STATUS_MAP = {
        "reported": GovernmentStatus.VALIDATED,
        "cleared": GovernmentStatus.VALIDATED,
        "pass": GovernmentStatus.VALIDATED,
        "warning": GovernmentStatus.VALIDATED,
        "not_reported": GovernmentStatus.REJECTED,
        "not_cleared": GovernmentStatus.REJECTED,
        "error": GovernmentStatus.REJECTED,
    }

    def _parse_submission(self, data: dict[str, Any]) -> dict[str, Any]:
        fields = super()._parse_submission(data)
        results = data.get("validationResults") or {}
        fields["status"] = data.get("reportingStatus") or data.get("clearanceStatus") or fields["status"]
        if results.get("errorMessages"):
            fields["errors"] = results["errorMessages"]
        return fields


class KsefClient(GovernmentClient):
    """KSeF (Poland), Ministry of Finance. FA_VAT XML schema."""

    provider = GovernmentProvider.KSEF
    display_name = "KSeF (Poland)"

    TOKEN_PATH = "/api/online/Session/InitToken"
    SUBMIT_PATH = "/api/online/Invoice/Send"
    STATUS_PATH = "/api/online/Invoice/Status"
    VALIDATE_PATH = "/api/online/Invoice/Validate"

    STATUS_MAP = {
        "100": GovernmentStatus.PENDING,
        "200": GovernmentStatus.VALIDATED,
        "accepted": GovernmentStatus.VALIDATED,
        "processing": GovernmentStatus.SUBMITTED,
        "rejected": GovernmentStatus.REJECTED,
    }

    def _parse_submission(self, data: dict[str, Any]) -> dict[str, Any]:
        fields = super()._parse_submission(data)
        fields["submission_id"] = data.get("elementReferenceNumber") or fields["submission_id"]
        if fields["status"] is None and data.get("processingCode") is not None:
            fields["status"] = str(data["processingCode"])
        return fields

    def _parse_status(self, data: dict[str, Any]) -> dict[str, Any]:
        fields = super()._parse_status(data)
        if fields["status"] is None and data.get("processingCode") is not None:
            fields["status"] = str(data["processingCode"])
        fields["rejection_reason"] = fields["rejection_reason"] or data.get("processingDescription")
        return fields


class EFacturaClient(GovernmentClient):
    """e-Factura (Romania), operated by ANAF. UBL-RO XML, OAuth 2.0."""

    provider = GovernmentProvider.EFACTURA
    display_name = "e-Factura (Romania)"

    TOKEN_PATH = "/api/v1/oauth/token"
    SUBMIT_PATH = "/api/v1/upload"
    STATUS_PATH = "/api/v1/messages"
    VALIDATE_PATH = "/api/v1/validate"

    STATUS_MAP = {
        "ok": GovernmentStatus.VALIDATED,
        "nok": GovernmentStatus.REJECTED,
        "in prelucrare": GovernmentStatus.SUBMITTED,
        "xml cu erori nepreluat de sistem": GovernmentStatus.REJECTED,
    }

    def _parse_submission(self, data: dict[str, Any]) -> dict[str, Any]:
        fields = super()._parse_submission(data)
        fields["submission_id"] = data.get("index_incarcare") or fields["submission_id"]
        fields["government_id"] = fields["government_id"] or data.get("index_incarcare")
        return fields

    def _parse_status(self, data: dict[str, Any]) -> dict[str, Any]:
        fields = super()._parse_status(data)
        fields["status"] = data.get("stare") or fields["status"]
        return fields


_PROVIDER_CLIENTS: dict[GovernmentProvider, type[GovernmentClient]] = {
    GovernmentProvider.MYINVOIS: MyInvoisClient,
    GovernmentProvider.ZATCA: ZatcaClient,
    GovernmentProvider.KSEF: KsefClient,
    GovernmentProvider.EFACTURA: EFacturaClient,
    GovernmentProvider.MOCK: MockGovernmentClient,
}


def create_government_client(
    config: GovernmentAPIConfig,
    session: requests.Session | None = None,
) -> GovernmentClient:
    """
    Build the client for the configured authority.

    Called once at startup. A disabled integration, or provider 'none',
    always yields the deterministic DisabledGovernmentClient.
    """
    if not config.enabled or config.provider == GovernmentProvider.NONE:
        logger.info("Government API disabled, using deterministic mock results")
        return DisabledGovernmentClient(config, session)

    client_class = _PROVIDER_CLIENTS[config.provider]
    logger.info(f"Government API provider: {client_class.display_name}")
    return client_class(config, session)
