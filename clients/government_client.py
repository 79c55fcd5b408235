"""
Government e-invoice authority client.

One capability (authenticate, submit, check_status, validate) with a
subclass per authority; clients.government_providers holds the real
authorities and the factory that picks one from configuration.

Failure semantics differ per operation:
- submit never raises. Transport and authority failures come back as
  success=False with status REJECTED, because a refused document is a
  business outcome recorded on the invoice.
- check_status raises GovernmentAPIError; there is nothing to record.
- validate never raises. Failure yields is_valid=False with a 'general' error.

Bearer tokens are cached until they expire. Any 401 drops the cached token so
the next call authenticates again.
"""

import logging
import random
import threading
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any

import requests

from core.config import GovernmentAPIConfig, GovernmentProvider
from core.models import (
    GovernmentStatus,
    StatusResponse,
    SubmissionResponse,
    ValidationIssue,
    ValidationResult,
)
from utils.timezone import now_utc, parse_iso

logger = logging.getLogger(__name__)

# UN/CEFACT 1001 document type code for a commercial invoice
COMMERCIAL_INVOICE_TYPE = "380"

DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


class GovernmentAPIError(Exception):
    """Raised when an authority call fails at the transport or HTTP level."""

    def __init__(self, message: str, status_code: int | None = None, errors: list[str] | None = None):
        self.message = message
        self.status_code = status_code
        self.errors = errors or []
        super().__init__(message)


def _error_messages(errors: Any) -> list[str]:
    """Flatten an authority error list (strings or objects) into messages."""
    if not errors:
        return []
    if not isinstance(errors, list):
        errors = [errors]
    messages = []
    for error in errors:
        if isinstance(error, dict):
            messages.append(str(error.get("message") or error.get("error") or error))
        else:
            messages.append(str(error))
    return messages


def _validation_issues(errors: Any) -> list[ValidationIssue]:
    if not errors:
        return []
    if not isinstance(errors, list):
        errors = [errors]
    issues = []
    for error in errors:
        if isinstance(error, dict):
            issues.append(ValidationIssue(
                field=error.get("field") or "general",
                message=str(error.get("message") or error),
                code=error.get("code"),
            ))
        else:
            issues.append(ValidationIssue(message=str(error)))
    return issues


def _authority_timestamp(value: str | None) -> datetime | None:
    """Parse an authority ISO 8601 timestamp; it must carry an offset."""
    if not value:
        return None
    try:
        return parse_iso(value)
    except ValueError as e:
        raise GovernmentAPIError(f"Unreadable timestamp from authority: {value}") from e


class GovernmentClient:
    """
    Base client speaking the generic authority dialect over HTTP.

    Subclasses set the endpoint paths and STATUS_MAP, and override the
    _parse_* hooks where their payloads differ.
    """

    provider = GovernmentProvider.MOCK
    display_name = "Mock API (Testing)"

    TOKEN_PATH = "/auth/token"
    SUBMIT_PATH = "/invoices/submit"
    STATUS_PATH = "/invoices/status"
    VALIDATE_PATH = "/invoices/validate"

    # Native status (lower-cased) -> normalized status
    STATUS_MAP: dict[str, GovernmentStatus] = {}

    def __init__(self, config: GovernmentAPIConfig, session: requests.Session | None = None):
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        self._access_token: str | None = None
        self._token_expires_at = None
        self._token_lock = threading.Lock()

    def _url(self, path: str) -> str:
        return self.config.base_url.rstrip("/") + path

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    def authenticate(self) -> str:
        """
        Return a bearer token, fetching a new one only when needed.

        Raises:
            GovernmentAPIError: Token endpoint unreachable or refused credentials
        """
        with self._token_lock:
            if self._access_token and self._token_expires_at and now_utc() < self._token_expires_at:
                return self._access_token

            logger.info(f"Authenticating with {self.display_name}")
            token, expires_in = self._fetch_token()
            self._access_token = token
            self._token_expires_at = now_utc() + timedelta(seconds=expires_in)
            logger.info(f"{self.display_name} authentication successful")
            return token

    def _fetch_token(self) -> tuple[str, int]:
        try:
            response = self.session.post(
                self._url(self.TOKEN_PATH),
                data={
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "grant_type": "client_credentials",
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.config.timeout_seconds,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"{self.display_name} authentication failed: {e}")
            raise GovernmentAPIError(f"Failed to authenticate with government API: {e}") from e

        if not response.ok:
            logger.error(f"{self.display_name} authentication rejected: HTTP {response.status_code}")
            raise GovernmentAPIError(
                "Failed to authenticate with government API",
                status_code=response.status_code,
            )

        try:
            data = response.json()
            return data["access_token"], int(data.get("expires_in", DEFAULT_TOKEN_LIFETIME_SECONDS))
        except (ValueError, KeyError) as e:
            raise GovernmentAPIError(f"Malformed token response: {e}") from e

    def invalidate_token(self) -> None:
        """Forget the cached token; the next call re-authenticates."""
        with self._token_lock:
            self._access_token = None
            self._token_expires_at = None

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        """
        Authenticated JSON request.

        Raises:
            GovernmentAPIError: Transport failure, timeout, or non-2xx status
        """
        token = self.authenticate()
        try:
            response = self.session.request(
                method,
                self._url(path),
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.config.timeout_seconds,
                **kwargs,
            )
        except requests.exceptions.RequestException as e:
            raise GovernmentAPIError(f"{self.display_name} request failed: {e}") from e

        if response.status_code == 401:
            logger.warning(f"{self.display_name} rejected bearer token, dropping it")
            self.invalidate_token()

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {}

        if not response.ok:
            message = data.get("message") if isinstance(data, dict) else None
            raise GovernmentAPIError(
                message or f"HTTP {response.status_code}",
                status_code=response.status_code,
                errors=_error_messages(data.get("errors") if isinstance(data, dict) else None),
            )

        return data if isinstance(data, dict) else {"data": data}

    # -------------------------------------------------------------------------
    # Status mapping
    # -------------------------------------------------------------------------

    def map_status(self, native: str | None, default: GovernmentStatus = GovernmentStatus.PENDING) -> GovernmentStatus:
        """Normalize a native authority status. Unknown values map to PENDING."""
        if native is None or native == "":
            return default

        key = str(native).strip().lower()
        if key in self.STATUS_MAP:
            return self.STATUS_MAP[key]

        try:
            return GovernmentStatus(key.upper())
        except ValueError:
            logger.warning(f"Unknown {self.display_name} status '{native}', treating as PENDING")
            return GovernmentStatus.PENDING

    # -------------------------------------------------------------------------
    # Payload hooks
    # -------------------------------------------------------------------------

    def _build_submission(
        self,
        invoice_number: str,
        document: str,
        issue_date: date,
        total_amount: Decimal,
        currency: str,
    ) -> dict[str, Any]:
        return {
            "invoiceNumber": invoice_number,
            "invoiceData": document,
            "documentType": COMMERCIAL_INVOICE_TYPE,
            "issueDate": issue_date.isoformat(),
            "totalAmount": str(total_amount),
            "currency": currency,
        }

    def _parse_submission(self, data: dict[str, Any]) -> dict[str, Any]:
        """Pick submission fields out of a provider response."""
        return {
            "submission_id": data.get("submissionId") or data.get("uuid"),
            "government_id": data.get("governmentId") or data.get("invoiceHash"),
            "status": data.get("status"),
            "message": data.get("message"),
            "errors": data.get("errors"),
        }

    def _parse_status(self, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "status": data.get("status"),
            "validated_at": data.get("validatedAt"),
            "rejection_reason": data.get("rejectionReason"),
            "errors": data.get("errors"),
        }

    def _parse_validation(self, data: dict[str, Any]) -> ValidationResult:
        return ValidationResult(
            is_valid=data.get("isValid") is not False,
            errors=_validation_issues(data.get("errors")),
            warnings=_validation_issues(data.get("warnings")),
        )

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def submit(
        self,
        invoice_number: str,
        document: str,
        issue_date: date,
        total_amount: Decimal,
        currency: str,
    ) -> SubmissionResponse:
        """Submit a formatted invoice document. Never raises."""
        payload = self._build_submission(invoice_number, document, issue_date, total_amount, currency)

        try:
            data = self._request("POST", self.SUBMIT_PATH, json=payload)
        except GovernmentAPIError as e:
            logger.error(f"Government submission of {invoice_number} failed: {e.message}")
            return self._failed_submission(e.message, e.errors or [e.message])

        try:
            fields = self._parse_submission(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Unreadable {self.display_name} response for {invoice_number}: {e}")
            message = f"Malformed response from authority: {e}"
            return self._failed_submission(message, [message])

        status = self.map_status(fields["status"], default=GovernmentStatus.SUBMITTED)
        if status == GovernmentStatus.PENDING:
            status = GovernmentStatus.SUBMITTED
        elif status == GovernmentStatus.CANCELLED:
            status = GovernmentStatus.REJECTED

        logger.info(f"Invoice {invoice_number} submitted to {self.display_name}: {status.value}")

        return SubmissionResponse(
            success=status != GovernmentStatus.REJECTED,
            submission_id=fields["submission_id"] or f"{self.provider.value}-{int(now_utc().timestamp() * 1000)}",
            government_id=fields["government_id"],
            status=status,
            message=fields["message"],
            validation_errors=_error_messages(fields["errors"]),
            submitted_at=now_utc(),
        )

    def _failed_submission(self, message: str, errors: list[str]) -> SubmissionResponse:
        submitted_at = now_utc()
        return SubmissionResponse(
            success=False,
            submission_id=f"failed-{int(submitted_at.timestamp() * 1000)}",
            government_id=None,
            status=GovernmentStatus.REJECTED,
            message=message or "Submission failed",
            validation_errors=errors,
            submitted_at=submitted_at,
        )

    def check_status(self, government_id: str) -> StatusResponse:
        """
        Poll the authority for a submitted document's status.

        Raises:
            GovernmentAPIError: Authority unreachable or refused the request
        """
        try:
            data = self._request("GET", f"{self.STATUS_PATH}/{government_id}")
        except GovernmentAPIError as e:
            logger.error(f"Government status check for {government_id} failed: {e.message}")
            raise

        fields = self._parse_status(data)
        return StatusResponse(
            government_id=government_id,
            status=self.map_status(fields["status"]),
            validated_at=_authority_timestamp(fields["validated_at"]),
            rejection_reason=fields["rejection_reason"],
            validation_errors=_error_messages(fields["errors"]),
        )

    def validate(self, document: str) -> ValidationResult:
        """Pre-submission validation of a formatted document. Never raises."""
        try:
            data = self._request("POST", self.VALIDATE_PATH, json={"documentData": document})
        except GovernmentAPIError as e:
            logger.error(f"Government validation failed: {e.message}")
            return ValidationResult(
                is_valid=False,
                errors=[ValidationIssue(field="general", message=e.message or "Validation failed")],
            )

        try:
            return self._parse_validation(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Unreadable {self.display_name} validation response: {e}")
            return ValidationResult(
                is_valid=False,
                errors=[ValidationIssue(field="general", message=f"Malformed response from authority: {e}")],
            )


class MockGovernmentClient(GovernmentClient):
    """
    Enabled mock authority. Never touches the network.

    Accepts submissions with probability config.mock_accept_rate; pass
    config.mock_seed for reproducible outcomes.
    """

    def __init__(self, config: GovernmentAPIConfig, session: requests.Session | None = None):
        super().__init__(config, session)
        self._random = random.Random(config.mock_seed)
        self._random_lock = threading.Lock()

    def _fetch_token(self) -> tuple[str, int]:
        return f"mock-access-token-{int(now_utc().timestamp() * 1000)}", DEFAULT_TOKEN_LIFETIME_SECONDS

    def submit(self, invoice_number, document, issue_date, total_amount, currency) -> SubmissionResponse:
        self.authenticate()
        with self._random_lock:
            accepted = self._random.random() < self.config.mock_accept_rate

        submitted_at = now_utc()
        if accepted:
            return SubmissionResponse(
                success=True,
                submission_id=f"MOCK-{int(submitted_at.timestamp() * 1000)}",
                government_id=f"GOV-{invoice_number}",
                status=GovernmentStatus.VALIDATED,
                message="Invoice validated successfully (MOCK)",
                submitted_at=submitted_at,
            )

        return SubmissionResponse(
            success=False,
            submission_id=f"MOCK-{int(submitted_at.timestamp() * 1000)}",
            status=GovernmentStatus.REJECTED,
            message="Invoice rejected for testing purposes (MOCK)",
            validation_errors=["Mock validation error for testing"],
            submitted_at=submitted_at,
        )

    def check_status(self, government_id: str) -> StatusResponse:
        self.authenticate()
        return StatusResponse(
            government_id=government_id,
            status=GovernmentStatus.VALIDATED,
            validated_at=now_utc(),
        )

    def validate(self, document: str) -> ValidationResult:
        self.authenticate()
        return ValidationResult(is_valid=True)


class DisabledGovernmentClient(GovernmentClient):
    """
    Used when the authority integration is switched off.

    Every operation succeeds deterministically and nothing is contacted,
    not even a mock token endpoint.
    """

    provider = GovernmentProvider.NONE
    display_name = "Government API (disabled)"

    def authenticate(self) -> str:
        return "disabled"

    def submit(self, invoice_number, document, issue_date, total_amount, currency) -> SubmissionResponse:
        logger.info(f"Government API disabled, auto-validating {invoice_number}")
        return SubmissionResponse(
            success=True,
            submission_id=f"MOCK-{invoice_number}",
            government_id=f"GOV-{invoice_number}",
            status=GovernmentStatus.VALIDATED,
            message="Invoice validated successfully (MOCK)",
            submitted_at=now_utc(),
        )

    def check_status(self, government_id: str) -> StatusResponse:
        return StatusResponse(
            government_id=government_id,
            status=GovernmentStatus.VALIDATED,
            validated_at=now_utc(),
        )

    def validate(self, document: str) -> ValidationResult:
        return ValidationResult(is_valid=True)
