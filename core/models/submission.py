"""Government submission domain models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class GovernmentStatus(str, Enum):
    """
    Authority-side status, normalized across providers.

    Each provider maps its native vocabulary onto these values; see
    clients.government_providers for the per-provider tables.
    """

    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    VALIDATED = "VALIDATED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class ValidationIssue(BaseModel):
    """A single error or warning reported by an authority validator."""

    field: str = "general"
    message: str
    code: str | None = None


class ValidationResult(BaseModel):
    """Outcome of a pre-submission validation call."""

    is_valid: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)


class SubmissionResponse(BaseModel):
    """Outcome of a document submission. success=False is a business outcome."""

    success: bool
    submission_id: str
    government_id: str | None = None
    status: GovernmentStatus
    message: str | None = None
    validation_errors: list[str] = Field(default_factory=list)
    submitted_at: datetime


class StatusResponse(BaseModel):
    """Authority status for a previously submitted document."""

    government_id: str
    status: GovernmentStatus
    validated_at: datetime | None = None
    rejection_reason: str | None = None
    validation_errors: list[str] = Field(default_factory=list)


class SubmissionRecord(BaseModel):
    """Submission history entry as stored."""

    id: UUID
    invoice_id: UUID
    organization_id: UUID
    submission_id: str
    government_id: str | None
    status: GovernmentStatus
    request: dict[str, Any]
    response: dict[str, Any]
    errors: list[str] | None
    submitted_at: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class ComplianceStats(BaseModel):
    """Per-organization submission counts."""

    submitted: int
    validated: int
    rejected: int
    pending: int
    compliance_rate: Decimal  # percent, 0 when nothing was submitted
