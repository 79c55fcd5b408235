"""Invoicing and government API configuration."""

import os
from enum import Enum

from pydantic import BaseModel, Field


class GovernmentProvider(str, Enum):
    """Supported national e-invoice authorities."""

    MYINVOIS = "myinvois"  # Malaysia, IRBM
    ZATCA = "zatca"  # Saudi Arabia
    KSEF = "ksef"  # Poland
    EFACTURA = "efactura"  # Romania, ANAF
    MOCK = "mock"
    NONE = "none"


class GovernmentAPIConfig(BaseModel):
    """
    Government e-invoice API configuration.

    When enabled is False every client operation returns deterministic mock
    results and no authority is contacted, whatever the provider.
    """

    provider: GovernmentProvider = Field(
        default=GovernmentProvider.MOCK,
        description="Which authority to talk to",
    )
    base_url: str = Field(
        default="http://localhost:9000/mock-gov-api",
        description="Authority API base URL",
    )
    client_id: str = Field(default="", description="OAuth client id")
    client_secret: str = Field(default="", description="OAuth client secret")
    enabled: bool = Field(
        default=False,
        description="Whether to contact the authority at all",
    )
    timeout_seconds: float = Field(
        default=30,
        description="Per-request timeout; a timeout counts as a transport failure",
        gt=0,
        le=120,
    )
    mock_accept_rate: float = Field(
        default=0.9,
        description="Acceptance probability for the enabled mock provider",
        ge=0,
        le=1,
    )
    mock_seed: int | None = Field(
        default=None,
        description="Seed for the mock provider's random outcomes",
    )


class InvoicingConfig(BaseModel):
    """Invoice lifecycle settings."""

    business_timezone: str = Field(
        default="UTC",
        description="IANA zone whose calendar day bounds invoice numbering and date checks",
    )
    default_currency: str = Field(default="USD", pattern="^[A-Z]{3}$")
    max_line_items: int = Field(default=100, ge=1, le=100)
    number_allocation_attempts: int = Field(
        default=3,
        description="Create attempts when an allocated invoice number collides",
        ge=1,
        le=10,
    )


def load_government_config() -> GovernmentAPIConfig:
    """
    Build GovernmentAPIConfig from the environment and Vault.

    Provider selection and the enabled flag come from GOV_API_* environment
    variables. Credentials are only fetched from Vault when the authority will
    actually be contacted.
    """
    provider = GovernmentProvider(os.getenv("GOV_API_PROVIDER", "mock"))
    enabled = os.getenv("GOV_API_ENABLED", "false").lower() == "true"

    values = {
        "provider": provider,
        "enabled": enabled,
        "timeout_seconds": float(os.getenv("GOV_API_TIMEOUT_SECONDS", "30")),
    }
    if enabled and provider not in (GovernmentProvider.MOCK, GovernmentProvider.NONE):
        from clients.vault_client import get_government_credentials

        credentials = get_government_credentials(provider.value)
        values.update(credentials)

    # An explicit base URL overrides the one stored with the credentials
    if os.getenv("GOV_API_BASE_URL"):
        values["base_url"] = os.environ["GOV_API_BASE_URL"]

    return GovernmentAPIConfig(**values)
