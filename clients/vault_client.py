"""
HashiCorp Vault client for invoicing secret management.

Uses AppRole authentication. Fails fast on missing configuration.
All paths are scoped to the 'invoicing/' prefix of the KV v2 mount
(VAULT_KV_MOUNT, default 'secret'); callers cannot reach other secrets.

Secrets the invoicing core reads:
    invoicing/database              url
    invoicing/government/<provider> base_url, client_id, client_secret
"""

import os
import logging
from typing import Dict, List

import hvac
from hvac.exceptions import InvalidPath, Unauthorized, Forbidden

logger = logging.getLogger(__name__)

# Project scope - all secrets under this path
_SECRET_PREFIX = "invoicing"

GOVERNMENT_CREDENTIAL_FIELDS = ["base_url", "client_id", "client_secret"]

# Singleton instance and cache
_vault_client_instance: "VaultClient | None" = None
_secret_cache: Dict[str, str] = {}


def _ensure_vault_client() -> "VaultClient":
    global _vault_client_instance
    if _vault_client_instance is None:
        _vault_client_instance = VaultClient()
    return _vault_client_instance


class VaultClient:
    """Vault client with AppRole auth, env-based config, and fail-fast behavior."""

    def __init__(
        self,
        vault_addr: str | None = None,
        vault_namespace: str | None = None,
        mount_point: str | None = None,
    ):
        """Initialize with environment variables. Fails fast on missing config."""
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        self.vault_namespace = vault_namespace or os.getenv("VAULT_NAMESPACE")
        self.mount_point = mount_point or os.getenv("VAULT_KV_MOUNT", "secret")
        self.vault_role_id = os.getenv("VAULT_ROLE_ID")
        self.vault_secret_id = os.getenv("VAULT_SECRET_ID")

        if not self.vault_addr:
            raise ValueError("VAULT_ADDR environment variable is required")

        if not self.vault_role_id or not self.vault_secret_id:
            raise ValueError(
                "VAULT_ROLE_ID and VAULT_SECRET_ID environment variables are required"
            )

        client_kwargs = {"url": self.vault_addr}
        if self.vault_namespace:
            client_kwargs["namespace"] = self.vault_namespace

        self.client = hvac.Client(**client_kwargs)
        self._authenticate_approle()

        logger.info(f"Vault client initialized: {self.vault_addr} (mount {self.mount_point})")

    def _authenticate_approle(self) -> None:
        try:
            auth_response = self.client.auth.approle.login(
                role_id=self.vault_role_id,
                secret_id=self.vault_secret_id,
            )
        except Exception as e:
            logger.error(f"AppRole authentication failed: {e}")
            raise PermissionError(f"AppRole authentication failed: {e}")

        self.client.token = auth_response["auth"]["client_token"]
        logger.info("AppRole authentication successful")

    def read_secret(self, path: str) -> Dict[str, str]:
        """
        Read every field of a KV v2 secret under invoicing/.

        Raises:
            PermissionError: Path not accessible or doesn't exist.
        """
        full_path = f"{_SECRET_PREFIX}/{path}"

        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=full_path,
                mount_point=self.mount_point,
                raise_on_deleted_version=True,
            )
        except InvalidPath:
            logger.error(f"Secret path not found: {full_path}")
            raise PermissionError(f"Secret path '{full_path}' not found in Vault")
        except (Unauthorized, Forbidden) as e:
            logger.error(f"Access denied to secret {full_path}: {e}")
            raise PermissionError(f"Access denied to secret '{full_path}': {e}")

        return response["data"]["data"]

    def get_secrets(self, path: str, fields: List[str]) -> Dict[str, str]:
        """
        Read several fields of one secret with a single Vault call.

        Args:
            path: Secret path relative to invoicing/ (e.g., 'government/myinvois')
            fields: Field names that must all be present

        Raises:
            PermissionError: Path not accessible or doesn't exist.
            KeyError: A field is missing from the secret.
        """
        secret_data = self.read_secret(path)

        missing = [field for field in fields if field not in secret_data]
        if missing:
            raise KeyError(
                f"Field(s) {', '.join(repr(f) for f in missing)} not found in secret "
                f"'{_SECRET_PREFIX}/{path}'. Available: {', '.join(secret_data.keys())}"
            )

        return {field: secret_data[field] for field in fields}

    def get_secret(self, path: str, field: str) -> str:
        """Retrieve a single field; see get_secrets."""
        return self.get_secrets(path, [field])[field]


# Convenience functions


def _cached_secrets(path: str, fields: List[str]) -> Dict[str, str]:
    """Fields of invoicing/<path>, fetched once per process."""
    keys = {field: f"{_SECRET_PREFIX}/{path}/{field}" for field in fields}

    if all(key in _secret_cache for key in keys.values()):
        return {field: _secret_cache[key] for field, key in keys.items()}

    values = _ensure_vault_client().get_secrets(path, fields)
    for field, key in keys.items():
        _secret_cache[key] = values[field]
    return values


def get_database_url() -> str:
    """Get PostgreSQL connection URL from Vault."""
    return _cached_secrets("database", ["url"])["url"]


def get_government_credentials(provider: str) -> Dict[str, str]:
    """
    Get e-invoice authority credentials from Vault.

    Returns:
        Dict with keys: base_url, client_id, client_secret
    """
    return _cached_secrets(f"government/{provider}", GOVERNMENT_CREDENTIAL_FIELDS)


def clear_secret_cache() -> None:
    """Forget cached secrets so rotated credentials are read again."""
    _secret_cache.clear()
