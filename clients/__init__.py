# Infrastructure clients
from clients.vault_client import (
    VaultClient,
    get_database_url,
    get_government_credentials,
)
from clients.postgres_client import PostgresClient, TransactionCursor
from clients.government_client import (
    GovernmentAPIError,
    GovernmentClient,
    MockGovernmentClient,
    DisabledGovernmentClient,
)
from clients.government_providers import create_government_client
