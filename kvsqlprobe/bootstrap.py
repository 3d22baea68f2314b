"""
One-time startup sequence.

    Init -> FetchSPCreds -> RebuildCredential -> FetchConnectionString -> Ready

The bootstrap credential (``DefaultAzureCredential``) reads the service
principal triple from Key Vault, a ``ClientSecretCredential`` is built from
it and used to read the SQL connection string. Any failure lands in
Degraded: the process still starts, with a fallback connection string, and
the health and status endpoints report the outage.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .credentials import (
    AuthMethod,
    ServicePrincipalCredentials,
    build_bootstrap_credential,
    resolve_credential,
)
from .models import PLACEHOLDER_CONNECTION_STRING, BootstrapState
from .secret_store import SecretStore

logger = logging.getLogger(__name__)

READY_AUTH_METHOD = "ServicePrincipal"
FALLBACK_AUTH_METHOD = "DefaultAzureCredential"


@dataclass(frozen=True)
class BootstrapResult:
    """Final handles published to the rest of the process."""

    state: BootstrapState
    secret_store: Optional[SecretStore] = None
    service_principal: Optional[ServicePrincipalCredentials] = None


def _degraded(settings, secret_store):
    connection_string = settings.ConnectionStrings.Default or PLACEHOLDER_CONNECTION_STRING
    state = BootstrapState(
        key_vault_available=False,
        auth_method=FALLBACK_AUTH_METHOD,
        configured_from_vault=False,
        connection_string=connection_string,
    )
    return BootstrapResult(state=state, secret_store=secret_store)


def run_bootstrap(settings, credential_factory=build_bootstrap_credential, store_factory=SecretStore.for_vault):
    """Run the startup sequence once and return the published result.

    Never raises: every failure is logged and yields a degraded result.
    """
    azure = settings.Azure
    vault_url = azure.KeyVaultUrl
    secret_store = None

    try:
        credential = credential_factory()
        if not vault_url:
            logger.warning("Azure:KeyVaultUrl is not configured. Application will start without Key Vault.")
            return _degraded(settings, None)
        secret_store = store_factory(vault_url, credential)

        service_principal = secret_store.get_service_principal_credentials(
            azure.SPTenantIDSecretName,
            azure.SPClienttIDSecretName,
            azure.SPClientSecretSecretName,
        )

        sp_credential = resolve_credential(AuthMethod.SERVICE_PRINCIPAL, settings, service_principal)
        sp_store = store_factory(vault_url, sp_credential)
        logger.info("Successfully configured Service Principal authentication from Key Vault")

        secret_name = azure.SqlConnectionStringSecretName
        logger.info("Retrieving connection string from Key Vault secret: %s", secret_name)
        connection_string = sp_store.get_secret(secret_name)
    except Exception as ex:
        logger.warning(
            "Failed to retrieve Service Principal credentials or connection string from Key Vault: %s. "
            "Application will start with default credentials and without database connectivity.",
            ex, exc_info=True,
        )
        return _degraded(settings, secret_store)

    logger.info("Successfully configured connection string from Key Vault using Service Principal")
    state = BootstrapState(
        key_vault_available=True,
        auth_method=READY_AUTH_METHOD,
        configured_from_vault=True,
        connection_string=connection_string,
    )
    return BootstrapResult(
        state=state,
        secret_store=sp_store,
        service_principal=service_principal,
    )
