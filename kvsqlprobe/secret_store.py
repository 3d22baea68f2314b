"""
Key Vault secret retrieval with structured error translation.

Secret values are never logged; only names, status codes and error codes.
"""

import logging
from concurrent.futures import ThreadPoolExecutor

from azure.core.exceptions import AzureError, HttpResponseError, ResourceNotFoundError
from azure.keyvault.secrets import SecretClient

from .credentials import ServicePrincipalCredentials
from .errors import (
    AccessDenied,
    IncompleteCredentials,
    SecretEmpty,
    SecretNotFound,
    SecretUnavailable,
)

logger = logging.getLogger(__name__)


class SecretStore:
    """Read-only facade over an ``azure.keyvault.secrets.SecretClient``."""

    def __init__(self, client):
        self.client = client

    @classmethod
    def for_vault(cls, vault_url, credential):
        return cls(SecretClient(vault_url=vault_url, credential=credential))

    @property
    def vault_url(self):
        return getattr(self.client, "vault_url", None)

    def get_secret(self, name):
        """Fetch ``name`` and return its value.

        Raises SecretNotFound, AccessDenied, SecretEmpty or SecretUnavailable.
        """
        logger.info("Attempting to retrieve secret '%s' from Key Vault", name)
        try:
            secret = self.client.get_secret(name)
        except ResourceNotFoundError as ex:
            logger.error("Secret '%s' not found in Key Vault. Error: %s", name, ex.error)
            raise SecretNotFound(f"Secret '{name}' not found in Key Vault") from ex
        except HttpResponseError as ex:
            if ex.status_code == 404:
                logger.error("Secret '%s' not found in Key Vault. Status: %s", name, ex.status_code)
                raise SecretNotFound(f"Secret '{name}' not found in Key Vault") from ex
            if ex.status_code in (401, 403):
                logger.error(
                    "Access denied to secret '%s'. Check Key Vault permissions. Status: %s, Error: %s",
                    name, ex.status_code, ex.error,
                )
                raise AccessDenied(
                    f"Access denied to secret '{name}'. Check Key Vault RBAC permissions or access policies."
                ) from ex
            logger.error("Failed to retrieve secret '%s' from Key Vault: %s", name, ex)
            raise SecretUnavailable(f"Failed to retrieve secret '{name}' from Key Vault: {ex.message}") from ex
        except AzureError as ex:
            logger.error("Failed to retrieve secret '%s' from Key Vault: %s", name, ex)
            raise SecretUnavailable(f"Failed to retrieve secret '{name}' from Key Vault: {ex.message}") from ex

        if not secret.value:
            raise SecretEmpty(f"Secret '{name}' exists but has no value")

        logger.info("Successfully retrieved secret '%s' from Key Vault", name)
        return secret.value

    def _get_required(self, name):
        value = self.get_secret(name)
        if not value.strip():
            raise SecretEmpty(f"Secret '{name}' contains only whitespace")
        return value

    def get_service_principal_credentials(self, tenant_id_name, client_id_name, client_secret_name):
        """Fetch the service principal triple concurrently.

        Waits for all three fetches and raises IncompleteCredentials naming
        every secret that was missing, blank or unreadable.
        """
        names = (tenant_id_name, client_id_name, client_secret_name)
        logger.info("Retrieving Service Principal credentials from Key Vault")

        with ThreadPoolExecutor(max_workers=len(names), thread_name_prefix="sp-secret") as pool:
            futures = [pool.submit(self._get_required, name) for name in names]

        values = []
        failures = []
        for name, future in zip(names, futures):
            try:
                values.append(future.result())
            except SecretUnavailable as ex:
                failures.append(f"{name} ({ex.kind})")
            except Exception as ex:
                logger.exception("Unexpected error retrieving secret '%s'", name)
                failures.append(f"{name} ({type(ex).__name__})")

        if failures:
            raise IncompleteCredentials(
                "Service principal credentials incomplete: " + ", ".join(failures)
            )
        return ServicePrincipalCredentials(*values)
