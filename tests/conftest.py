"""Shared fakes for the Key Vault client, credentials and bootstrap results."""

import time
from types import SimpleNamespace

import pytest
from azure.core.credentials import AccessToken
from azure.core.exceptions import ClientAuthenticationError, HttpResponseError, ResourceNotFoundError

from kvsqlprobe.bootstrap import BootstrapResult
from kvsqlprobe.config import Settings
from kvsqlprobe.credentials import ServicePrincipalCredentials
from kvsqlprobe.models import BootstrapState, ProbeResult
from kvsqlprobe.secret_store import SecretStore

VAULT_URL = "https://unit-test-vault.vault.azure.net/"
TENANT_ID = "00000000-0000-0000-0000-000000000001"
CLIENT_ID = "00000000-0000-0000-0000-000000000002"


def forbidden(message="Forbidden"):
    error = HttpResponseError(message=message)
    error.status_code = 403
    return error


def not_found(message="SecretNotFound"):
    return ResourceNotFoundError(message=message)


class FakeSecretClient:
    """Stands in for SecretClient; values may be strings or exceptions to raise."""

    def __init__(self, secrets, vault_url=VAULT_URL):
        self.secrets = secrets
        self.vault_url = vault_url
        self.requested = []

    def get_secret(self, name):
        self.requested.append(name)
        if name not in self.secrets:
            raise not_found(f"A secret with (name/id) {name} was not found in this key vault.")
        value = self.secrets[name]
        if isinstance(value, Exception):
            raise value
        return SimpleNamespace(name=name, value=value)


class FakeCredential:
    def __init__(self, token="not-a-jwt", error=None):
        self.token = token
        self.error = error
        self.scopes = []

    def get_token(self, *scopes, **kwargs):
        self.scopes.extend(scopes)
        if self.error is not None:
            raise self.error
        return AccessToken(self.token, int(time.time()) + 3600)


def failing_credential(message="ManagedIdentityCredential authentication unavailable"):
    return FakeCredential(error=ClientAuthenticationError(message=message))


class RecordingProbe:
    """SQL probe double that records calls and returns a fixed result."""

    def __init__(self, result=None):
        self.result = result or ProbeResult.success("database responded", "1")
        self.calls = []

    def __call__(self, connection_string, credential=None, **kwargs):
        self.calls.append((connection_string, credential))
        return self.result


@pytest.fixture
def vault_secrets():
    return {
        "SPTenantId": TENANT_ID,
        "SPClientID": CLIENT_ID,
        "SPClientSecret": "sp-client-secret",
        "Sql--ConnectionString": "sqlite://",
    }


@pytest.fixture(autouse=True)
def isolated_settings_file(tmp_path, monkeypatch):
    # Keep a developer appsettings.json out of the tests.
    monkeypatch.setenv("APPSETTINGS_PATH", str(tmp_path / "absent-appsettings.json"))


@pytest.fixture
def settings():
    return Settings(Azure={"KeyVaultUrl": VAULT_URL})


@pytest.fixture
def ready_bootstrap(vault_secrets):
    state = BootstrapState(
        key_vault_available=True,
        auth_method="ServicePrincipal",
        configured_from_vault=True,
        connection_string="sqlite://",
    )
    return BootstrapResult(
        state=state,
        secret_store=SecretStore(FakeSecretClient(vault_secrets)),
        service_principal=ServicePrincipalCredentials(TENANT_ID, CLIENT_ID, "sp-client-secret"),
    )


@pytest.fixture
def degraded_bootstrap():
    state = BootstrapState(
        key_vault_available=False,
        auth_method="DefaultAzureCredential",
        configured_from_vault=False,
    )
    return BootstrapResult(state=state)
