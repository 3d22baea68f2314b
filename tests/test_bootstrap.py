import dataclasses

import pytest
from azure.identity import ClientSecretCredential

from kvsqlprobe.bootstrap import run_bootstrap
from kvsqlprobe.config import Settings
from kvsqlprobe.models import PLACEHOLDER_CONNECTION_STRING
from kvsqlprobe.secret_store import SecretStore

from conftest import CLIENT_ID, TENANT_ID, VAULT_URL, FakeCredential, FakeSecretClient, forbidden


class VaultFactory:
    """store_factory double: every store reads the same fake vault."""

    def __init__(self, secrets):
        self.secrets = secrets
        self.calls = []
        self.stores = []

    def __call__(self, vault_url, credential):
        self.calls.append((vault_url, credential))
        store = SecretStore(FakeSecretClient(self.secrets, vault_url))
        self.stores.append(store)
        return store


def bootstrap(settings, secrets, credential=None):
    bootstrap_credential = credential or FakeCredential()
    factory = VaultFactory(secrets)
    result = run_bootstrap(settings, credential_factory=lambda: bootstrap_credential, store_factory=factory)
    return result, factory, bootstrap_credential


class TestReady:

    def test_state(self, settings, vault_secrets):
        result, _, _ = bootstrap(settings, vault_secrets)

        assert result.state.key_vault_available is True
        assert result.state.configured_from_vault is True
        assert result.state.auth_method == "ServicePrincipal"
        assert result.state.connection_string == vault_secrets["Sql--ConnectionString"]

    def test_connection_string_read_with_service_principal(self, settings, vault_secrets):
        result, factory, bootstrap_credential = bootstrap(settings, vault_secrets)

        assert len(factory.calls) == 2
        assert factory.calls[0] == (VAULT_URL, bootstrap_credential)
        vault_url, sp_credential = factory.calls[1]
        assert vault_url == VAULT_URL
        assert isinstance(sp_credential, ClientSecretCredential)
        assert result.secret_store is factory.stores[1]
        assert result.secret_store.vault_url == VAULT_URL

    def test_service_principal_published(self, settings, vault_secrets):
        result, _, _ = bootstrap(settings, vault_secrets)

        assert result.service_principal.tenant_id == TENANT_ID
        assert result.service_principal.client_id == CLIENT_ID

    def test_custom_secret_names(self, vault_secrets):
        settings = Settings(Azure={
            "KeyVaultUrl": VAULT_URL,
            "SqlConnectionStringSecretName": "Custom--Conn",
            "SPClienttIDSecretName": "CustomClient",
        })
        vault_secrets["Custom--Conn"] = "sqlite:///custom.db"
        vault_secrets["CustomClient"] = vault_secrets.pop("SPClientID")

        result, _, _ = bootstrap(settings, vault_secrets)

        assert result.state.connection_string == "sqlite:///custom.db"

    def test_state_is_frozen(self, settings, vault_secrets):
        result, _, _ = bootstrap(settings, vault_secrets)

        with pytest.raises(dataclasses.FrozenInstanceError):
            result.state.key_vault_available = False
        with pytest.raises(dataclasses.FrozenInstanceError):
            result.secret_store = None


class TestDegraded:

    def test_service_principal_fetch_fails(self, settings, vault_secrets):
        vault_secrets["SPClientSecret"] = forbidden()

        result, factory, bootstrap_credential = bootstrap(settings, vault_secrets)

        assert result.state.key_vault_available is False
        assert result.state.configured_from_vault is False
        assert result.state.auth_method == "DefaultAzureCredential"
        assert result.state.connection_string == PLACEHOLDER_CONNECTION_STRING
        assert factory.calls == [(VAULT_URL, bootstrap_credential)]
        assert result.secret_store is factory.stores[0]
        assert result.service_principal is None

    def test_blank_service_principal_value(self, settings, vault_secrets):
        vault_secrets["SPTenantId"] = "  "

        result, _, _ = bootstrap(settings, vault_secrets)

        assert result.state.key_vault_available is False

    def test_connection_string_fetch_fails(self, settings, vault_secrets):
        del vault_secrets["Sql--ConnectionString"]

        result, factory, _ = bootstrap(settings, vault_secrets)

        assert result.state.key_vault_available is False
        assert result.state.connection_string == PLACEHOLDER_CONNECTION_STRING
        # The store built from the bootstrap credential is published, not the SP one.
        assert len(factory.stores) == 2
        assert result.secret_store is factory.stores[0]

    def test_configured_fallback_connection_string(self, vault_secrets):
        settings = Settings(Azure={"KeyVaultUrl": VAULT_URL}, ConnectionStrings={"Default": "sqlite:///local.db"})

        result, _, _ = bootstrap(settings, {})

        assert result.state.connection_string == "sqlite:///local.db"

    def test_vault_not_configured(self, vault_secrets):
        result, factory, _ = bootstrap(Settings(), vault_secrets)

        assert result.state.key_vault_available is False
        assert result.secret_store is None
        assert factory.calls == []

    def test_credential_factory_failure_never_raises(self, settings):
        def broken():
            raise RuntimeError("no credential sources")

        result = run_bootstrap(settings, credential_factory=broken, store_factory=VaultFactory({}))

        assert result.state.key_vault_available is False
        assert result.secret_store is None
