"""
Per-request status pipeline: token, secret, then SQL.

Every stage runs regardless of how the earlier ones went; a stage only
borrows an earlier stage's output when it is available and otherwise
falls back to what bootstrap published.
"""

import json
import logging
from dataclasses import dataclass

from .connectivity import run_sql_probe
from .credentials import VAULT_SCOPE, AuthMethod, acquire_token, decode_token_claims, resolve_credential
from .errors import ProbeError, SecretUnavailable
from .models import ProbeResult
from .secret_store import SecretStore

logger = logging.getLogger(__name__)

STAGE_COUNT = 3


@dataclass(frozen=True)
class StatusReport:
    auth_method: str
    token: ProbeResult
    secret: ProbeResult
    sql: ProbeResult

    @property
    def stages(self):
        return {"token": self.token, "secret": self.secret, "sql": self.sql}

    @property
    def failed_count(self):
        return sum(1 for stage in self.stages.values() if not stage.ok)

    @property
    def healthy(self):
        return self.failed_count == 0

    @property
    def message(self):
        if self.healthy:
            return "All checks passed"
        return (f"{self.failed_count} of {STAGE_COUNT} checks failed; "
                "inspect the individual results for details")

    def to_dict(self):
        data = {name: stage.to_dict() for name, stage in self.stages.items()}
        data.update(
            authMethod=self.auth_method,
            overallHealthy=self.healthy,
            overallMessage=self.message,
        )
        return data


def _failure(message, ex):
    if isinstance(ex, ProbeError):
        return ProbeResult.failure(message, ex, ex.kind)
    return ProbeResult.failure(message, ex, type(ex).__name__)


class StatusAggregator:
    """Runs the three diagnostic stages for one request.

    Holds only read-only references (settings and the bootstrap result);
    each ``run`` builds its own credential and clients.
    """

    def __init__(self, settings, bootstrap, credential_resolver=resolve_credential,
                 store_factory=SecretStore.for_vault, sql_probe=run_sql_probe):
        self.settings = settings
        self.bootstrap = bootstrap
        self.credential_resolver = credential_resolver
        self.store_factory = store_factory
        self.sql_probe = sql_probe

    def _token_stage(self, method, label):
        try:
            credential = self.credential_resolver(method, self.settings, self.bootstrap.service_principal)
        except Exception as ex:
            logger.warning("Could not build %s credential: %s", label, ex)
            return None, _failure("credential could not be created", ex)

        try:
            access_token = acquire_token(credential, VAULT_SCOPE)
        except Exception as ex:
            logger.warning("Failed to acquire token with %s: %s", label, ex)
            return credential, _failure("token acquisition failed", ex)

        claims = decode_token_claims(access_token.token)
        value = json.dumps(claims, sort_keys=True) if claims else None
        return credential, ProbeResult.success(f"Token acquired using {label}", value)

    def _secret_store(self, credential):
        vault_url = self.settings.Azure.KeyVaultUrl
        if credential is not None and vault_url:
            return self.store_factory(vault_url, credential)
        return self.bootstrap.secret_store

    def _secret_stage(self, credential):
        name = self.settings.Azure.SqlConnectionStringSecretName
        try:
            store = self._secret_store(credential)
            if store is None:
                raise SecretUnavailable("Key Vault is not configured")
            value = store.get_secret(name)
        except Exception as ex:
            logger.warning("Failed to read Key Vault secret %s: %s", name, ex)
            return None, _failure(f"secret '{name}' could not be read", ex)
        # The value is a connection string; only its length is reported.
        return value, ProbeResult.success(f"Secret '{name}' retrieved", f"{len(value)} characters")

    def _sql_stage(self, connection_string, credential):
        try:
            return self.sql_probe(
                connection_string,
                credential,
                odbc_driver=self.settings.Sql.OdbcDriver,
            )
        except Exception as ex:
            logger.exception("SQL probe raised unexpectedly")
            return _failure("connection failed", ex)

    def run(self, method):
        label = method.value if isinstance(method, AuthMethod) else str(method)
        credential, token = self._token_stage(method, label)
        secret_value, secret = self._secret_stage(credential)
        connection_string = secret_value or self.bootstrap.state.connection_string
        sql = self._sql_stage(connection_string, credential)

        report = StatusReport(label, token, secret, sql)
        logger.info("Status for %s: %s", label, report.message)
        return report
