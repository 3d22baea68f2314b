"""Named health checks read from the published bootstrap result."""

import enum
import logging
from dataclasses import dataclass

from .connectivity import run_sql_probe

logger = logging.getLogger(__name__)


class HealthStatus(enum.IntEnum):
    # Ordered so that max() picks the worst status.
    HEALTHY = 0
    DEGRADED = 1
    UNHEALTHY = 2

    @property
    def label(self):
        return self.name.capitalize()


@dataclass(frozen=True)
class CheckResult:
    status: HealthStatus
    description: str

    def to_dict(self):
        return {"status": self.status.label, "description": self.description}


def check_database(bootstrap, sql_probe=run_sql_probe):
    result = sql_probe(bootstrap.state.connection_string)
    if result.ok:
        return CheckResult(HealthStatus.HEALTHY, "Database is reachable")
    return CheckResult(HealthStatus.UNHEALTHY, f"Database is not reachable: {result.message}")


def check_keyvault(bootstrap):
    if bootstrap.state.key_vault_available:
        return CheckResult(HealthStatus.HEALTHY, "Key Vault is accessible")
    return CheckResult(HealthStatus.UNHEALTHY, "Key Vault is not accessible")


def check_authentication(bootstrap):
    state = bootstrap.state
    if state.configured_from_vault:
        return CheckResult(HealthStatus.HEALTHY, f"Authentication configured using {state.auth_method} from Key Vault")
    return CheckResult(HealthStatus.DEGRADED, f"Authentication using fallback {state.auth_method}")


def run_health_checks(bootstrap, sql_probe=run_sql_probe):
    """Run every named check; returns (overall status, {name: CheckResult})."""
    checks = {
        "database": check_database(bootstrap, sql_probe),
        "keyvault": check_keyvault(bootstrap),
        "authentication": check_authentication(bootstrap),
    }
    overall = max(check.status for check in checks.values())
    if overall is not HealthStatus.HEALTHY:
        logger.warning(
            "Health check %s: %s", overall.label,
            ", ".join(f"{name}={check.status.label}" for name, check in checks.items()),
        )
    return overall, checks
