"""Immutable values passed between probe stages and the web layer."""

from dataclasses import dataclass
from typing import Optional

PLACEHOLDER_CONNECTION_STRING = "Server=(unavailable);Database=(unavailable);"


@dataclass(frozen=True)
class ProbeResult:
    ok: bool
    message: str
    value: Optional[str] = None
    error: Optional[str] = None
    kind: Optional[str] = None

    @classmethod
    def success(cls, message, value=None):
        return cls(ok=True, message=message, value=value)

    @classmethod
    def failure(cls, message, error, kind=None):
        return cls(ok=False, message=message, error=str(error), kind=kind)

    def to_dict(self):
        return {
            "ok": self.ok,
            "value": self.value,
            "error": self.error,
            "message": self.message,
            "kind": self.kind,
        }


@dataclass(frozen=True)
class BootstrapState:
    """Outcome of startup, published once and never changed."""

    key_vault_available: bool
    auth_method: str
    configured_from_vault: bool
    connection_string: str = PLACEHOLDER_CONNECTION_STRING
