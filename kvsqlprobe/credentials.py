"""
Credential construction for each supported authentication method.

Nothing here talks to the network: Azure Identity credentials fetch tokens
lazily on the first ``get_token`` call.
"""

import enum
import logging
from dataclasses import dataclass, field

import jwt
from azure.core.exceptions import AzureError
from azure.identity import (
    ClientSecretCredential,
    DefaultAzureCredential,
    InteractiveBrowserCredential,
    ManagedIdentityCredential,
)

from .errors import (
    IncompleteCredentials,
    TokenAcquisitionFailed,
    UnknownAuthMethod,
    UnsupportedInteractiveAuth,
)

logger = logging.getLogger(__name__)

VAULT_SCOPE = "https://vault.azure.net/.default"
SQL_SCOPE = "https://database.windows.net/.default"

# Claims that identify the caller without exposing the token itself.
IDENTITY_CLAIMS = ("aud", "iss", "tid", "oid", "appid", "upn", "exp")


class AuthMethod(enum.Enum):
    MANAGED_IDENTITY = "ManagedIdentity"
    SERVICE_PRINCIPAL = "ServicePrincipal"
    INTERACTIVE_USER = "InteractiveUser"


_ALIASES = {
    "managedidentity": AuthMethod.MANAGED_IDENTITY,
    "serviceprincipal": AuthMethod.SERVICE_PRINCIPAL,
    "interactiveuser": AuthMethod.INTERACTIVE_USER,
    "userazureid": AuthMethod.INTERACTIVE_USER,
}


@dataclass(frozen=True)
class ServicePrincipalCredentials:
    tenant_id: str
    client_id: str
    client_secret: str = field(repr=False)


def parse_auth_method(value):
    """Map a method tag (enum, name or query value) onto :class:`AuthMethod`."""
    if isinstance(value, AuthMethod):
        return value
    if isinstance(value, str):
        method = _ALIASES.get(value.strip().lower())
        if method is not None:
            return method
    raise UnknownAuthMethod(f"Unknown authentication method: {value!r}")


def _configured_service_principal(settings):
    sp = settings.Azure.ServicePrincipal
    if not (sp.TenantId and sp.ClientId and sp.ClientSecret):
        return None
    return ServicePrincipalCredentials(sp.TenantId, sp.ClientId, sp.ClientSecret)


def resolve_credential(method, settings, service_principal=None):
    """Build the credential for ``method``.

    ``service_principal`` is the triple fetched from Key Vault at startup;
    when it is missing the ``Azure.ServicePrincipal`` settings are used.
    """
    method = parse_auth_method(method)

    if method is AuthMethod.MANAGED_IDENTITY:
        client_id = settings.Azure.ManagedIdentityClientId
        if client_id:
            logger.debug("Using user-assigned managed identity %s", client_id)
            return ManagedIdentityCredential(client_id=client_id)
        return ManagedIdentityCredential()

    if method is AuthMethod.SERVICE_PRINCIPAL:
        sp = service_principal or _configured_service_principal(settings)
        if sp is None:
            raise IncompleteCredentials(
                "No service principal credentials available from Key Vault or configuration"
            )
        return ClientSecretCredential(sp.tenant_id, sp.client_id, sp.client_secret)

    if not settings.Azure.AllowInteractiveAuth:
        raise UnsupportedInteractiveAuth(
            "Interactive browser sign-in is not available in this deployment"
        )
    tenant_id = settings.Azure.ServicePrincipal.TenantId or None
    return InteractiveBrowserCredential(tenant_id=tenant_id, additionally_allowed_tenants=["*"])


def build_bootstrap_credential():
    """Auto-detecting chain used before the service principal is known.

    Order is fixed by azure-identity: environment, workload identity,
    managed identity, shared token cache, then developer CLI tooling.
    """
    return DefaultAzureCredential(exclude_interactive_browser_credential=True)


def acquire_token(credential, scope):
    try:
        return credential.get_token(scope)
    except AzureError as ex:
        raise TokenAcquisitionFailed(f"Failed to get token for {scope}: {ex}") from ex


def decode_token_claims(token):
    """Return the identity claims of a JWT access token, or None.

    The signature is not verified; the claims are for display only.
    """
    try:
        decoded = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as ex:
        logger.debug("Token is not a decodable JWT: %s", ex)
        return None
    return {k: decoded.get(k) for k in IDENTITY_CLAIMS if decoded.get(k) is not None}
