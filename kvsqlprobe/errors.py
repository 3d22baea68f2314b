"""Failure taxonomy shared by every probe stage."""


class ProbeError(Exception):
    """Base class; ``kind`` is the classification tag exposed to callers."""

    kind = "ProbeError"


class UnknownAuthMethod(ProbeError):
    kind = "UnknownAuthMethod"


class UnsupportedInteractiveAuth(ProbeError):
    kind = "UnsupportedInteractiveAuth"


class TokenAcquisitionFailed(ProbeError):
    kind = "TokenAcquisitionFailed"


class SecretUnavailable(ProbeError):
    """Vault call failed for a reason other than not-found or forbidden."""

    kind = "SecretUnavailable"


class SecretNotFound(SecretUnavailable):
    kind = "SecretNotFound"


class AccessDenied(SecretUnavailable):
    kind = "AccessDenied"


class SecretEmpty(SecretUnavailable):
    kind = "SecretEmpty"


class IncompleteCredentials(ProbeError):
    kind = "IncompleteCredentials"


class ConnectionFailed(ProbeError):
    kind = "ConnectionFailed"


class UnexpectedProbeResult(ProbeError):
    kind = "UnexpectedProbeResult"
