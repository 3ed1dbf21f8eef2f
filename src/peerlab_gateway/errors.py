"""PeerLab Gateway errors.

Every error that may cross the HTTP boundary derives from ``GatewayError``
and carries the status code it maps to. Messages on 5xx errors are coarse;
details stay in the logs.
"""


class GatewayError(Exception):
    """Base error for gateway operations."""

    status_code: int = 500

    def __init__(self, message: str, code: str = "GATEWAY_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class AuthenticationError(GatewayError):
    """Missing, malformed, expired or otherwise invalid credential."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, "UNAUTHORIZED")


class ConfigurationError(GatewayError):
    """Server is missing configuration it needs to serve the request."""

    status_code = 500

    def __init__(self, message: str = "Server misconfigured"):
        super().__init__(message, "CONFIGURATION_ERROR")


class ValidationError(GatewayError):
    """Bad request parameter."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message, "VALIDATION_ERROR")


class ResourceExhausted(GatewayError):
    """No unused member left in a resource pool."""

    status_code = 503

    def __init__(self, resource: str, message: str | None = None):
        super().__init__(
            message or f"No available {resource} at this time",
            "RESOURCE_EXHAUSTED",
        )
        self.resource = resource


class Conflict(GatewayError):
    """Value already taken."""

    status_code = 409

    def __init__(self, message: str):
        super().__init__(message, "CONFLICT")


class AsnCollision(Conflict):
    """Candidate ASN was committed by another handle first."""

    def __init__(self, asn: int):
        super().__init__(f"ASN {asn} is already assigned")
        self.asn = asn


class PrefixCollision(Conflict):
    """Candidate prefix is already held by an overlapping lease."""

    def __init__(self, prefix: str):
        super().__init__(f"Prefix {prefix} is already leased")
        self.prefix = prefix


class NotFound(GatewayError):
    """Unknown handle."""

    status_code = 404

    def __init__(self, message: str = "User not found"):
        super().__init__(message, "NOT_FOUND")


class UpstreamError(GatewayError):
    """Store or identity provider call failed."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message, "UPSTREAM_ERROR")
