"""External service integrations and resilience patterns."""

from peerlab_gateway.integrations.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpen,
    CircuitState,
)
from peerlab_gateway.integrations.identity_client import (
    IdentityLookupError,
    IdentityProviderClient,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerOpen",
    "CircuitState",
    "IdentityLookupError",
    "IdentityProviderClient",
]
