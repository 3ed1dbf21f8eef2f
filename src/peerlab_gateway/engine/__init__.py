"""PeerLab Gateway engine - allocation, pools and the downstream read path."""

from peerlab_gateway.engine.core import GatewayEngine
from peerlab_gateway.errors import (
    AuthenticationError,
    ConfigurationError,
    Conflict,
    GatewayError,
    NotFound,
    ResourceExhausted,
    UpstreamError,
    ValidationError,
)
from peerlab_gateway.engine.mappings import MappingAggregator
from peerlab_gateway.engine.pools import AsnPool, PrefixPool

__all__ = [
    "AsnPool",
    "AuthenticationError",
    "ConfigurationError",
    "Conflict",
    "GatewayEngine",
    "GatewayError",
    "MappingAggregator",
    "NotFound",
    "PrefixPool",
    "ResourceExhausted",
    "UpstreamError",
    "ValidationError",
]
