"""PeerLab Gateway authentication."""

from peerlab_gateway.auth.gate import (
    AgentSecretAuthenticator,
    Authenticator,
    UserTokenAuthenticator,
    bearer_token,
    bypass_principal,
)
from peerlab_gateway.auth.jwks import KeySetCache

__all__ = [
    "AgentSecretAuthenticator",
    "Authenticator",
    "KeySetCache",
    "UserTokenAuthenticator",
    "bearer_token",
    "bypass_principal",
]
