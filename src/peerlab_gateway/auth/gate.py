"""Caller authentication: end-user tokens and the agent shared secret."""

import logging
import secrets
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from jose import JWTError, jwt

from peerlab_gateway.auth.jwks import KeySetCache
from peerlab_gateway.config import Settings, settings
from peerlab_gateway.errors import AuthenticationError, ConfigurationError
from peerlab_gateway.models import Principal, PrincipalKind
from peerlab_gateway.observability.metrics import metrics

logger = logging.getLogger("peerlab_gateway.auth")

BEARER_PREFIX = "Bearer "

# Principal handed out when token verification is bypassed
BYPASS_SUBJECT = "dev-user"
BYPASS_AUDIENCE = "dev"
BYPASS_ISSUER = "dev"
BYPASS_EXPIRY = 9999999999


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    return token or None


class Authenticator(ABC):
    """Turns a bearer token into a Principal or raises AuthenticationError."""

    @abstractmethod
    async def authenticate(self, token: Optional[str]) -> Principal:
        ...


class UserTokenAuthenticator(Authenticator):
    """
    Verify end-user JWTs issued by the identity provider.

    Signature, issuer and expiry are checked against the provider's key set.
    The audience claim is carried into the Principal but not enforced.
    """

    def __init__(
        self,
        jwks: Optional[KeySetCache],
        issuer: Optional[str],
        algorithm: str = "RS256",
        bypass: bool = False,
    ):
        self.jwks = jwks
        self.issuer = issuer
        self.algorithm = algorithm
        self.bypass = bypass

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "UserTokenAuthenticator":
        jwks = None
        if config.logto_jwks_uri:
            jwks = KeySetCache(
                config.logto_jwks_uri,
                ttl_seconds=config.jwks_cache_ttl_seconds,
                min_refresh_interval_seconds=config.jwks_min_refresh_interval_seconds,
                timeout=config.jwks_fetch_timeout_seconds,
            )
        return cls(
            jwks=jwks,
            issuer=config.logto_issuer,
            algorithm=config.jwt_algorithm,
            bypass=config.bypass_jwt,
        )

    async def authenticate(self, token: Optional[str]) -> Principal:
        if self.bypass:
            logger.warning("JWT verification bypassed - returning development principal")
            return bypass_principal()

        if not token:
            raise AuthenticationError()

        if self.jwks is None or not self.issuer:
            logger.error("LogTo JWKS URI or issuer not configured")
            raise ConfigurationError("Authentication is not configured")

        try:
            header = jwt.get_unverified_header(token)
        except JWTError as e:
            logger.warning(f"Rejected malformed token: {e}")
            metrics.inc_counter("auth.user.rejected")
            raise AuthenticationError() from e

        kid = header.get("kid")
        if not kid:
            logger.warning("Rejected token without a key id")
            metrics.inc_counter("auth.user.rejected")
            raise AuthenticationError()

        key = await self.jwks.get_key(kid)
        if key is None:
            logger.warning(f"Rejected token signed with unknown key {kid}")
            metrics.inc_counter("auth.user.rejected")
            raise AuthenticationError()

        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={"verify_aud": False, "require_exp": True, "require_sub": True},
            )
        except JWTError as e:
            logger.warning(f"Rejected token: {e}")
            metrics.inc_counter("auth.user.rejected")
            raise AuthenticationError() from e

        metrics.inc_counter("auth.user.accepted")
        return _principal_from_claims(claims)


class AgentSecretAuthenticator(Authenticator):
    """Verify the downstream agent's shared secret."""

    def __init__(self, agent_key: str):
        self.agent_key = agent_key

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "AgentSecretAuthenticator":
        return cls(config.agent_key)

    async def authenticate(self, token: Optional[str]) -> Principal:
        if not token or not self.agent_key:
            raise AuthenticationError()

        if not secrets.compare_digest(token.encode("utf-8"), self.agent_key.encode("utf-8")):
            logger.warning("Rejected agent request with invalid key")
            metrics.inc_counter("auth.agent.rejected")
            raise AuthenticationError()

        return Principal.agent()


def bypass_principal() -> Principal:
    return Principal(
        kind=PrincipalKind.USER,
        subject=BYPASS_SUBJECT,
        audience=BYPASS_AUDIENCE,
        issuer=BYPASS_ISSUER,
        expires_at=datetime.fromtimestamp(BYPASS_EXPIRY, tz=timezone.utc),
    )


def _principal_from_claims(claims: dict) -> Principal:
    audience = claims.get("aud")
    if isinstance(audience, list):
        audience = audience[0] if audience else None

    return Principal(
        kind=PrincipalKind.USER,
        subject=claims["sub"],
        audience=audience,
        issuer=claims.get("iss"),
        expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
    )
