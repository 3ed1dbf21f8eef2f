"""API dependencies."""

import logging
from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from peerlab_gateway.auth import Authenticator, bearer_token
from peerlab_gateway.config import DEFAULT_AGENT_KEY, Environment, settings
from peerlab_gateway.db import base as db_base
from peerlab_gateway.engine import GatewayEngine, MappingAggregator
from peerlab_gateway.errors import ConfigurationError
from peerlab_gateway.models import Principal

logger = logging.getLogger("peerlab_gateway.api")


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session."""
    async with db_base.async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def _authenticator(request: Request, name: str) -> Authenticator:
    authenticator = getattr(request.app.state, name, None)
    if authenticator is None:
        logger.error(f"Authenticator {name} was not initialized")
        raise ConfigurationError("Authentication is not configured")
    return authenticator


async def require_user(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> Principal:
    """Authenticate an end user from the bearer JWT."""
    authenticator = _authenticator(request, "user_authenticator")
    return await authenticator.authenticate(bearer_token(authorization))


async def require_agent(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> Principal:
    """Authenticate the downstream agent from the shared secret."""
    authenticator = _authenticator(request, "agent_authenticator")
    return await authenticator.authenticate(bearer_token(authorization))


async def get_engine(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> GatewayEngine:
    """Engine bound to this request's session and the process pools."""
    return GatewayEngine(
        session,
        asn_pool=getattr(request.app.state, "asn_pool", None),
        prefix_pool=getattr(request.app.state, "prefix_pool", None),
    )


async def get_aggregator(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> MappingAggregator:
    """Mapping aggregator bound to this request's session."""
    return MappingAggregator(
        session,
        identity_client=getattr(request.app.state, "identity_client", None),
    )


def validate_auth_config() -> None:
    """
    Validate authentication configuration at startup.

    Ensures the server cannot start with verification bypassed outside
    development, or with an agent secret that would accept anything.

    Raises:
        RuntimeError: If configuration is insecure for the current environment
    """
    if settings.bypass_jwt and settings.env != Environment.DEVELOPMENT:
        raise RuntimeError(
            f"SECURITY ERROR: bypass_jwt=true is only permitted in development. "
            f"Current environment: {settings.env.value}. "
            f"Set PEERLAB_BYPASS_JWT=false for {settings.env.value}."
        )

    if not settings.agent_key:
        raise RuntimeError(
            "SECURITY ERROR: agent key is empty. Set AGENT_KEY to a shared secret."
        )

    if settings.agent_key == DEFAULT_AGENT_KEY and settings.env != Environment.DEVELOPMENT:
        raise RuntimeError(
            f"SECURITY ERROR: the built-in agent key is only permitted in development. "
            f"Current environment: {settings.env.value}. Set AGENT_KEY to a shared secret."
        )

    if not settings.bypass_jwt and not (settings.logto_jwks_uri and settings.logto_issuer):
        logger.warning(
            "LOGTO_JWKS_URI or LOGTO_ISSUER not set - user endpoints will fail "
            "with a configuration error"
        )

    if settings.bypass_jwt:
        logger.warning(
            "=" * 80 + "\n"
            "WARNING: JWT verification is BYPASSED\n"
            "  - Every user request is accepted as the development user\n"
            "  - This mode is ONLY for local development\n"
            "  - Set PEERLAB_BYPASS_JWT=false for any deployment\n"
            + "=" * 80
        )
    else:
        logger.info(f"Authentication enabled: LogTo JWT + agent key for {settings.env.value}")
