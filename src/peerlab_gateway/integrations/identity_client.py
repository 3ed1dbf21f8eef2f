"""LogTo management API client for email enrichment."""

import asyncio
import logging
import time
from typing import Optional

import httpx

from peerlab_gateway.config import Settings, settings
from peerlab_gateway.integrations.circuit_breaker import CircuitBreaker, CircuitBreakerConfig

logger = logging.getLogger(__name__)

# Refresh the M2M token this many seconds before the provider says it expires
TOKEN_EXPIRY_MARGIN_SECONDS = 60


class IdentityLookupError(Exception):
    """Management API call failed."""


class IdentityProviderClient:
    """
    Looks up user emails through the LogTo management API.

    Authenticates with the client-credentials grant and caches the M2M token
    until shortly before it expires. Calls go through a circuit breaker so a
    failing provider is not hammered once per mapping.

    Usage:
        client = IdentityProviderClient.from_settings(settings)
        email = await client.lookup_email(user_id)
    """

    def __init__(
        self,
        management_api_url: str,
        app_id: str,
        app_secret: str,
        timeout: float = 5.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.management_api_url = management_api_url.rstrip("/")
        self.base_url = self.management_api_url.removesuffix("/api").rstrip("/")
        self.app_id = app_id
        self.app_secret = app_secret
        self.timeout = timeout
        self._circuit_breaker = circuit_breaker
        self._transport = transport
        self._token: Optional[str] = None
        self._token_expires_at: float = 0.0
        self._token_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, config: Settings = settings) -> Optional["IdentityProviderClient"]:
        """Build a client, or return None when the management API is not configured."""
        if not config.email_enrichment_configured:
            logger.warning(
                "LogTo Management API is not fully configured - email retrieval will be disabled"
            )
            return None

        breaker = None
        if config.identity_circuit_breaker_enabled:
            breaker = CircuitBreaker(
                "logto-management",
                CircuitBreakerConfig(
                    failure_threshold=config.identity_circuit_breaker_failure_threshold,
                    timeout_seconds=config.identity_circuit_breaker_timeout_seconds,
                    half_open_max_calls=config.identity_circuit_breaker_half_open_max_calls,
                    success_threshold=config.identity_circuit_breaker_success_threshold,
                ),
            )

        logger.info("LogTo Management API is configured for email retrieval")
        return cls(
            management_api_url=config.logto_management_api,
            app_id=config.logto_m2m_app_id,
            app_secret=config.logto_m2m_app_secret,
            timeout=config.identity_timeout_seconds,
            circuit_breaker=breaker,
        )

    async def lookup_email(self, user_id: str) -> Optional[str]:
        """
        Return the primary email of ``user_id``, or None if the user has none.

        Raises:
            IdentityLookupError: Token or user request failed.
            CircuitBreakerOpen: Provider has been failing; call skipped.
        """
        if self._circuit_breaker:
            return await self._circuit_breaker.call(self._fetch_email, user_id)
        return await self._fetch_email(user_id)

    async def _fetch_email(self, user_id: str) -> Optional[str]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            token = await self._get_token(client)
            user_url = f"{self.base_url}/api/users/{user_id}"

            logger.debug(f"Fetching user details from LogTo: {user_url}")
            try:
                response = await client.get(
                    user_url, headers={"Authorization": f"Bearer {token}"}
                )
                response.raise_for_status()
                data = response.json()
            except (httpx.HTTPError, ValueError) as e:
                raise IdentityLookupError(f"Failed to fetch user {user_id}: {e}") from e

        email = data.get("primaryEmail") if isinstance(data, dict) else None
        return email or None

    def _cached_token(self) -> Optional[str]:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        return None

    async def _get_token(self, client: httpx.AsyncClient) -> str:
        token = self._cached_token()
        if token:
            return token

        async with self._token_lock:
            # Another lookup may have refreshed while we waited
            token = self._cached_token()
            if token:
                return token
            return await self._request_token(client)

    async def _request_token(self, client: httpx.AsyncClient) -> str:
        token_url = f"{self.base_url}/oidc/token"
        logger.debug(f"Requesting M2M token from LogTo: {token_url}")
        try:
            response = await client.post(
                token_url,
                auth=(self.app_id, self.app_secret),
                data={
                    "grant_type": "client_credentials",
                    "resource": f"{self.base_url}/api",
                    "scope": "all",
                },
            )
            response.raise_for_status()
            payload = response.json()
            token = payload["access_token"]
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            raise IdentityLookupError(f"Failed to get M2M token: {e}") from e

        expires_in = payload.get("expires_in") or 0
        self._token = token
        self._token_expires_at = time.monotonic() + max(
            0, int(expires_in) - TOKEN_EXPIRY_MARGIN_SECONDS
        )
        return token
