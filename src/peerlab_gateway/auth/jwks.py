"""Identity provider key set cache."""

import asyncio
import logging
import time
from typing import Any, Callable, Optional

import httpx

from peerlab_gateway.errors import UpstreamError
from peerlab_gateway.observability.metrics import metrics

logger = logging.getLogger("peerlab_gateway.auth.jwks")


class KeySetCache:
    """
    Process-wide cache of the provider's JWKS, keyed by ``kid``.

    The key set is fetched on first use and again once ``ttl_seconds`` have
    passed. A ``kid`` missing from a fresh key set forces one refresh, at
    most once per ``min_refresh_interval_seconds``, to pick up rotated keys.
    Only one coroutine fetches at a time; waiters reuse its result.
    """

    def __init__(
        self,
        jwks_uri: str,
        ttl_seconds: int = 300,
        min_refresh_interval_seconds: int = 30,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.jwks_uri = jwks_uri
        self.ttl_seconds = ttl_seconds
        self.min_refresh_interval_seconds = min_refresh_interval_seconds
        self.timeout = timeout
        self._transport = transport
        self._clock = clock
        self._keys: dict[str, dict[str, Any]] = {}
        self._fetched_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def kids(self) -> set[str]:
        return set(self._keys)

    def is_stale(self) -> bool:
        if self._fetched_at is None:
            return True
        return self._clock() - self._fetched_at >= self.ttl_seconds

    async def get_key(self, kid: str) -> Optional[dict[str, Any]]:
        """
        Return the JWK for ``kid``, or None if the provider does not publish it.

        Raises:
            UpstreamError: The key set could not be fetched.
        """
        if self.is_stale():
            await self.refresh()

        key = self._keys.get(kid)
        if key is None and self._may_force_refresh():
            logger.info(f"Unknown key id {kid}, refreshing key set")
            await self.refresh(force=True)
            key = self._keys.get(kid)
        return key

    async def refresh(self, force: bool = False) -> None:
        """Fetch the key set unless another coroutine just did."""
        observed = self._fetched_at
        async with self._lock:
            if self._fetched_at != observed:
                return
            if not force and not self.is_stale():
                return

            self._keys = await self._fetch()
            self._fetched_at = self._clock()
            metrics.inc_counter("auth.jwks.refresh")
            logger.debug(f"Loaded {len(self._keys)} signing keys from {self.jwks_uri}")

    def _may_force_refresh(self) -> bool:
        if self._fetched_at is None:
            return True
        return self._clock() - self._fetched_at >= self.min_refresh_interval_seconds

    async def _fetch(self) -> dict[str, dict[str, Any]]:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(self.jwks_uri)
                response.raise_for_status()
                payload = response.json()
            keys = payload["keys"]
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            metrics.inc_counter("auth.jwks.fetch_failed")
            logger.error(f"Failed to fetch JWKS from {self.jwks_uri}: {e}", exc_info=True)
            raise UpstreamError("Failed to fetch signing keys") from e

        return {
            key["kid"]: key
            for key in keys
            if isinstance(key, dict) and key.get("kid")
        }
