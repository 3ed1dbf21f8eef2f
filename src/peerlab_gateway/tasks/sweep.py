"""Expired lease cleanup background task."""

import asyncio
import logging
import random
from typing import Optional

from peerlab_gateway.config import settings
from peerlab_gateway.db import base as db_base
from peerlab_gateway.engine import GatewayEngine

logger = logging.getLogger("peerlab_gateway.sweep")

_cleanup_task: Optional[asyncio.Task] = None
_shutdown_event: Optional[asyncio.Event] = None


async def run_cleanup_once() -> int:
    """Purge leases past the retention window; returns rows deleted."""
    async with db_base.get_session() as session:
        engine = GatewayEngine(session)
        return await engine.cleanup_expired_leases()


async def lease_cleanup_loop(interval_seconds: float):
    """
    Periodically purge leases that expired more than the retention window ago.

    Expired leases stop counting as soon as their end_time passes; this loop
    only reclaims storage. The interval is jittered by ±20% so several
    processes do not delete in lockstep.
    """
    logger.info(
        f"Lease cleanup loop started (base interval: {interval_seconds}s with ±20% jitter)"
    )

    while not _shutdown_event.is_set():
        try:
            await run_cleanup_once()
        except Exception as e:
            logger.error(f"Lease cleanup error: {e}", exc_info=True)

        jittered_interval = interval_seconds * random.uniform(0.8, 1.2)

        try:
            await asyncio.wait_for(_shutdown_event.wait(), timeout=jittered_interval)
        except asyncio.TimeoutError:
            pass

    logger.info("Lease cleanup loop stopped")


async def start_lease_cleanup(interval_seconds: Optional[float] = None):
    """Start the lease cleanup background task."""
    global _cleanup_task, _shutdown_event

    if is_running():
        logger.warning("Lease cleanup task already running")
        return

    _shutdown_event = asyncio.Event()
    _cleanup_task = asyncio.create_task(
        lease_cleanup_loop(interval_seconds or settings.lease_cleanup_interval_seconds)
    )


async def stop_lease_cleanup():
    """Stop the lease cleanup background task."""
    global _cleanup_task, _shutdown_event

    if _shutdown_event:
        _shutdown_event.set()

    if _cleanup_task:
        try:
            await asyncio.wait_for(_cleanup_task, timeout=10.0)
        except asyncio.TimeoutError:
            logger.warning("Lease cleanup task did not stop gracefully, cancelling")
            _cleanup_task.cancel()
            try:
                await _cleanup_task
            except asyncio.CancelledError:
                pass

    _cleanup_task = None
    _shutdown_event = None


def is_running() -> bool:
    return _cleanup_task is not None and not _cleanup_task.done()
