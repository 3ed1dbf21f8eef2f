"""PeerLab Gateway core engine - allocation and lease lifecycle."""

import logging
from datetime import timedelta
from time import perf_counter

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from peerlab_gateway.config import settings
from peerlab_gateway.db.repositories import (
    AsnAssignmentRepository,
    PrefixLeaseRepository,
)
from peerlab_gateway.errors import (
    AsnCollision,
    ConfigurationError,
    Conflict,
    PrefixCollision,
    ResourceExhausted,
    UpstreamError,
    ValidationError,
)
from peerlab_gateway.engine.pools import AsnPool, PrefixPool
from peerlab_gateway.models import AsnAssignment, PrefixLease, Principal
from peerlab_gateway.observability.metrics import metrics
from peerlab_gateway.pseudonym import user_handle

logger = logging.getLogger("peerlab_gateway.engine")


class GatewayEngine:
    """Core engine implementing the gateway's allocation operations.

    Pools are immutable process configuration handed in by the caller. The
    engine never trusts its own occupancy read: every commit goes through a
    storage constraint, and a collision triggers a fresh read and the next
    candidate.
    """

    def __init__(
        self,
        session: AsyncSession,
        asn_pool: AsnPool | None = None,
        prefix_pool: PrefixPool | None = None,
        max_attempts: int | None = None,
    ):
        self.session = session
        self.asn_pool = asn_pool
        self.prefix_pool = prefix_pool
        self.max_attempts = max_attempts or settings.allocation_max_attempts
        self.assignments = AsnAssignmentRepository(session)
        self.leases = PrefixLeaseRepository(session)

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_user_info(
        self,
        user_hash: str,
    ) -> tuple[AsnAssignment | None, list[PrefixLease]]:
        """Return a handle's assignment (if any) and its active leases."""
        try:
            assignment = await self.assignments.get(user_hash)
            leases = await self.leases.list_active_for_user(user_hash)
        except SQLAlchemyError as e:
            logger.error(f"Failed to get user info for {user_hash}: {e}", exc_info=True)
            raise UpstreamError("Failed to retrieve user information") from e
        return assignment, leases

    # =========================================================================
    # ASN allocation
    # =========================================================================

    async def request_asn(self, principal: Principal) -> tuple[AsnAssignment, bool]:
        """
        Assign an ASN to the principal's handle, at most once per handle.

        Returns:
            (assignment, created) where created is False when the handle
            already held an ASN.

        Raises:
            ResourceExhausted: Every ASN in the pool is committed.
            Conflict: Lost the race for a candidate on every attempt.
            UpstreamError: The store failed.
        """
        pool = self._require_asn_pool()
        user_hash = user_handle(principal.subject)

        try:
            existing = await self.assignments.get(user_hash)
            if existing:
                logger.debug(f"User {user_hash} already has ASN {existing.asn}")
                return existing, False

            for attempt in range(1, self.max_attempts + 1):
                committed = await self.assignments.list_assigned_asns(pool.start, pool.end)
                candidate = pool.find_available(committed)
                if candidate is None:
                    logger.warning("No available ASNs in the pool")
                    metrics.inc_counter("allocation.asn.exhausted")
                    raise ResourceExhausted("ASNs")

                try:
                    assignment = await self.assignments.get_or_create(
                        user_hash, candidate, user_id=principal.subject
                    )
                except AsnCollision:
                    metrics.inc_counter("allocation.asn.collision")
                    logger.info(
                        f"ASN {candidate} taken concurrently "
                        f"(attempt {attempt}/{self.max_attempts}), retrying"
                    )
                    continue

                created = assignment.created_at == assignment.updated_at
                if created:
                    metrics.inc_counter("allocation.asn.assigned")
                    logger.info(f"Assigned ASN {assignment.asn} to user {user_hash}")
                return assignment, created

        except SQLAlchemyError as e:
            logger.error(f"Failed to assign ASN to {user_hash}: {e}", exc_info=True)
            raise UpstreamError("Failed to assign ASN") from e

        metrics.inc_counter("allocation.asn.contended")
        logger.error(f"Gave up assigning ASN to {user_hash} after {self.max_attempts} collisions")
        raise Conflict("ASN allocation is contended, please retry")

    # =========================================================================
    # Prefix leasing
    # =========================================================================

    def validate_duration(self, duration_hours: int) -> None:
        """Reject lease durations outside the configured bounds."""
        low = settings.min_lease_duration_hours
        high = settings.max_lease_duration_hours
        if isinstance(duration_hours, bool) or not low <= duration_hours <= high:
            raise ValidationError(f"Duration must be between {low} and {high} hours")

    async def request_prefix(self, principal: Principal, duration_hours: int) -> PrefixLease:
        """
        Lease the first free /48 to the principal's handle.

        Duration is validated before any pool lookup. end_time is exactly
        start_time + duration_hours.

        Raises:
            ValidationError: duration_hours is out of range.
            ResourceExhausted: Every prefix is held by an active lease.
            Conflict: Lost the race for a candidate on every attempt.
            UpstreamError: The store failed.
        """
        self.validate_duration(duration_hours)
        pool = self._require_prefix_pool()
        user_hash = user_handle(principal.subject)

        try:
            for attempt in range(1, self.max_attempts + 1):
                active = await self.leases.list_active_prefixes()
                candidate = pool.find_available(active)
                if candidate is None:
                    logger.warning("No available prefixes in the pool")
                    metrics.inc_counter("allocation.prefix.exhausted")
                    raise ResourceExhausted("prefixes")

                try:
                    lease = await self.leases.create(user_hash, candidate, duration_hours)
                except PrefixCollision:
                    metrics.inc_counter("allocation.prefix.collision")
                    logger.info(
                        f"Prefix {candidate} leased concurrently "
                        f"(attempt {attempt}/{self.max_attempts}), retrying"
                    )
                    continue

                metrics.inc_counter("allocation.prefix.leased")
                logger.info(
                    f"Created prefix lease {lease.prefix} for user {user_hash} "
                    f"until {lease.end_time.isoformat()}"
                )
                return lease

        except SQLAlchemyError as e:
            logger.error(f"Failed to create prefix lease for {user_hash}: {e}", exc_info=True)
            raise UpstreamError("Failed to create prefix lease") from e

        metrics.inc_counter("allocation.prefix.contended")
        logger.error(f"Gave up leasing a prefix to {user_hash} after {self.max_attempts} collisions")
        raise Conflict("Prefix allocation is contended, please retry")

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def cleanup_expired_leases(self, retention_days: int | None = None) -> int:
        """
        Purge leases more than ``retention_days`` past expiry.

        Best effort: failures are logged and reported as zero rows purged.
        """
        retention = timedelta(days=retention_days or settings.lease_retention_days)
        start = perf_counter()
        try:
            async with self.session.begin_nested():
                purged = await self.leases.cleanup_expired(retention)
        except SQLAlchemyError as e:
            logger.warning(f"Expired lease cleanup failed: {e}", exc_info=True)
            metrics.inc_counter("leases.cleanup.failed")
            return 0

        metrics.observe("leases.cleanup.duration_ms", (perf_counter() - start) * 1000.0)
        if purged:
            metrics.inc_counter("leases.purged", purged)
            logger.info(f"Purged {purged} leases expired more than {retention.days} days ago")
        return purged

    def _require_asn_pool(self) -> AsnPool:
        if self.asn_pool is None:
            raise ConfigurationError("ASN pool is not configured")
        return self.asn_pool

    def _require_prefix_pool(self) -> PrefixPool:
        if self.prefix_pool is None:
            raise ConfigurationError("Prefix pool is not configured")
        return self.prefix_pool
