"""Database repositories for ASN assignments and prefix leases."""

import ipaddress
from collections import defaultdict
from datetime import datetime, timedelta
from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from peerlab_gateway.db.tables import (
    ASN_UNIQUE_CONSTRAINT,
    HANDLE_UNIQUE_CONSTRAINT,
    PREFIX_EXCLUSION_CONSTRAINT,
    AsnAssignmentTable,
    PrefixLeaseTable,
)
from peerlab_gateway.errors import AsnCollision, PrefixCollision
from peerlab_gateway.models import AsnAssignment, PrefixLease
from peerlab_gateway.utils.time import utc_now


def _constraint_name(exc: IntegrityError) -> str | None:
    """Dig the violated constraint name out of a driver error."""
    for candidate in (exc.orig, getattr(exc.orig, "__cause__", None)):
        name = getattr(candidate, "constraint_name", None)
        if name:
            return name
    return None


def violates(exc: IntegrityError, constraint: str) -> bool:
    """Return True if ``exc`` was raised by ``constraint``."""
    name = _constraint_name(exc)
    if name is not None:
        return name == constraint
    return constraint in str(exc.orig)


class AsnAssignmentRepository:
    """Repository for ASN assignments."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_or_create(
        self,
        user_hash: str,
        asn: int,
        user_id: str | None = None,
    ) -> AsnAssignment:
        """
        Commit ``asn`` to ``user_hash`` unless the handle already has one.

        Single atomic upsert keyed by handle: an existing row wins and only
        has its updated_at touched, so a different ``asn`` on a repeat call
        is ignored. Runs in a SAVEPOINT so a collision leaves the caller's
        transaction usable.

        Raises:
            AsnCollision: ``asn`` is already assigned to another handle.
        """
        now = utc_now()
        stmt = (
            pg_insert(AsnAssignmentTable)
            .values(
                user_hash=user_hash,
                user_id=user_id,
                asn=asn,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_update(
                constraint=HANDLE_UNIQUE_CONSTRAINT,
                set_={"updated_at": now},
            )
            .returning(AsnAssignmentTable)
        )

        try:
            async with self.session.begin_nested():
                result = await self.session.scalars(
                    stmt, execution_options={"populate_existing": True}
                )
                row = result.one()
        except IntegrityError as e:
            if violates(e, ASN_UNIQUE_CONSTRAINT):
                raise AsnCollision(asn) from e
            raise

        return self._row_to_model(row)

    async def get(self, user_hash: str) -> AsnAssignment | None:
        """Get the assignment for a handle."""
        result = await self.session.execute(
            select(AsnAssignmentTable).where(AsnAssignmentTable.user_hash == user_hash)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def list_all(self) -> list[AsnAssignment]:
        """List every assignment, newest first."""
        result = await self.session.execute(
            select(AsnAssignmentTable).order_by(AsnAssignmentTable.created_at.desc())
        )
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def list_assigned_asns(
        self,
        start: int | None = None,
        end: int | None = None,
    ) -> set[int]:
        """Return committed ASNs, optionally limited to [start, end]."""
        query = select(AsnAssignmentTable.asn)
        if start is not None:
            query = query.where(AsnAssignmentTable.asn >= start)
        if end is not None:
            query = query.where(AsnAssignmentTable.asn <= end)
        result = await self.session.execute(query)
        return set(result.scalars().all())

    def _row_to_model(self, row: AsnAssignmentTable) -> AsnAssignment:
        """Convert database row to model."""
        return AsnAssignment(
            user_hash=row.user_hash,
            user_id=row.user_id,
            asn=row.asn,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class PrefixLeaseRepository:
    """Repository for prefix leases."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        user_hash: str,
        prefix: str,
        duration_hours: int,
    ) -> PrefixLease:
        """
        Insert a new lease starting now.

        The caller validates ``duration_hours``. The insert runs in a
        SAVEPOINT; the prefix exclusion constraint rejects it if another
        lease holds the same prefix over an overlapping window.

        Raises:
            PrefixCollision: ``prefix`` is held by an overlapping lease.
        """
        now = utc_now()
        lease_row = PrefixLeaseTable(
            lease_id=uuid4(),
            user_hash=user_hash,
            prefix=prefix,
            start_time=now,
            end_time=now + timedelta(hours=duration_hours),
            created_at=now,
            updated_at=now,
        )

        try:
            async with self.session.begin_nested():
                self.session.add(lease_row)
                await self.session.flush()
        except IntegrityError as e:
            if violates(e, PREFIX_EXCLUSION_CONSTRAINT):
                raise PrefixCollision(prefix) from e
            raise

        return self._row_to_model(lease_row)

    async def list_active_for_user(
        self,
        user_hash: str,
        now: datetime | None = None,
    ) -> list[PrefixLease]:
        """Active leases for one handle, latest expiry first."""
        now = now or utc_now()
        result = await self.session.execute(
            select(PrefixLeaseTable)
            .where(
                PrefixLeaseTable.user_hash == user_hash,
                PrefixLeaseTable.end_time > now,
            )
            .order_by(PrefixLeaseTable.end_time.desc())
        )
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def list_active(self, now: datetime | None = None) -> list[PrefixLease]:
        """All active leases system-wide, latest expiry first."""
        now = now or utc_now()
        result = await self.session.execute(
            select(PrefixLeaseTable)
            .where(PrefixLeaseTable.end_time > now)
            .order_by(PrefixLeaseTable.end_time.desc())
        )
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def list_active_by_user(
        self,
        now: datetime | None = None,
    ) -> dict[str, list[PrefixLease]]:
        """Active leases grouped by handle, in one query."""
        grouped: dict[str, list[PrefixLease]] = defaultdict(list)
        for lease in await self.list_active(now):
            grouped[lease.user_hash].append(lease)
        return dict(grouped)

    async def list_active_prefixes(self, now: datetime | None = None) -> set[str]:
        """Prefixes currently held by any active lease."""
        now = now or utc_now()
        result = await self.session.execute(
            select(PrefixLeaseTable.prefix).where(PrefixLeaseTable.end_time > now)
        )
        return {_prefix_text(p) for p in result.scalars().all()}

    async def cleanup_expired(self, retention: timedelta = timedelta(days=7)) -> int:
        """Delete leases that expired more than ``retention`` ago."""
        cutoff = utc_now() - retention
        result = await self.session.execute(
            delete(PrefixLeaseTable).where(PrefixLeaseTable.end_time < cutoff)
        )
        return result.rowcount or 0

    def _row_to_model(self, row: PrefixLeaseTable) -> PrefixLease:
        """Convert database row to model."""
        return PrefixLease(
            lease_id=row.lease_id,
            user_hash=row.user_hash,
            prefix=_prefix_text(row.prefix),
            start_time=row.start_time,
            end_time=row.end_time,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


def _prefix_text(value) -> str:
    """Normalize a CIDR column value (string or ipaddress object) to text."""
    return str(ipaddress.ip_network(str(value)))
