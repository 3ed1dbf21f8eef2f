"""Downstream read path: assignments joined with active leases."""

import asyncio
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from peerlab_gateway.config import settings
from peerlab_gateway.db.repositories import (
    AsnAssignmentRepository,
    PrefixLeaseRepository,
)
from peerlab_gateway.errors import NotFound, UpstreamError
from peerlab_gateway.integrations.identity_client import IdentityProviderClient
from peerlab_gateway.models import AsnAssignment, PrefixLease, UserMapping

logger = logging.getLogger("peerlab_gateway.mappings")


class MappingAggregator:
    """
    Compose user mappings for downstream agents.

    Reads the store directly, never the pools. Email enrichment is optional
    and fallible: a failed lookup leaves ``email`` empty and the mapping is
    still returned.
    """

    def __init__(
        self,
        session: AsyncSession,
        identity_client: Optional[IdentityProviderClient] = None,
        lookup_concurrency: int | None = None,
    ):
        self.assignments = AsnAssignmentRepository(session)
        self.leases = PrefixLeaseRepository(session)
        self.identity_client = identity_client
        self._semaphore = asyncio.Semaphore(
            lookup_concurrency or settings.email_lookup_concurrency
        )

    async def list_mappings(self) -> list[UserMapping]:
        """Every assignment, newest first, with its active prefixes."""
        try:
            assignments = await self.assignments.list_all()
            leases_by_user = await self.leases.list_active_by_user()
        except SQLAlchemyError as e:
            logger.error(f"Failed to get all mappings: {e}", exc_info=True)
            raise UpstreamError("Failed to retrieve mappings") from e

        emails = await asyncio.gather(
            *(self._lookup_email(a.user_id) for a in assignments)
        )
        return [
            self._to_mapping(assignment, leases_by_user.get(assignment.user_hash, []), email)
            for assignment, email in zip(assignments, emails)
        ]

    async def get_mapping(self, user_hash: str) -> UserMapping:
        """
        Mapping for a single handle.

        Raises:
            NotFound: "User not found" when the handle holds nothing;
                "User has no ASN assigned" when it only holds leases.
        """
        try:
            assignment = await self.assignments.get(user_hash)
            leases = await self.leases.list_active_for_user(user_hash)
        except SQLAlchemyError as e:
            logger.error(f"Failed to get user mapping for {user_hash}: {e}", exc_info=True)
            raise UpstreamError("Failed to retrieve user mapping") from e

        if assignment is None:
            if leases:
                raise NotFound("User has no ASN assigned")
            raise NotFound("User not found")

        email = await self._lookup_email(assignment.user_id)
        return self._to_mapping(assignment, leases, email)

    async def _lookup_email(self, user_id: Optional[str]) -> Optional[str]:
        if not user_id or self.identity_client is None:
            return None

        async with self._semaphore:
            try:
                return await self.identity_client.lookup_email(user_id)
            except Exception as e:
                logger.warning(f"Failed to fetch email for user {user_id}: {e}")
                return None

    @staticmethod
    def _to_mapping(
        assignment: AsnAssignment,
        leases: list[PrefixLease],
        email: Optional[str],
    ) -> UserMapping:
        return UserMapping(
            user_hash=assignment.user_hash,
            user_id=assignment.user_id,
            asn=assignment.asn,
            prefixes=[lease.prefix for lease in leases],
            email=email,
        )
