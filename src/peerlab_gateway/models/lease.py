"""Prefix lease model - time-bounded hold on a /48."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from peerlab_gateway.models.enums import LeaseState
from peerlab_gateway.utils.time import utc_now


class PrefixLease(BaseModel):
    """A user's time-bounded claim on one IPv6 /48 block."""

    lease_id: UUID
    user_hash: str
    prefix: str
    start_time: datetime
    end_time: datetime
    created_at: datetime
    updated_at: datetime

    def is_active(self, now: datetime | None = None) -> bool:
        """Check if the lease still holds its prefix."""
        if now is None:
            now = utc_now()
        return self.end_time > now

    def state(self, now: datetime | None = None) -> LeaseState:
        """Derive the lifecycle state for a lease row that still exists."""
        if now is None:
            now = utc_now()
        if now < self.start_time:
            return LeaseState.CREATED
        if self.is_active(now):
            return LeaseState.ACTIVE
        return LeaseState.EXPIRED
