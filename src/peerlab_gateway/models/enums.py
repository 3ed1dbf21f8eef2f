"""Enumerations for PeerLab Gateway models."""

from enum import Enum


class PrincipalKind(str, Enum):
    """Kinds of callers the gateway authenticates."""

    USER = "user"  # End user holding an identity-provider token
    AGENT = "agent"  # Downstream service holding the shared secret


class LeaseState(str, Enum):
    """Lifecycle of a prefix lease, derived from the wall clock at read time."""

    CREATED = "created"  # Inserted, start time still in the future
    ACTIVE = "active"  # now < end_time
    EXPIRED = "expired"  # now >= end_time, row still present
    PURGED = "purged"  # Row deleted by the retention sweep
