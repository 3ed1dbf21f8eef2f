"""PeerLab Gateway data models."""

from peerlab_gateway.models.assignment import AsnAssignment
from peerlab_gateway.models.enums import LeaseState, PrincipalKind
from peerlab_gateway.models.lease import PrefixLease
from peerlab_gateway.models.mapping import UserMapping
from peerlab_gateway.models.principal import Principal

__all__ = [
    "AsnAssignment",
    "LeaseState",
    "PrefixLease",
    "Principal",
    "PrincipalKind",
    "UserMapping",
]
