"""PeerLab Gateway database layer."""

from peerlab_gateway.db.base import Base, close_db, get_session, init_db
from peerlab_gateway.db.tables import AsnAssignmentTable, PrefixLeaseTable

__all__ = [
    "AsnAssignmentTable",
    "Base",
    "PrefixLeaseTable",
    "close_db",
    "get_session",
    "init_db",
]
