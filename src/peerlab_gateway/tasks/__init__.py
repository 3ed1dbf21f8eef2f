"""Background tasks for PeerLab Gateway."""

from peerlab_gateway.tasks.sweep import start_lease_cleanup, stop_lease_cleanup

__all__ = ["start_lease_cleanup", "stop_lease_cleanup"]
