"""PeerLab Gateway REST API."""

from peerlab_gateway.api.router import service_router, user_router

__all__ = ["service_router", "user_router"]
