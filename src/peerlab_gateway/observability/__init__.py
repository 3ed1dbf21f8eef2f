"""Observability helpers for PeerLab Gateway."""

from peerlab_gateway.observability.metrics import metrics

__all__ = ["metrics"]
