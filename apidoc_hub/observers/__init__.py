# apidoc_hub/observers/__init__.py
"""
Cluster observers.

Observers turn cluster state into WatchEvent streams for the Reconciler.
They run independently of the request/response cycle.
"""
from .base import ServiceSnapshot, WatchEvent, WatchSource
from .kubernetes import KubernetesWatchSource

__all__ = ["KubernetesWatchSource", "ServiceSnapshot", "WatchEvent", "WatchSource"]
