"""pvedash — state synchronization core for a cluster operations dashboard.

Keeps a locally cached snapshot of remote cluster state (nodes, VMs,
containers, storage, network), refreshes it single-flight, streams live
alert events over an authenticated push channel, and fans "data changed"
signals out to decoupled consumers through an in-process event bus.
"""

__version__ = "0.1.0"
