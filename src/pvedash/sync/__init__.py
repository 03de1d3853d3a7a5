"""Snapshot synchronization — single-flight refresh plus the periodic poller.

Learn: Two pieces:
1. RefreshOrchestrator — decides whether a refresh is needed and makes
   sure at most one aggregator call is in flight for the whole process.
2. RefreshPoller — an external periodic driver. The orchestrator never
   schedules itself; whoever owns the poller decides the cadence.
"""

from pvedash.sync.orchestrator import RefreshFailure, RefreshOrchestrator
from pvedash.sync.poller import RefreshPoller

__all__ = ["RefreshFailure", "RefreshOrchestrator", "RefreshPoller"]
