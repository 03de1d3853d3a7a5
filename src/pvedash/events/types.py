"""Event topics.

Learn: Centralizing topics in one enum prevents typos and makes every
topic discoverable. The set is closed: the bus rejects strings that
aren't a member, so a misspelled subscription fails loudly instead of
silently never firing.
"""

from enum import Enum


class Topic(str, Enum):
    # ─── Snapshot refresh ────────────────────────────────────

    SNAPSHOT_UPDATED = "snapshot.updated"  # payload: CacheEntry
    SNAPSHOT_REFRESH_FAILED = "snapshot.refresh_failed"  # payload: RefreshFailure
    SNAPSHOT_REFRESH_NEEDED = "snapshot.refresh_needed"  # payload: None

    # ─── Live channel state ──────────────────────────────────

    LIVE_CONNECTED = "live.connected"  # payload: {"address": ...}
    LIVE_DISCONNECTED = "live.disconnected"
    LIVE_RECONNECT_EXHAUSTED = "live.reconnect_exhausted"
    LIVE_AUTH_REJECTED = "live.auth_rejected"

    # ─── Alerts ──────────────────────────────────────────────

    ALERT_RECEIVED = "alert.received"  # payload: Alert
    ALERT_ACKNOWLEDGED = "alert.acknowledged"  # payload: AlertAck

    # ─── Credentials ─────────────────────────────────────────

    AUTH_CHANGED = "auth.changed"  # payload: {"authenticated": bool}

    def __str__(self) -> str:
        return self.value
