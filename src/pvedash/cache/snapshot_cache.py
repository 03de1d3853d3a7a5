"""SnapshotCache — latest cluster snapshot plus a timestamped expiry.

Learn: This is pure state plus a clock. No network access, no events.
The refresh orchestrator is the only writer; every consumer reads.

A miss (nothing cached, or cached but expired) is not an error. read()
keeps returning the last entry even after it expires so the UI can keep
showing last-known-good data; is_valid() is what tells the orchestrator
to refresh.

Validity is the half-open window [fetched_at, expires_at): an entry
written at t0 with a 300s TTL is valid at t0 + 299.9 and stale at t0 + 300.

The per-resource accessors (nodes(), vms(), ...) all read the same entry.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from pvedash.schemas.snapshot import ResourceKind, ResourceView, Snapshot

DEFAULT_TTL_SECONDS = 300.0


@dataclass(frozen=True)
class CacheEntry:
    payload: Snapshot
    fetched_at: float
    expires_at: float

    def is_valid_at(self, now: float) -> bool:
        return self.fetched_at <= now < self.expires_at


@dataclass(frozen=True)
class CacheStatus:
    is_valid: bool
    fetched_at: Optional[float]
    expires_at: Optional[float]
    age_seconds: Optional[float]
    seconds_until_expiry: Optional[float]


class SnapshotCache:
    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.time,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entry: Optional[CacheEntry] = None

    # ─── Core contract ────────────────────────────────────

    def read(self) -> Optional[CacheEntry]:
        return self._entry

    def write(self, payload: Snapshot) -> CacheEntry:
        """Replace the entry wholesale, stamping fetched_at/expires_at from the clock."""
        now = self._clock()
        self._entry = CacheEntry(
            payload=payload,
            fetched_at=now,
            expires_at=now + self.ttl_seconds,
        )
        return self._entry

    def is_valid(self) -> bool:
        entry = self._entry
        return entry is not None and entry.is_valid_at(self._clock())

    def clear(self) -> None:
        self._entry = None

    # ─── Typed accessors ──────────────────────────────────

    def resource(self, kind: ResourceKind) -> Optional[tuple[ResourceView, ...]]:
        """Items of one kind from the current entry (None if absent or not cached)."""
        if self._entry is None:
            return None
        return self._entry.payload.get(kind)

    def nodes(self) -> Optional[tuple[ResourceView, ...]]:
        return self.resource(ResourceKind.NODES)

    def vms(self) -> Optional[tuple[ResourceView, ...]]:
        return self.resource(ResourceKind.VMS)

    def containers(self) -> Optional[tuple[ResourceView, ...]]:
        return self.resource(ResourceKind.CONTAINERS)

    def storage_pools(self) -> Optional[tuple[ResourceView, ...]]:
        return self.resource(ResourceKind.STORAGE_POOLS)

    def network_interfaces(self) -> Optional[tuple[ResourceView, ...]]:
        return self.resource(ResourceKind.NETWORK_INTERFACES)

    # ─── Status ───────────────────────────────────────────

    def status(self) -> CacheStatus:
        """Freshness summary for "updated N min ago / expires in N min" displays."""
        entry = self._entry
        if entry is None:
            return CacheStatus(False, None, None, None, None)
        now = self._clock()
        return CacheStatus(
            is_valid=entry.is_valid_at(now),
            fetched_at=entry.fetched_at,
            expires_at=entry.expires_at,
            age_seconds=max(0.0, now - entry.fetched_at),
            seconds_until_expiry=max(0.0, entry.expires_at - now),
        )
