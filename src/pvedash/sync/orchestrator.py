"""RefreshOrchestrator — single-flight snapshot refresh.

Learn: Every mounted consumer asks "is the data loaded?" on mount and on
each poll tick. Without coordination that is N identical aggregator calls.
The orchestrator keeps one nullable reference to the in-flight refresh
task; any request that arrives while it is set awaits the same task.

    ensure_loaded() ──► cache valid? ──yes──► True (no network)
                             │no
                             ▼
                     pending task? ──yes──► await it (coalesced)
                             │no
                             ▼
               create task: fetch (with deadline)
                   success → cache.write → publish SNAPSHOT_UPDATED
                   failure → cache untouched → publish SNAPSHOT_REFRESH_FAILED

Waiters await asyncio.shield(task): a caller that gets cancelled (a page
that went away) never cancels the shared fetch for everyone else.

The event loop is single-threaded and nothing awaits between checking and
setting `_pending`, so no lock is needed.

Failures are not retried here. The cache stays invalid, so the next
ensure_loaded() — the next poll tick or mount — tries again.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

import structlog

from pvedash.cache.snapshot_cache import CacheEntry, SnapshotCache
from pvedash.errors import REFRESH_TIMEOUT, REFRESH_TRANSPORT, RefreshError
from pvedash.events.bus import EventBus
from pvedash.events.types import Topic
from pvedash.schemas.snapshot import ResourceKind, Snapshot

logger = structlog.get_logger()

SnapshotFetcher = Callable[[], Awaitable[Snapshot]]

DEFAULT_REFRESH_TIMEOUT = 15.0


@dataclass(frozen=True)
class RefreshFailure:
    """Payload of Topic.SNAPSHOT_REFRESH_FAILED."""

    message: str
    kind: str


@dataclass
class RefreshStats:
    """Runtime statistics for monitoring."""

    refreshes: int = 0
    coalesced: int = 0
    failures: int = 0
    last_error: Optional[str] = None
    last_success_at: Optional[float] = None


class RefreshOrchestrator:
    """Owns the single-flight refresh handle. The only writer of SnapshotCache."""

    def __init__(
        self,
        cache: SnapshotCache,
        fetch: SnapshotFetcher,
        bus: EventBus,
        *,
        timeout: float = DEFAULT_REFRESH_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.bus = bus
        self.timeout = timeout
        self.stats = RefreshStats()
        self._fetch = fetch
        self._clock = clock
        self._pending: Optional[asyncio.Task] = None
        # Bumped by reset(); a fetch started under an older epoch never writes
        self._epoch = 0
        self._background: set[asyncio.Task] = set()

    # ─── Public contract ──────────────────────────────────

    async def ensure_loaded(self, require: Iterable[ResourceKind] = ()) -> bool:
        """True once the cache holds valid data, False if the refresh failed.

        `require` lists resource kinds the caller can't render without. A
        valid snapshot that lacks one of them still triggers a refresh.
        """
        if self.cache.is_valid():
            missing = [
                ResourceKind(k).value
                for k in require
                if self.cache.resource(ResourceKind(k)) is None
            ]
            if not missing:
                return True
            logger.info("refresh.required_resources_missing", kinds=missing)
        return await self._refresh()

    async def force_refresh(self) -> bool:
        """Refresh regardless of cache validity (still single-flight)."""
        return await self._refresh()

    @property
    def is_refreshing(self) -> bool:
        return self._pending is not None

    def get_or_request_refresh(self) -> Optional[CacheEntry]:
        """Return the cached entry if valid, else ask for a refresh and return None."""
        if self.cache.is_valid():
            return self.cache.read()
        self.request_refresh()
        return None

    def request_refresh(self) -> None:
        """Broadcast that fresh data is needed; bind() turns it into a refresh."""
        self.bus.publish(Topic.SNAPSHOT_REFRESH_NEEDED)

    def bind(self) -> Callable[[], None]:
        """Subscribe to SNAPSHOT_REFRESH_NEEDED. Returns the unsubscribe function."""
        return self.bus.subscribe(
            Topic.SNAPSHOT_REFRESH_NEEDED, self._on_refresh_needed
        )

    def reset(self) -> None:
        """Drop cached data (logout).

        A refresh already in flight still finishes its network call, but its
        result is discarded: it was fetched for the session that just ended.
        """
        self._epoch += 1
        self.cache.clear()
        logger.info("refresh.cache_reset", in_flight=self.is_refreshing)

    async def wait_idle(self) -> None:
        """Wait for the in-flight refresh and any background refreshes to finish."""
        tasks = list(self._background)
        if self._pending is not None:
            tasks.append(self._pending)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def get_stats(self) -> dict:
        """Return refresh statistics for monitoring."""
        return {
            "refreshes": self.stats.refreshes,
            "coalesced": self.stats.coalesced,
            "failures": self.stats.failures,
            "last_error": self.stats.last_error,
            "last_success_at": self.stats.last_success_at,
            "in_flight": self.is_refreshing,
            "cache_valid": self.cache.is_valid(),
        }

    # ─── Single-flight ────────────────────────────────────

    async def _refresh(self) -> bool:
        if self._pending is None:
            self._pending = asyncio.create_task(self._run_refresh(self._epoch))
        else:
            self.stats.coalesced += 1
            logger.debug("refresh.coalesced", waiters=self.stats.coalesced)
        return await asyncio.shield(self._pending)

    async def _run_refresh(self, epoch: int) -> bool:
        self.stats.refreshes += 1
        started = self._clock()
        failure: Optional[RefreshFailure] = None
        entry: Optional[CacheEntry] = None

        try:
            try:
                snapshot = await asyncio.wait_for(self._fetch(), timeout=self.timeout)
            except asyncio.TimeoutError:
                failure = RefreshFailure(
                    f"Refresh timed out after {self.timeout:g}s", REFRESH_TIMEOUT
                )
            except RefreshError as e:
                failure = RefreshFailure(e.message, e.kind)
            except Exception as e:
                logger.exception("refresh.unexpected_error")
                failure = RefreshFailure(str(e) or type(e).__name__, REFRESH_TRANSPORT)
            else:
                if epoch == self._epoch:
                    entry = self.cache.write(snapshot)
        finally:
            # Handle is cleared before any outcome is published
            self._pending = None

        if failure is not None:
            self.stats.failures += 1
            self.stats.last_error = failure.message
            logger.warning(
                "refresh.failed",
                kind=failure.kind,
                error=failure.message,
                duration=round(self._clock() - started, 3),
            )
            self.bus.publish(Topic.SNAPSHOT_REFRESH_FAILED, failure)
            return False

        if entry is None:
            logger.info("refresh.discarded", reason="cache_reset")
            return False

        self.stats.last_error = None
        self.stats.last_success_at = entry.fetched_at
        logger.info(
            "refresh.completed",
            counts=entry.payload.counts(),
            duration=round(self._clock() - started, 3),
        )
        self.bus.publish(Topic.SNAPSHOT_UPDATED, entry)
        return True

    def _on_refresh_needed(self, _payload) -> None:
        if self._pending is not None:
            return
        task = asyncio.get_running_loop().create_task(self.force_refresh())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
