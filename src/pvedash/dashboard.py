"""Dashboard — composition root wiring cache, refresh and live alerts.

Learn: Instead of process-wide singletons (an auth manager, a config
manager, a translation cache reached from everywhere), every component is
built here once and handed its collaborators explicitly:

    EventBus ◄──── TokenStore (publishes auth.changed)
       ▲  ▲
       │  └─── RefreshOrchestrator ──► SnapshotCache
       │              ▲
       │         RefreshPoller (periodic driver)
       │
       └────── LiveEventClient (alerts, connection state)

start()/stop() mirror a FastAPI lifespan: anything started in start() is
torn down in stop(), in reverse order. Use it as an async context manager:

    async with Dashboard(settings) as dash:
        dash.bus.subscribe(Topic.ALERT_RECEIVED, on_alert)
        ...
"""

import asyncio
import time
from typing import Callable, Mapping, Optional

import httpx
import structlog

from pvedash.api.client import DashboardApi
from pvedash.auth.credentials import TokenStore
from pvedash.cache.snapshot_cache import SnapshotCache
from pvedash.config import Settings
from pvedash.errors import ConfigurationError
from pvedash.events.bus import EventBus
from pvedash.events.types import Topic
from pvedash.realtime.client import EventHandler, LiveEventClient
from pvedash.realtime.state import ReconnectPolicy
from pvedash.schemas.auth import LoginResponse
from pvedash.schemas.cluster import ClusterCredentials, validate_cluster_config
from pvedash.schemas.snapshot import Snapshot
from pvedash.sync.orchestrator import RefreshOrchestrator
from pvedash.sync.poller import RefreshPoller

logger = structlog.get_logger()


def cluster_credentials_from_settings(settings: Settings) -> ClusterCredentials:
    """Build the aggregator request body, raising ConfigurationError if incomplete."""
    if settings.cluster_api_token:
        problems = validate_cluster_config(
            settings.cluster_url, settings.cluster_api_token, settings.cluster_node
        )
        if problems:
            raise ConfigurationError("; ".join(problems))
        return ClusterCredentials.from_api_token(
            settings.cluster_url,
            settings.cluster_api_token,
            node=settings.cluster_node,
            username=settings.cluster_username,
            secret=settings.cluster_secret,
        )

    if settings.cluster_url and settings.cluster_username and settings.cluster_secret:
        return ClusterCredentials(
            url=settings.cluster_url,
            username=settings.cluster_username,
            secret=settings.cluster_secret,
            node=settings.cluster_node or "pve",
        )

    raise ConfigurationError(
        "Cluster credentials not configured "
        "(set PVEDASH_CLUSTER_URL and PVEDASH_CLUSTER_API_TOKEN)"
    )


class Dashboard:
    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self._clock = clock
        self.bus = EventBus()
        self.credentials = TokenStore(settings.dashboard_token, bus=self.bus, clock=clock)
        self.cache = SnapshotCache(settings.cache_ttl_seconds, clock=clock)
        self.api = DashboardApi(
            settings.api_url,
            credentials=self.credentials,
            timeout=settings.http_timeout_seconds,
            aggregator_path=settings.aggregator_path,
            alerts_path=settings.alerts_path,
            login_path=settings.login_path,
            transport=transport,
        )
        self.orchestrator = RefreshOrchestrator(
            self.cache,
            self._fetch_snapshot,
            self.bus,
            timeout=settings.refresh_timeout_seconds,
            clock=clock,
        )
        self.live = LiveEventClient(
            self.bus,
            credentials=self.credentials,
            policy=ReconnectPolicy(
                base_delay=settings.reconnect_base_delay,
                max_delay=settings.reconnect_max_delay,
                max_attempts=settings.reconnect_max_attempts,
            ),
            idle_timeout=settings.idle_timeout_seconds,
            http_timeout=settings.http_timeout_seconds,
            transport=transport,
            clock=clock,
        )
        self.poller = RefreshPoller(self.orchestrator, settings.poll_interval_seconds)

        self._live_enabled = False
        self._live_handlers: Optional[Mapping[str, EventHandler]] = None
        self._poll_enabled = False
        self._poll_task: Optional[asyncio.Task] = None
        self._expiry_timer: Optional[asyncio.TimerHandle] = None
        self._unsubscribers: list[Callable[[], None]] = []
        self._background: set[asyncio.Task] = set()

    async def __aenter__(self) -> "Dashboard":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None

    # ─── Lifecycle ────────────────────────────────────────

    async def start(
        self,
        *,
        live: bool = True,
        poll: bool = True,
        handlers: Optional[Mapping[str, EventHandler]] = None,
    ) -> bool:
        """Load data, open the alert stream and start polling.

        Returns the outcome of the initial ensure_loaded(). A failed first
        load is not fatal: the poller keeps trying. Polling is paused while
        no one is logged in and resumes on login.
        """
        logger.info("dashboard.starting", api_url=self.settings.api_url, live=live, poll=poll)

        self._unsubscribers.append(self.orchestrator.bind())
        self._unsubscribers.append(
            self.bus.subscribe(Topic.AUTH_CHANGED, self._on_auth_changed)
        )

        loaded = await self.orchestrator.ensure_loaded()

        self._live_enabled = live
        self._live_handlers = handlers
        if live:
            await self._open_live()

        self._poll_enabled = poll
        if poll:
            self._start_poller(run_immediately=False)

        self._schedule_expiry()

        return loaded

    async def stop(self) -> None:
        logger.info("dashboard.stopping", stats=self.orchestrator.get_stats())

        self._cancel_expiry()
        await self._stop_poller()

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

        await self.live.aclose()
        await self.orchestrator.wait_idle()
        await self.api.aclose()

    # ─── Auth ─────────────────────────────────────────────

    async def login(self, username: str, password: str) -> LoginResponse:
        """Log in against the dashboard backend and store the session token."""
        resp = await self.api.login(username, password)
        self.credentials.set_token(resp.token, resp.user)
        return resp

    def logout(self) -> None:
        self.credentials.clear()

    def _on_auth_changed(self, payload: dict) -> None:
        task = asyncio.get_running_loop().create_task(
            self._follow_credentials(bool(payload.get("authenticated")))
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _follow_credentials(self, authenticated: bool) -> None:
        if authenticated:
            self._schedule_expiry()
            if self._poll_enabled and self._poll_task is None:
                self._start_poller(run_immediately=True)
            if self._live_enabled:
                await self._open_live()
            return
        # Credential gone: no live channel, no polling, no cached cluster data
        self._cancel_expiry()
        await self._stop_poller()
        await self.live.close()
        self.orchestrator.reset()

    def _schedule_expiry(self) -> None:
        self._cancel_expiry()
        expires_at = self.credentials.expires_at()
        if expires_at is None:
            return
        delay = max(0.0, expires_at - self._clock())
        self._expiry_timer = asyncio.get_running_loop().call_later(
            delay, self._on_expiry_due
        )

    def _on_expiry_due(self) -> None:
        self._expiry_timer = None
        if not self.credentials.check_expiry() and self.credentials.is_authenticated():
            # Loop timers may fire a little ahead of the wall clock
            self._schedule_expiry()

    def _cancel_expiry(self) -> None:
        if self._expiry_timer is not None:
            self._expiry_timer.cancel()
            self._expiry_timer = None

    async def _open_live(self) -> None:
        if not self.credentials.is_authenticated():
            logger.info("dashboard.live_skipped", reason="unauthenticated")
            return
        await self.live.open(self.settings.stream_url, handlers=self._live_handlers)

    # ─── Polling ──────────────────────────────────────────

    def _start_poller(self, *, run_immediately: bool) -> None:
        self.poller.run_immediately = run_immediately
        self._poll_task = asyncio.create_task(self.poller.run_loop())

    async def _stop_poller(self) -> None:
        if self._poll_task is None:
            return
        task, self._poll_task = self._poll_task, None
        self.poller.stop()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ─── Data ─────────────────────────────────────────────

    async def _fetch_snapshot(self) -> Snapshot:
        return await self.api.fetch_snapshot(
            cluster_credentials_from_settings(self.settings)
        )
