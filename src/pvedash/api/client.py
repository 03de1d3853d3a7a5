"""DashboardApi — thin async wrapper around the dashboard backend's REST API.

Learn: Every call either returns a validated pydantic model or raises one
of the typed errors in pvedash.errors. Connection failures, non-2xx
statuses and unparseable bodies all become TransportError; an aggregator
body with success=false becomes BackendReportedError carrying the server's
message verbatim.

The bearer token is read from the CredentialSource on every request, so a
login/logout takes effect without rebuilding the client.
"""

from typing import Any, Optional

import httpx
import structlog
from pydantic import ValidationError

from pvedash.auth.credentials import CredentialSource
from pvedash.errors import BackendReportedError, TransportError
from pvedash.schemas.alerts import Alert
from pvedash.schemas.auth import LoginRequest, LoginResponse
from pvedash.schemas.cluster import ClusterCredentials
from pvedash.schemas.snapshot import AggregatorResponse, Snapshot

logger = structlog.get_logger()


class DashboardApi:
    def __init__(
        self,
        base_url: str,
        *,
        credentials: Optional[CredentialSource] = None,
        timeout: float = 10.0,
        aggregator_path: str = "/api/v1/proxmox/fetch-data",
        alerts_path: str = "/api/v1/alerts",
        login_path: str = "/api/v1/auth/login",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = credentials
        self.aggregator_path = aggregator_path
        self.alerts_path = alerts_path
        self.login_path = login_path
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "DashboardApi":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ─── Helpers ──────────────────────────────────────────

    def _auth_headers(self) -> dict[str, str]:
        token = self.credentials.get_token() if self.credentials else None
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """Send a request and return the decoded JSON body."""
        try:
            r = await self._client.request(
                method, path, headers=self._auth_headers(), **kwargs
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Request to {path} timed out") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Network error: {e}") from e

        if r.is_error:
            try:
                detail = r.json().get("error")
            except (ValueError, AttributeError):
                detail = None
            raise TransportError(
                detail or f"HTTP {r.status_code}", status_code=r.status_code
            )

        try:
            return r.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {path}") from e

    # ─── Aggregator ───────────────────────────────────────

    async def fetch_snapshot(self, cluster: ClusterCredentials) -> Snapshot:
        """Fetch the full cluster snapshot from the aggregator endpoint."""
        body = await self._request(
            "POST", self.aggregator_path, json=cluster.model_dump()
        )
        try:
            resp = AggregatorResponse.model_validate(body)
        except ValidationError as e:
            raise TransportError(f"Malformed aggregator response: {e}") from e

        if not resp.success:
            raise BackendReportedError(resp.failure_message)

        snapshot = resp.to_snapshot()
        logger.debug("api.snapshot_fetched", counts=snapshot.counts())
        return snapshot

    # ─── Auth ─────────────────────────────────────────────

    async def login(self, username: str, password: str) -> LoginResponse:
        body = await self._request(
            "POST",
            self.login_path,
            json=LoginRequest(username=username, password=password).model_dump(),
        )
        try:
            return LoginResponse.model_validate(body)
        except ValidationError as e:
            raise TransportError(f"Malformed login response: {e}") from e

    # ─── Alerts ───────────────────────────────────────────

    async def list_alerts(self, limit: int = 20) -> list[Alert]:
        """Recent alerts — the periodic correction for missed push events."""
        body = await self._request("GET", self.alerts_path, params={"limit": limit})
        alerts: list[Alert] = []
        for item in body or []:
            try:
                alerts.append(Alert.model_validate(item))
            except ValidationError:
                logger.warning("api.alert_dropped", item=item)
        return alerts
