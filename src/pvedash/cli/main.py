"""pvedash CLI — inspect the cluster snapshot and follow live alerts.

Usage:
    pvedash snapshot                 # Load (or reuse) the cluster snapshot and summarise it
    pvedash snapshot --force --json  # Always refetch, dump raw JSON
    pvedash check                    # Validate cluster config and test the aggregator
    pvedash login -u admin           # Get a dashboard token (export as PVEDASH_DASHBOARD_TOKEN)
    pvedash watch                    # Live alerts + periodic refresh until Ctrl-C
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import signal
import sys
from datetime import datetime
from typing import Optional

import click
import httpx

from pvedash import __version__
from pvedash.config import Settings
from pvedash.dashboard import Dashboard, cluster_credentials_from_settings
from pvedash.errors import PvedashError
from pvedash.events.types import Topic
from pvedash.log_config import configure_logging
from pvedash.realtime.client import EventEnvelope
from pvedash.schemas.cluster import validate_cluster_config
from pvedash.sync.orchestrator import RefreshFailure

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


def _settings() -> Settings:
    """Read settings from the environment at call time."""
    return Settings()


def _transport() -> Optional[httpx.AsyncBaseTransport]:
    """HTTP transport override (None = real network)."""
    return None


def _dashboard(settings: Settings) -> Dashboard:
    return Dashboard(settings, transport=_transport())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        # No running loop: normal CLI invocation
        return asyncio.run(coro)
    else:
        # Already inside an event loop (e.g. test runner): run in a thread
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "—"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def _status_color(status: str) -> str:
    """Map resource / connection / severity strings to click colors."""
    colors = {
        "online": "green",
        "running": "green",
        "available": "green",
        "active": "green",
        "open": "green",
        "offline": "red",
        "stopped": "red",
        "unknown": "yellow",
        "paused": "yellow",
        "connecting": "yellow",
        "reconnecting": "yellow",
        "failed": "red",
        "closed": "white",
        "info": "cyan",
        "warning": "yellow",
        "critical": "red",
    }
    return colors.get(str(status).lower(), "white")


def _resource_name(resource: dict) -> str:
    for key in ("name", "node", "vmid", "id", "iface", "storage"):
        if resource.get(key) not in (None, ""):
            return str(resource[key])
    return "?"


def _explain_error(message: str) -> str:
    """Turn low-level failure text into something actionable."""
    lowered = message.lower()
    if "401" in lowered or "authentication" in lowered or "auth failed" in lowered:
        return "Authentication error: check the cluster username and secret"
    if "no such host" in lowered or "lookup" in lowered or "connection refused" in lowered:
        return "Cannot reach the cluster. Check the URL and that the server is up."
    if "timed out" in lowered or "timeout" in lowered:
        return "Timed out: the cluster is not answering."
    return message


def _fmt_ts(ts: Optional[float]) -> str:
    return datetime.fromtimestamp(ts).strftime("%H:%M:%S") if ts else "—"


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="pvedash")
@click.option("--log-level", default=None, help="Override PVEDASH_LOG_LEVEL")
def main(log_level: Optional[str]):
    """pvedash — cluster snapshot cache and live alert stream."""
    s = _settings()
    configure_logging(level=log_level or s.log_level, json_logs=s.log_json)


# ---------------------------------------------------------------------------
# pvedash snapshot
# ---------------------------------------------------------------------------


@main.command()
@click.option("--force", is_flag=True, help="Refetch even if a fresh snapshot is cached")
@click.option("--json", "as_json", is_flag=True, help="Print the raw snapshot as JSON")
def snapshot(force: bool, as_json: bool):
    """Load the cluster snapshot and print a summary."""
    _run(_snapshot_impl(force, as_json))


async def _snapshot_impl(force: bool, as_json: bool):
    dash = _dashboard(_settings())
    failures: list[RefreshFailure] = []
    dash.bus.subscribe(Topic.SNAPSHOT_REFRESH_FAILED, failures.append)

    try:
        if force:
            ok = await dash.orchestrator.force_refresh()
        else:
            ok = await dash.orchestrator.ensure_loaded()
    finally:
        await dash.api.aclose()

    if not ok:
        message = failures[0].message if failures else "unknown error"
        click.secho(f"Refresh failed: {_explain_error(message)}", fg="red", err=True)
        sys.exit(1)

    entry = dash.cache.read()
    if as_json:
        click.echo(_pretty_json(entry.payload.model_dump()))
        return

    status = dash.cache.status()
    click.secho("Cluster snapshot", bold=True)
    click.echo(f"  Fetched:  {_fmt_ts(status.fetched_at)}")
    click.echo(f"  Expires:  {_fmt_ts(status.expires_at)} "
               f"(in {status.seconds_until_expiry:.0f}s)")
    click.echo()

    counts = [
        {"kind": kind, "count": "absent" if n is None else n}
        for kind, n in entry.payload.counts().items()
    ]
    _print_table(counts, [("Resource", "kind", 20), ("Count", "count", 8)])

    nodes = dash.cache.nodes() or ()
    if nodes:
        click.echo()
        click.secho("Nodes:", bold=True)
        for node in nodes:
            state = str(node.get("status", "unknown"))
            click.echo(f"  {_resource_name(node):20s}  "
                       f"{click.style(state, fg=_status_color(state))}")


# ---------------------------------------------------------------------------
# pvedash check
# ---------------------------------------------------------------------------


@main.command()
def check():
    """Validate the cluster configuration and test the aggregator connection."""
    _run(_check_impl())


async def _check_impl():
    s = _settings()

    if s.cluster_api_token:
        problems = validate_cluster_config(s.cluster_url, s.cluster_api_token, s.cluster_node)
        if problems:
            click.secho("Invalid cluster configuration:", fg="red", bold=True, err=True)
            for p in problems:
                click.echo(f"  - {p}", err=True)
            sys.exit(1)

    dash = _dashboard(s)
    try:
        cluster = cluster_credentials_from_settings(s)
        click.echo(f"Testing {cluster.url} (node {cluster.node}) as {cluster.username}...")
        snap = await dash.api.fetch_snapshot(cluster)
    except PvedashError as e:
        click.secho(f"✗ {_explain_error(str(e))}", fg="red", err=True)
        sys.exit(1)
    finally:
        await dash.api.aclose()

    node_count = len(snap.nodes or ())
    click.secho(f"✓ Connected to cluster ({node_count} node(s))", fg="green")


# ---------------------------------------------------------------------------
# pvedash login
# ---------------------------------------------------------------------------


@main.command()
@click.option("--username", "-u", prompt=True)
@click.option("--password", "-p", prompt=True, hide_input=True)
def login(username: str, password: str):
    """Log in to the dashboard backend and print the session token."""
    _run(_login_impl(username, password))


async def _login_impl(username: str, password: str):
    dash = _dashboard(_settings())
    try:
        resp = await dash.login(username, password)
    except PvedashError as e:
        click.secho(f"Login failed: {e}", fg="red", err=True)
        sys.exit(1)
    finally:
        await dash.api.aclose()

    click.secho(f"Logged in as {resp.user.username} ({resp.user.role})", fg="green")
    click.echo(f"export PVEDASH_DASHBOARD_TOKEN={resp.token}")


# ---------------------------------------------------------------------------
# pvedash watch
# ---------------------------------------------------------------------------


@main.command()
@click.option("--no-poll", is_flag=True, help="Don't refresh the snapshot periodically")
@click.option("--limit", "-l", default=20, help="Recent alerts to show on start")
def watch(no_poll: bool, limit: int):
    """Follow live alerts and snapshot refreshes until interrupted."""
    _run(_watch_impl(no_poll, limit))


def _echo_alert(alert) -> None:
    sev = click.style(f"{alert.severity:8s}", fg=_status_color(alert.severity))
    click.echo(f"  [{sev}] #{alert.id} {alert.source}: {alert.title} — {alert.message}")


async def _watch_impl(no_poll: bool, limit: int):
    s = _settings()
    dash = _dashboard(s)
    done = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, done.set)
        except (NotImplementedError, RuntimeError):
            pass  # not on the main thread / platform without signals

    dash.bus.subscribe(Topic.ALERT_RECEIVED, _echo_alert)
    dash.bus.subscribe(
        Topic.ALERT_ACKNOWLEDGED,
        lambda ack: click.echo(f"  alert #{ack.alert_id} acknowledged"),
    )
    dash.bus.subscribe(
        Topic.SNAPSHOT_UPDATED,
        lambda entry: click.echo(
            f"snapshot refreshed at {_fmt_ts(entry.fetched_at)}: {entry.payload.counts()}"
        ),
    )
    dash.bus.subscribe(
        Topic.SNAPSHOT_REFRESH_FAILED,
        lambda f: click.secho(f"refresh failed ({f.kind}): {f.message}", fg="yellow"),
    )
    dash.bus.subscribe(
        Topic.LIVE_CONNECTED,
        lambda _: click.secho("live alerts connected", fg="green"),
    )
    dash.bus.subscribe(
        Topic.LIVE_DISCONNECTED,
        lambda info: click.secho(f"live alerts disconnected: {info.get('error')}", fg="yellow"),
    )
    for topic in (Topic.LIVE_RECONNECT_EXHAUSTED, Topic.LIVE_AUTH_REJECTED):
        dash.bus.subscribe(
            topic,
            lambda info: click.secho(f"live alerts unavailable: {info.get('error')}", fg="red"),
        )

    def on_ping(envelope: EventEnvelope) -> None:
        click.echo(f"  ping {_fmt_ts(envelope.received_at)}", err=True)

    if not dash.credentials.is_authenticated():
        click.secho(
            "No dashboard token (PVEDASH_DASHBOARD_TOKEN); live alerts disabled.",
            fg="yellow",
        )

    await dash.start(poll=not no_poll, handlers={"ping": on_ping})
    try:
        try:
            recent = await dash.api.list_alerts(limit=limit)
        except PvedashError as e:
            click.secho(f"Could not load recent alerts: {e}", fg="yellow")
            recent = []
        if recent:
            click.secho(f"Recent alerts ({len(recent)}):", bold=True)
            for alert in recent:
                _echo_alert(alert)
        click.echo("Watching (Ctrl-C to stop)...")
        await done.wait()
    finally:
        await dash.stop()
