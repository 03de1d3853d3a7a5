"""Tests for SnapshotCache — TTL window, accessors, status.

Learn: The cache takes a clock callable, so expiry is tested by moving a
FakeClock rather than sleeping.
"""

import pytest

from conftest import NODE_PVE01, T0
from pvedash.cache.snapshot_cache import SnapshotCache
from pvedash.schemas.snapshot import ResourceKind, Snapshot


def _snapshot(**kwargs) -> Snapshot:
    kwargs.setdefault("nodes", (NODE_PVE01,))
    return Snapshot(**kwargs)


def test_empty_cache_is_a_miss(cache):
    assert cache.read() is None
    assert cache.is_valid() is False
    assert cache.nodes() is None


def test_write_stamps_fetch_and_expiry(cache):
    entry = cache.write(_snapshot())
    assert entry.fetched_at == T0
    assert entry.expires_at == T0 + 300
    assert cache.read() is entry
    assert cache.is_valid() is True


def test_valid_until_just_before_expiry(cache, clock):
    cache.write(_snapshot())
    clock.advance(299.9)
    assert cache.is_valid() is True


def test_stale_exactly_at_expiry(cache, clock):
    """Validity is the half-open window [fetched_at, expires_at)."""
    cache.write(_snapshot())
    clock.advance(300)
    assert cache.is_valid() is False


def test_expired_entry_is_still_readable(cache, clock):
    """Last-known-good data stays available after it goes stale."""
    cache.write(_snapshot())
    clock.advance(1000)
    assert cache.is_valid() is False
    assert cache.read() is not None
    assert cache.nodes() == (NODE_PVE01,)


def test_write_replaces_wholesale(cache):
    cache.write(_snapshot(vms=({"vmid": 100},)))
    cache.write(_snapshot())
    # The second snapshot didn't carry vms, so they're absent now
    assert cache.vms() is None


def test_clear(cache):
    cache.write(_snapshot())
    cache.clear()
    assert cache.read() is None
    assert cache.is_valid() is False


def test_accessors_read_the_same_entry(cache):
    snap = Snapshot(
        nodes=(NODE_PVE01,),
        vms=(),
        containers=({"vmid": 200},),
        storage_pools=({"storage": "local"},),
        network_interfaces=None,
    )
    cache.write(snap)

    assert cache.nodes() == (NODE_PVE01,)
    assert cache.vms() == ()
    assert cache.containers() == ({"vmid": 200},)
    assert cache.storage_pools() == ({"storage": "local"},)
    assert cache.network_interfaces() is None
    assert cache.resource(ResourceKind.CONTAINERS) == cache.containers()


def test_accessor_items_cannot_be_edited_in_place(cache):
    cache.write(_snapshot())
    with pytest.raises(TypeError):
        cache.nodes()[0]["status"] = "offline"
    assert cache.read().payload.nodes[0]["status"] == "online"


def test_status_reports_age_and_remaining(cache, clock):
    cache.write(_snapshot())
    clock.advance(120)

    status = cache.status()

    assert status.is_valid is True
    assert status.fetched_at == T0
    assert status.expires_at == T0 + 300
    assert status.age_seconds == pytest.approx(120)
    assert status.seconds_until_expiry == pytest.approx(180)


def test_status_when_empty(cache):
    status = cache.status()
    assert status.is_valid is False
    assert status.fetched_at is None
    assert status.seconds_until_expiry is None


def test_status_never_goes_negative(cache, clock):
    cache.write(_snapshot())
    clock.advance(500)
    assert cache.status().seconds_until_expiry == 0.0


@pytest.mark.parametrize("ttl", [0, -1])
def test_rejects_non_positive_ttl(ttl):
    with pytest.raises(ValueError):
        SnapshotCache(ttl)
