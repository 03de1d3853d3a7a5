"""Snapshot cache — the single authoritative copy of cluster state."""

from pvedash.cache.snapshot_cache import CacheEntry, CacheStatus, SnapshotCache

__all__ = ["CacheEntry", "CacheStatus", "SnapshotCache"]
