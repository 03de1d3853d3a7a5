"""HTTP client for the dashboard backend (aggregator, login, alert list)."""

from pvedash.api.client import DashboardApi

__all__ = ["DashboardApi"]
