"""Connectivity tracking for the remote authority."""

from .monitor import ConnectionMonitor, ConnectionState, Subscription

__all__ = ["ConnectionMonitor", "ConnectionState", "Subscription"]
