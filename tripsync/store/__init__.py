"""Durable key-value storage backing the event queue and read cache."""

from .persisted_store import PersistedStore

__all__ = ["PersistedStore"]
