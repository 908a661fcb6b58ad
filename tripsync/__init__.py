"""Offline-first event sync engine for intermittently connected terminals."""

__version__ = "0.1.0"
