"""Degrading read path: remote, then cache, then default."""

from .hybrid import OFFLINE_ROUTES, HybridFetcher

__all__ = ["HybridFetcher", "OFFLINE_ROUTES"]
