"""Local JSON API for terminal UIs.

Requires the api extra: pip install tripsync[api]
"""

from .app import create_app

__all__ = ["create_app"]
