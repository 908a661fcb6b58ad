"""FastAPI application exposing the engine to local UI clients."""

import logging
from datetime import datetime
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from ..config import Config
from ..engine import OfflineEngine
from ..errors import InvalidEventError
from ..sync import EventStatus

logger = logging.getLogger(__name__)


class EventIn(BaseModel):
    kind: str
    payload: dict[str, Any] = Field(default_factory=dict)


def create_app(config: Config, engine: OfflineEngine) -> FastAPI:
    """Create the API application.

    Args:
        config: Application configuration.
        engine: Engine serving the requests.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="tripsync",
        description="Local offline sync API for terminal UIs",
        version="0.1.0",
    )

    app.state.config = config
    app.state.engine = engine

    @app.get("/api/status")
    async def api_status() -> dict[str, Any]:
        """Connectivity and queue summary."""
        return {
            "node_name": config.node.name,
            "timestamp": datetime.now().isoformat(),
            **engine.get_status().to_dict(),
            "queue": engine.log.get_stats(),
            "last_sync": (
                engine.sync_engine.last_sync.isoformat()
                if engine.sync_engine.last_sync
                else None
            ),
        }

    @app.get("/api/events")
    async def api_events(status: str | None = None, limit: int = 100) -> dict[str, Any]:
        """List events, newest last."""
        events = engine.log.all()
        if status:
            try:
                wanted = EventStatus(status.upper())
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
            events = [e for e in events if e.status is wanted]

        events = events[-limit:] if limit > 0 else []
        return {
            "count": len(events),
            "events": [e.to_dict() for e in events],
        }

    @app.post("/api/events", status_code=201)
    async def api_add_event(body: EventIn) -> dict[str, Any]:
        """Record an event for delivery."""
        try:
            event = engine.add_event(body.kind, body.payload)
        except InvalidEventError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return event.to_dict()

    @app.post("/api/sync")
    async def api_sync() -> dict[str, Any]:
        """Drain the queue now."""
        result = await engine.trigger_sync()
        return result.to_dict()

    @app.post("/api/compact")
    async def api_compact() -> dict[str, Any]:
        return {"removed": engine.compact()}

    @app.get("/api/connection")
    async def api_connection() -> dict[str, Any]:
        return {
            "state": engine.get_connection_state().value,
            "failure_count": engine.monitor.failure_count,
            "max_failures": engine.monitor.max_failures,
        }

    @app.post("/api/connection/retry")
    async def api_retry_connection() -> dict[str, Any]:
        """Probe the remote and report the resulting state."""
        ok = await engine.retry_connection()
        return {"ok": ok, "state": engine.get_connection_state().value}

    @app.get("/api/routes")
    async def api_routes() -> dict[str, Any]:
        routes = await engine.fetcher.fetch_routes()
        return {"count": len(routes), "routes": routes}

    return app
