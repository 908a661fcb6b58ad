"""CLI entry point for tripsync."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .engine import OfflineEngine, run_engine
from .errors import ConfigError, InvalidEventError


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            return json.dumps(log_data, default=str)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.WARNING

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logging.basicConfig(level=level, handlers=[handler], force=True)


async def _open_engine(config: Config) -> OfflineEngine:
    """Build the engine and connect transports that need it."""
    engine = OfflineEngine.from_config(config)

    if config.transport.kind == "mqtt":
        connected = await engine.transport.connect()
        if not connected:
            print(
                f"Warning: MQTT broker {config.transport.mqtt.broker} unreachable, "
                "events stay queued",
                file=sys.stderr,
            )

    return engine


def _print(data: dict, as_json: bool) -> None:
    if as_json:
        print(json.dumps(data, indent=2, default=str))
    else:
        for key, value in data.items():
            print(f"{key}: {value}")


async def cmd_status(args: argparse.Namespace) -> int:
    """Show queue and connectivity status."""
    config = load_config(args.config)
    engine = OfflineEngine.from_config(config)
    try:
        status = {
            "node": config.node.name,
            "transport": config.transport.kind,
            **engine.get_status().to_dict(),
            **{f"queue_{k}": v for k, v in engine.log.get_stats().items()},
        }
        _print(status, args.json)
    finally:
        await engine.close()
    return 0


async def cmd_add_event(args: argparse.Namespace) -> int:
    """Record an event."""
    config = load_config(args.config)
    try:
        payload = json.loads(args.payload)
    except json.JSONDecodeError as e:
        print(f"Invalid payload JSON: {e}", file=sys.stderr)
        return 1

    engine = OfflineEngine.from_config(config)
    engine.sync_on_add = False
    try:
        event = engine.add_event(args.kind, payload)
    except InvalidEventError as e:
        print(f"Invalid event: {e}", file=sys.stderr)
        return 1
    finally:
        await engine.close()

    print(event.id)
    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Drain the queue once."""
    config = load_config(args.config)
    engine = await _open_engine(config)
    try:
        result = await engine.trigger_sync()
        _print(
            {**result.to_dict(), "pending": engine.get_pending_count()},
            args.json,
        )
    finally:
        await engine.close()
    return 0


async def cmd_fetch(args: argparse.Namespace) -> int:
    """Run a hybrid fetch and print the answer."""
    config = load_config(args.config)
    engine = await _open_engine(config)
    try:
        if args.query == "routes":
            data = await engine.fetcher.fetch_routes()
        elif args.query == "terminal-context":
            data = await engine.fetcher.fetch_terminal_context(args.id or "")
        else:
            if not args.id:
                print("seats requires --id VEHICLE_ID", file=sys.stderr)
                return 1
            data = await engine.fetcher.fetch_vehicle_seats(args.id)
        print(json.dumps(data, indent=2, default=str))
    finally:
        await engine.close()
    return 0


async def cmd_probe(args: argparse.Namespace) -> int:
    """Probe the remote once."""
    config = load_config(args.config)
    engine = await _open_engine(config)
    try:
        ok = await engine.retry_connection()
        print(f"{engine.get_connection_state().value}")
    finally:
        await engine.close()
    return 0 if ok else 1


async def cmd_compact(args: argparse.Namespace) -> int:
    """Remove settled events from the queue."""
    config = load_config(args.config)
    engine = OfflineEngine.from_config(config)
    try:
        removed = engine.compact()
    finally:
        await engine.close()
    print(f"Removed {removed} settled events")
    return 0


async def cmd_run(args: argparse.Namespace) -> int:
    """Sync periodically until interrupted."""
    config = load_config(args.config)
    if not config.sync.enabled:
        print("Sync is disabled in configuration", file=sys.stderr)
        return 1

    print(f"Starting tripsync node: {config.node.name}")
    print(f"Transport: {config.transport.kind} ({config.transport.endpoint})")
    print(f"Sync interval: {config.sync.interval_seconds}s")

    engine = await _open_engine(config)
    engine.monitor.subscribe(lambda state: print(f"Connection: {state.value}"))
    try:
        await run_engine(engine)
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nShutting down...")
    finally:
        await engine.close()
    return 0


async def cmd_serve(args: argparse.Namespace) -> int:
    """Serve the local JSON API with the sync loop running."""
    config = load_config(args.config)

    try:
        import uvicorn

        from .api import create_app
    except ImportError as e:
        print(f"API dependencies not installed: {e}", file=sys.stderr)
        print("Install with: pip install tripsync[api]", file=sys.stderr)
        return 1

    host = args.host or config.api.host
    port = args.port or config.api.port

    engine = await _open_engine(config)
    app = create_app(config, engine)

    print(f"Serving tripsync API on http://{host}:{port}")
    try:
        if config.sync.enabled:
            await engine.start()
        server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=host,
                port=port,
                log_level="info" if args.verbose else "warning",
            )
        )
        await server.serve()
    finally:
        await engine.close()

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tripsync",
        description="Offline-first event sync for transit terminals",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output logs and results as JSON",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    status_parser = subparsers.add_parser("status", help="Show queue and connection status")
    status_parser.set_defaults(func=cmd_status)

    add_parser = subparsers.add_parser("add-event", help="Record an event")
    add_parser.add_argument("kind", help="TRIP_START, TICKET_ISSUE or TRIP_END")
    add_parser.add_argument(
        "--payload",
        default="{}",
        help='Payload as JSON (e.g. \'{"trip_id": "t1"}\')',
    )
    add_parser.set_defaults(func=cmd_add_event)

    sync_parser = subparsers.add_parser("sync", help="Drain the queue once")
    sync_parser.set_defaults(func=cmd_sync)

    fetch_parser = subparsers.add_parser("fetch", help="Fetch data with offline fallback")
    fetch_parser.add_argument("query", choices=["routes", "terminal-context", "seats"])
    fetch_parser.add_argument("--id", help="Operator or vehicle id")
    fetch_parser.set_defaults(func=cmd_fetch)

    probe_parser = subparsers.add_parser("probe", help="Retry the remote connection")
    probe_parser.set_defaults(func=cmd_probe)

    compact_parser = subparsers.add_parser("compact", help="Drop synced and failed events")
    compact_parser.set_defaults(func=cmd_compact)

    run_parser = subparsers.add_parser("run", help="Sync periodically until interrupted")
    run_parser.set_defaults(func=cmd_run)

    serve_parser = subparsers.add_parser("serve", help="Serve the local JSON API")
    serve_parser.add_argument("-p", "--port", type=int, default=None, help="Port to bind")
    serve_parser.add_argument("--host", type=str, default=None, help="Host to bind")
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.log_level, args.json)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
