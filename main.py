"""Command-line interface for the crudhub record service."""

from __future__ import annotations
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

import httpx
import websockets

from crudhub.broadcaster import Broadcaster
from crudhub.config import ConfigError, Settings, load_settings
from crudhub.database import Database
from crudhub.service import RecordService

logger = logging.getLogger("crudhub.main")

_DEFAULT_SERVICE_URL = "http://localhost:8000"


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="crudhub user record utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (default: CRUDHUB_CONFIG or config/crudhub.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Create the record database (seeding it when empty)")
    subparsers.add_parser("reset", help="Replace every record with the seed data")
    subparsers.add_parser("list", help="Print the active records")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP record service")
    serve_parser.add_argument("--host", default=None, help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port for the HTTP API (default: 8000)",
    )

    status_parser = subparsers.add_parser(
        "status", help="Report the health and statistics of a running service"
    )
    status_parser.add_argument(
        "--service-url",
        default=_DEFAULT_SERVICE_URL,
        help=f"Base URL of a running service (default: {_DEFAULT_SERVICE_URL})",
    )

    watch_parser = subparsers.add_parser(
        "watch", help="Print record events from a running service as they happen"
    )
    watch_parser.add_argument(
        "--service-url",
        default=_DEFAULT_SERVICE_URL,
        help=f"Base URL of a running service (default: {_DEFAULT_SERVICE_URL})",
    )
    watch_parser.add_argument(
        "--count",
        type=int,
        default=None,
        help="Stop after this many events (default: run until interrupted)",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "reset", "list", "status", "watch"}

    # Global options may precede the subcommand; find the first positional.
    index = 0
    while index < len(args_list) and args_list[index] == "--config":
        index += 2

    if index >= len(args_list):
        args_list = [*args_list, "serve"]
    else:
        first = args_list[index]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = [*args_list[:index], "serve", *args_list[index:]]

    return parser.parse_args(args_list)


def _load_settings(config: str | None) -> Settings:
    path = Path(config).expanduser() if config else None
    try:
        return load_settings(path)
    except ConfigError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc


def _build_service(settings: Settings) -> RecordService:
    database = Database(settings.database_path)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return RecordService(
        database,
        Broadcaster(queue_size=settings.listener_queue_size),
        default_page_size=settings.default_page_size,
        max_page_size=settings.max_page_size,
        max_search_limit=settings.max_search_limit,
    )


def _serve(settings: Settings, *, host: str | None, port: int | None) -> None:
    from crudhub.api import create_app
    import uvicorn

    bind_host = host or settings.host
    bind_port = port or settings.port
    logger.info("Starting record API on http://%s:%s", bind_host, bind_port)

    app = create_app(settings=settings)
    uvicorn.run(
        app,
        host=bind_host,
        port=bind_port,
        log_level=settings.log_level.lower(),
    )


def _list_records(service: RecordService, page_size: int) -> None:
    page = service.list(page=1, page_size=page_size)
    if not page.items:
        print("No active users are currently stored.")
        return

    print(f"{page.total_count} active user(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Email':<32}  {'Age':>3}  Created")
    print("-" * 88)
    for user in page.items:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        print(f"{user.id:>4}  {user.name:<24}  {user.email:<32}  {user.age:>3}  {created}")
    if page.has_next:
        print(f"... {page.total_count - len(page.items)} more not shown")


def _show_status(base_url: str) -> int:
    base = base_url.rstrip("/")

    try:
        health = httpx.get(f"{base}/health", timeout=10.0)
    except httpx.HTTPError as exc:
        print(f"Failed to contact record service: {exc}")
        return 1

    if health.status_code != 200:
        print(f"Service is unhealthy ({health.status_code}): {health.text.strip()}")
        return 1
    print("Service is healthy; database is reachable.")

    try:
        stats_response = httpx.get(f"{base}/records/stats", timeout=10.0)
        stats_response.raise_for_status()
        stats = stats_response.json()
    except (httpx.HTTPError, ValueError) as exc:
        print(f"Unable to load statistics: {exc}")
        return 1

    print(f"  Total users:  {stats.get('totalUsers', '?')}")
    print(f"  Active users: {stats.get('activeUsers', '?')}")
    print(f"  Last user id: {stats.get('lastUserId') or '-'}")
    print(f"  Database:     {stats.get('databasePath', '?')}")
    return 0


def _events_url(base_url: str) -> str:
    base = base_url.rstrip("/")
    if base.startswith("https://"):
        return "wss://" + base[len("https://"):] + "/events"
    if base.startswith("http://"):
        return "ws://" + base[len("http://"):] + "/events"
    return base + "/events"


def _format_event(message: dict[str, object]) -> str:
    name = message.get("event", "?")
    sequence = message.get("sequence", "?")
    payload = message.get("payload")
    if isinstance(payload, dict):
        detail = json.dumps(payload, ensure_ascii=False, sort_keys=True)
    elif payload is None:
        detail = ""
    else:
        detail = str(payload)
    return f"[{sequence}] {name} {detail}".rstrip()


async def _watch_events(base_url: str, count: int | None) -> None:
    url = _events_url(base_url)
    received = 0
    async with websockets.connect(url) as connection:
        async for raw in connection:
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Ignoring non-JSON frame from %s", url)
                continue
            print(_format_event(message), flush=True)
            if message.get("event") == "Connected":
                continue
            received += 1
            if count is not None and received >= count:
                return


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    settings = _load_settings(args.config)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    if args.command == "serve":
        _serve(settings, host=args.host, port=args.port)
    elif args.command == "init-db":
        service = _build_service(settings)
        if settings.seed_on_empty and service.seed_if_empty():
            print("Database initialisation complete; seed users installed.")
        else:
            print("Database initialisation complete.")
    elif args.command == "reset":
        service = _build_service(settings)
        users = service.reset()
        print(f"Database reset; {len(users)} seed user(s) installed.")
    elif args.command == "list":
        _list_records(_build_service(settings), settings.max_page_size)
    elif args.command == "status":
        raise SystemExit(_show_status(args.service_url))
    elif args.command == "watch":
        try:
            asyncio.run(_watch_events(args.service_url, args.count))
        except KeyboardInterrupt:
            print("\nStopped watching events.")
        except (OSError, websockets.WebSocketException) as exc:
            raise SystemExit(f"Event stream failed: {exc}") from exc


if __name__ == "__main__":
    main()
