"""CLI entrypoint for the rules engine worker."""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from collections.abc import Iterable
from contextlib import suppress

import structlog

from automation_engine import __version__
from automation_engine.config import AppSettings
from automation_engine.messaging import EventPublisher, RabbitMQBackend
from automation_engine.observability import configure_logging
from automation_engine.worker import run_rules_engine


def cli(argv: Iterable[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    settings = AppSettings()
    configure_logging(settings.service_name, settings.log_level)

    if args.command == "health":
        print("ok")
        return 0

    logger = structlog.get_logger(__name__)

    if args.command == "publish":
        try:
            payload = json.loads(args.payload)
        except json.JSONDecodeError as e:
            parser.error(f"--payload is not valid JSON: {e}")
        if not isinstance(payload, dict):
            parser.error("--payload must be a JSON object")
        asyncio.run(_publish(settings, args.event, payload))
        logger.info("event.published", event_name=args.event)
        return 0

    logger.info(
        "service.starting",
        version=__version__,
        environment=settings.environment,
        events_exchange=settings.events_exchange,
    )
    with suppress(KeyboardInterrupt):
        asyncio.run(_serve(settings))
    logger.info("service.stopped")
    return 0


async def _serve(settings: AppSettings) -> None:
    stop = asyncio.Event()
    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
    await run_rules_engine(settings, stop=stop)


async def _publish(settings: AppSettings, event_name: str, payload: dict) -> None:
    backend = RabbitMQBackend(settings.rabbitmq_url)
    await backend.connect()
    try:
        publisher = EventPublisher(backend, settings.events_exchange)
        await publisher.publish_event(event_name, payload)
    finally:
        await backend.disconnect()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Automation rules engine CLI")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run the rules engine worker")
    serve_parser.set_defaults(command="serve")

    health_parser = subparsers.add_parser("health", help="Quick CLI health probe")
    health_parser.set_defaults(command="health")

    publish_parser = subparsers.add_parser("publish", help="Publish a domain event")
    publish_parser.set_defaults(command="publish")
    publish_parser.add_argument("event", help="Event name, e.g. lead_created")
    publish_parser.add_argument(
        "--payload", default="{}", help='Event payload as JSON, e.g. \'{"leadId": "..."}\''
    )

    parser.set_defaults(command="serve")
    return parser


if __name__ == "__main__":
    raise SystemExit(cli())
