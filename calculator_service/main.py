"""
Main entrypoint of the calculator service.

This script:
- Reads settings from the command line and the environment
- Connects to RabbitMQ when log events are enabled
- Serves POST /calculate until interrupted

Example::

    curl -X POST http://localhost:8080/calculate \\
        -H "Content-Type: application/json" \\
        -d '{"problem": "6/2", "id": "1234", "username": "user1"}'
"""

import argparse
from typing import List, Optional

from pydantic import ValidationError

from calculator_service.common.config import ServiceSettings
from calculator_service.common.logger import configure_logging, logger
from calculator_service.events.publisher import LogPublishError, RabbitMQPublisher
from calculator_service.server.server import CalculationServer


def parse_args(argv: Optional[List[str]] = None) -> ServiceSettings:
    """
    Parse command-line arguments and merge them with the environment.

    The ``PORT`` environment variable takes precedence over ``--port``.

    :param list argv: Arguments to parse, defaults to ``sys.argv[1:]``

    :return: Validated service settings
    :rtype: ServiceSettings
    """
    parser = argparse.ArgumentParser(description="Arithmetic calculation HTTP service")
    parser.add_argument("--host", default=None, help="address to listen on (default 0.0.0.0)")
    parser.add_argument("--port", default=None, help="port to listen on (default 8080)")
    parser.add_argument(
        "--no-log-events",
        action="store_true",
        help="do not publish request log events to RabbitMQ",
    )
    parser.add_argument("--log-level", default=None, help="service logging level (default INFO)")

    args = parser.parse_args(argv)

    try:
        return ServiceSettings.from_env(
            host=args.host,
            port=args.port,
            log_events=False if args.no_log_events else None,
            log_level=args.log_level,
        )
    except ValidationError as exc:
        parser.error(str(exc))


def build_publisher(settings: ServiceSettings) -> Optional[RabbitMQPublisher]:
    """
    Create and connect the log event publisher, if log events are enabled.

    :param ServiceSettings settings: Service settings

    :return: Connected publisher or None
    :rtype: Optional[RabbitMQPublisher]
    :raises LogPublishError: If the broker cannot be reached
    """
    if not settings.log_events:
        return None
    publisher = RabbitMQPublisher(settings=settings.broker)
    publisher.connect()
    return publisher


def main(argv: Optional[List[str]] = None) -> None:
    """
    Main function executed by the ``calculator-service`` console script.
    """
    settings = parse_args(argv)
    configure_logging(settings.log_level)

    try:
        publisher = build_publisher(settings)
    except LogPublishError as exc:
        logger.error(f"🐇❌ {exc}")
        raise SystemExit(1) from exc

    try:
        CalculationServer(settings=settings, publisher=publisher).start()
    finally:
        # Also closed by the application shutdown; close() is idempotent
        if publisher is not None:
            publisher.close()


if __name__ == "__main__":
    main()
