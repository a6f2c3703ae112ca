"""
Command-line entry point.

Usage:
    # Create a topic if it does not exist
    python -m kafka_resilience ensure-topic orders --partitions 6 --replication-factor 3

    # Publish JSON payloads with a tenant header
    python -m kafka_resilience publish orders '{"id": 1}' '{"id": 2}' --tenant-id acme

    # Expose Prometheus metrics while running
    python -m kafka_resilience --metrics-port 8000 publish orders '{"id": 1}'

Connection settings come from KAFKA_* environment variables
(see KafkaConfig.from_env).
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from prometheus_client import start_http_server

from kafka_resilience.common.exceptions import MessagingError
from kafka_resilience.common.logging import get_logger, log_exception, setup_logging
from kafka_resilience.config import KafkaConfig, ProducerSettings, TopicSpec
from kafka_resilience.context import RequestContext
from kafka_resilience.producer import ResilientProducer
from kafka_resilience.topics import TopicProvisioner

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="python -m kafka_resilience",
        description="Provision topics and publish messages",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Port for the Prometheus metrics server (disabled by default)",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--json-logs", action="store_true", help="Log JSON lines")

    subparsers = parser.add_subparsers(dest="command", required=True)

    ensure = subparsers.add_parser("ensure-topic", help="Create a topic if absent")
    ensure.add_argument("name")
    ensure.add_argument("--partitions", type=int, default=1)
    ensure.add_argument("--replication-factor", type=int, default=1)

    publish = subparsers.add_parser("publish", help="Publish JSON payloads")
    publish.add_argument("topic")
    publish.add_argument("payloads", nargs="+", help="JSON documents")
    publish.add_argument("--partition", type=int, default=None)
    publish.add_argument("--tenant-id", default=None)
    publish.add_argument("--author", default=None)
    publish.add_argument("--author-id", default=None)
    publish.add_argument("--correlation-id", default=None)

    return parser.parse_args(argv)


async def run_ensure_topic(config: KafkaConfig, args: argparse.Namespace) -> None:
    provisioner = TopicProvisioner(config)
    created = await provisioner.ensure(
        TopicSpec(args.name, args.partitions, args.replication_factor)
    )
    print(f"{args.name}: {'created' if created else 'already exists'}")


async def run_publish(config: KafkaConfig, args: argparse.Namespace) -> int:
    payloads = [json.loads(raw) for raw in args.payloads]
    failures = []
    producer = ResilientProducer(
        config,
        ProducerSettings(topic=args.topic, partition=args.partition),
        on_delivery_error=failures.append,
    )
    context = RequestContext(
        tenant_id=args.tenant_id,
        author=args.author,
        author_id=args.author_id,
        correlation_id=args.correlation_id,
    )
    await producer.publish(*payloads, context=context)
    await producer.wait_for_deliveries()
    delivered = len(payloads) - len(failures)
    print(f"{args.topic}: {delivered}/{len(payloads)} delivered")
    return 0 if not failures else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        config = KafkaConfig.from_env()
    except (ValueError, MessagingError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(verbose=args.verbose or config.verbose_logging, json_format=args.json_logs)

    if args.metrics_port:
        start_http_server(args.metrics_port)
        logger.info("Metrics server started", extra={"port": args.metrics_port})

    try:
        if args.command == "ensure-topic":
            asyncio.run(run_ensure_topic(config, args))
            return 0
        return asyncio.run(run_publish(config, args))
    except json.JSONDecodeError as e:
        print(f"Invalid JSON payload: {e}", file=sys.stderr)
        return 2
    except MessagingError as e:
        log_exception(logger, e, f"{args.command} failed")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
