"""
Dead-letter routing.

Messages whose handler exhausted its retries are republished to
"{original_topic}_error". Key, value and headers are left untouched so the
message can be inspected and replayed as-is; only the topic changes and the
partition is left to the broker. The naming convention is relied on by
whatever monitors the error topics, so it must not change.
"""

import logging
from typing import Optional

from kafka_resilience.common.exceptions import RouteError
from kafka_resilience.common.logging import get_logger, log_exception, log_with_context
from kafka_resilience.common.metrics import record_dead_lettered
from kafka_resilience.config import (
    DEFAULT_FLUSH_TIMEOUT_SECONDS,
    KafkaConfig,
    ProducerSettings,
    TopicSpec,
)
from kafka_resilience.context import CORRELATION_ID_HEADER
from kafka_resilience.producer import ProducerFactory, ResilientProducer
from kafka_resilience.topics import TopicProvisioner
from kafka_resilience.types import DeliveryReport, KafkaMessage

logger = get_logger(__name__)

DEAD_LETTER_SUFFIX = "_error"


def dead_letter_topic(topic: str) -> str:
    """Return the dead-letter topic name for a source topic."""
    return f"{topic}{DEAD_LETTER_SUFFIX}"


class DeadLetterRouter:
    """
    Republishes failed messages to their dead-letter topic.

    Dead-letter topics are created with one partition and replication factor
    one, so failures of a topic stay strictly ordered.
    """

    def __init__(
        self,
        config: KafkaConfig,
        provisioner: Optional[TopicProvisioner] = None,
        producer_factory: Optional[ProducerFactory] = None,
        flush_timeout: float = DEFAULT_FLUSH_TIMEOUT_SECONDS,
    ):
        self.config = config
        self.provisioner = provisioner or TopicProvisioner(config)
        self.flush_timeout = flush_timeout
        self._producer_factory = producer_factory

    async def route(self, message: KafkaMessage) -> DeliveryReport:
        """
        Provision the dead-letter topic and republish the message there.

        Args:
            message: The message that failed processing

        Returns:
            Delivery report of the republished message

        Raises:
            RouteError: If provisioning or publishing failed
        """
        target = dead_letter_topic(message.topic)
        correlation_id = message.header(CORRELATION_ID_HEADER)

        try:
            await self.provisioner.ensure(
                TopicSpec(target, partitions=1, replication_factor=1)
            )
            producer = ResilientProducer(
                self.config,
                ProducerSettings(topic=target, flush_timeout=self.flush_timeout),
                producer_factory=self._producer_factory,
            )
            report = await producer.republish(message.reroute(target))
        except Exception as e:
            record_dead_lettered(message.topic, success=False)
            error = RouteError(message.topic, target, cause=e)
            log_exception(
                logger,
                error,
                "Dead-letter routing failed",
                source_topic=message.topic,
                source_partition=message.partition,
                source_offset=message.offset,
                dead_letter_topic=target,
            )
            raise error from e

        record_dead_lettered(message.topic, success=True)
        log_with_context(
            logger,
            logging.WARNING,
            "Message routed to dead-letter topic",
            source_topic=message.topic,
            source_partition=message.partition,
            source_offset=message.offset,
            dead_letter_topic=report.topic,
            dead_letter_partition=report.partition,
            dead_letter_offset=report.offset,
            correlation_id=correlation_id.decode("utf-8", errors="replace")
            if correlation_id
            else None,
        )
        return report


__all__ = [
    "DEAD_LETTER_SUFFIX",
    "DeadLetterRouter",
    "dead_letter_topic",
]
