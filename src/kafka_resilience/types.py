"""Transport-agnostic message and processing types.

KafkaMessage decouples handlers from aiokafka's ConsumerRecord so that
handlers can be exercised without a broker, and so that the dead-letter
router can derive a republishable copy with only topic and partition
changed.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

from kafka_resilience.context import RequestContext

__all__ = [
    "KafkaMessage",
    "ProcessingContext",
    "HandlerResult",
    "DeliveryReport",
    "MessageHandler",
    "from_consumer_record",
]


@dataclass(frozen=True)
class KafkaMessage:
    """Message received from (or destined for) a Kafka topic.

    Attributes:
        topic: Topic name
        partition: Partition number, or None to let the broker choose
        offset: Offset within the partition, None for unpublished copies
        key: Optional message key as raw bytes
        value: Payload as raw bytes (JSON when produced by ResilientProducer)
        headers: Ordered (name, value) header pairs
        timestamp: Broker timestamp in milliseconds since epoch
    """

    topic: str
    partition: Optional[int]
    offset: Optional[int]
    key: Optional[bytes] = None
    value: Optional[bytes] = None
    headers: List[Tuple[str, bytes]] = field(default_factory=list)
    timestamp: Optional[int] = None

    def header(self, name: str) -> Optional[bytes]:
        """Return the first header value with the given name."""
        for key, value in self.headers:
            if key == name:
                return value
        return None

    def reroute(self, topic: str) -> "KafkaMessage":
        """Copy for republishing: new topic, any partition, no offset."""
        return replace(self, topic=topic, partition=None, offset=None)


def from_consumer_record(record: Any) -> KafkaMessage:
    """Convert an aiokafka ConsumerRecord to a KafkaMessage.

    Args:
        record: aiokafka ConsumerRecord from consumer.getmany()

    Returns:
        KafkaMessage carrying the same data
    """
    headers = [(k, v) for k, v in (getattr(record, "headers", None) or [])]
    return KafkaMessage(
        topic=record.topic,
        partition=record.partition,
        offset=record.offset,
        key=record.key,
        value=record.value,
        headers=headers,
        timestamp=getattr(record, "timestamp", None),
    )


@dataclass(frozen=True)
class ProcessingContext:
    """Execution context for one handler attempt.

    A fresh instance is created for every attempt; `message` is shared.
    """

    message: KafkaMessage
    remaining_retries: int
    faulted: bool
    request: RequestContext = field(default_factory=RequestContext)
    attempt: int = 1

    @property
    def tenant_id(self) -> Optional[str]:
        return self.request.tenant_id

    @property
    def author_id(self) -> Optional[str]:
        return self.request.author_id

    @property
    def correlation_id(self) -> Optional[str]:
        return self.request.correlation_id


@dataclass(frozen=True)
class HandlerResult:
    """Explicit outcome a handler may return instead of raising."""

    success: bool
    error: Optional[BaseException] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "HandlerResult":
        return cls(success=True)

    @classmethod
    def failed(
        cls, error: Optional[BaseException] = None, reason: Optional[str] = None
    ) -> "HandlerResult":
        return cls(success=False, error=error, reason=reason)


@dataclass(frozen=True)
class DeliveryReport:
    """Outcome of one enqueued message, produced by the drain task."""

    topic: str
    partition: Optional[int] = None
    offset: Optional[int] = None
    error: Optional[BaseException] = None

    @property
    def delivered(self) -> bool:
        return self.error is None


# Handlers may be coroutine functions or plain functions
MessageHandler = Callable[
    [ProcessingContext],
    Union[Awaitable[Optional[HandlerResult]], Optional[HandlerResult]],
]
