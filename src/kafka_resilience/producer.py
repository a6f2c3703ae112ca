"""
Resilient Kafka producer.

Provides publish functionality with:
- JSON serialization of pydantic models and plain JSON-compatible values
- Correlation/tenant header propagation from the ambient request context
- One OpenTelemetry client span per publish call
- Non-blocking delivery confirmation drained by a background task
- Raw republication for the dead-letter router
"""

import asyncio
import dataclasses
import inspect
import json
import logging
from typing import Any, Callable, List, Optional, Set, Tuple, Union

from aiokafka import AIOKafkaProducer
from opentelemetry import trace
from opentelemetry.trace import SpanKind
from pydantic import BaseModel

from kafka_resilience.common.exceptions import (
    DeliveryError,
    PublishError,
    SerializationError,
)
from kafka_resilience.common.logging import get_logger, log_exception, log_with_context
from kafka_resilience.common.metrics import (
    record_message_produced,
    record_producer_closed,
    record_producer_error,
    record_producer_opened,
)
from kafka_resilience.config import KafkaConfig, ProducerSettings
from kafka_resilience.context import RequestContext, get_request_context
from kafka_resilience.types import DeliveryReport, KafkaMessage

logger = get_logger(__name__)

# Anything pydantic can dump or json can encode
JsonPayload = Union[BaseModel, dict, list, tuple, str, int, float, bool, None]

ProducerFactory = Callable[..., Any]
DeliveryErrorCallback = Callable[[DeliveryError], Any]

# Marks the end of a publish call on the delivery queue
_CLOSED = None


def serialize_payload(payload: Any, index: Optional[int] = None) -> bytes:
    """
    Encode a payload to JSON bytes.

    Pydantic models use model_dump_json(); dataclass instances are converted
    with dataclasses.asdict(); everything else goes through json.dumps().

    Raises:
        SerializationError: If the payload is not JSON-serializable
    """
    try:
        if isinstance(payload, BaseModel):
            return payload.model_dump_json().encode("utf-8")
        if dataclasses.is_dataclass(payload) and not isinstance(payload, type):
            payload = dataclasses.asdict(payload)
        return json.dumps(payload, allow_nan=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise SerializationError(type(payload).__name__, cause=e, index=index) from e


class ResilientProducer:
    """
    Publishes payloads to one topic with correlation headers.

    Each publish() call opens its own aiokafka producer, enqueues every
    payload in input order and returns as soon as they are enqueued. A drain
    task per call awaits the delivery reports, logs them and closes the
    producer. Delivery failures are reported to `on_delivery_error` and never
    raised from publish().

    Usage:
        >>> producer = ResilientProducer(config, ProducerSettings(topic="orders"))
        >>> with request_context(tenant_id="acme"):
        ...     await producer.publish(order_created, order_paid)
        >>> await producer.wait_for_deliveries()
    """

    def __init__(
        self,
        config: KafkaConfig,
        settings: ProducerSettings,
        producer_factory: Optional[ProducerFactory] = None,
        on_delivery_error: Optional[DeliveryErrorCallback] = None,
        tracer: Optional[trace.Tracer] = None,
    ):
        """
        Args:
            config: Kafka connection configuration
            settings: Target topic/partition and flush settings
            producer_factory: Callable building a producer from kwargs
                (defaults to AIOKafkaProducer)
            on_delivery_error: Called (sync or async) for every message the
                broker failed to deliver
            tracer: OpenTelemetry tracer (defaults to the global provider's)
        """
        self.config = config
        self.settings = settings
        self._producer_factory = producer_factory or AIOKafkaProducer
        self._on_delivery_error = on_delivery_error
        self._tracer = tracer or trace.get_tracer(__name__)
        self._drain_tasks: Set[asyncio.Task] = set()

    async def publish(
        self,
        *payloads: JsonPayload,
        context: Optional[RequestContext] = None,
    ) -> Optional[asyncio.Task]:
        """
        Serialize and enqueue payloads to the configured topic.

        Every message carries the context's correlation headers; a single
        correlation id is generated for the whole call when the context has
        none. Serialization is per message and precedes its enqueue, so when
        a payload fails to serialize the payloads before it are already
        enqueued and will still be delivered.

        Args:
            *payloads: Pydantic models or JSON-compatible values
            context: Request context (defaults to the ambient one)

        Returns:
            The drain task for this call, or None if no payloads were given

        Raises:
            PublishError: If the producer could not start or an enqueue failed
            SerializationError: If a payload could not be encoded
        """
        if not payloads:
            logger.warning("publish called with no payloads")
            return None

        topic = self.settings.topic
        ctx = (context or get_request_context()).with_correlation_id()
        headers = ctx.to_headers()

        with self._tracer.start_as_current_span(topic, kind=SpanKind.CLIENT) as span:
            span.set_attribute("span.kind", "client")
            span.set_attribute("messaging.system", "kafka")
            span.set_attribute("messaging.destination.name", topic)
            span.set_attribute("messaging.batch.message_count", len(payloads))
            span.set_attribute("messaging.correlation_id", ctx.correlation_id)

            producer = await self._start_producer()

            queue: asyncio.Queue = asyncio.Queue(maxsize=self.settings.delivery_queue_size)
            drain_task = asyncio.create_task(
                self._drain(producer, queue, ctx.correlation_id)
            )
            self._drain_tasks.add(drain_task)
            drain_task.add_done_callback(self._drain_tasks.discard)

            enqueued = 0
            try:
                for index, payload in enumerate(payloads):
                    value = serialize_payload(payload, index)
                    future = await self._enqueue(
                        producer, topic, value, headers, partition=self.settings.partition
                    )
                    await queue.put((future, len(value)))
                    enqueued += 1
                    if self.config.verbose_logging:
                        log_with_context(
                            logger,
                            logging.DEBUG,
                            "Message enqueued",
                            topic=topic,
                            index=index,
                            value_size=len(value),
                            correlation_id=ctx.correlation_id,
                        )
            except (SerializationError, PublishError) as e:
                span.set_attribute("messaging.enqueued_count", enqueued)
                log_exception(
                    logger,
                    e,
                    "Publish aborted",
                    topic=topic,
                    enqueued=enqueued,
                    correlation_id=ctx.correlation_id,
                )
                raise
            finally:
                await queue.put(_CLOSED)

        return drain_task

    async def republish(self, message: KafkaMessage) -> DeliveryReport:
        """
        Send raw message bytes and wait for the delivery report.

        Key, value and headers are sent as-is to `message.topic` and
        `message.partition` (None = any partition). The final flush is
        bounded by settings.flush_timeout.

        Raises:
            PublishError: If the producer could not start or the enqueue failed
            DeliveryError: If the broker did not confirm delivery in time
        """
        with self._tracer.start_as_current_span(message.topic, kind=SpanKind.CLIENT) as span:
            span.set_attribute("span.kind", "client")
            span.set_attribute("messaging.system", "kafka")
            span.set_attribute("messaging.destination.name", message.topic)

            producer = await self._start_producer(message.topic)
            try:
                future = await self._enqueue(
                    producer,
                    message.topic,
                    message.value,
                    list(message.headers),
                    key=message.key,
                    partition=message.partition,
                )
                await asyncio.wait_for(producer.flush(), timeout=self.settings.flush_timeout)
                metadata = await future
            except PublishError:
                raise
            except Exception as e:
                record_message_produced(message.topic, len(message.value or b""), success=False)
                record_producer_error(message.topic, type(e).__name__)
                raise DeliveryError(message.topic, cause=e) from e
            finally:
                await self._stop_producer(producer, message.topic)

        record_message_produced(message.topic, len(message.value or b""), success=True)
        return DeliveryReport(
            topic=metadata.topic, partition=metadata.partition, offset=metadata.offset
        )

    async def wait_for_deliveries(self) -> None:
        """Wait until every outstanding drain task has finished."""
        if self._drain_tasks:
            await asyncio.gather(*list(self._drain_tasks), return_exceptions=True)

    @property
    def pending_deliveries(self) -> int:
        """Number of publish calls whose delivery reports are still draining."""
        return len(self._drain_tasks)

    async def _start_producer(self, topic: Optional[str] = None) -> Any:
        topic = topic or self.settings.topic
        producer = self._producer_factory(**self.config.producer_config())
        try:
            await producer.start()
        except Exception as e:
            record_producer_error(topic, type(e).__name__)
            log_exception(logger, e, "Failed to start Kafka producer", topic=topic)
            await self._stop_producer(producer, topic, opened=False)
            raise PublishError(topic, "Could not start Kafka producer", cause=e) from e

        record_producer_opened()
        return producer

    async def _stop_producer(
        self, producer: Any, topic: Optional[str] = None, opened: bool = True
    ) -> None:
        try:
            await producer.stop()
        except Exception as e:
            log_exception(
                logger,
                e,
                "Error stopping Kafka producer",
                level=logging.WARNING,
                topic=topic or self.settings.topic,
            )
        finally:
            if opened:
                record_producer_closed()

    async def _enqueue(
        self,
        producer: Any,
        topic: str,
        value: Optional[bytes],
        headers: List[Tuple[str, bytes]],
        key: Optional[bytes] = None,
        partition: Optional[int] = None,
    ) -> "asyncio.Future":
        try:
            return await producer.send(
                topic,
                value=value,
                key=key,
                partition=partition,
                headers=headers or None,
            )
        except Exception as e:
            record_producer_error(topic, type(e).__name__)
            raise PublishError(topic, "Broker rejected message enqueue", cause=e) from e

    async def _drain(
        self,
        producer: Any,
        queue: asyncio.Queue,
        correlation_id: Optional[str],
    ) -> List[DeliveryReport]:
        """Consume delivery reports until the publish call closes the queue."""
        reports: List[DeliveryReport] = []
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    break
                future, size = item
                reports.append(await self._await_delivery(future, size, correlation_id))
        finally:
            await self._stop_producer(producer)
        return reports

    async def _await_delivery(
        self, future: "asyncio.Future", size: int, correlation_id: Optional[str]
    ) -> DeliveryReport:
        topic = self.settings.topic
        try:
            metadata = await future
        except Exception as e:
            record_message_produced(topic, size, success=False)
            record_producer_error(topic, type(e).__name__)
            error = DeliveryError(topic, cause=e, correlation_id=correlation_id)
            log_exception(
                logger,
                error,
                "Failed to deliver message",
                topic=topic,
                correlation_id=correlation_id,
            )
            await self._report_delivery_error(error)
            return DeliveryReport(topic=topic, error=error)

        record_message_produced(metadata.topic, size, success=True)
        log_with_context(
            logger,
            logging.INFO if self.config.verbose_logging else logging.DEBUG,
            "Successfully produced record",
            topic=metadata.topic,
            partition=metadata.partition,
            offset=metadata.offset,
            correlation_id=correlation_id,
        )
        return DeliveryReport(
            topic=metadata.topic, partition=metadata.partition, offset=metadata.offset
        )

    async def _report_delivery_error(self, error: DeliveryError) -> None:
        if self._on_delivery_error is None:
            return
        try:
            result = self._on_delivery_error(error)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            log_exception(
                logger,
                e,
                "Delivery error callback raised",
                topic=error.topic,
                correlation_id=error.correlation_id,
            )


__all__ = [
    "ResilientProducer",
    "serialize_payload",
    "JsonPayload",
]
