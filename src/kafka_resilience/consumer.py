"""
Kafka consumer with bounded retry and dead-letter routing.

Provides async Kafka consumer functionality with:
- Source topic provisioning before subscription
- Manual offset commit for at-least-once processing
- Retry envelope around the user handler (fixed attempt budget, no backoff
  unless configured)
- Dead-letter routing to "{topic}_error" once retries are exhausted
- Request context (tenant, author, correlation id) taken from the message
  headers and installed while the handler runs
- Graceful shutdown handling
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Dict, Optional

from aiokafka import AIOKafkaConsumer
from aiokafka.structs import TopicPartition

from kafka_resilience.common.exceptions import HandlerFault, RouteError
from kafka_resilience.common.logging import (
    KafkaLogContext,
    get_logger,
    log_exception,
    log_with_context,
)
from kafka_resilience.common.metrics import (
    message_processing_duration_seconds,
    record_commit_error,
    record_handler_retry,
    record_message_consumed,
    record_processing_error,
    update_assigned_partitions,
    update_connection_status,
)
from kafka_resilience.config import ConsumerSettings, KafkaConfig
from kafka_resilience.context import RequestContext, request_context
from kafka_resilience.dlq import DeadLetterRouter
from kafka_resilience.topics import TopicProvisioner
from kafka_resilience.types import (
    HandlerResult,
    KafkaMessage,
    MessageHandler,
    ProcessingContext,
    from_consumer_record,
)

logger = get_logger(__name__)

ConsumerFactory = Callable[..., Any]


class ResilientConsumer:
    """
    Async Kafka consumer that retries failed handlers and dead-letters
    messages whose retries are exhausted.

    The handler receives a ProcessingContext and signals failure either by
    raising or by returning HandlerResult.failed(). With max_retries = N > 1
    a message is attempted N times before being dead-lettered; 0 or 1 means a
    single attempt.

    Usage:
        >>> async def handle(ctx: ProcessingContext) -> None:
        ...     order = Order.model_validate_json(ctx.message.value)
        ...     await save(order)
        >>>
        >>> consumer = ResilientConsumer(
        ...     config=KafkaConfig.from_env(),
        ...     settings=ConsumerSettings(topic="orders", group_id="billing", max_retries=3),
        ...     handler=handle,
        ... )
        >>> await consumer.start()  # runs until stop()
    """

    def __init__(
        self,
        config: KafkaConfig,
        settings: ConsumerSettings,
        handler: MessageHandler,
        provisioner: Optional[TopicProvisioner] = None,
        router: Optional[DeadLetterRouter] = None,
        consumer_factory: Optional[ConsumerFactory] = None,
        max_batches: Optional[int] = None,
    ):
        """
        Initialize the consumer.

        Args:
            config: Kafka connection configuration
            settings: Topic, group and retry settings (not modified afterwards)
            handler: Callback processing one message attempt (sync or async)
            provisioner: Topic provisioner (default built from config)
            router: Dead-letter router (default built from config and provisioner)
            consumer_factory: Callable building the aiokafka consumer
                (defaults to AIOKafkaConsumer)
            max_batches: Optional limit on number of non-empty polls to process
                (None = unlimited). Useful for testing.
        """
        self.config = config
        self.settings = settings
        self.handler = handler
        self.provisioner = provisioner or TopicProvisioner(config)
        self.router = router or DeadLetterRouter(config, provisioner=self.provisioner)
        self._consumer_factory = consumer_factory or AIOKafkaConsumer
        self._consumer: Optional[Any] = None
        self._running = False

        self.max_batches = max_batches
        self._batch_count = 0

        log_with_context(
            logger,
            logging.INFO,
            "Initialized Kafka consumer",
            topic=settings.topic,
            group_id=settings.group_id,
            max_retries=settings.max_retries,
            bootstrap_servers=config.bootstrap_servers,
        )

    async def start(self) -> None:
        """
        Provision the topic, connect, and process messages until stopped.

        If the loop ends with an error the Kafka client is closed before the
        error is raised; after cancellation the caller is expected to call
        stop().

        Raises:
            ProvisionError: If the source topic could not be provisioned
            RouteError: If a message could not be dead-lettered; its offset
                is not committed so it is redelivered after a restart
        """
        if self._running:
            logger.warning("Consumer already running, ignoring duplicate start call")
            return

        log_with_context(
            logger,
            logging.INFO,
            "Starting Kafka consumer",
            topic=self.settings.topic,
            group_id=self.settings.group_id,
        )

        await self.provisioner.ensure(self.settings.topic_spec)

        self._consumer = self._consumer_factory(
            self.settings.topic,
            **self.config.consumer_config(
                self.settings.group_id, self.settings.auto_offset_reset
            ),
        )
        await self._consumer.start()
        self._running = True
        update_connection_status("consumer", connected=True)

        log_with_context(
            logger,
            logging.INFO,
            "Kafka consumer started successfully",
            topic=self.settings.topic,
            group_id=self.settings.group_id,
        )

        try:
            await self._consume_loop()
        except asyncio.CancelledError:
            logger.info("Consumer loop cancelled, shutting down")
            raise
        except Exception as e:
            log_exception(logger, e, "Consumer loop terminated with error")
            self._running = False
            try:
                await self.stop()
            except Exception as stop_error:
                # Already logged by stop(); the loop error is the one to raise
                logger.debug(
                    "Consumer close after loop error failed",
                    extra={"error_type": type(stop_error).__name__},
                )
            raise
        finally:
            self._running = False

    async def stop(self) -> None:
        """
        Stop the consumer and cleanup resources.

        Offsets are committed per processed message, so nothing is committed
        here. Safe to call multiple times.
        """
        if self._consumer is None:
            logger.debug("Consumer not running or already stopped")
            return

        logger.info("Stopping Kafka consumer")
        self._running = False

        try:
            await self._consumer.stop()
            logger.info("Kafka consumer stopped successfully")
        except Exception as e:
            log_exception(logger, e, "Error stopping Kafka consumer")
            raise
        finally:
            update_connection_status("consumer", connected=False)
            update_assigned_partitions(self.settings.group_id, 0)
            self._consumer = None

    async def _consume_loop(self) -> None:
        """
        Fetch records, process them in order and commit after each one.

        Exits when stopped, when max_batches is reached, or when a message
        could not be dead-lettered.
        """
        logged_waiting_for_assignment = False
        logged_assignment_received = False

        while self._running and self._consumer:
            if self.max_batches is not None and self._batch_count >= self.max_batches:
                log_with_context(
                    logger,
                    logging.INFO,
                    "Reached max_batches limit, stopping consumer",
                    max_batches=self.max_batches,
                )
                return

            resume_at: Dict[TopicPartition, int] = {}
            try:
                # getmany() can block past its timeout while a rebalance is in
                # progress, so wait for an assignment first
                assignment = self._consumer.assignment()
                if not assignment:
                    if not logged_waiting_for_assignment:
                        log_with_context(
                            logger,
                            logging.INFO,
                            "Waiting for partition assignment",
                            group_id=self.settings.group_id,
                        )
                        logged_waiting_for_assignment = True
                    await asyncio.sleep(0.5)
                    continue

                if not logged_assignment_received:
                    log_with_context(
                        logger,
                        logging.INFO,
                        "Partition assignment received",
                        group_id=self.settings.group_id,
                        partitions=[f"{tp.topic}:{tp.partition}" for tp in assignment],
                    )
                    update_assigned_partitions(self.settings.group_id, len(assignment))
                    logged_assignment_received = True

                data = await self._consumer.getmany(timeout_ms=1000)
                if data:
                    self._batch_count += 1

                # First offset not yet processed, per partition of this batch
                resume_at = {tp: records[0].offset for tp, records in data.items() if records}

                for tp, records in data.items():
                    for record in records:
                        if not self._running:
                            logger.info("Consumer stopped, breaking message loop")
                            return
                        message = from_consumer_record(record)
                        await self.process_message(message)
                        resume_at[tp] = record.offset + 1
                        await self._commit(message)

            except (asyncio.CancelledError, RouteError):
                raise
            except Exception as e:
                log_exception(logger, e, "Error in consumption loop")
                # The fetch position is already past this batch
                self._rewind(resume_at)
                await asyncio.sleep(1)

    async def _commit(self, message: KafkaMessage) -> None:
        """
        Commit the offset after this record only.

        A bare commit() would also cover records of the same batch that have
        not been processed yet. A failed commit is logged and not raised: the
        next successful commit on the partition covers this record, and if
        none follows the record is redelivered.
        """
        tp = TopicPartition(message.topic, message.partition)
        try:
            await self._consumer.commit({tp: message.offset + 1})
        except Exception as e:
            record_commit_error(message.topic, self.settings.group_id)
            log_exception(
                logger,
                e,
                "Offset commit failed, continuing with batch",
                level=logging.WARNING,
                commit_offset=message.offset + 1,
            )

    def _rewind(self, resume_at: Dict[TopicPartition, int]) -> None:
        for tp, offset in resume_at.items():
            try:
                self._consumer.seek(tp, offset)
            except Exception as e:
                # Partition revoked; its new owner resumes from the committed offset
                log_exception(
                    logger,
                    e,
                    "Could not rewind partition",
                    level=logging.WARNING,
                    include_traceback=False,
                    topic=tp.topic,
                    partition=tp.partition,
                    seek_offset=offset,
                )

    async def process_message(self, message: KafkaMessage) -> bool:
        """
        Run the retry envelope for one message.

        Args:
            message: Message to process

        Returns:
            True if the handler succeeded, False if the message was dead-lettered

        Raises:
            RouteError: If dead-lettering failed
        """
        with KafkaLogContext(
            topic=message.topic,
            partition=message.partition,
            offset=message.offset,
            key=message.key.decode("utf-8", errors="replace") if message.key else None,
            consumer_group=self.settings.group_id,
        ):
            start_time = time.perf_counter()
            try:
                succeeded = await self._run_with_retries(message)
            finally:
                message_processing_duration_seconds.labels(
                    topic=message.topic, consumer_group=self.settings.group_id
                ).observe(time.perf_counter() - start_time)

            record_message_consumed(
                message.topic,
                self.settings.group_id,
                "success" if succeeded else "dead_lettered",
            )
            return succeeded

    async def _run_with_retries(self, message: KafkaMessage) -> bool:
        request = RequestContext.from_headers(message.headers)
        remaining = self.settings.max_retries
        attempt = 1

        while True:
            ctx = ProcessingContext(
                message=message,
                remaining_retries=remaining,
                faulted=remaining == 0,
                request=request,
                attempt=attempt,
            )
            fault = await self._invoke(ctx)
            if fault is None:
                log_with_context(
                    logger,
                    logging.DEBUG,
                    "Message processed successfully",
                    attempt=attempt,
                )
                return True

            record_processing_error(
                message.topic, self.settings.group_id, fault.category.value
            )

            if remaining > 1:
                log_exception(
                    logger,
                    fault,
                    "Handler failed - retrying",
                    level=logging.WARNING,
                    attempt=attempt,
                    remaining_retries=remaining - 1,
                    correlation_id=request.correlation_id,
                )
                record_handler_retry(message.topic, self.settings.group_id)
                remaining -= 1
                attempt += 1
                if self.settings.retry_delay_seconds:
                    await asyncio.sleep(self.settings.retry_delay_seconds)
                continue

            log_exception(
                logger,
                fault,
                "Handler failed - retries exhausted, routing to dead-letter topic",
                attempt=attempt,
                correlation_id=request.correlation_id,
            )
            await self.router.route(message)
            return False

    async def _invoke(self, ctx: ProcessingContext) -> Optional[HandlerFault]:
        """Call the handler once; return a HandlerFault if it failed."""
        with request_context(ctx.request):
            try:
                result = self.handler(ctx)
                if inspect.isawaitable(result):
                    result = await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                return HandlerFault(
                    f"Handler raised {type(e).__name__} on attempt {ctx.attempt}",
                    cause=e,
                    attempt=ctx.attempt,
                    remaining_retries=ctx.remaining_retries,
                )

        if isinstance(result, HandlerResult) and not result.success:
            reason = result.reason or "Handler reported failure"
            return HandlerFault(
                f"{reason} on attempt {ctx.attempt}",
                cause=result.error if isinstance(result.error, Exception) else None,
                attempt=ctx.attempt,
                remaining_retries=ctx.remaining_retries,
            )
        return None

    @property
    def is_running(self) -> bool:
        """Check if consumer is running and processing messages."""
        return self._running and self._consumer is not None


__all__ = [
    "ResilientConsumer",
]
