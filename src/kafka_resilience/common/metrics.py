"""
Prometheus metrics for kafka_resilience.

Provides instrumentation for:
- Message production and delivery outcomes
- Message consumption and processing duration
- Handler retries and dead-lettered messages
- Topic provisioning
"""

from prometheus_client import Counter, Gauge, Histogram

# Message production metrics
messages_produced_total = Counter(
    "kafka_messages_produced_total",
    "Total number of messages produced to Kafka topics",
    ["topic", "status"],  # status: success, error
)

messages_produced_bytes = Counter(
    "kafka_messages_produced_bytes_total",
    "Total bytes of message data produced to Kafka topics",
    ["topic"],
)

producer_errors_total = Counter(
    "kafka_producer_errors_total",
    "Total number of producer errors",
    ["topic", "error_type"],
)

# Message consumption metrics
messages_consumed_total = Counter(
    "kafka_messages_consumed_total",
    "Total number of messages consumed from Kafka topics",
    ["topic", "consumer_group", "status"],  # status: success, dead_lettered
)

processing_errors_total = Counter(
    "kafka_processing_errors_total",
    "Total number of handler failures by category",
    ["topic", "consumer_group", "error_category"],
)

commit_errors_total = Counter(
    "kafka_commit_errors_total",
    "Total number of failed offset commits",
    ["topic", "consumer_group"],
)

handler_retries_total = Counter(
    "kafka_handler_retries_total",
    "Total number of handler re-invocations after a failure",
    ["topic", "consumer_group"],
)

messages_dead_lettered_total = Counter(
    "kafka_messages_dead_lettered_total",
    "Total number of messages republished to a dead-letter topic",
    ["source_topic", "status"],  # status: success, error
)

message_processing_duration_seconds = Histogram(
    "kafka_message_processing_duration_seconds",
    "Time spent processing individual messages, retries included",
    ["topic", "consumer_group"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

# Topic provisioning metrics
topics_provisioned_total = Counter(
    "kafka_topics_provisioned_total",
    "Topic ensure calls by outcome",
    ["outcome"],  # outcome: created, exists, error
)

# Connection health metrics
kafka_connection_status = Gauge(
    "kafka_connection_status",
    "Kafka connection status (1=connected, 0=disconnected)",
    ["component"],
)

producers_open = Gauge(
    "kafka_producers_open",
    "Number of producer clients currently open (one per publish call in flight)",
)

consumer_assigned_partitions = Gauge(
    "kafka_consumer_assigned_partitions",
    "Number of partitions assigned to this consumer",
    ["consumer_group"],
)


def record_message_produced(topic: str, message_bytes: int, success: bool = True) -> None:
    """
    Record a message delivery outcome.

    Args:
        topic: Kafka topic name
        message_bytes: Size of the message payload in bytes
        success: Whether the broker acknowledged the message
    """
    status = "success" if success else "error"
    messages_produced_total.labels(topic=topic, status=status).inc()
    if success:
        messages_produced_bytes.labels(topic=topic).inc(message_bytes)


def record_producer_error(topic: str, error_type: str) -> None:
    """Record a producer error by exception type name."""
    producer_errors_total.labels(topic=topic, error_type=error_type).inc()


def record_message_consumed(topic: str, consumer_group: str, status: str) -> None:
    """Record a consumed message with its terminal status."""
    messages_consumed_total.labels(
        topic=topic, consumer_group=consumer_group, status=status
    ).inc()


def record_processing_error(topic: str, consumer_group: str, error_category: str) -> None:
    """Record a handler failure."""
    processing_errors_total.labels(
        topic=topic, consumer_group=consumer_group, error_category=error_category
    ).inc()


def record_commit_error(topic: str, consumer_group: str) -> None:
    commit_errors_total.labels(topic=topic, consumer_group=consumer_group).inc()


def record_handler_retry(topic: str, consumer_group: str) -> None:
    handler_retries_total.labels(topic=topic, consumer_group=consumer_group).inc()


def record_dead_lettered(source_topic: str, success: bool = True) -> None:
    status = "success" if success else "error"
    messages_dead_lettered_total.labels(source_topic=source_topic, status=status).inc()


def record_topic_provisioned(outcome: str) -> None:
    topics_provisioned_total.labels(outcome=outcome).inc()


def update_connection_status(component: str, connected: bool) -> None:
    """
    Update connection status for a component.

    Args:
        component: Component name (consumer, producer, admin)
        connected: Whether the component is connected
    """
    kafka_connection_status.labels(component=component).set(1 if connected else 0)


def record_producer_opened() -> None:
    producers_open.inc()


def record_producer_closed() -> None:
    producers_open.dec()


def update_assigned_partitions(consumer_group: str, count: int) -> None:
    consumer_assigned_partitions.labels(consumer_group=consumer_group).set(count)
