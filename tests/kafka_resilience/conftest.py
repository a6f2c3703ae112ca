"""
Shared fixtures for kafka_resilience unit tests.

Provides in-memory stand-ins for the aiokafka admin client, producer and
consumer so the retry, dead-letter and publish paths can be exercised
without a broker.
"""

import asyncio
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Dict, List, Optional, Tuple

import pytest
from aiokafka.errors import TopicAlreadyExistsError

from kafka_resilience.config import KafkaConfig
from kafka_resilience.types import KafkaMessage


@pytest.fixture
def kafka_config():
    """Create test Kafka configuration."""
    return KafkaConfig(
        bootstrap_servers="localhost:9092",
        client_id="test-client",
        security_protocol="PLAINTEXT",
    )


# =============================================================================
# Admin client
# =============================================================================


class FakeCluster:
    """Topic metadata shared by every FakeAdminClient built from it."""

    def __init__(self, topics: Optional[Dict[str, Tuple[int, int]]] = None):
        self.topics: Dict[str, Tuple[int, int]] = dict(topics or {})
        self.create_calls: List[str] = []
        self.start_error: Optional[Exception] = None
        self.create_error: Optional[Exception] = None
        self.error_code: Optional[int] = None
        self.admins: List["FakeAdminClient"] = []

    def admin_factory(self, **kwargs) -> "FakeAdminClient":
        admin = FakeAdminClient(self, **kwargs)
        self.admins.append(admin)
        return admin


class FakeAdminClient:
    def __init__(self, cluster: FakeCluster, **kwargs):
        self.cluster = cluster
        self.kwargs = kwargs
        self.started = False
        self.closed = False

    async def start(self) -> None:
        if self.cluster.start_error is not None:
            raise self.cluster.start_error
        self.started = True

    async def create_topics(self, new_topics):
        # Yield so concurrent callers interleave like real network calls
        await asyncio.sleep(0)
        if self.cluster.create_error is not None:
            raise self.cluster.create_error
        errors = []
        for topic in new_topics:
            self.cluster.create_calls.append(topic.name)
            if self.cluster.error_code is not None:
                errors.append((topic.name, self.cluster.error_code, "rejected"))
            elif topic.name in self.cluster.topics:
                errors.append(
                    (topic.name, TopicAlreadyExistsError.errno, "Topic already exists")
                )
            else:
                self.cluster.topics[topic.name] = (
                    topic.num_partitions,
                    topic.replication_factor,
                )
                errors.append((topic.name, 0, None))
        return SimpleNamespace(topic_errors=errors)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def cluster():
    """Empty in-memory cluster."""
    return FakeCluster()


# =============================================================================
# Producer
# =============================================================================


@dataclass
class SentRecord:
    topic: str
    value: Optional[bytes]
    key: Optional[bytes]
    partition: Optional[int]
    headers: Optional[List[Tuple[str, bytes]]]


class FakeProducer:
    def __init__(self, owner: "FakeProducerFactory", **kwargs):
        self.owner = owner
        self.kwargs = kwargs
        self.sent: List[SentRecord] = []
        self.started = False
        self.stopped = False
        self.flushed = False

    async def start(self) -> None:
        if self.owner.start_error is not None:
            raise self.owner.start_error
        self.started = True

    async def send(self, topic, value=None, key=None, partition=None, headers=None):
        if self.owner.send_error is not None:
            raise self.owner.send_error
        self.sent.append(SentRecord(topic, value, key, partition, headers))
        self.owner.sent.append(self.sent[-1])
        future = asyncio.get_running_loop().create_future()
        if self.owner.delivery_error is not None:
            future.set_exception(self.owner.delivery_error)
        else:
            future.set_result(
                SimpleNamespace(
                    topic=topic,
                    partition=partition if partition is not None else 0,
                    offset=len(self.owner.sent) - 1,
                )
            )
        return future

    async def flush(self) -> None:
        if self.owner.flush_delay:
            await asyncio.sleep(self.owner.flush_delay)
        self.flushed = True

    async def stop(self) -> None:
        if self.owner.stop_gate is not None:
            await self.owner.stop_gate.wait()
        self.stopped = True


@dataclass
class FakeProducerFactory:
    """Builds FakeProducers and records everything they send."""

    start_error: Optional[Exception] = None
    send_error: Optional[Exception] = None
    delivery_error: Optional[Exception] = None
    flush_delay: float = 0.0
    # When set, stop() blocks until the event fires
    stop_gate: Optional[asyncio.Event] = None
    producers: List[FakeProducer] = field(default_factory=list)
    sent: List[SentRecord] = field(default_factory=list)

    def __call__(self, **kwargs) -> FakeProducer:
        producer = FakeProducer(self, **kwargs)
        self.producers.append(producer)
        return producer


@pytest.fixture
def producer_factory():
    return FakeProducerFactory()


# =============================================================================
# Messages
# =============================================================================


@pytest.fixture
def sample_message():
    """Message as it would arrive on the orders topic."""
    return KafkaMessage(
        topic="orders",
        partition=3,
        offset=41,
        key=b"order-123",
        value=b'{"order_id": "order-123", "amount": 10}',
        headers=[
            ("X-Tenant-Id", b"acme"),
            ("X-Correlation-Id", b"corr-abc"),
            ("trace", b"\x00\x01"),
        ],
        timestamp=1700000000000,
    )
