"""Kafka connection configuration and per-component settings."""

import os
import socket
from dataclasses import dataclass
from typing import Any, Dict, Optional

from kafka_resilience.common.exceptions import ConfigurationError

VALID_OFFSET_RESETS = ("earliest", "latest", "none")

# Flush bound for the short-lived producer used to republish dead letters
DEFAULT_FLUSH_TIMEOUT_SECONDS = 1.5

# Maximum in-flight delivery reports per publish call
DEFAULT_DELIVERY_QUEUE_SIZE = 10000


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class KafkaConfig:
    """Kafka connection configuration.

    Load from environment using KafkaConfig.from_env().
    All timing values in milliseconds unless otherwise noted.
    """

    # Connection
    bootstrap_servers: str
    client_id: str = ""
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"

    # SASL credentials (PLAIN and SCRAM mechanisms)
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""

    # Connection timeouts
    request_timeout_ms: int = 40000
    metadata_max_age_ms: int = 300000
    connections_max_idle_ms: int = 540000

    # Consumer defaults
    max_poll_records: int = 100
    max_poll_interval_ms: int = 300000  # 5 minutes
    session_timeout_ms: int = 30000

    # Producer defaults
    acks: str = "all"

    # Emit per-message debug logs (delivery reports, header sets)
    verbose_logging: bool = False

    def __post_init__(self) -> None:
        if not self.bootstrap_servers:
            raise ConfigurationError("bootstrap_servers must not be empty")
        if not self.client_id:
            self.client_id = socket.gethostname()

    @classmethod
    def from_env(cls) -> "KafkaConfig":
        """Load configuration from environment variables.

        Required environment variables:
            KAFKA_BOOTSTRAP_SERVERS: Kafka broker addresses

        Optional environment variables (with defaults):
            KAFKA_CLIENT_ID: host name (default)
            KAFKA_SECURITY_PROTOCOL: PLAINTEXT (default)
            KAFKA_SASL_MECHANISM: PLAIN (default)
            KAFKA_SASL_PLAIN_USERNAME / KAFKA_SASL_PLAIN_PASSWORD
            KAFKA_ACKS: all (default)
            KAFKA_REQUEST_TIMEOUT_MS: 40000 (default)
            KAFKA_MAX_POLL_RECORDS: 100 (default)
            KAFKA_SESSION_TIMEOUT_MS: 30000 (default)
            KAFKA_VERBOSE_LOGGING: false (default)

        Raises:
            ValueError: If required environment variables are missing
        """
        bootstrap_servers = os.getenv("KAFKA_BOOTSTRAP_SERVERS")
        if not bootstrap_servers:
            raise ValueError("KAFKA_BOOTSTRAP_SERVERS environment variable is required")

        return cls(
            bootstrap_servers=bootstrap_servers,
            client_id=os.getenv("KAFKA_CLIENT_ID", ""),
            security_protocol=os.getenv("KAFKA_SECURITY_PROTOCOL", "PLAINTEXT"),
            sasl_mechanism=os.getenv("KAFKA_SASL_MECHANISM", "PLAIN"),
            sasl_plain_username=os.getenv("KAFKA_SASL_PLAIN_USERNAME", ""),
            sasl_plain_password=os.getenv("KAFKA_SASL_PLAIN_PASSWORD", ""),
            acks=os.getenv("KAFKA_ACKS", "all"),
            request_timeout_ms=int(os.getenv("KAFKA_REQUEST_TIMEOUT_MS", "40000")),
            max_poll_records=int(os.getenv("KAFKA_MAX_POLL_RECORDS", "100")),
            session_timeout_ms=int(os.getenv("KAFKA_SESSION_TIMEOUT_MS", "30000")),
            verbose_logging=_env_bool("KAFKA_VERBOSE_LOGGING"),
        )

    def _connection_config(self) -> Dict[str, Any]:
        config: Dict[str, Any] = {
            "bootstrap_servers": self.bootstrap_servers,
            "client_id": self.client_id,
            "request_timeout_ms": self.request_timeout_ms,
            "metadata_max_age_ms": self.metadata_max_age_ms,
            "connections_max_idle_ms": self.connections_max_idle_ms,
        }

        # Configure security based on protocol
        if self.security_protocol != "PLAINTEXT":
            config["security_protocol"] = self.security_protocol
            config["sasl_mechanism"] = self.sasl_mechanism
            if self.sasl_mechanism in ("PLAIN", "SCRAM-SHA-256", "SCRAM-SHA-512"):
                config["sasl_plain_username"] = self.sasl_plain_username
                config["sasl_plain_password"] = self.sasl_plain_password

        return config

    def consumer_config(self, group_id: str, auto_offset_reset: str) -> Dict[str, Any]:
        """Build AIOKafkaConsumer kwargs, overlaying group id and offset reset."""
        config = self._connection_config()
        config.update(
            {
                "group_id": group_id,
                "auto_offset_reset": auto_offset_reset,
                "enable_auto_commit": False,
                "max_poll_records": self.max_poll_records,
                "max_poll_interval_ms": self.max_poll_interval_ms,
                "session_timeout_ms": self.session_timeout_ms,
            }
        )
        return config

    def producer_config(self) -> Dict[str, Any]:
        """Build AIOKafkaProducer kwargs."""
        config = self._connection_config()
        config["acks"] = self.acks
        return config

    def admin_config(self) -> Dict[str, Any]:
        """Build AIOKafkaAdminClient kwargs."""
        return self._connection_config()


@dataclass(frozen=True)
class TopicSpec:
    """Desired topic layout. Identity is the name."""

    name: str
    partitions: int = 1
    replication_factor: int = 1

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigurationError("Topic name must not be empty")
        if self.partitions < 1:
            raise ConfigurationError(
                f"partitions must be >= 1, got {self.partitions}",
                context={"topic": self.name},
            )
        if self.replication_factor < 1:
            raise ConfigurationError(
                f"replication_factor must be >= 1, got {self.replication_factor}",
                context={"topic": self.name},
            )


@dataclass(frozen=True)
class ConsumerSettings:
    """Consumer behaviour. max_retries of 0 or 1 means no retry."""

    topic: str
    group_id: str
    auto_offset_reset: str = "earliest"
    max_retries: int = 0
    partitions: int = 1
    replication_factor: int = 1
    retry_delay_seconds: float = 0.0

    def __post_init__(self) -> None:
        if not self.topic:
            raise ConfigurationError("Consumer topic must not be empty")
        if not self.group_id:
            raise ConfigurationError("Consumer group_id must not be empty")
        if self.max_retries < 0:
            raise ConfigurationError(
                f"max_retries must be >= 0, got {self.max_retries}",
                context={"topic": self.topic},
            )
        if self.retry_delay_seconds < 0:
            raise ConfigurationError(
                f"retry_delay_seconds must be >= 0, got {self.retry_delay_seconds}",
                context={"topic": self.topic},
            )
        if self.auto_offset_reset not in VALID_OFFSET_RESETS:
            raise ConfigurationError(
                f"auto_offset_reset must be one of {VALID_OFFSET_RESETS}, "
                f"got {self.auto_offset_reset!r}",
                context={"topic": self.topic},
            )

    @property
    def topic_spec(self) -> TopicSpec:
        return TopicSpec(self.topic, self.partitions, self.replication_factor)


@dataclass(frozen=True)
class ProducerSettings:
    """Per-publish settings. partition None lets the broker choose.

    `offset` completes the destination triple but is never sent: the broker
    assigns offsets on append.
    """

    topic: str
    partition: Optional[int] = None
    offset: Optional[int] = None
    flush_timeout: float = DEFAULT_FLUSH_TIMEOUT_SECONDS
    delivery_queue_size: int = DEFAULT_DELIVERY_QUEUE_SIZE

    def __post_init__(self) -> None:
        if not self.topic:
            raise ConfigurationError("Producer topic must not be empty")
        if self.flush_timeout <= 0:
            raise ConfigurationError(
                f"flush_timeout must be > 0, got {self.flush_timeout}",
                context={"topic": self.topic},
            )
        if self.delivery_queue_size < 1:
            raise ConfigurationError(
                f"delivery_queue_size must be >= 1, got {self.delivery_queue_size}",
                context={"topic": self.topic},
            )
