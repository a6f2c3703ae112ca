"""
Exception types and error classification for kafka_resilience.

Provides:
- ErrorCategory enum used for log fields and metric labels
- Typed exception hierarchy for provisioning, consuming and publishing
- Error classification utilities
"""

from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """
    Classification of error types.

    Categories:
        TRANSIENT: Temporary failures (network timeouts, broker unavailable)
        AUTH: Authentication or authorization failures
        PERMANENT: Failures that won't succeed on retry (bad payload, config)
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class MessagingError(Exception):
    """
    Base exception for all kafka_resilience errors.

    Attributes:
        message: Human-readable error description
        category: Error classification
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


class ConfigurationError(MessagingError):
    """Invalid configuration."""

    category = ErrorCategory.PERMANENT


class ProvisionError(MessagingError):
    """Topic creation failed for a reason other than "already exists"."""

    def __init__(
        self,
        topic: str,
        message: str,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message, cause, {"topic": topic})
        self.topic = topic
        if cause is not None:
            self.category = classify_exception(cause)


class HandlerFault(MessagingError):
    """
    Handler failure captured by the consumer retry envelope.

    Never propagates past the envelope; it exists so that faults carry the
    attempt number and remaining retries into logs.
    """

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        attempt: int = 1,
        remaining_retries: int = 0,
    ):
        super().__init__(
            message,
            cause,
            {"attempt": attempt, "remaining_retries": remaining_retries},
        )
        self.attempt = attempt
        self.remaining_retries = remaining_retries
        if cause is not None:
            self.category = classify_exception(cause)


class RouteError(MessagingError):
    """Dead-letter routing failed. There is no further fallback destination."""

    def __init__(
        self,
        source_topic: str,
        dead_letter_topic: str,
        cause: Optional[Exception] = None,
    ):
        message = f"Failed to route message from '{source_topic}' to '{dead_letter_topic}'"
        super().__init__(
            message,
            cause,
            {"source_topic": source_topic, "dead_letter_topic": dead_letter_topic},
        )
        self.source_topic = source_topic
        self.dead_letter_topic = dead_letter_topic
        if cause is not None:
            self.category = classify_exception(cause)


class SerializationError(MessagingError):
    """Payload could not be encoded to the wire format."""

    category = ErrorCategory.PERMANENT

    def __init__(
        self,
        payload_type: str,
        cause: Optional[Exception] = None,
        index: Optional[int] = None,
    ):
        message = f"Could not serialize payload of type '{payload_type}'"
        super().__init__(message, cause, {"payload_type": payload_type, "index": index})
        self.payload_type = payload_type
        self.index = index


class PublishError(MessagingError):
    """Producer could not be created or the broker rejected an enqueue."""

    def __init__(
        self,
        topic: str,
        message: str,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message, cause, {"topic": topic})
        self.topic = topic
        if cause is not None:
            self.category = classify_exception(cause)


class DeliveryError(MessagingError):
    """Broker failed to deliver a message that was already enqueued."""

    def __init__(
        self,
        topic: str,
        cause: Optional[Exception] = None,
        correlation_id: Optional[str] = None,
    ):
        message = f"Failed to deliver message to '{topic}'"
        super().__init__(
            message, cause, {"topic": topic, "correlation_id": correlation_id}
        )
        self.topic = topic
        self.correlation_id = correlation_id
        if cause is not None:
            self.category = classify_exception(cause)


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_exception(exc: Exception) -> ErrorCategory:
    """
    Classify an exception into error category.

    Args:
        exc: Exception to classify

    Returns:
        Appropriate ErrorCategory
    """
    if isinstance(exc, MessagingError):
        return exc.category

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    # aiokafka marks broker-side retriable errors explicitly
    if getattr(exc, "retriable", False):
        return ErrorCategory.TRANSIENT

    connection_markers = (
        "connectionerror",
        "kafkaconnectionerror",
        "nodenotready",
        "connection refused",
        "connection reset",
        "no route to host",
        "network unreachable",
        "name resolution",
        "broken pipe",
    )
    if any(m in exc_type or m in exc_str for m in connection_markers):
        return ErrorCategory.TRANSIENT

    if "timeout" in exc_type or "timeout" in exc_str:
        return ErrorCategory.TRANSIENT

    auth_markers = (
        "authorization",
        "authentication",
        "unauthorized",
        "sasl",
    )
    if any(m in exc_type or m in exc_str for m in auth_markers):
        return ErrorCategory.AUTH

    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return ErrorCategory.PERMANENT

    return ErrorCategory.UNKNOWN
