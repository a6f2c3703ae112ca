"""Common infrastructure shared by the consumer, producer and provisioner."""

from kafka_resilience.common.exceptions import (
    ConfigurationError,
    DeliveryError,
    ErrorCategory,
    HandlerFault,
    MessagingError,
    ProvisionError,
    PublishError,
    RouteError,
    SerializationError,
    classify_exception,
)
from kafka_resilience.common.logging import (
    KafkaLogContext,
    get_logger,
    log_exception,
    log_with_context,
    setup_logging,
)

__all__ = [
    "ConfigurationError",
    "DeliveryError",
    "ErrorCategory",
    "HandlerFault",
    "MessagingError",
    "ProvisionError",
    "PublishError",
    "RouteError",
    "SerializationError",
    "classify_exception",
    "KafkaLogContext",
    "get_logger",
    "log_exception",
    "log_with_context",
    "setup_logging",
]
