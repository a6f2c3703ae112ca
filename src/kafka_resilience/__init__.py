"""
Resilient Kafka messaging.

Consumer retry/dead-letter orchestration, idempotent topic provisioning and
a producer that propagates correlation headers.
"""

from kafka_resilience.config import (
    ConsumerSettings,
    KafkaConfig,
    ProducerSettings,
    TopicSpec,
)
from kafka_resilience.consumer import ResilientConsumer
from kafka_resilience.context import RequestContext, get_request_context, request_context
from kafka_resilience.dlq import DeadLetterRouter, dead_letter_topic
from kafka_resilience.producer import ResilientProducer
from kafka_resilience.topics import TopicProvisioner
from kafka_resilience.types import (
    DeliveryReport,
    HandlerResult,
    KafkaMessage,
    ProcessingContext,
)

__version__ = "0.1.0"

__all__ = [
    "ConsumerSettings",
    "DeadLetterRouter",
    "DeliveryReport",
    "HandlerResult",
    "KafkaConfig",
    "KafkaMessage",
    "ProcessingContext",
    "ProducerSettings",
    "RequestContext",
    "ResilientConsumer",
    "ResilientProducer",
    "TopicProvisioner",
    "TopicSpec",
    "dead_letter_topic",
    "get_request_context",
    "request_context",
]
