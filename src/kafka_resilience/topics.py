"""
Idempotent topic provisioning.

Creating a topic that already exists is not an error, including when two
callers race to create the same topic. Existing partition and replication
settings are never altered. Other broker errors surface as ProvisionError;
retrying them is the caller's decision.
"""

import logging
from typing import Any, Callable, Optional

from aiokafka.admin import AIOKafkaAdminClient, NewTopic
from aiokafka.errors import TopicAlreadyExistsError, for_code

from kafka_resilience.common.exceptions import ProvisionError
from kafka_resilience.common.logging import get_logger, log_exception, log_with_context
from kafka_resilience.common.metrics import record_topic_provisioned
from kafka_resilience.config import KafkaConfig, TopicSpec

logger = get_logger(__name__)

AdminFactory = Callable[..., Any]


class TopicProvisioner:
    """
    Ensures topics exist before producers and consumers use them.

    A short-lived admin client is opened per ensure() call and always closed.

    Usage:
        >>> provisioner = TopicProvisioner(KafkaConfig.from_env())
        >>> await provisioner.ensure(TopicSpec("orders", partitions=6, replication_factor=3))
    """

    def __init__(
        self,
        config: KafkaConfig,
        admin_factory: Optional[AdminFactory] = None,
    ):
        """
        Args:
            config: Kafka connection configuration
            admin_factory: Callable building an admin client from kwargs
                (defaults to AIOKafkaAdminClient)
        """
        self.config = config
        self._admin_factory = admin_factory or AIOKafkaAdminClient

    async def ensure(self, spec: TopicSpec) -> bool:
        """
        Create the topic if it is absent.

        Args:
            spec: Desired topic name, partition count and replication factor

        Returns:
            True if this call created the topic, False if it already existed

        Raises:
            ProvisionError: If the broker rejected the creation for any reason
                other than the topic already existing
        """
        admin = self._admin_factory(**self.config.admin_config())
        try:
            await admin.start()
            response = await admin.create_topics(
                [
                    NewTopic(
                        name=spec.name,
                        num_partitions=spec.partitions,
                        replication_factor=spec.replication_factor,
                    )
                ]
            )
            created = self._check_response(spec, response)
        except TopicAlreadyExistsError:
            created = False
        except ProvisionError:
            record_topic_provisioned("error")
            raise
        except Exception as e:
            record_topic_provisioned("error")
            log_exception(logger, e, "Topic provisioning failed", topic=spec.name)
            raise ProvisionError(
                spec.name, f"Could not provision topic '{spec.name}'", cause=e
            ) from e
        finally:
            await self._close(admin, spec.name)

        record_topic_provisioned("created" if created else "exists")
        log_with_context(
            logger,
            logging.INFO if created else logging.DEBUG,
            "Topic created" if created else "Topic already exists",
            topic=spec.name,
            partitions=spec.partitions,
            replication_factor=spec.replication_factor,
        )
        return created

    @staticmethod
    def _check_response(spec: TopicSpec, response: Any) -> bool:
        # aiokafka reports per-topic failures in the response instead of raising.
        # Entries are (topic, error_code) or (topic, error_code, error_message).
        created = True
        for topic_error in getattr(response, "topic_errors", None) or ():
            topic, error_code = topic_error[0], topic_error[1]
            if topic != spec.name or error_code == 0:
                continue
            error_type = for_code(error_code)
            if error_type is TopicAlreadyExistsError:
                created = False
                continue
            detail = topic_error[2] if len(topic_error) > 2 and topic_error[2] else ""
            cause = error_type(detail) if detail else error_type()
            log_exception(
                logger,
                cause,
                "Broker rejected topic creation",
                topic=spec.name,
                error_code=error_code,
            )
            raise ProvisionError(
                spec.name,
                f"Broker rejected creation of topic '{spec.name}': {error_type.__name__}",
                cause=cause,
            )
        return created

    @staticmethod
    async def _close(admin: Any, topic: str) -> None:
        try:
            await admin.close()
        except Exception as e:
            log_exception(
                logger,
                e,
                "Error closing admin client",
                level=logging.WARNING,
                topic=topic,
            )
