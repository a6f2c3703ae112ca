"""Tests for KafkaConfig and component settings."""

import socket

import pytest

from kafka_resilience.common.exceptions import ConfigurationError
from kafka_resilience.config import (
    ConsumerSettings,
    KafkaConfig,
    ProducerSettings,
    TopicSpec,
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "KAFKA_BOOTSTRAP_SERVERS",
        "KAFKA_CLIENT_ID",
        "KAFKA_SECURITY_PROTOCOL",
        "KAFKA_SASL_MECHANISM",
        "KAFKA_SASL_PLAIN_USERNAME",
        "KAFKA_SASL_PLAIN_PASSWORD",
        "KAFKA_ACKS",
        "KAFKA_REQUEST_TIMEOUT_MS",
        "KAFKA_MAX_POLL_RECORDS",
        "KAFKA_SESSION_TIMEOUT_MS",
        "KAFKA_VERBOSE_LOGGING",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestKafkaConfigFromEnv:
    def test_requires_bootstrap_servers(self, clean_env):
        with pytest.raises(ValueError, match="KAFKA_BOOTSTRAP_SERVERS"):
            KafkaConfig.from_env()

    def test_defaults(self, clean_env):
        clean_env.setenv("KAFKA_BOOTSTRAP_SERVERS", "broker:9092")

        config = KafkaConfig.from_env()

        assert config.bootstrap_servers == "broker:9092"
        assert config.client_id == socket.gethostname()
        assert config.security_protocol == "PLAINTEXT"
        assert config.acks == "all"
        assert config.verbose_logging is False

    def test_overrides(self, clean_env):
        clean_env.setenv("KAFKA_BOOTSTRAP_SERVERS", "a:9092,b:9092")
        clean_env.setenv("KAFKA_CLIENT_ID", "billing-1")
        clean_env.setenv("KAFKA_SECURITY_PROTOCOL", "SASL_SSL")
        clean_env.setenv("KAFKA_SASL_MECHANISM", "SCRAM-SHA-512")
        clean_env.setenv("KAFKA_SASL_PLAIN_USERNAME", "svc")
        clean_env.setenv("KAFKA_SASL_PLAIN_PASSWORD", "secret")
        clean_env.setenv("KAFKA_MAX_POLL_RECORDS", "25")
        clean_env.setenv("KAFKA_VERBOSE_LOGGING", "true")

        config = KafkaConfig.from_env()

        assert config.client_id == "billing-1"
        assert config.sasl_mechanism == "SCRAM-SHA-512"
        assert config.max_poll_records == 25
        assert config.verbose_logging is True

    def test_empty_bootstrap_rejected_directly(self):
        with pytest.raises(ConfigurationError):
            KafkaConfig(bootstrap_servers="")


class TestClientConfigs:
    def test_plaintext_has_no_security_keys(self, kafka_config):
        config = kafka_config.producer_config()

        assert "security_protocol" not in config
        assert "sasl_plain_username" not in config

    def test_sasl_keys_included(self):
        config = KafkaConfig(
            bootstrap_servers="broker:9093",
            client_id="c",
            security_protocol="SASL_SSL",
            sasl_mechanism="PLAIN",
            sasl_plain_username="svc",
            sasl_plain_password="secret",
        ).admin_config()

        assert config["security_protocol"] == "SASL_SSL"
        assert config["sasl_mechanism"] == "PLAIN"
        assert config["sasl_plain_username"] == "svc"
        assert config["sasl_plain_password"] == "secret"

    def test_consumer_overlay(self, kafka_config):
        config = kafka_config.consumer_config("billing", "latest")

        assert config["group_id"] == "billing"
        assert config["auto_offset_reset"] == "latest"
        assert config["enable_auto_commit"] is False
        assert config["bootstrap_servers"] == "localhost:9092"

    def test_overlay_does_not_leak_between_clients(self, kafka_config):
        kafka_config.consumer_config("billing", "earliest")

        assert "group_id" not in kafka_config.producer_config()
        assert "acks" not in kafka_config.admin_config()


class TestSettingsValidation:
    def test_consumer_settings_defaults(self):
        settings = ConsumerSettings(topic="orders", group_id="billing")

        assert settings.max_retries == 0
        assert settings.auto_offset_reset == "earliest"
        assert settings.topic_spec == TopicSpec("orders", 1, 1)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"topic": "", "group_id": "g"},
            {"topic": "t", "group_id": ""},
            {"topic": "t", "group_id": "g", "max_retries": -1},
            {"topic": "t", "group_id": "g", "retry_delay_seconds": -0.1},
            {"topic": "t", "group_id": "g", "auto_offset_reset": "newest"},
            {"topic": "t", "group_id": "g", "partitions": 0},
        ],
    )
    def test_invalid_consumer_settings(self, kwargs):
        with pytest.raises(ConfigurationError):
            ConsumerSettings(**kwargs).topic_spec

    def test_producer_settings_defaults(self):
        settings = ProducerSettings(topic="orders")

        assert settings.partition is None
        assert settings.offset is None
        assert settings.flush_timeout == 1.5
        assert settings.delivery_queue_size == 10000

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"topic": ""},
            {"topic": "t", "flush_timeout": 0},
            {"topic": "t", "delivery_queue_size": 0},
        ],
    )
    def test_invalid_producer_settings(self, kwargs):
        with pytest.raises(ConfigurationError):
            ProducerSettings(**kwargs)

    def test_settings_are_immutable(self):
        settings = ConsumerSettings(topic="orders", group_id="billing")

        with pytest.raises(AttributeError):
            settings.max_retries = 5
