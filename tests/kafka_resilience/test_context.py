"""Tests for request context propagation and message types."""

import uuid
from types import SimpleNamespace

from kafka_resilience.context import (
    RequestContext,
    get_request_context,
    request_context,
)
from kafka_resilience.types import DeliveryReport, HandlerResult, from_consumer_record


class TestRequestContext:
    def test_to_headers_skips_empty_values(self):
        ctx = RequestContext(tenant_id="acme", author="", correlation_id="c-1")

        assert ctx.to_headers() == [
            ("X-Tenant-Id", b"acme"),
            ("X-Correlation-Id", b"c-1"),
        ]

    def test_from_headers_first_value_wins(self):
        ctx = RequestContext.from_headers(
            [
                ("X-Correlation-Id", b"first"),
                ("X-Correlation-Id", b"second"),
                ("X-Author-Id", b"u-1"),
                ("unrelated", b"x"),
            ]
        )

        assert ctx.correlation_id == "first"
        assert ctx.author_id == "u-1"
        assert ctx.tenant_id is None

    def test_from_headers_handles_missing(self):
        assert RequestContext.from_headers(None) == RequestContext()

    def test_with_correlation_id_generates_uuid(self):
        ctx = RequestContext(tenant_id="acme").with_correlation_id()

        assert ctx.tenant_id == "acme"
        uuid.UUID(ctx.correlation_id)

    def test_with_correlation_id_keeps_existing(self):
        ctx = RequestContext(correlation_id="c-1")

        assert ctx.with_correlation_id() is ctx


class TestAmbientContext:
    def test_default_is_empty(self):
        assert get_request_context() == RequestContext()

    def test_request_context_restores_previous(self):
        with request_context(tenant_id="acme"):
            with request_context(correlation_id="c-1") as inner:
                assert inner.tenant_id == "acme"
                assert get_request_context().correlation_id == "c-1"
            assert get_request_context().correlation_id is None

        assert get_request_context() == RequestContext()

    def test_request_context_with_explicit_instance(self):
        ctx = RequestContext(author="Ann")

        with request_context(ctx):
            assert get_request_context() is ctx


class TestMessageTypes:
    def test_from_consumer_record(self):
        record = SimpleNamespace(
            topic="orders",
            partition=2,
            offset=10,
            key=None,
            value=b"{}",
            headers=(("X-Tenant-Id", b"acme"),),
            timestamp=123,
        )

        message = from_consumer_record(record)

        assert message.headers == [("X-Tenant-Id", b"acme")]
        assert message.header("X-Tenant-Id") == b"acme"
        assert message.header("missing") is None
        assert (message.partition, message.offset, message.timestamp) == (2, 10, 123)

    def test_reroute_clears_position(self, sample_message):
        copy = sample_message.reroute("orders_error")

        assert copy.topic == "orders_error"
        assert copy.partition is None
        assert copy.offset is None
        assert copy.value == sample_message.value
        assert sample_message.topic == "orders"

    def test_handler_result_factories(self):
        error = ValueError("bad")

        assert HandlerResult.ok().success is True
        failed = HandlerResult.failed(error, reason="bad payload")
        assert (failed.success, failed.error, failed.reason) == (False, error, "bad payload")

    def test_delivery_report(self):
        assert DeliveryReport("orders", 0, 1).delivered is True
        assert DeliveryReport("orders", error=RuntimeError()).delivered is False
