"""
Ambient request context propagated into Kafka headers.

The current RequestContext lives in a ContextVar so it follows asyncio
tasks: a handler invoked by the consumer sees the context of the message it
is processing, and anything it publishes carries the same correlation id.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, replace
from typing import Iterator, List, Optional, Sequence, Tuple

TENANT_ID_HEADER = "X-Tenant-Id"
AUTHOR_HEADER = "X-Author"
AUTHOR_ID_HEADER = "X-Author-Id"
CORRELATION_ID_HEADER = "X-Correlation-Id"

CORRELATION_HEADERS = (
    TENANT_ID_HEADER,
    AUTHOR_HEADER,
    AUTHOR_ID_HEADER,
    CORRELATION_ID_HEADER,
)

Headers = List[Tuple[str, bytes]]


@dataclass(frozen=True)
class RequestContext:
    """Tenant, author and correlation metadata for the current unit of work."""

    tenant_id: Optional[str] = None
    author: Optional[str] = None
    author_id: Optional[str] = None
    correlation_id: Optional[str] = None

    def get(self, header: str) -> Optional[str]:
        """Look up a value by its well-known header name."""
        return {
            TENANT_ID_HEADER: self.tenant_id,
            AUTHOR_HEADER: self.author,
            AUTHOR_ID_HEADER: self.author_id,
            CORRELATION_ID_HEADER: self.correlation_id,
        }.get(header)

    def with_correlation_id(self) -> "RequestContext":
        """Return this context, generating a correlation id if none is set."""
        if self.correlation_id:
            return self
        return replace(self, correlation_id=new_correlation_id())

    def to_headers(self) -> Headers:
        """
        Build Kafka headers for the known correlation keys.

        Empty values are skipped. The correlation id header appears at most
        once; callers that need one guaranteed should call
        with_correlation_id() first.
        """
        headers: Headers = []
        for name in CORRELATION_HEADERS:
            value = self.get(name)
            if value:
                headers.append((name, value.encode("utf-8")))
        return headers

    @classmethod
    def from_headers(cls, headers: Optional[Sequence[Tuple[str, bytes]]]) -> "RequestContext":
        """Extract the known correlation keys from Kafka message headers."""
        found = {}
        for name, value in headers or ():
            if name in CORRELATION_HEADERS and name not in found and value:
                found[name] = value.decode("utf-8", errors="replace")
        return cls(
            tenant_id=found.get(TENANT_ID_HEADER),
            author=found.get(AUTHOR_HEADER),
            author_id=found.get(AUTHOR_ID_HEADER),
            correlation_id=found.get(CORRELATION_ID_HEADER),
        )


_current: ContextVar[RequestContext] = ContextVar(
    "kafka_request_context", default=RequestContext()
)


def new_correlation_id() -> str:
    return str(uuid.uuid4())


def get_request_context() -> RequestContext:
    """Return the request context of the running task."""
    return _current.get()


@contextmanager
def request_context(
    ctx: Optional[RequestContext] = None, **fields: Optional[str]
) -> Iterator[RequestContext]:
    """
    Install a request context for the duration of the block.

    Either pass a RequestContext or keyword fields; keyword fields override
    the corresponding values of the given (or current) context.

    Example:
        with request_context(tenant_id="acme", correlation_id=cid):
            await producer.publish(order)
    """
    base = ctx if ctx is not None else _current.get()
    if fields:
        base = replace(base, **fields)
    token = _current.set(base)
    try:
        yield base
    finally:
        _current.reset(token)
