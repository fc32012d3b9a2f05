from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Optional
import contextvars
import time
import uuid


@dataclass(frozen=True)
class RequestContext:
    """Per tool call; only used to correlate log lines."""
    tool_name: str
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))


_request_ctx: contextvars.ContextVar[Optional[RequestContext]] = contextvars.ContextVar("request_ctx", default=None)


@contextmanager
def request_context(tool_name: str) -> Iterator[RequestContext]:
    ctx = RequestContext(tool_name=tool_name)
    token = _request_ctx.set(ctx)
    try:
        yield ctx
    finally:
        _request_ctx.reset(token)


def current_request_id() -> str:
    ctx = _request_ctx.get()
    return ctx.request_id if ctx else "-"
