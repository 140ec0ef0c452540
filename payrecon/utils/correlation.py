from __future__ import annotations

import contextvars
import uuid
from contextlib import contextmanager
from typing import Iterator

# Task-local correlation id; asyncio tasks inherit a copy of the context on creation
_cid: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    return _cid.get("")


@contextmanager
def correlation_scope(value: str | None = None) -> Iterator[str]:
    """Bind a correlation id for the duration of a block, restoring the previous one after.

    An id already set by an outer scope (e.g. the bot update) is reused unless one is passed.
    """
    cid = value or _cid.get("") or uuid.uuid4().hex
    token = _cid.set(cid)
    try:
        yield cid
    finally:
        _cid.reset(token)
