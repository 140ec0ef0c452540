from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Set, Union

logger = logging.getLogger(__name__)

EVIDENCE_QUEUE_KEY = "evidence-queue"

Listener = Callable[[Set[str]], Union[None, Awaitable[None]]]

_listeners: List[Listener] = []


def order_key(order_id: int) -> str:
    return f"order:{order_id}"


def keys_for_decision(order_id: Optional[int]) -> Set[str]:
    keys = {EVIDENCE_QUEUE_KEY}
    if order_id is not None:
        keys.add(order_key(order_id))
    return keys


def subscribe(listener: Listener) -> Callable[[], None]:
    """Register a cache listener; returns a callable that removes it."""
    _listeners.append(listener)

    def _unsubscribe() -> None:
        try:
            _listeners.remove(listener)
        except ValueError:
            pass

    return _unsubscribe


async def emit(keys: Iterable[str]) -> None:
    """Tell dependent views which cache keys are stale. Listener errors are logged, not raised."""
    key_set = set(keys)
    if not key_set:
        return
    for listener in list(_listeners):
        try:
            result: Any = listener(key_set)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("invalidation listener failed", extra={"extra": {"keys": sorted(key_set)}})
