from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject

from payrecon.utils.correlation import correlation_scope


class CorrelationMiddleware(BaseMiddleware):
    """Tag each update with a correlation id so decision logs and audit rows can be joined."""

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        update_id = getattr(data.get("event_update"), "update_id", None)
        with correlation_scope(f"tg-{update_id}" if update_id is not None else None) as cid:
            data["correlation_id"] = cid
            return await handler(event, data)
