from __future__ import annotations

import asyncio
import logging
import os
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from aiogram import Bot
from aiojobs import Scheduler
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payrecon.db.models import Customer, Order
from payrecon.db.session import get_session_maker
from payrecon.payment.errors import NotificationFailure
from payrecon.utils.money import format_amount

logger = logging.getLogger(__name__)

TEMPLATE_VERIFIED = "payment_verified"
TEMPLATE_REJECTED = "payment_rejected"

_TEMPLATES = {
    TEMPLATE_VERIFIED: (
        "✅ Payment received for order {order}.\n"
        "Amount applied: {amount}\n"
        "Payment status: {status}"
    ),
    TEMPLATE_REJECTED: (
        "❌ We could not verify the payment proof for order {order}.\n"
        "Please upload a clear receipt showing the transfer reference, amount and date, "
        "or contact support if you believe this is a mistake."
    ),
}

_bot_singleton: Optional[Bot] = None
_bot_lock = asyncio.Lock()


async def _get_bot() -> Optional[Bot]:
    global _bot_singleton
    if _bot_singleton is not None:
        return _bot_singleton
    async with _bot_lock:
        if _bot_singleton is not None:
            return _bot_singleton
        token = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
        if not token:
            logger.warning("notify: TELEGRAM_BOT_TOKEN missing; notifications disabled")
            return None
        _bot_singleton = Bot(token=token)
        return _bot_singleton


async def notify_user(telegram_id: int, text: str, *, disable_web_page_preview: bool = True) -> bool:
    """Send a direct message to a customer. Returns True if sent, False otherwise."""
    bot = await _get_bot()
    if bot is None:
        return False
    try:
        await bot.send_message(chat_id=telegram_id, text=text, disable_web_page_preview=disable_web_page_preview)
        return True
    except Exception as e:
        logger.warning("notify_user failed", extra={"extra": {"telegram_id": telegram_id, "err": str(e)}})
        return False


async def notify_log(text: str, *, disable_web_page_preview: bool = True) -> bool:
    """Send a message to LOG_CHAT_ID if configured. Returns True if sent, False otherwise."""
    bot = await _get_bot()
    if bot is None:
        return False
    raw = os.getenv("LOG_CHAT_ID", "").strip()
    if not raw:
        return False
    try:
        chat_id = int(raw)
    except ValueError:
        logger.warning("notify_log: invalid LOG_CHAT_ID: %s", raw)
        return False
    try:
        await bot.send_message(chat_id=chat_id, text=text, disable_web_page_preview=disable_web_page_preview)
        return True
    except Exception as e:
        logger.warning("notify_log failed", extra={"extra": {"err": str(e)}})
        return False


async def aclose_bot() -> None:
    global _bot_singleton
    if _bot_singleton is not None:
        try:
            await _bot_singleton.session.close()
        finally:
            _bot_singleton = None


def render_template(template_kind: str, *, order_display_id: str, amount: str = "", status: str = "", note: Optional[str] = None) -> str:
    try:
        template = _TEMPLATES[template_kind]
    except KeyError:
        raise NotificationFailure(f"unknown notification template {template_kind!r}", template=template_kind) from None
    text = template.format(order=order_display_id, amount=amount, status=status)
    if note:
        text += f"\n📝 Note from our team: {note}"
    return text


Sender = Callable[[int, str], Awaitable[bool]]


class NotificationDispatcher:
    """Fire-and-forget customer notifications, run as aiojobs jobs off the decision path."""

    def __init__(
        self,
        *,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        sender: Optional[Sender] = None,
        limit: int = 20,
    ) -> None:
        self._session_maker = session_maker
        self._sender = sender or notify_user
        self._limit = limit
        self._scheduler: Optional[Scheduler] = None

    def _get_scheduler(self) -> Scheduler:
        # Scheduler binds to the running loop, so it is created on first use
        if self._scheduler is None or self._scheduler.closed:
            self._scheduler = Scheduler(limit=self._limit)
        return self._scheduler

    async def notify_customer(
        self,
        order_id: Optional[int],
        template_kind: str,
        note: Optional[str] = None,
        *,
        amount: Optional[Decimal] = None,
    ) -> None:
        """Enqueue delivery and return immediately; delivery errors are logged by the job."""
        if order_id is None:
            logger.info("notify_customer skipped: evidence has no order", extra={"extra": {"template": template_kind}})
            return
        await self._get_scheduler().spawn(self._deliver(order_id, template_kind, note, amount))

    async def _deliver(
        self,
        order_id: int,
        template_kind: str,
        note: Optional[str],
        amount: Optional[Decimal] = None,
    ) -> bool:
        try:
            session_maker = self._session_maker or get_session_maker()
            async with session_maker() as session:
                row = (
                    await session.execute(
                        select(Order, Customer)
                        .outerjoin(Customer, Order.customer_id == Customer.id)
                        .where(Order.id == order_id)
                    )
                ).first()
            if not row:
                raise NotificationFailure(f"order {order_id} vanished before notification", order_id=order_id)
            order, customer = row
            telegram_id = getattr(customer, "telegram_id", None)
            if not telegram_id:
                logger.info("customer has no telegram id; notification skipped", extra={"extra": {"order_id": order_id}})
                return False
            text = render_template(
                template_kind,
                order_display_id=order.display_id,
                amount=format_amount(amount, order.currency) if amount is not None else "",
                status=order.payment_status,
                note=note,
            )
            sent = await self._sender(telegram_id, text)
            if not sent:
                raise NotificationFailure("transport refused the message", order_id=order_id)
            return True
        except NotificationFailure as e:
            logger.warning(
                "customer notification failed",
                extra={"extra": {"order_id": order_id, "template": template_kind, "err": e.message}},
            )
            return False
        except Exception:
            logger.exception("customer notification crashed", extra={"extra": {"order_id": order_id, "template": template_kind}})
            return False

    async def drain(self) -> None:
        """Wait for queued deliveries (shutdown, tests)."""
        if self._scheduler is None:
            return
        for job in list(self._scheduler):
            await job.wait()

    async def aclose(self) -> None:
        if self._scheduler is not None:
            await self._scheduler.close()
            self._scheduler = None


dispatcher = NotificationDispatcher()

