from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional, Tuple

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from payrecon.db.base import Base
from payrecon.db.models import Customer, Order, PaymentProof, PaymentTransaction


@pytest_asyncio.fixture
async def session_maker(tmp_path):  # type: ignore[no-untyped-def]
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'payrecon.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    maker = async_sessionmaker(bind=engine, expire_on_commit=False)
    yield maker
    await engine.dispose()


class FakeNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.calls: List[Tuple[Optional[int], str, Optional[str]]] = []
        self.amounts: List[Optional[Decimal]] = []
        self.fail = fail

    async def notify_customer(
        self,
        order_id: Optional[int],
        template_kind: str,
        note: Optional[str] = None,
        *,
        amount: Optional[Decimal] = None,
    ) -> None:
        self.calls.append((order_id, template_kind, note))
        self.amounts.append(amount)
        if self.fail:
            raise RuntimeError("queue is down")


class FakeInvalidator:
    def __init__(self) -> None:
        self.batches: List[set] = []

    async def __call__(self, keys: Any) -> None:
        self.batches.append(set(keys))


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def invalidator() -> FakeInvalidator:
    return FakeInvalidator()


async def seed_order(
    maker,  # type: ignore[no-untyped-def]
    *,
    display_id: str = "ORD-1001",
    total: str = "100.00",
    telegram_id: Optional[int] = 5001,
    full_name: str = "Ada Lovelace",
    email: str = "ada@example.com",
) -> Tuple[int, int]:
    async with maker() as session:
        customer = Customer(telegram_id=telegram_id, full_name=full_name, email=email)
        session.add(customer)
        await session.flush()
        order = Order(
            display_id=display_id,
            customer_id=customer.id,
            email=email,
            currency="USD",
            total=Decimal(total),
            amount_paid=Decimal("0"),
        )
        session.add(order)
        await session.commit()
        return order.id, customer.id


async def seed_proof(
    maker,  # type: ignore[no-untyped-def]
    order_id: Optional[int],
    sender_id: Optional[int] = None,
    *,
    status: str = "pending",
    file_name: Optional[str] = "receipt.jpg",
    attachment_url: Optional[str] = "https://files.example.com/receipt.jpg",
    created_at: Optional[datetime] = None,
) -> int:
    async with maker() as session:
        proof = PaymentProof(
            order_id=order_id,
            sender_id=sender_id,
            attachment_url=attachment_url,
            attachment_file_name=file_name,
            verification_status=status,
        )
        if created_at is not None:
            proof.created_at = created_at
        session.add(proof)
        await session.commit()
        return proof.id


async def seed_transaction(
    maker,  # type: ignore[no-untyped-def]
    order_id: Optional[int],
    customer_id: Optional[int] = None,
    *,
    status: str = "completed",
    amount: str = "100.00",
    method: str = "stripe",
    transaction_id: str = "pi_123",
    created_at: Optional[datetime] = None,
) -> int:
    async with maker() as session:
        tx = PaymentTransaction(
            order_id=order_id,
            customer_id=customer_id,
            transaction_id=transaction_id,
            payment_method=method,
            status=status,
            amount=Decimal(amount),
            currency="USD",
        )
        if created_at is not None:
            tx.created_at = created_at
        session.add(tx)
        await session.commit()
        return tx.id
