from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from payrecon.utils.time import utcnow_naive

from .base import Base


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    telegram_id: Mapped[Optional[int]] = mapped_column(BigInteger, unique=True, index=True, nullable=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(191), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(191), index=True, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive)


class Order(Base):
    """A finalized quote. Totals come from the pricing engine and are read-only here."""

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    display_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    customer_id: Mapped[Optional[int]] = mapped_column(ForeignKey("customers.id"), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(191), nullable=True)

    currency: Mapped[str] = mapped_column(String(8), default="USD")
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    payment_status: Mapped[str] = mapped_column(String(16), index=True, default="unpaid")
    payment_method: Mapped[str] = mapped_column(String(32), default="bank_transfer")
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # Bumped on every payment write; guards read-modify-write of amount_paid
    payment_version: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive, onupdate=utcnow_naive)


class PaymentProof(Base):
    __tablename__ = "payment_proofs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[Optional[int]] = mapped_column(ForeignKey("orders.id", ondelete="SET NULL"), index=True, nullable=True)
    sender_id: Mapped[Optional[int]] = mapped_column(ForeignKey("customers.id"), nullable=True)

    attachment_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attachment_file_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    verification_status: Mapped[str] = mapped_column(String(16), index=True, default="pending")
    verified_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    verified_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, index=True, default=utcnow_naive)


class PaymentTransaction(Base):
    """Gateway record written by the webhook processor; read-only for the verification engine."""

    __tablename__ = "payment_transactions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[Optional[int]] = mapped_column(ForeignKey("orders.id", ondelete="SET NULL"), index=True, nullable=True)
    customer_id: Mapped[Optional[int]] = mapped_column(ForeignKey("customers.id"), nullable=True)

    transaction_id: Mapped[Optional[str]] = mapped_column(String(191), index=True, nullable=True)
    payment_method: Mapped[str] = mapped_column(String(32), index=True)
    status: Mapped[str] = mapped_column(String(32), index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(8), default="USD")
    gateway_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, index=True, default=utcnow_naive)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive, onupdate=utcnow_naive)


class PaymentLedgerEntry(Base):
    """Append-only payment events; orders.amount_paid is the sum of these rows."""

    __tablename__ = "payment_ledger"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), index=True)
    proof_id: Mapped[Optional[int]] = mapped_column(ForeignKey("payment_proofs.id"), unique=True, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    entry_type: Mapped[str] = mapped_column(String(32), default="manual_proof")
    recorded_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    actor: Mapped[str] = mapped_column(String(64))  # admin:<id>|system
    action: Mapped[str] = mapped_column(String(64))
    target_type: Mapped[str] = mapped_column(String(64))
    target_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    meta: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive)
