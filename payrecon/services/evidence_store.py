from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import Select, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payrecon.db.models import Customer, Order, PaymentLedgerEntry, PaymentProof, PaymentTransaction
from payrecon.payment.errors import AlreadyDecided, EvidenceNotFound, OrderConflict
from payrecon.payment.evidence import PaymentStatus, VerificationStatus
from payrecon.payment.ledger import fold_amounts
from payrecon.utils.time import utcnow_naive

ProofRow = Tuple[PaymentProof, Optional[Order], Optional[Customer]]
TransactionRow = Tuple[PaymentTransaction, Optional[Order], Optional[Customer]]


class EvidenceStore:
    """Reads and writes evidence and order payment fields inside one caller-owned session.

    The caller controls the transaction; nothing here commits.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ----- orders -----

    async def get_order(self, order_id: Optional[int], *, for_update: bool = False) -> Optional[Order]:
        if order_id is None:
            return None
        stmt = select(Order).where(Order.id == order_id)
        if for_update:
            # SQLite ignores FOR UPDATE; payment_version still catches lost updates there
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return await self.session.scalar(stmt)

    async def update_order_payment(
        self,
        order_id: int,
        *,
        amount_paid: Decimal,
        payment_status: PaymentStatus,
        paid_at: Optional[datetime],
        expected_version: int,
    ) -> int:
        """Compare-and-set on payment_version. Returns the new version or raises OrderConflict."""
        res = await self.session.execute(
            update(Order)
            .where(Order.id == order_id, Order.payment_version == expected_version)
            .values(
                amount_paid=amount_paid,
                payment_status=payment_status.value,
                paid_at=paid_at,
                payment_version=Order.payment_version + 1,
                updated_at=utcnow_naive(),
            )
            .execution_options(synchronize_session=False)
        )
        if (res.rowcount or 0) == 0:
            raise OrderConflict(
                f"order {order_id} payment changed concurrently",
                order_id=order_id,
                expected_version=expected_version,
            )
        return expected_version + 1

    # ----- evidence reads -----

    async def list_manual_proofs(
        self,
        *,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[ProofRow]:
        stmt = (
            select(PaymentProof, Order, Customer)
            .outerjoin(Order, PaymentProof.order_id == Order.id)
            .outerjoin(Customer, PaymentProof.sender_id == Customer.id)
            .order_by(PaymentProof.created_at.desc(), PaymentProof.id.desc())
        )
        if date_from is not None:
            stmt = stmt.where(PaymentProof.created_at >= date_from)
        if date_to is not None:
            stmt = stmt.where(PaymentProof.created_at <= date_to)
        rows = (await self.session.execute(stmt)).all()
        return [(p, o, c) for p, o, c in rows]

    async def list_gateway_transactions(
        self,
        *,
        payment_method: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[TransactionRow]:
        stmt = (
            select(PaymentTransaction, Order, Customer)
            .outerjoin(Order, PaymentTransaction.order_id == Order.id)
            .outerjoin(Customer, PaymentTransaction.customer_id == Customer.id)
            .order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc())
        )
        if payment_method:
            # Methods are stored as the gateway reported them; the filter value is lowercased
            stmt = stmt.where(func.lower(PaymentTransaction.payment_method) == payment_method.strip().lower())
        if date_from is not None:
            stmt = stmt.where(PaymentTransaction.created_at >= date_from)
        if date_to is not None:
            stmt = stmt.where(PaymentTransaction.created_at <= date_to)
        rows = (await self.session.execute(stmt)).all()
        return [(t, o, c) for t, o, c in rows]

    async def get_manual_proof(self, proof_id: int) -> Optional[ProofRow]:
        row = (
            await self.session.execute(
                select(PaymentProof, Order, Customer)
                .outerjoin(Order, PaymentProof.order_id == Order.id)
                .outerjoin(Customer, PaymentProof.sender_id == Customer.id)
                .where(PaymentProof.id == proof_id)
            )
        ).first()
        if not row:
            return None
        proof, order, customer = row
        return proof, order, customer

    async def get_gateway_transaction(self, tx_id: int) -> Optional[TransactionRow]:
        row = (
            await self.session.execute(
                select(PaymentTransaction, Order, Customer)
                .outerjoin(Order, PaymentTransaction.order_id == Order.id)
                .outerjoin(Customer, PaymentTransaction.customer_id == Customer.id)
                .where(PaymentTransaction.id == tx_id)
            )
        ).first()
        if not row:
            return None
        tx, order, customer = row
        return tx, order, customer

    # ----- evidence writes -----

    async def set_manual_proof_decision(
        self,
        proof_id: int,
        *,
        status: VerificationStatus,
        note: Optional[str],
        decided_by: str,
        decided_at: datetime,
        verified_amount: Optional[Decimal] = None,
    ) -> None:
        """Pending -> verified/rejected, exactly once. Raises AlreadyDecided or EvidenceNotFound."""
        if status is VerificationStatus.PENDING:
            raise ValueError("a decision must move the proof out of pending")
        res = await self.session.execute(
            update(PaymentProof)
            .where(PaymentProof.id == proof_id, PaymentProof.verification_status == VerificationStatus.PENDING.value)
            .values(
                verification_status=status.value,
                admin_notes=note,
                verified_by=decided_by,
                verified_at=decided_at,
                verified_amount=verified_amount,
            )
            .execution_options(synchronize_session=False)
        )
        if (res.rowcount or 0) == 1:
            return
        current = await self.session.scalar(
            select(PaymentProof.verification_status).where(PaymentProof.id == proof_id)
        )
        if current is None:
            raise EvidenceNotFound(f"payment proof {proof_id} not found", proof_id=proof_id)
        raise AlreadyDecided(f"payment proof {proof_id} is already {current}", proof_id=proof_id, status=current)

    # ----- ledger -----

    async def append_ledger_entry(
        self,
        *,
        order_id: int,
        proof_id: Optional[int],
        amount: Decimal,
        recorded_by: Optional[str],
        note: Optional[str] = None,
        entry_type: str = "manual_proof",
    ) -> PaymentLedgerEntry:
        entry = PaymentLedgerEntry(
            order_id=order_id,
            proof_id=proof_id,
            amount=amount,
            entry_type=entry_type,
            recorded_by=recorded_by,
            note=note,
            created_at=utcnow_naive(),
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    @staticmethod
    def ledger_amounts_stmt(order_id: int) -> Select:
        # Locking read: must include ledger rows committed after this transaction's snapshot
        return select(PaymentLedgerEntry.amount).where(PaymentLedgerEntry.order_id == order_id).with_for_update()

    async def fold_amount_paid(self, order_id: int) -> Decimal:
        """Sum of the order's ledger rows. Call after locking the order row."""
        amounts = (await self.session.scalars(self.ledger_amounts_stmt(order_id))).all()
        return fold_amounts(amounts)
