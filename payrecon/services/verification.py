from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Iterable, Optional, Protocol

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payrecon.config import settings
from payrecon.db.session import get_session_maker
from payrecon.payment.errors import (
    STORE_ERROR,
    AlreadyDecided,
    EvidenceNotFound,
    InvalidAmount,
    NotApplicable,
    OrderConflict,
    OrderNotFound,
    PaymentEngineError,
)
from payrecon.payment.evidence import Decision, EvidenceKind, PaymentStatus, VerificationStatus, make_ref, parse_ref
from payrecon.payment.ledger import derive_payment_status
from payrecon.services import invalidation
from payrecon.services.audit import log_audit
from payrecon.services.evidence_store import EvidenceStore
from payrecon.services.notifications import TEMPLATE_REJECTED, TEMPLATE_VERIFIED, dispatcher
from payrecon.utils.correlation import get_correlation_id
from payrecon.utils.money import to_money
from payrecon.utils.time import utcnow_naive

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify_customer(
        self,
        order_id: Optional[int],
        template_kind: str,
        note: Optional[str] = None,
        *,
        amount: Optional[Decimal] = None,
    ) -> None: ...


Invalidator = Callable[[Iterable[str]], Awaitable[None]]


@dataclass
class Outcome:
    ref: str
    decision: Decision
    ok: bool
    status: Optional[VerificationStatus] = None
    order_id: Optional[int] = None
    verified_amount: Optional[Decimal] = None
    amount_paid: Optional[Decimal] = None
    payment_status: Optional[PaymentStatus] = None
    error_code: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def failure(cls, ref: str, decision: Decision, code: str, message: str, order_id: Optional[int] = None) -> "Outcome":
        return cls(ref=ref, decision=decision, ok=False, error_code=code, message=message, order_id=order_id)


class VerificationEngine:
    """Applies operator decisions to manual proofs and keeps the order's payment state congruent.

    A verify is one transaction: proof decision, ledger append, amount_paid fold and order
    write commit together or not at all. Notification and cache invalidation run only after
    the commit and can never undo it.
    """

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        *,
        notifier: Optional[Notifier] = None,
        invalidator: Optional[Invalidator] = None,
        conflict_retries: Optional[int] = None,
        conflict_backoff: Optional[float] = None,
        notify: Optional[bool] = None,
    ) -> None:
        self._session_maker = session_maker
        self.notifier: Notifier = notifier or dispatcher
        self.invalidator: Invalidator = invalidator or invalidation.emit
        self.conflict_retries = settings.order_conflict_retries if conflict_retries is None else conflict_retries
        self.conflict_backoff = settings.order_conflict_backoff if conflict_backoff is None else conflict_backoff
        self.notify = settings.notify_on_decision if notify is None else notify

    @property
    def session_maker(self) -> async_sessionmaker[AsyncSession]:
        return self._session_maker or get_session_maker()

    async def decide(
        self,
        ref: str,
        decision: Decision,
        note: Optional[str] = None,
        *,
        decided_by: str,
        verified_amount: Optional[Decimal] = None,
    ) -> Outcome:
        """Apply one decision. Never raises for per-item failures; they come back as a failed Outcome."""
        decision = Decision(decision)
        note = (note or "").strip() or None
        log_ctx = {"ref": ref, "decision": decision.value, "by": decided_by, "cid": get_correlation_id()}
        try:
            kind, evidence_id = parse_ref(ref)
            if kind is EvidenceKind.GATEWAY_TRANSACTION:
                await self._reject_gateway_decision(evidence_id)
            outcome = await self._apply_with_retry(evidence_id, decision, note, decided_by, verified_amount)
        except PaymentEngineError as e:
            logger.info(
                "decision not applied",
                extra={"extra": {**log_ctx, "code": e.code, "reason": e.message}},
            )
            return Outcome.failure(ref, decision, e.code, e.message, order_id=e.context.get("order_id"))
        except SQLAlchemyError as e:
            logger.exception("decision failed in store; rolled back", extra={"extra": log_ctx})
            return Outcome.failure(ref, decision, STORE_ERROR, str(e))

        logger.info(
            "decision applied",
            extra={
                "extra": {
                    **log_ctx,
                    "order_id": outcome.order_id,
                    "status": outcome.status.value if outcome.status else None,
                    "amount_paid": str(outcome.amount_paid) if outcome.amount_paid is not None else None,
                    "payment_status": outcome.payment_status.value if outcome.payment_status else None,
                }
            },
        )
        await self._after_commit(outcome, note)
        return outcome

    async def _reject_gateway_decision(self, tx_id: int) -> None:
        async with self.session_maker() as session:
            row = await EvidenceStore(session).get_gateway_transaction(tx_id)
        if row is None:
            raise EvidenceNotFound(f"gateway transaction {tx_id} not found", tx_id=tx_id)
        tx, order, _ = row
        raise NotApplicable(
            f"gateway transaction {tx_id} follows its gateway status ({tx.status}) and cannot be decided by hand",
            order_id=order.id if order is not None else None,
        )

    async def _apply_with_retry(
        self,
        proof_id: int,
        decision: Decision,
        note: Optional[str],
        decided_by: str,
        verified_amount: Optional[Decimal],
    ) -> Outcome:
        attempts = max(1, self.conflict_retries + 1)
        for attempt in range(attempts):
            try:
                return await self._apply(proof_id, decision, note, decided_by, verified_amount)
            except (OrderConflict, OperationalError) as e:
                if attempt >= attempts - 1:
                    if isinstance(e, OrderConflict):
                        raise
                    raise OrderConflict(f"order update kept failing: {e}", proof_id=proof_id) from e
                delay = self.conflict_backoff * (2 ** attempt)
                logger.warning(
                    "order payment conflict; retrying",
                    extra={"extra": {"proof_id": proof_id, "attempt": attempt + 1, "delay": delay}},
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")

    async def _apply(
        self,
        proof_id: int,
        decision: Decision,
        note: Optional[str],
        decided_by: str,
        verified_amount: Optional[Decimal],
    ) -> Outcome:
        ref = make_ref(EvidenceKind.MANUAL_PROOF, proof_id)
        async with self.session_maker() as session:
            async with session.begin():
                store = EvidenceStore(session)
                row = await store.get_manual_proof(proof_id)
                if row is None:
                    raise EvidenceNotFound(f"payment proof {proof_id} not found", proof_id=proof_id)
                proof, order, _ = row
                if proof.verification_status != VerificationStatus.PENDING.value:
                    raise AlreadyDecided(
                        f"payment proof {proof_id} is already {proof.verification_status}",
                        proof_id=proof_id,
                        order_id=proof.order_id,
                    )
                now = utcnow_naive()

                if decision is Decision.REJECT:
                    await store.set_manual_proof_decision(
                        proof_id,
                        status=VerificationStatus.REJECTED,
                        note=note,
                        decided_by=decided_by,
                        decided_at=now,
                    )
                    await log_audit(
                        session,
                        actor=decided_by,
                        action="payment_proof_rejected",
                        target_type="payment_proof",
                        target_id=proof_id,
                        meta={"order_id": proof.order_id, "note": note, "cid": get_correlation_id()},
                    )
                    return Outcome(
                        ref=ref,
                        decision=decision,
                        ok=True,
                        status=VerificationStatus.REJECTED,
                        order_id=proof.order_id,
                    )

                order = await store.get_order(order.id if order is not None else None, for_update=True)
                if order is None:
                    raise OrderNotFound(f"payment proof {proof_id} has no live order", proof_id=proof_id)

                # The proof settles the full order total unless the operator supplied an amount
                amount = to_money(verified_amount if verified_amount is not None else order.total)
                if amount <= 0:
                    raise InvalidAmount(f"cannot verify {amount} against order {order.display_id}", order_id=order.id)

                await store.set_manual_proof_decision(
                    proof_id,
                    status=VerificationStatus.VERIFIED,
                    note=note,
                    decided_by=decided_by,
                    decided_at=now,
                    verified_amount=amount,
                )
                await store.append_ledger_entry(
                    order_id=order.id,
                    proof_id=proof_id,
                    amount=amount,
                    recorded_by=decided_by,
                    note=note,
                )
                amount_paid = await store.fold_amount_paid(order.id)
                payment_status = derive_payment_status(amount_paid, order.total)
                await store.update_order_payment(
                    order.id,
                    amount_paid=amount_paid,
                    payment_status=payment_status,
                    paid_at=now,
                    expected_version=order.payment_version or 0,
                )
                await log_audit(
                    session,
                    actor=decided_by,
                    action="payment_proof_verified",
                    target_type="payment_proof",
                    target_id=proof_id,
                    meta={
                        "order_id": order.id,
                        "amount": str(amount),
                        "amount_paid": str(amount_paid),
                        "payment_status": payment_status.value,
                        "note": note,
                        "cid": get_correlation_id(),
                    },
                )
                return Outcome(
                    ref=ref,
                    decision=decision,
                    ok=True,
                    status=VerificationStatus.VERIFIED,
                    order_id=order.id,
                    verified_amount=amount,
                    amount_paid=amount_paid,
                    payment_status=payment_status,
                )

    async def _after_commit(self, outcome: Outcome, note: Optional[str]) -> None:
        try:
            await self.invalidator(invalidation.keys_for_decision(outcome.order_id))
        except Exception:
            logger.exception("cache invalidation failed", extra={"extra": {"ref": outcome.ref}})
        if not self.notify:
            return
        template = TEMPLATE_VERIFIED if outcome.status is VerificationStatus.VERIFIED else TEMPLATE_REJECTED
        try:
            await self.notifier.notify_customer(outcome.order_id, template, note, amount=outcome.verified_amount)
        except Exception as e:
            # Decision is committed; enqueue failures are logged only
            logger.warning(
                "notification enqueue failed",
                extra={"extra": {"ref": outcome.ref, "order_id": outcome.order_id, "err": str(e)}},
            )
