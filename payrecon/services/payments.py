from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payrecon.db.session import get_session_maker
from payrecon.payment.aggregator import EvidencePage, EvidenceQuery, PageRequest, aggregate_evidence
from payrecon.payment.errors import EvidenceNotFound
from payrecon.payment.evidence import Decision, EvidenceKind, PaymentEvidence, VerificationStatus, parse_ref
from payrecon.payment.ledger import remaining_balance
from payrecon.payment.normalizer import normalize_gateway_transaction, normalize_manual_proof
from payrecon.services.audit import list_audit
from payrecon.services.batch import BatchSummary, decide_batch as _decide_batch
from payrecon.services.evidence_store import EvidenceStore
from payrecon.services.verification import Outcome, VerificationEngine
from payrecon.utils.money import to_money

logger = logging.getLogger(__name__)

_engine: Optional[VerificationEngine] = None


def get_verification_engine() -> VerificationEngine:
    global _engine
    if _engine is None:
        _engine = VerificationEngine()
    return _engine


def set_verification_engine(engine: Optional[VerificationEngine]) -> None:
    global _engine
    _engine = engine


async def load_evidence(
    query: EvidenceQuery,
    *,
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
) -> List[PaymentEvidence]:
    """Fetch and normalize both evidence kinds; date and gateway filters are pushed to the store."""
    maker = session_maker or get_session_maker()
    items: List[PaymentEvidence] = []
    async with maker() as session:
        store = EvidenceStore(session)
        if query.wants_manual:
            for proof, order, sender in await store.list_manual_proofs(date_from=query.date_from, date_to=query.date_to):
                items.append(normalize_manual_proof(proof, order, sender))
        if query.wants_gateway:
            method = None if query.payment_method == "all" else query.payment_method
            rows = await store.list_gateway_transactions(payment_method=method, date_from=query.date_from, date_to=query.date_to)
            for tx, order, customer in rows:
                items.append(normalize_gateway_transaction(tx, order, customer))
    return items


async def query_evidence(
    query: Optional[EvidenceQuery] = None,
    page: Optional[PageRequest] = None,
    *,
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
) -> EvidencePage:
    query = query or EvidenceQuery()
    page = page or PageRequest()
    items = await load_evidence(query, session_maker=session_maker)
    return aggregate_evidence(items, query, page)


@dataclass
class VerificationDetails:
    ref: str
    order_id: Optional[int]
    order_total: Decimal
    existing_paid: Decimal
    remaining_balance: Decimal
    suggested_amount: Decimal
    can_verify: bool
    notes: List[str] = field(default_factory=list)


async def get_verification_details(
    ref: str,
    *,
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
) -> VerificationDetails:
    """What an operator should know before deciding: balance, suggested amount, blockers."""
    kind, evidence_id = parse_ref(ref)
    maker = session_maker or get_session_maker()
    async with maker() as session:
        store = EvidenceStore(session)
        if kind is EvidenceKind.MANUAL_PROOF:
            row = await store.get_manual_proof(evidence_id)
        else:
            row = await store.get_gateway_transaction(evidence_id)
    if row is None:
        raise EvidenceNotFound(f"evidence {ref} not found", ref=ref)
    record, order, person = row

    total = to_money(order.total if order is not None else None)
    paid = to_money(order.amount_paid if order is not None else None)
    remaining = remaining_balance(paid, total)
    notes: List[str] = []
    can_verify = True

    if kind is EvidenceKind.MANUAL_PROOF:
        evidence = normalize_manual_proof(record, order, person)
        suggested = remaining
        if evidence.verification_status is VerificationStatus.VERIFIED:
            notes.append("Already verified")
            can_verify = False
        elif evidence.verification_status is VerificationStatus.REJECTED:
            notes.append("Previously rejected")
            can_verify = False
        else:
            notes.append("Pending verification")
        if not record.attachment_url:
            notes.append("No payment proof attachment")
            can_verify = False
    else:
        evidence = normalize_gateway_transaction(record, order, person)
        suggested = evidence.claimed_amount
        can_verify = False
        if evidence.verification_status is VerificationStatus.VERIFIED:
            notes.append("Auto-verified by gateway")
        elif evidence.verification_status is VerificationStatus.REJECTED:
            notes.append("Failed transaction")
        else:
            notes.append("Pending completion at gateway")
        if evidence.status_unmapped:
            notes.append(f"Unrecognised gateway status {record.status!r}")

    if evidence.orphaned:
        notes.append("Order no longer exists")
        can_verify = False
    elif remaining <= 0:
        notes.append("Order already fully paid")

    return VerificationDetails(
        ref=evidence.ref,
        order_id=evidence.order_id,
        order_total=total,
        existing_paid=paid,
        remaining_balance=remaining,
        suggested_amount=suggested,
        can_verify=can_verify,
        notes=notes,
    )


@dataclass
class ActionHistoryEntry:
    action: str
    actor: str
    at: datetime
    note: Optional[str] = None
    amount: Optional[Decimal] = None


_AUDIT_TARGETS = {
    EvidenceKind.MANUAL_PROOF: "payment_proof",
    EvidenceKind.GATEWAY_TRANSACTION: "payment_transaction",
}


def _history_entry(row) -> ActionHistoryEntry:  # type: ignore[no-untyped-def]
    try:
        meta = json.loads(row.meta) if row.meta else {}
    except ValueError:
        logger.warning("unreadable audit meta", extra={"extra": {"audit_id": row.id}})
        meta = {}
    amount = meta.get("amount")
    return ActionHistoryEntry(
        action=row.action,
        actor=row.actor,
        at=row.created_at,
        note=meta.get("note"),
        amount=to_money(amount) if amount is not None else None,
    )


async def get_action_history(
    ref: str,
    *,
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
    limit: int = 50,
) -> List[ActionHistoryEntry]:
    """Decisions recorded against one evidence item, newest first."""
    kind, evidence_id = parse_ref(ref)
    maker = session_maker or get_session_maker()
    async with maker() as session:
        store = EvidenceStore(session)
        if kind is EvidenceKind.MANUAL_PROOF:
            row = await store.get_manual_proof(evidence_id)
        else:
            row = await store.get_gateway_transaction(evidence_id)
        if row is None:
            raise EvidenceNotFound(f"evidence {ref} not found", ref=ref)
        audit_rows = await list_audit(session, target_type=_AUDIT_TARGETS[kind], target_id=evidence_id, limit=limit)
    return [_history_entry(r) for r in audit_rows]


async def decide(
    ref: str,
    decision: Decision,
    note: Optional[str] = None,
    *,
    decided_by: str,
    verified_amount: Optional[Decimal] = None,
) -> Outcome:
    return await get_verification_engine().decide(ref, decision, note, decided_by=decided_by, verified_amount=verified_amount)


async def decide_batch(
    refs: Iterable[str],
    decision: Decision,
    note: Optional[str] = None,
    *,
    decided_by: str,
    concurrency: Optional[int] = None,
) -> BatchSummary:
    return await _decide_batch(get_verification_engine(), refs, decision, note, decided_by=decided_by, concurrency=concurrency)
