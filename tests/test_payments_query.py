from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from payrecon.payment.aggregator import EvidenceQuery, PageRequest
from payrecon.payment.errors import EvidenceNotFound
from payrecon.payment.evidence import Decision
from payrecon.services import payments
from payrecon.services.verification import VerificationEngine

from conftest import FakeInvalidator, FakeNotifier, seed_order, seed_proof, seed_transaction

T0 = datetime(2026, 10, 1, 8, 0, 0)


@pytest.mark.asyncio
async def test_query_merges_both_streams(session_maker) -> None:
    order_id, customer_id = await seed_order(session_maker, display_id="ORD-77", full_name="Ada Lovelace")
    p1 = await seed_proof(session_maker, order_id, customer_id, created_at=T0)
    t1 = await seed_transaction(session_maker, order_id, customer_id, status="completed", created_at=T0 + timedelta(minutes=1))
    t2 = await seed_transaction(session_maker, None, None, status="failed", method="paypal", transaction_id="PP-1", created_at=T0 + timedelta(minutes=2))
    p2 = await seed_proof(session_maker, None, None, created_at=T0 + timedelta(minutes=3))

    page = await payments.query_evidence(EvidenceQuery(), PageRequest(page=1, size=10), session_maker=session_maker)

    assert [e.ref for e in page.items] == [f"proof:{p2}", f"gtx:{t2}", f"gtx:{t1}", f"proof:{p1}"]
    assert page.stats.total == 4
    assert page.stats.pending == 2
    assert page.stats.verified == 1
    assert page.stats.rejected == 1
    orphan = page.items[0]
    assert orphan.orphaned and orphan.order_display_id == "N/A"

    pending = await payments.query_evidence(EvidenceQuery(status="pending"), session_maker=session_maker)
    assert {e.ref for e in pending.items} == {f"proof:{p1}", f"proof:{p2}"}

    paypal = await payments.query_evidence(EvidenceQuery(payment_method="paypal"), session_maker=session_maker)
    assert [e.ref for e in paypal.items] == [f"gtx:{t2}"]
    assert paypal.stats.total == 1

    found = await payments.query_evidence(EvidenceQuery(search="ord-77"), session_maker=session_maker)
    assert {e.ref for e in found.items} == {f"proof:{p1}", f"gtx:{t1}"}


@pytest.mark.asyncio
async def test_verification_details(session_maker) -> None:
    order_id, customer_id = await seed_order(session_maker, total="100.00")
    proof_id = await seed_proof(session_maker, order_id, customer_id)
    no_file = await seed_proof(session_maker, order_id, customer_id, attachment_url=None)
    tx_id = await seed_transaction(session_maker, order_id, customer_id, status="pending")

    details = await payments.get_verification_details(f"proof:{proof_id}", session_maker=session_maker)
    assert details.can_verify is True
    assert details.order_total == Decimal("100.00")
    assert details.remaining_balance == Decimal("100.00")
    assert details.suggested_amount == Decimal("100.00")
    assert "Pending verification" in details.notes

    missing = await payments.get_verification_details(f"proof:{no_file}", session_maker=session_maker)
    assert missing.can_verify is False
    assert "No payment proof attachment" in missing.notes

    gateway = await payments.get_verification_details(f"gtx:{tx_id}", session_maker=session_maker)
    assert gateway.can_verify is False
    assert "Pending completion at gateway" in gateway.notes

    with pytest.raises(EvidenceNotFound):
        await payments.get_verification_details("proof:999", session_maker=session_maker)


@pytest.mark.asyncio
async def test_facade_uses_installed_engine(session_maker) -> None:
    order_id, customer_id = await seed_order(session_maker, total="40.00")
    proof_id = await seed_proof(session_maker, order_id, customer_id)
    notifier = FakeNotifier()
    payments.set_verification_engine(
        VerificationEngine(session_maker, notifier=notifier, invalidator=FakeInvalidator(), notify=True)
    )
    try:
        outcome = await payments.decide(f"proof:{proof_id}", Decision.VERIFY, decided_by="tg:3")
        summary = await payments.decide_batch([f"proof:{proof_id}"], Decision.REJECT, "dup", decided_by="tg:3")
    finally:
        payments.set_verification_engine(None)

    assert outcome.ok is True
    assert summary.state == "failed"
    assert summary.failures[0].error_code == "already_decided"

    details = await payments.get_verification_details(f"proof:{proof_id}", session_maker=session_maker)
    assert details.existing_paid == Decimal("40.00")
    assert "Already verified" in details.notes
    assert "Order already fully paid" in details.notes


@pytest.mark.asyncio
async def test_method_filter_ignores_stored_case(session_maker) -> None:
    order_id, customer_id = await seed_order(session_maker)
    tx_id = await seed_transaction(session_maker, order_id, customer_id, method="Stripe")
    await seed_transaction(session_maker, order_id, customer_id, method="PayPal", transaction_id="PP-9")

    for method in ("stripe", "Stripe", "STRIPE"):
        page = await payments.query_evidence(EvidenceQuery(payment_method=method), session_maker=session_maker)
        assert [e.ref for e in page.items] == [f"gtx:{tx_id}"], method
        assert page.items[0].payment_method == "stripe"


@pytest.mark.asyncio
async def test_action_history(session_maker) -> None:
    order_id, customer_id = await seed_order(session_maker, total="100.00")
    verified = await seed_proof(session_maker, order_id, customer_id)
    rejected = await seed_proof(session_maker, order_id, customer_id)
    tx_id = await seed_transaction(session_maker, order_id, customer_id)
    engine = VerificationEngine(session_maker, notifier=FakeNotifier(), invalidator=FakeInvalidator(), notify=False)

    await engine.decide(f"proof:{verified}", Decision.VERIFY, "statement ok", decided_by="tg:7", verified_amount=Decimal("60"))
    await engine.decide(f"proof:{rejected}", Decision.REJECT, "blurry image", decided_by="tg:8")
    # A refused second decision leaves no trace
    await engine.decide(f"proof:{verified}", Decision.REJECT, decided_by="tg:8")

    history = await payments.get_action_history(f"proof:{verified}", session_maker=session_maker)
    assert [(h.action, h.actor, h.note, h.amount) for h in history] == [
        ("payment_proof_verified", "tg:7", "statement ok", Decimal("60.00")),
    ]
    assert history[0].at is not None

    history = await payments.get_action_history(f"proof:{rejected}", session_maker=session_maker)
    assert [(h.action, h.actor, h.note, h.amount) for h in history] == [
        ("payment_proof_rejected", "tg:8", "blurry image", None),
    ]

    assert await payments.get_action_history(f"gtx:{tx_id}", session_maker=session_maker) == []
    with pytest.raises(EvidenceNotFound):
        await payments.get_action_history("proof:404", session_maker=session_maker)
