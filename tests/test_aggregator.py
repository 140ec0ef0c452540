from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

import pytest

from payrecon.payment.aggregator import EvidenceQuery, PageRequest, aggregate_evidence, matches_search
from payrecon.payment.evidence import EvidenceKind, PaymentEvidence, VerificationStatus

T0 = datetime(2026, 10, 1, 9, 0, 0)


def _ev(
    id: int,
    kind: EvidenceKind = EvidenceKind.MANUAL_PROOF,
    *,
    minutes: int = 0,
    status: VerificationStatus = VerificationStatus.PENDING,
    method: Optional[str] = None,
    amount: str = "10",
    customer: str = "Ada Lovelace",
    display_id: str = "ORD-1",
    transaction_id: Optional[str] = None,
) -> PaymentEvidence:
    if method is None:
        method = "bank_transfer" if kind is EvidenceKind.MANUAL_PROOF else "stripe"
    return PaymentEvidence(
        id=id,
        kind=kind,
        order_id=1,
        submitted_at=T0 + timedelta(minutes=minutes),
        verification_status=status,
        claimed_amount=Decimal(amount),
        currency="USD",
        payment_method=method,
        label=f"label-{id}",
        order_display_id=display_id,
        customer_name=customer,
        customer_email=f"{customer.split()[0].lower()}@example.com",
        verified_amount=Decimal(amount) if status is VerificationStatus.VERIFIED else None,
        transaction_id=transaction_id,
    )


def _refs(items: List[PaymentEvidence]) -> List[str]:
    return [i.ref for i in items]


def test_newest_first_with_stable_tie_break() -> None:
    items = [
        _ev(1, minutes=0),
        _ev(2, minutes=5),
        _ev(2, EvidenceKind.GATEWAY_TRANSACTION, minutes=5),
        _ev(3, minutes=5),
    ]
    page = aggregate_evidence(items, EvidenceQuery(), PageRequest(page=1, size=10))
    assert _refs(page.items) == ["proof:3", "proof:2", "gtx:2", "proof:1"]


def test_pages_partition_the_filtered_set_without_gaps_or_repeats() -> None:
    items = [_ev(i, EvidenceKind.MANUAL_PROOF if i % 2 else EvidenceKind.GATEWAY_TRANSACTION, minutes=i % 4) for i in range(1, 24)]
    query = EvidenceQuery(status="pending")
    first = aggregate_evidence(items, query, PageRequest(page=1, size=5))
    assert first.total_count == 23
    assert first.total_pages == 5
    seen: List[str] = []
    for n in range(1, first.total_pages + 1):
        seen += _refs(aggregate_evidence(items, query, PageRequest(page=n, size=5)).items)
    assert len(seen) == 23
    assert len(set(seen)) == 23


def test_page_past_the_end_is_empty() -> None:
    page = aggregate_evidence([_ev(1)], EvidenceQuery(), PageRequest(page=4, size=10))
    assert page.items == []
    assert page.total_count == 1
    assert page.has_next is False
    assert page.has_previous is True


def test_empty_universe_has_zero_pages() -> None:
    page = aggregate_evidence([], EvidenceQuery(), PageRequest())
    assert page.total_count == 0
    assert page.total_pages == 0
    assert page.stats.total == 0


def test_status_filter_spans_both_kinds() -> None:
    items = [
        _ev(1, status=VerificationStatus.VERIFIED),
        _ev(2, EvidenceKind.GATEWAY_TRANSACTION, status=VerificationStatus.VERIFIED),
        _ev(3),
        _ev(4, EvidenceKind.GATEWAY_TRANSACTION, status=VerificationStatus.REJECTED),
    ]
    page = aggregate_evidence(items, EvidenceQuery(status="verified"), PageRequest())
    assert sorted(_refs(page.items)) == ["gtx:2", "proof:1"]


def test_method_filter_selects_one_stream() -> None:
    items = [
        _ev(1),
        _ev(2, EvidenceKind.GATEWAY_TRANSACTION, method="stripe"),
        _ev(3, EvidenceKind.GATEWAY_TRANSACTION, method="paypal"),
    ]
    manual = aggregate_evidence(items, EvidenceQuery(payment_method="bank_transfer"), PageRequest())
    assert _refs(manual.items) == ["proof:1"]
    paypal = aggregate_evidence(items, EvidenceQuery(payment_method="PayPal"), PageRequest())
    assert _refs(paypal.items) == ["gtx:3"]


def test_search_is_case_insensitive_and_spans_fields() -> None:
    items = [
        _ev(1, customer="Ada Lovelace", display_id="ORD-AAA"),
        _ev(2, EvidenceKind.GATEWAY_TRANSACTION, customer="Alan Turing", transaction_id="pi_XYZ"),
    ]
    assert _refs(aggregate_evidence(items, EvidenceQuery(search="lovelace"), PageRequest()).items) == ["proof:1"]
    assert _refs(aggregate_evidence(items, EvidenceQuery(search="PI_xyz"), PageRequest()).items) == ["gtx:2"]
    assert _refs(aggregate_evidence(items, EvidenceQuery(search="ord-aaa"), PageRequest()).items) == ["proof:1"]
    assert matches_search(items[1], "alan@") is True


def test_stats_ignore_status_and_search_filters() -> None:
    items = [
        _ev(1, status=VerificationStatus.VERIFIED, amount="40"),
        _ev(2, EvidenceKind.GATEWAY_TRANSACTION, status=VerificationStatus.VERIFIED, amount="60"),
        _ev(3),
        _ev(4, status=VerificationStatus.REJECTED),
    ]
    page = aggregate_evidence(items, EvidenceQuery(status="pending", search="nobody"), PageRequest())
    assert page.items == []
    stats = page.stats
    assert (stats.total, stats.pending, stats.verified, stats.rejected) == (4, 1, 2, 1)
    assert stats.total_amount == Decimal("100.00")
    assert {m.method for m in stats.top_methods} == {"bank_transfer", "stripe"}


def test_date_range_is_inclusive_and_accepts_aware_datetimes() -> None:
    items = [_ev(1, minutes=0), _ev(2, minutes=30), _ev(3, minutes=60)]
    query = EvidenceQuery(
        date_from=(T0 + timedelta(minutes=30)).replace(tzinfo=timezone.utc),
        date_to=T0 + timedelta(minutes=60),
    )
    page = aggregate_evidence(items, query, PageRequest())
    assert _refs(page.items) == ["proof:3", "proof:2"]
    assert page.stats.total == 2


def test_invalid_filters_are_rejected() -> None:
    with pytest.raises(ValueError):
        EvidenceQuery(status="approved")
    with pytest.raises(ValueError):
        PageRequest(page=0)
    with pytest.raises(ValueError):
        PageRequest(size=0)
