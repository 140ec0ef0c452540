from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from payrecon.payment.evidence import EvidenceKind, PaymentEvidence, VerificationStatus
from payrecon.payment.normalizer import MANUAL_METHOD
from payrecon.utils.money import to_money
from payrecon.utils.time import as_naive_utc

STATUS_FILTERS = ("all", "pending", "verified", "rejected")
TOP_METHODS_LIMIT = 5


@dataclass(frozen=True)
class EvidenceQuery:
    status: str = "all"
    payment_method: str = "all"
    search: str = ""
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    def __post_init__(self) -> None:
        status = (self.status or "all").strip().lower()
        if status not in STATUS_FILTERS:
            raise ValueError(f"unknown status filter: {self.status!r}")
        object.__setattr__(self, "status", status)
        object.__setattr__(self, "payment_method", (self.payment_method or "all").strip().lower())
        object.__setattr__(self, "search", (self.search or "").strip())
        object.__setattr__(self, "date_from", as_naive_utc(self.date_from))
        object.__setattr__(self, "date_to", as_naive_utc(self.date_to))

    @property
    def wants_manual(self) -> bool:
        return self.payment_method in ("all", MANUAL_METHOD)

    @property
    def wants_gateway(self) -> bool:
        return self.payment_method != MANUAL_METHOD


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    size: int = 10

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValueError("page must be >= 1")
        if self.size < 1:
            raise ValueError("page size must be >= 1")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.size


@dataclass
class MethodStat:
    method: str
    count: int
    total_amount: Decimal


@dataclass
class EvidenceStats:
    total: int = 0
    pending: int = 0
    verified: int = 0
    rejected: int = 0
    total_amount: Decimal = Decimal("0.00")
    top_methods: List[MethodStat] = field(default_factory=list)


@dataclass
class EvidencePage:
    items: List[PaymentEvidence]
    page: int
    page_size: int
    total_count: int
    total_pages: int
    stats: EvidenceStats = field(default_factory=EvidenceStats)

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.page > 1


def _in_scope(item: PaymentEvidence, query: EvidenceQuery) -> bool:
    """Method and date filters; these bound both the page and the statistics."""
    if item.kind is EvidenceKind.MANUAL_PROOF:
        if not query.wants_manual:
            return False
    elif query.payment_method != "all" and item.payment_method != query.payment_method:
        return False
    if query.date_from is not None and item.submitted_at < query.date_from:
        return False
    if query.date_to is not None and item.submitted_at > query.date_to:
        return False
    return True


def matches_search(item: PaymentEvidence, text: str) -> bool:
    needle = (text or "").strip().lower()
    if not needle:
        return True
    haystack = (
        item.order_display_id,
        item.customer_name,
        item.customer_email,
        item.label,
        item.transaction_id,
        item.payment_method,
        item.admin_notes,
    )
    return any(needle in value.lower() for value in haystack if value)


def sort_key(item: PaymentEvidence) -> Tuple[datetime, str, int]:
    return (item.submitted_at, item.kind.value, item.id)


def compute_stats(items: Iterable[PaymentEvidence]) -> EvidenceStats:
    stats = EvidenceStats()
    counts: Counter[str] = Counter()
    amounts: Dict[str, Decimal] = {}
    for item in items:
        stats.total += 1
        if item.verification_status is VerificationStatus.PENDING:
            stats.pending += 1
        elif item.verification_status is VerificationStatus.VERIFIED:
            stats.verified += 1
            amount = to_money(item.verified_amount if item.verified_amount is not None else item.claimed_amount)
            stats.total_amount += amount
            counts[item.payment_method] += 1
            amounts[item.payment_method] = amounts.get(item.payment_method, Decimal("0.00")) + amount
        else:
            stats.rejected += 1
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:TOP_METHODS_LIMIT]
    stats.top_methods = [MethodStat(method=m, count=c, total_amount=amounts[m]) for m, c in ranked]
    return stats


def aggregate_evidence(
    items: Sequence[PaymentEvidence],
    query: EvidenceQuery,
    page: PageRequest,
) -> EvidencePage:
    """Merge both evidence kinds, filter, sort newest first and cut one page.

    Every filter (status, method, date, free text) runs over the full union before slicing,
    so total_count and total_pages describe exactly what paging will walk through.
    Stats ignore status and search but honour the method and date scope.
    """
    scoped = [item for item in items if _in_scope(item, query)]
    stats = compute_stats(scoped)

    selected = [
        item
        for item in scoped
        if (query.status == "all" or item.verification_status.value == query.status)
        and matches_search(item, query.search)
    ]
    selected.sort(key=sort_key, reverse=True)

    total = len(selected)
    total_pages = math.ceil(total / page.size) if total else 0
    window = selected[page.offset:page.offset + page.size]
    return EvidencePage(
        items=window,
        page=page.page,
        page_size=page.size,
        total_count=total,
        total_pages=total_pages,
        stats=stats,
    )
