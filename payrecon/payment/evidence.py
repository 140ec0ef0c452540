from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from payrecon.payment.errors import EvidenceNotFound


class EvidenceKind(str, Enum):
    MANUAL_PROOF = "manual_proof"
    GATEWAY_TRANSACTION = "gateway_transaction"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"
    OVERPAID = "overpaid"


class Decision(str, Enum):
    VERIFY = "verify"
    REJECT = "reject"


# Ids are only unique per source table, so callers address evidence as "<prefix>:<id>"
_REF_PREFIXES = {
    EvidenceKind.MANUAL_PROOF: "proof",
    EvidenceKind.GATEWAY_TRANSACTION: "gtx",
}
_PREFIX_KINDS = {v: k for k, v in _REF_PREFIXES.items()}

ORPHAN_DISPLAY_ID = "N/A"
ORPHAN_CUSTOMER_NAME = "Unknown Customer"
ORPHAN_CUSTOMER_EMAIL = "N/A"
DEFAULT_CURRENCY = "USD"


def make_ref(kind: EvidenceKind, evidence_id: int) -> str:
    return f"{_REF_PREFIXES[kind]}:{evidence_id}"


def parse_ref(ref: str) -> Tuple[EvidenceKind, int]:
    """Split an evidence reference into (kind, id); malformed refs count as not found."""
    prefix, _, raw_id = (ref or "").strip().partition(":")
    kind = _PREFIX_KINDS.get(prefix.lower())
    if kind is None or not raw_id.isdigit():
        raise EvidenceNotFound(f"unknown evidence reference {ref!r}", ref=ref)
    return kind, int(raw_id)


@dataclass(frozen=True)
class PaymentEvidence:
    """Canonical read model over manual proofs and gateway transactions.

    Built by the normalizer only; never persisted. Downstream code switches on ``kind``.
    """

    id: int
    kind: EvidenceKind
    order_id: Optional[int]
    submitted_at: datetime
    verification_status: VerificationStatus
    claimed_amount: Decimal
    currency: str
    payment_method: str
    label: str

    order_display_id: str = ORPHAN_DISPLAY_ID
    customer_name: str = ORPHAN_CUSTOMER_NAME
    customer_email: str = ORPHAN_CUSTOMER_EMAIL

    verified_amount: Optional[Decimal] = None
    admin_notes: Optional[str] = None
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None

    attachment_url: Optional[str] = None
    transaction_id: Optional[str] = None
    gateway_status: Optional[str] = None
    status_unmapped: bool = False
    orphaned: bool = False

    @property
    def ref(self) -> str:
        return make_ref(self.kind, self.id)

    @property
    def is_decidable(self) -> bool:
        return self.kind is EvidenceKind.MANUAL_PROOF and self.verification_status is VerificationStatus.PENDING
