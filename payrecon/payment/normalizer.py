from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Optional, Tuple

from payrecon.payment.errors import UnmappedGatewayStatus
from payrecon.payment.evidence import (
    DEFAULT_CURRENCY,
    ORPHAN_CUSTOMER_EMAIL,
    ORPHAN_CUSTOMER_NAME,
    ORPHAN_DISPLAY_ID,
    EvidenceKind,
    PaymentEvidence,
    VerificationStatus,
)
from payrecon.utils.money import to_money
from payrecon.utils.time import utcnow_naive

logger = logging.getLogger(__name__)

MANUAL_METHOD = "bank_transfer"

# Every status the gateway integration is known to write. Anything else is schema drift.
GATEWAY_STATUS_MAP = {
    "completed": VerificationStatus.VERIFIED,
    "failed": VerificationStatus.REJECTED,
    "pending": VerificationStatus.PENDING,
    "initiated": VerificationStatus.PENDING,
    "created": VerificationStatus.PENDING,
    "processing": VerificationStatus.PENDING,
    "authorized": VerificationStatus.PENDING,
    "requires_action": VerificationStatus.PENDING,
    "cancelled": VerificationStatus.PENDING,
    "refunded": VerificationStatus.PENDING,
    "partially_refunded": VerificationStatus.PENDING,
}

# Occurrences of unmapped statuses since process start, keyed by raw status
unmapped_status_counter: Counter[str] = Counter()


def map_gateway_status(status: Optional[str]) -> VerificationStatus:
    """Strict mapping; raises UnmappedGatewayStatus for values outside GATEWAY_STATUS_MAP."""
    key = (status or "").strip().lower()
    try:
        return GATEWAY_STATUS_MAP[key]
    except KeyError:
        raise UnmappedGatewayStatus(f"unmapped gateway status {status!r}", status=status) from None


def _classify_gateway_status(status: Optional[str], transaction_ref: Any) -> Tuple[VerificationStatus, bool]:
    try:
        return map_gateway_status(status), False
    except UnmappedGatewayStatus:
        unmapped_status_counter[str(status)] += 1
        logger.error(
            "unmapped gateway status; rendering as pending",
            extra={"extra": {"status": status, "transaction": transaction_ref, "seen": unmapped_status_counter[str(status)]}},
        )
        return VerificationStatus.PENDING, True


def _manual_status(raw: Optional[str]) -> VerificationStatus:
    # Legacy rows carry NULL for "not yet reviewed"
    try:
        return VerificationStatus((raw or "pending").strip().lower())
    except ValueError:
        logger.error("unknown proof verification status %r; treating as pending", raw)
        return VerificationStatus.PENDING


def _customer_fields(order: Any, customer: Any) -> Tuple[str, str]:
    name = getattr(customer, "full_name", None) or ORPHAN_CUSTOMER_NAME
    email = getattr(order, "email", None) or getattr(customer, "email", None) or ORPHAN_CUSTOMER_EMAIL
    return name, email


def normalize_manual_proof(proof: Any, order: Any = None, sender: Any = None) -> PaymentEvidence:
    """Project a payment_proofs row (plus its joined order and sender) onto PaymentEvidence.

    The claimed amount of a manual proof is the order total; orphaned proofs claim zero.
    """
    orphaned = order is None
    name, email = _customer_fields(order, sender)
    return PaymentEvidence(
        id=proof.id,
        kind=EvidenceKind.MANUAL_PROOF,
        order_id=None if orphaned else order.id,
        submitted_at=proof.created_at or utcnow_naive(),
        verification_status=_manual_status(proof.verification_status),
        claimed_amount=to_money(None if orphaned else order.total),
        currency=(getattr(order, "currency", None) or DEFAULT_CURRENCY),
        payment_method=MANUAL_METHOD,
        label=proof.attachment_file_name or f"proof-{proof.id}",
        order_display_id=ORPHAN_DISPLAY_ID if orphaned else (order.display_id or ORPHAN_DISPLAY_ID),
        customer_name=name,
        customer_email=email,
        verified_amount=None if proof.verified_amount is None else to_money(proof.verified_amount),
        admin_notes=proof.admin_notes,
        verified_by=proof.verified_by,
        verified_at=proof.verified_at,
        attachment_url=proof.attachment_url,
        orphaned=orphaned,
    )


def normalize_gateway_transaction(tx: Any, order: Any = None, customer: Any = None) -> PaymentEvidence:
    """Project a payment_transactions row onto PaymentEvidence.

    verification_status is recomputed from the gateway status on every read; operators cannot set it.
    """
    orphaned = order is None
    status, unmapped = _classify_gateway_status(tx.status, tx.transaction_id or tx.id)
    name, email = _customer_fields(order, customer)
    method = (tx.payment_method or "gateway").lower()
    return PaymentEvidence(
        id=tx.id,
        kind=EvidenceKind.GATEWAY_TRANSACTION,
        order_id=None if orphaned else order.id,
        submitted_at=tx.created_at or utcnow_naive(),
        verification_status=status,
        claimed_amount=to_money(tx.amount),
        currency=tx.currency or getattr(order, "currency", None) or DEFAULT_CURRENCY,
        payment_method=method,
        label=f"{method} {tx.transaction_id or tx.id}",
        order_display_id=ORPHAN_DISPLAY_ID if orphaned else (order.display_id or ORPHAN_DISPLAY_ID),
        customer_name=name,
        customer_email=email,
        verified_amount=to_money(tx.amount) if status is VerificationStatus.VERIFIED else None,
        verified_at=tx.updated_at if status is VerificationStatus.VERIFIED else None,
        transaction_id=tx.transaction_id,
        gateway_status=tx.status,
        status_unmapped=unmapped,
        orphaned=orphaned,
    )
