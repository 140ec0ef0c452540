from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from payrecon.payment.evidence import PaymentStatus
from payrecon.utils.money import to_money


def fold_amounts(amounts: Iterable[Decimal | int | float | str | None]) -> Decimal:
    """amount_paid is the sum of an order's ledger entries."""
    total = Decimal("0.00")
    for amount in amounts:
        total += to_money(amount)
    return to_money(total)


def derive_payment_status(amount_paid: Decimal | int | float | str | None, order_total: Decimal | int | float | str | None) -> PaymentStatus:
    paid = to_money(amount_paid)
    total = to_money(order_total)
    if paid <= 0:
        return PaymentStatus.UNPAID
    if paid < total:
        return PaymentStatus.PARTIAL
    if paid == total:
        return PaymentStatus.PAID
    return PaymentStatus.OVERPAID


def remaining_balance(amount_paid: Decimal | None, order_total: Decimal | None) -> Decimal:
    return max(Decimal("0.00"), to_money(order_total) - to_money(amount_paid))
