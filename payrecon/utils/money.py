from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_money(amount: int | float | str | Decimal | None) -> Decimal:
    if amount is None:
        return Decimal("0.00")
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(amount: int | float | Decimal | None, currency: str | None) -> str:
    d = to_money(amount)
    return f"{d:,} {(currency or 'USD').upper()}"
