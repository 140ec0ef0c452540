from __future__ import annotations

from typing import Any


class PaymentEngineError(Exception):
    """Base error for evidence handling; ``code`` is what batch summaries report."""

    code = "engine_error"

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context


class EvidenceNotFound(PaymentEngineError):
    code = "not_found"


class OrderNotFound(PaymentEngineError):
    code = "order_not_found"


class AlreadyDecided(PaymentEngineError):
    code = "already_decided"


class NotApplicable(PaymentEngineError):
    code = "not_applicable"


class InvalidAmount(PaymentEngineError):
    code = "invalid_amount"


class OrderConflict(PaymentEngineError):
    code = "order_conflict"


class UnmappedGatewayStatus(PaymentEngineError):
    code = "unmapped_gateway_status"


class NotificationFailure(PaymentEngineError):
    code = "notification_failure"


# Reported when the store raised something outside this taxonomy (transaction rolled back)
STORE_ERROR = "store_error"
