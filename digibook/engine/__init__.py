"""Payment engine package."""

from digibook.engine.payments import PaymentEngine, coerce_paid_amount, project_payment

__all__ = [
    "PaymentEngine",
    "coerce_paid_amount",
    "project_payment",
]
