"""Payments domain - idempotent Square gateway and the payment attempt ledger"""

from .router import router
from .service import PaymentService

__all__ = ["router", "PaymentService"]
