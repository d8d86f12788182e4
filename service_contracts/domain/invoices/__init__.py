"""Invoices domain - one-off invoices issued through Square"""

from .router import router
from .service import InvoiceService

__all__ = ["router", "InvoiceService"]
