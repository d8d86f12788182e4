"""Contracts domain - contract lifecycle, numbering and PDF documents"""

from .router import router
from .service import ContractService

__all__ = ["router", "ContractService"]
