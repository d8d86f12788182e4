"""Quote router - price a service without persisting anything"""

import logging

from fastapi import APIRouter

from .calculator import calculate_quote
from .schemas import PriceBreakdown, ServiceAttributes

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quotes", tags=["Quotes"])


@router.post("", response_model=PriceBreakdown)
async def create_quote(attributes: ServiceAttributes):
    """Calculate a price breakdown; extreme-condition jobs come back flagged for a manual quote"""
    breakdown = calculate_quote(attributes)
    if breakdown.requires_manual_quote:
        logger.info(f"⚠️ Manual quote required for {attributes.category}/{attributes.service_tier}")
    return breakdown
