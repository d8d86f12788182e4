"""Pricing domain - versioned rule table and the pure quote calculator"""

from .calculator import calculate_quote
from .router import router

__all__ = ["router", "calculate_quote"]
