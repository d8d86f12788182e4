"""Shared validation utilities"""

import re
from typing import Optional

from ..exceptions import ValidationError
from .money import round_money, to_decimal

EMAIL_PATTERN = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Args:
        email: Email address string

    Returns:
        Lowercase email address

    Raises:
        ValidationError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip().lower()

    if not re.match(EMAIL_PATTERN, email):
        raise ValidationError("Invalid email format")

    return email


def validate_au_phone(phone: Optional[str]) -> Optional[str]:
    """
    Validate and normalize an Australian phone number to E.164 format.

    Accepts local (04xx xxx xxx, 02 xxxx xxxx) and international (+61 ...) forms.

    Raises:
        ValidationError: If phone number is invalid
    """
    if not phone:
        return phone

    # Remove all non-digit characters
    digits = re.sub(r"\D", "", phone)

    if digits.startswith("61") and len(digits) == 11:
        digits = digits[2:]
    elif digits.startswith("0") and len(digits) == 10:
        digits = digits[1:]

    # National significant number is 9 digits
    if len(digits) != 9:
        raise ValidationError("Phone number must be a valid Australian number")

    return f"+61{digits}"


def require_text(value: Optional[str], field: str) -> str:
    """Strip a required free-text field and reject blanks"""
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    return str(value).strip()


def validate_line_items(items: list[dict]) -> list[dict]:
    """
    Normalize invoice line items to {name, description, quantity, unit_amount}.

    Amounts are stored as strings so JSON columns never round-trip through float.
    """
    if not items:
        raise ValidationError("At least one line item is required")

    normalized = []
    for index, item in enumerate(items, start=1):
        name = require_text(item.get("name"), f"line item {index} name")
        quantity = to_decimal(item.get("quantity", 1))
        unit_amount = to_decimal(item.get("unit_amount"))
        if quantity <= 0:
            raise ValidationError(f"line item {index} quantity must be positive")
        if unit_amount < 0:
            raise ValidationError(f"line item {index} unit amount cannot be negative")
        normalized.append(
            {
                "name": name,
                "description": (item.get("description") or "").strip() or None,
                "quantity": str(quantity),
                "unit_amount": str(round_money(unit_amount)),
            }
        )
    return normalized
