"""
Webhook Security Module

Signature verification for Square webhook deliveries:
- HMAC-SHA256 over notification URL + raw body, base64 encoded
- Constant-time signature comparison
- Raw body is read once, before any JSON parsing
"""

import base64
import hashlib
import hmac
import logging
from typing import Optional

from fastapi import HTTPException, Request

from .config import SQUARE_WEBHOOK_SIGNATURE_KEY, SQUARE_WEBHOOK_URL
from .exceptions import WebhookSignatureError

logger = logging.getLogger(__name__)

SQUARE_SIGNATURE_HEADER = "x-square-hmacsha256-signature"


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def compute_square_signature(signature_key: str, notification_url: str, payload: bytes) -> str:
    """Square signs notification_url + body with the subscription's signature key"""
    message = notification_url.encode("utf-8") + payload
    digest = hmac.new(signature_key.encode("utf-8"), message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_square_signature(
    payload: bytes,
    signature: Optional[str],
    signature_key: Optional[str] = None,
    notification_url: Optional[str] = None,
) -> None:
    """
    Raise WebhookSignatureError unless `signature` matches the payload.

    Args:
        payload: Raw request body bytes
        signature: Value of the x-square-hmacsha256-signature header
        signature_key: Webhook signature key from the Square dashboard
        notification_url: Exact URL registered for the subscription
    """
    signature_key = signature_key or SQUARE_WEBHOOK_SIGNATURE_KEY
    notification_url = notification_url or SQUARE_WEBHOOK_URL

    if not signature_key or not notification_url:
        raise WebhookSignatureError("Square webhook signature key or notification URL not configured")
    if not signature:
        raise WebhookSignatureError("Missing Square signature header")

    expected = compute_square_signature(signature_key, notification_url, payload)
    if not constant_time_compare(expected, signature):
        raise WebhookSignatureError("Square webhook signature mismatch")


async def verify_square_webhook(request: Request) -> bytes:
    """
    FastAPI helper: verify the request and return its raw body.

    Raises HTTPException(401) on any verification failure.
    """
    # Get raw body BEFORE any parsing - the signature covers exact bytes
    raw_body = await request.body()
    signature = request.headers.get(SQUARE_SIGNATURE_HEADER)

    try:
        verify_square_signature(raw_body, signature)
    except WebhookSignatureError as e:
        logger.error(f"❌ Square webhook rejected: {e}")
        raise HTTPException(status_code=401, detail="Invalid webhook signature") from e

    logger.info(f"✅ Square webhook signature verified ({len(raw_body)} bytes)")
    return raw_body
