import base64
import hashlib
import hmac

import pytest

from service_contracts import webhook_security
from service_contracts.exceptions import WebhookSignatureError
from service_contracts.webhook_security import (
    compute_square_signature,
    constant_time_compare,
    verify_square_signature,
)

KEY = "whsec-test-key"
URL = "https://api.cleanupbros.com.au/webhooks/square"
BODY = b'{"type":"payment.updated","event_id":"evt-1"}'


def test_signature_covers_url_and_body():
    expected = base64.b64encode(hmac.new(KEY.encode(), URL.encode() + BODY, hashlib.sha256).digest()).decode()
    assert compute_square_signature(KEY, URL, BODY) == expected
    assert compute_square_signature(KEY, URL + "/", BODY) != expected


def test_valid_signature_passes():
    signature = compute_square_signature(KEY, URL, BODY)
    verify_square_signature(BODY, signature, signature_key=KEY, notification_url=URL)


def test_tampered_body_is_rejected():
    signature = compute_square_signature(KEY, URL, BODY)
    with pytest.raises(WebhookSignatureError):
        verify_square_signature(BODY.replace(b"evt-1", b"evt-2"), signature, signature_key=KEY, notification_url=URL)


def test_missing_signature_is_rejected():
    with pytest.raises(WebhookSignatureError):
        verify_square_signature(BODY, None, signature_key=KEY, notification_url=URL)


def test_unconfigured_key_rejects_everything(monkeypatch):
    monkeypatch.setattr(webhook_security, "SQUARE_WEBHOOK_SIGNATURE_KEY", None)
    monkeypatch.setattr(webhook_security, "SQUARE_WEBHOOK_URL", URL)
    with pytest.raises(WebhookSignatureError):
        verify_square_signature(BODY, compute_square_signature(KEY, URL, BODY))


def test_configured_defaults_are_used(monkeypatch):
    monkeypatch.setattr(webhook_security, "SQUARE_WEBHOOK_SIGNATURE_KEY", KEY)
    monkeypatch.setattr(webhook_security, "SQUARE_WEBHOOK_URL", URL)
    verify_square_signature(BODY, compute_square_signature(KEY, URL, BODY))


def test_constant_time_compare():
    assert constant_time_compare("abc", "abc")
    assert not constant_time_compare("abc", "abd")
    assert not constant_time_compare("", "")
    assert not constant_time_compare("abc", "")
