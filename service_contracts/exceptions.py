"""Error taxonomy for the quotation and contract lifecycle engine"""

from typing import Optional


class ContractEngineError(Exception):
    """Base class for every error raised by this package"""


class ValidationError(ContractEngineError, ValueError):
    """
    Missing required field or malformed input - rejected, never persisted.

    Also a ValueError so the shared validators can run inside pydantic field
    validators unchanged.
    """


class UnknownServiceCombination(ContractEngineError):
    """No pricing row matches the requested service category, tier and size"""

    def __init__(self, category: str, tier: str, size: object):
        self.category = category
        self.tier = tier
        self.size = size
        super().__init__(f"No pricing row for {category}/{tier} (size={size})")


class InvalidStateTransition(ContractEngineError):
    """Transition not in the lifecycle table, or its guard is not satisfied"""

    def __init__(self, current: str, target: str, reason: Optional[str] = None):
        self.current = current
        self.target = target
        self.reason = reason
        message = f"Cannot transition {current} -> {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class NotFound(ContractEngineError):
    """Entity does not exist in the store"""


class NumberingUnavailable(ContractEngineError):
    """Persistent sequence could not be read"""


class GatewayError(ContractEngineError):
    """Base class for payment processor failures"""

    def __init__(self, message: str, idempotency_key: Optional[str] = None):
        self.idempotency_key = idempotency_key
        super().__init__(message)


class GatewayUnavailable(GatewayError):
    """Network failure or 5xx - the request did not take effect; safe to retry with the same key"""


class GatewayRejected(GatewayError):
    """Processor refused the request (4xx) - retrying the same payload will not help"""

    def __init__(
        self,
        message: str,
        idempotency_key: Optional[str] = None,
        status_code: Optional[int] = None,
        errors: Optional[list] = None,
    ):
        self.status_code = status_code
        self.errors = errors or []
        super().__init__(message, idempotency_key)


class GatewayAmbiguous(GatewayError):
    """Timed out after the request was sent - outcome unknown until reconciled"""


class WebhookSignatureError(ContractEngineError):
    """Raised when webhook signature verification fails"""
