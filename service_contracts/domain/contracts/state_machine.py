"""
Contract lifecycle state machine

Contract statuses: draft → sent → signed → active → completed
cancelled / expired are terminal and reachable from any non-terminal state.

Expiry is evaluated lazily on read (see is_expired); there is no scheduler.
"""

import logging
from datetime import date, datetime
from typing import Optional

from ...exceptions import InvalidStateTransition
from ...models import Contract

logger = logging.getLogger(__name__)

CONTRACT_STATUSES = ("draft", "sent", "signed", "active", "completed", "cancelled", "expired")
TERMINAL_STATUSES = frozenset({"completed", "cancelled", "expired"})
# Only contracts that never got a client signature can lapse
EXPIRABLE_STATUSES = frozenset({"draft", "sent"})

VALID_TRANSITIONS: dict[str, list[str]] = {
    "draft": ["sent", "cancelled", "expired"],
    "sent": ["signed", "cancelled", "expired"],
    "signed": ["active", "cancelled", "expired"],
    "active": ["completed", "cancelled", "expired"],
    "completed": [],  # Terminal state
    "cancelled": [],  # Terminal state
    "expired": [],  # Terminal state
}

# Audit timestamp written when a contract enters each status
STATUS_TIMESTAMPS = {
    "sent": "sent_at",
    "active": "activated_at",
    "completed": "completed_at",
    "cancelled": "cancelled_at",
    "expired": "expired_at",
}


def validate_status_transition(current_status: str, new_status: str) -> bool:
    """Check the edge exists in the transition table (guards are checked separately)"""
    return new_status in VALID_TRANSITIONS.get(current_status, [])


def is_expired(contract: Contract, today: date) -> bool:
    """True when an unsigned contract's end date has passed"""
    return (
        contract.status in EXPIRABLE_STATUSES
        and contract.end_date is not None
        and contract.end_date < today
    )


def _guard(contract: Contract, target: str, today: date, manual: bool) -> Optional[str]:
    """Return the reason a transition is blocked, or None when it may proceed"""
    if target == "sent":
        missing = [
            field
            for field in (
                "client_name",
                "client_email",
                "payment_frequency",
                "payment_amount_per_period",
                "total_contract_value",
            )
            if getattr(contract, field) in (None, "")
        ]
        if missing:
            return f"missing required fields: {', '.join(missing)}"

    elif target == "signed":
        if not contract.client_signature_data or not contract.client_signed_at:
            return "client signature is required"

    elif target == "active":
        if not manual and contract.start_date > today:
            return f"service starts on {contract.start_date.isoformat()}"

    elif target == "completed":
        if contract.end_date is not None and contract.end_date <= today:
            return None
        if manual and contract.payment_frequency == "one-time":
            return None
        if contract.end_date is None:
            return "only one-time services can be completed without an end date"
        return f"service runs until {contract.end_date.isoformat()}"

    elif target == "expired":
        if contract.status not in EXPIRABLE_STATUSES:
            return f"{contract.status} contracts do not expire"
        if not is_expired(contract, today):
            return "end date has not passed"

    return None


def transition(
    contract: Contract,
    target: str,
    now: datetime,
    manual: bool = False,
) -> Contract:
    """
    Move a contract to `target`, raising InvalidStateTransition for any edge not
    in VALID_TRANSITIONS or whose guard is not satisfied. The entity is left
    untouched on failure.
    """
    current = contract.status
    if not validate_status_transition(current, target):
        raise InvalidStateTransition(current, target)

    reason = _guard(contract, target, now.date(), manual)
    if reason:
        raise InvalidStateTransition(current, target, reason)

    contract.status = target
    timestamp_field = STATUS_TIMESTAMPS.get(target)
    if timestamp_field:
        setattr(contract, timestamp_field, now)

    logger.info(f"✅ Contract {contract.contract_number} transitioned: {current} → {target}")
    return contract


def get_next_required_action(contract: Contract, today: date) -> str:
    """Describe what needs to happen next for a contract (admin display)"""
    if contract.status == "draft":
        return "Review and send contract to client"

    elif contract.status == "sent":
        if contract.payment_pending_reconciliation:
            return "Deposit link pending reconciliation with payment processor"
        if not contract.payment_link_url:
            return "Deposit link not created - resend contract"
        if contract.viewed_at:
            return "Client has viewed contract - waiting for signature"
        return "Waiting for client signature"

    elif contract.status == "signed":
        if not contract.business_signed_at:
            return "Counter-sign contract"
        days_until_start = (contract.start_date - today).days
        if days_until_start > 0:
            return f"Service starts in {days_until_start} days"
        return "Service should start today - update to active status"

    elif contract.status == "active":
        if contract.end_date:
            days_until_end = (contract.end_date - today).days
            if days_until_end > 0:
                return f"Service ongoing - {days_until_end} days remaining"
            return "Service period ended - ready to mark as completed"
        return "Service in progress (no end date)"

    elif contract.status == "cancelled":
        return "Contract was cancelled"

    elif contract.status == "completed":
        return "Service completed"

    elif contract.status == "expired":
        return "Contract expired before it was signed"

    return "Unknown status"
