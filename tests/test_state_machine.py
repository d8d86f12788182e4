from datetime import date, datetime

import pytest

from service_contracts.domain.contracts.state_machine import (
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    get_next_required_action,
    is_expired,
    transition,
    validate_status_transition,
)
from service_contracts.exceptions import InvalidStateTransition

NOW = datetime(2025, 3, 3, 9, 30)


@pytest.mark.parametrize(
    "current,target",
    [
        ("draft", "signed"),
        ("draft", "active"),
        ("sent", "active"),
        ("sent", "completed"),
        ("signed", "sent"),
        ("active", "draft"),
    ],
)
def test_edges_outside_the_table_are_rejected(make_contract, current, target):
    contract = make_contract(status=current)
    with pytest.raises(InvalidStateTransition) as exc:
        transition(contract, target, NOW, manual=True)
    assert exc.value.current == current
    assert exc.value.target == target
    assert contract.status == current


@pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES))
def test_terminal_statuses_have_no_way_out(make_contract, status):
    assert VALID_TRANSITIONS[status] == []
    contract = make_contract(status=status)
    for target in ("draft", "sent", "signed", "active", "completed", "cancelled", "expired"):
        assert not validate_status_transition(status, target)
        with pytest.raises(InvalidStateTransition):
            transition(contract, target, NOW, manual=True)
    assert contract.status == status


def test_send_requires_client_and_financial_fields(make_contract):
    contract = make_contract(client_email="", total_contract_value=None)
    with pytest.raises(InvalidStateTransition) as exc:
        transition(contract, "sent", NOW)
    assert "client_email" in exc.value.reason
    assert "total_contract_value" in exc.value.reason
    assert contract.status == "draft"
    assert contract.sent_at is None


def test_send_stamps_sent_at(make_contract):
    contract = transition(make_contract(), "sent", NOW)
    assert contract.status == "sent"
    assert contract.sent_at == NOW


def test_signing_requires_a_signature(make_contract):
    contract = make_contract(status="sent")
    with pytest.raises(InvalidStateTransition) as exc:
        transition(contract, "signed", NOW)
    assert exc.value.reason == "client signature is required"

    contract.client_signature_data = "data:image/png;base64,AAAA"
    contract.client_signed_at = NOW
    assert transition(contract, "signed", NOW).status == "signed"


def test_activation_waits_for_start_date_unless_manual(make_contract):
    contract = make_contract(status="signed")
    with pytest.raises(InvalidStateTransition) as exc:
        transition(contract, "active", NOW)
    assert "2025-03-10" in exc.value.reason

    on_start = datetime(2025, 3, 10, 8, 0)
    assert transition(contract, "active", on_start).activated_at == on_start

    early = make_contract(status="signed")
    assert transition(early, "active", NOW, manual=True).status == "active"


def test_completion_needs_end_date_reached(make_contract):
    contract = make_contract(status="active")
    with pytest.raises(InvalidStateTransition):
        transition(contract, "completed", NOW, manual=True)

    assert transition(contract, "completed", datetime(2026, 3, 9, 17, 0)).status == "completed"


def test_one_time_service_can_be_completed_manually(make_contract):
    contract = make_contract(
        status="active",
        type="general_service",
        payment_frequency="one-time",
        end_date=None,
        duration_months=None,
    )
    with pytest.raises(InvalidStateTransition):
        transition(contract, "completed", NOW)
    assert transition(contract, "completed", NOW, manual=True).completed_at == NOW


def test_only_unsigned_contracts_expire(make_contract):
    today = date(2026, 4, 1)
    assert is_expired(make_contract(status="sent"), today)
    assert not is_expired(make_contract(status="sent"), date(2026, 3, 9))
    assert not is_expired(make_contract(status="signed"), today)
    assert not is_expired(make_contract(status="draft", end_date=None), today)

    with pytest.raises(InvalidStateTransition) as exc:
        transition(make_contract(status="signed"), "expired", datetime(2026, 4, 1))
    assert exc.value.reason == "signed contracts do not expire"

    expired = transition(make_contract(status="sent"), "expired", datetime(2026, 4, 1))
    assert expired.expired_at == datetime(2026, 4, 1)


def test_cancel_is_reachable_from_every_live_status(make_contract):
    for status in ("draft", "sent", "signed", "active"):
        contract = transition(make_contract(status=status), "cancelled", NOW)
        assert contract.cancelled_at == NOW


def test_next_required_action(make_contract):
    today = NOW.date()
    assert get_next_required_action(make_contract(), today) == "Review and send contract to client"
    assert get_next_required_action(make_contract(status="sent"), today) == "Deposit link not created - resend contract"
    assert (
        get_next_required_action(make_contract(status="sent", payment_pending_reconciliation=True), today)
        == "Deposit link pending reconciliation with payment processor"
    )
    assert (
        get_next_required_action(
            make_contract(status="sent", payment_link_url="https://square.link/u/x", viewed_at=NOW), today
        )
        == "Client has viewed contract - waiting for signature"
    )
    assert get_next_required_action(make_contract(status="signed"), today) == "Counter-sign contract"
    assert (
        get_next_required_action(make_contract(status="signed", business_signed_at=NOW), today)
        == "Service starts in 7 days"
    )
    assert (
        get_next_required_action(make_contract(status="active"), date(2026, 3, 1))
        == "Service ongoing - 8 days remaining"
    )
    assert get_next_required_action(make_contract(status="expired"), today) == "Contract expired before it was signed"
