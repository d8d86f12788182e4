import logging

import pytest
from sqlalchemy.exc import OperationalError

from service_contracts.domain.contracts.numbering import (
    NUMBER_PATTERN,
    NumberingService,
    is_fallback_number,
)
from service_contracts.domain.contracts.repository import SequenceRepository
from service_contracts.models import NumberSequence


def test_numbers_are_sequential_per_year(db, clock):
    numbering = NumberingService(db, clock=clock)
    assert numbering.allocate() == "CUB-25-0001"
    assert numbering.allocate() == "CUB-25-0002"
    db.commit()
    assert NumberingService(db, clock=clock).allocate() == "CUB-25-0003"


def test_invoice_numbers_use_their_own_sequence(db, clock):
    contracts = NumberingService(db, clock=clock)
    invoices = NumberingService(db, prefix="INV", sequence_name="invoice_number", clock=clock)
    assert contracts.allocate() == "CUB-25-0001"
    assert invoices.allocate() == "INV-25-0001"
    assert contracts.allocate() == "CUB-25-0002"


def test_sequence_failure_degrades_to_fallback_number(db, clock, monkeypatch, caplog):
    def broken(db, name):
        raise OperationalError("UPDATE number_sequences", {}, Exception("database is locked"))

    monkeypatch.setattr(SequenceRepository, "next_sequence_value", staticmethod(broken))

    with caplog.at_level(logging.WARNING):
        number = NumberingService(db, clock=clock).allocate()

    assert NUMBER_PATTERN.match(number)
    assert number.startswith("CUB-25-")
    assert len(number.rsplit("-", 1)[-1]) == 8
    assert is_fallback_number(number)
    assert "degraded mode" in caplog.text
    assert number in caplog.text


def test_fallback_numbers_differ_as_the_clock_moves(db, clock, monkeypatch):
    def broken(db, name):
        raise OperationalError("UPDATE number_sequences", {}, Exception("gone"))

    monkeypatch.setattr(SequenceRepository, "next_sequence_value", staticmethod(broken))
    numbering = NumberingService(db, clock=clock)
    first = numbering.allocate()
    clock.advance(microseconds=1)
    assert numbering.allocate() != first


def test_exhausted_sequence_falls_back(db, clock):
    db.add(NumberSequence(name="contract_number", value=9_999_999))
    db.commit()

    number = NumberingService(db, clock=clock).allocate()
    assert is_fallback_number(number)
    # The failed increment was rolled back
    assert db.get(NumberSequence, "contract_number").value == 9_999_999


def test_primary_numbers_are_never_mistaken_for_fallback(db, clock):
    db.add(NumberSequence(name="contract_number", value=9_999_998))
    db.commit()

    number = NumberingService(db, clock=clock).allocate()
    assert number == "CUB-25-9999999"
    assert not is_fallback_number(number)


@pytest.mark.parametrize("prefix", ["cub", "C", "CLEAN", "C1B"])
def test_prefix_must_be_two_to_four_uppercase_letters(db, prefix):
    with pytest.raises(ValueError):
        NumberingService(db, prefix=prefix)
