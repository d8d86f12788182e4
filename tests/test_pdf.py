import base64
import io
from datetime import datetime

import pytest
from pypdf import PdfReader
from reportlab.pdfbase.pdfmetrics import stringWidth

from service_contracts.domain.contracts import pdf_service
from service_contracts.domain.contracts.pdf_service import (
    ContractPDFGenerator,
    TERMS_AND_CONDITIONS,
    calculate_hash,
    decode_signature,
    format_date,
    format_money,
    render_contract_pdf,
    wrap_text,
)

from conftest import signature_data_url

GENERATED_AT = datetime(2025, 3, 3, 9, 30)


def extract(pdf_bytes: bytes) -> tuple[PdfReader, str]:
    reader = PdfReader(io.BytesIO(pdf_bytes))
    return reader, "\n".join(page.extract_text() for page in reader.pages)


def squashed(text: str) -> str:
    return "".join(text.split())


def image_count(reader: PdfReader) -> int:
    return sum(len(page.images) for page in reader.pages)


def test_formatting_helpers():
    assert format_money("5347.56", "AUD") == "$5,347.56 AUD"
    assert format_money(111.41, "AUD") == "$111.41 AUD"
    assert format_date(None) == "N/A"
    assert format_date(datetime(2026, 3, 9).date()) == "09/03/2026"


def test_contract_fields_appear_in_document(make_contract):
    pdf_bytes = render_contract_pdf(make_contract(), GENERATED_AT)

    assert pdf_bytes.startswith(b"%PDF")
    reader, text = extract(pdf_bytes)
    assert len(reader.pages) >= 2
    assert "SERVICE AGREEMENT" in text
    assert "CUB-25-0042" in text
    assert "Jane Citizen" in text
    assert "$5,347.56 AUD" in text
    assert "$445.63 AUD" in text
    assert "$111.41 AUD" in text
    assert "10/03/2025" in text
    assert "09/03/2026" in text
    assert "Page 2" in text


def test_terms_and_signature_sections_present(make_contract):
    _, text = extract(render_contract_pdf(make_contract(), GENERATED_AT))
    flat = squashed(text)
    for clause in TERMS_AND_CONDITIONS:
        assert squashed(clause) in flat
    assert "SIGNATURES" in text
    assert "legally binding agreement" in text


def test_long_free_text_wraps_without_losing_content(make_contract):
    requirements = (
        "Please use the side gate and keep the dogs inside the laundry while cleaning. " * 12
        + "Access codes are stored at https://portal.example.com/properties/12-harbour-street/access-instructions-v2"
    )
    contract = make_contract(
        special_requirements=requirements,
        client_email="accounts-payable.department.harbour-street-holdings@example-property-group.com.au",
    )

    _, text = extract(render_contract_pdf(contract, GENERATED_AT))

    flat = squashed(text)
    assert squashed(requirements) in flat
    assert squashed(contract.client_email) in flat


@pytest.mark.parametrize("width", [60.0, 120.0, 400.0])
def test_wrapped_lines_fit_their_width(width):
    text = "Fortnightly clean of common areas " * 8 + "supercalifragilisticexpialidocious-reference-0001"
    lines = wrap_text(text, width)

    assert len(lines) > 1
    for line in lines:
        assert stringWidth(line, "Helvetica", 10) <= width
    assert squashed("".join(lines)) == squashed(text)


def test_wrap_keeps_explicit_line_breaks():
    assert wrap_text("Line one\nLine two", 400) == ["Line one", "Line two"]
    assert wrap_text("", 400) == [""]


def test_signatures_are_embedded(make_contract):
    contract = make_contract(
        status="signed",
        client_signature_data=signature_data_url(),
        client_signed_at=datetime(2025, 3, 4, 10, 0),
        business_signature_data=signature_data_url(color="blue"),
        business_signed_at=datetime(2025, 3, 4, 15, 0),
        business_signed_by="Sam Owner",
    )

    reader, text = extract(render_contract_pdf(contract, GENERATED_AT))

    assert image_count(reader) >= 2
    assert "Sam Owner" in text
    assert "04/03/2025" in text


def test_missing_signatures_render_blank_lines(make_contract):
    reader, text = extract(render_contract_pdf(make_contract(), GENERATED_AT))
    assert image_count(reader) == 0
    assert "Signature" in text
    assert "Date: _____________" in text


def test_corrupt_signature_falls_back_to_blank_line(make_contract):
    not_an_image = "data:image/png;base64," + base64.b64encode(b"definitely not a png").decode()
    contract = make_contract(client_signature_data=not_an_image, business_signature_data="data:image/png;base64,%%%")

    reader, text = extract(render_contract_pdf(contract, GENERATED_AT))

    assert image_count(reader) == 0
    assert "Signature" in text


def test_decode_signature():
    assert decode_signature(None) is None
    assert decode_signature("data:image/png;base64,%%%") is None
    assert decode_signature("data:image/png;base64," + base64.b64encode(b"abc").decode()) == b"abc"


def test_open_ended_override_is_explained(make_contract):
    contract = make_contract(
        billing_periods=None,
        end_date=None,
        duration_months=None,
        total_value_override=True,
        override_reason="Rolling agreement reviewed annually",
        total_contract_value="12000.00",
    )
    _, text = extract(render_contract_pdf(contract, GENERATED_AT))
    assert "Open-ended" in text
    assert "Rolling agreement reviewed annually" in text
    assert "$12,000.00 AUD" in text


def test_hash_is_sha256_hex():
    digest = calculate_hash(b"%PDF-1.4")
    assert len(digest) == 64
    assert digest == calculate_hash(b"%PDF-1.4")


def test_pricing_note_wraps_to_amount_column(make_contract, monkeypatch):
    requested = {}

    def recording_wrap(text, width, font_name, font_size):
        requested[text] = width
        return wrap_text(text, width, font_name, font_size)

    monkeypatch.setattr(pdf_service, "wrap_text", recording_wrap)
    reason = "Negotiated flat rate covering the extended common areas and quarterly carpet care " * 3
    contract = make_contract(total_value_override=True, override_reason=reason)

    _, table = ContractPDFGenerator(contract, GENERATED_AT)._financial_terms()

    amount_column = table._colWidths[1]
    assert requested[reason] <= amount_column - 16
    for line in wrap_text(reason, requested[reason], "Helvetica", 10):
        assert stringWidth(line, "Helvetica", 10) <= amount_column - 16
