"""
Contract PDF Generator

Renders a Contract into a paginated PDF built only from its current field
values. Rendering never touches the database; the service layer records the
hash, generation time and storage key afterwards as a cache pointer.

Sections, in order: header, parties, service details, financial terms,
duration, terms and conditions, signatures.
"""

import base64
import binascii
import hashlib
import io
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from xml.sax.saxutils import escape

import boto3
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.platypus import (
    Image,
    KeepTogether,
    PageBreak,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from ...config import (
    BUSINESS_ABN,
    BUSINESS_EMAIL,
    BUSINESS_JURISDICTION,
    BUSINESS_NAME,
    BUSINESS_PHONE,
    R2_ACCESS_KEY_ID,
    R2_ACCOUNT_ID,
    R2_BUCKET_NAME,
    R2_SECRET_ACCESS_KEY,
)
from ...models import Contract
from ...shared.money import to_decimal

logger = logging.getLogger(__name__)

BODY_FONT = "Helvetica"
BOLD_FONT = "Helvetica-Bold"
BODY_SIZE = 10

TERMS_AND_CONDITIONS = [
    f"1. SERVICE PROVISION: {BUSINESS_NAME} agrees to provide professional cleaning services as "
    "described in this agreement.",
    "2. PAYMENT: Client agrees to pay the specified amount according to the payment frequency "
    "outlined above.",
    "3. ACCESS: Client must provide reasonable access to the property for scheduled services.",
    "4. CANCELLATION: Either party may terminate this agreement with 30 days written notice.",
    f"5. LIABILITY: {BUSINESS_NAME} maintains public liability insurance. Client is responsible "
    "for property insurance.",
    "6. STANDARDS: All services will be provided to professional standards in accordance with "
    "Australian Consumer Law.",
    "7. CHANGES: Any changes to this agreement must be made in writing and signed by both parties.",
    f"8. GOVERNING LAW: This agreement is governed by the laws of {BUSINESS_JURISDICTION}.",
]

FREQUENCY_LABELS = {
    "weekly": "week",
    "bi-weekly": "fortnight",
    "monthly": "month",
    "one-time": "service",
}


def format_money(amount, currency: str) -> str:
    return f"${to_decimal(amount):,.2f} {currency}"


def format_date(value: Optional[date]) -> str:
    """en-AU style day/month/year"""
    if value is None:
        return "N/A"
    return value.strftime("%d/%m/%Y")


def wrap_text(text: str, width: float, font: str = BODY_FONT, size: float = BODY_SIZE) -> list[str]:
    """
    Split text into lines that fit `width` points.

    simpleSplit breaks on whitespace; a single word wider than the line (long
    emails, URLs, reference codes) is then broken by characters so nothing is
    clipped at the margin.
    """
    lines = []
    for paragraph in (text or "").splitlines() or [""]:
        for line in simpleSplit(paragraph, font, size, width) or [""]:
            while stringWidth(line, font, size) > width and len(line) > 1:
                cut = len(line)
                while cut > 1 and stringWidth(line[:cut], font, size) > width:
                    cut -= 1
                lines.append(line[:cut])
                line = line[cut:]
            lines.append(line)
    return lines


def decode_signature(data_url: Optional[str]) -> Optional[bytes]:
    """PNG bytes from a data URL, or None when absent or undecodable"""
    if not data_url:
        return None
    try:
        encoded = data_url.split(",", 1)[1] if "," in data_url else data_url
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.warning(f"⚠️ Unreadable signature image, rendering blank line: {e}")
        return None


def calculate_hash(pdf_bytes: bytes) -> str:
    """Calculate SHA-256 hash of PDF"""
    return hashlib.sha256(pdf_bytes).hexdigest()


class ContractPDFGenerator:
    """Generate contract PDFs"""

    def __init__(self, contract: Contract, generated_at: datetime):
        self.contract = contract
        self.generated_at = generated_at

        # PDF settings
        self.page_width, self.page_height = A4
        self.margin = 20 * mm
        self.content_width = self.page_width - (2 * self.margin)
        self.label_width = 45 * mm
        self.value_width = self.content_width - self.label_width

        self.brand_color = colors.HexColor("#14b8a6")
        self.dark_gray = colors.HexColor("#1e293b")
        self.light_gray = colors.HexColor("#f1f5f9")

        styles = getSampleStyleSheet()
        self.title_style = ParagraphStyle(
            "ContractTitle",
            parent=styles["Heading1"],
            fontSize=20,
            textColor=self.brand_color,
            alignment=1,
            spaceAfter=6,
        )
        self.heading_style = ParagraphStyle(
            "ContractHeading",
            parent=styles["Heading2"],
            fontSize=13,
            textColor=self.dark_gray,
            spaceBefore=14,
            spaceAfter=8,
        )
        self.body_style = ParagraphStyle(
            "ContractBody",
            parent=styles["Normal"],
            fontName=BODY_FONT,
            fontSize=BODY_SIZE,
            leading=BODY_SIZE + 3,
            textColor=self.dark_gray,
        )
        self.label_style = ParagraphStyle("ContractLabel", parent=self.body_style, fontName=BOLD_FONT)
        self.center_style = ParagraphStyle("ContractCenter", parent=self.body_style, alignment=1)

    def render(self) -> bytes:
        """Generate PDF and return bytes"""
        logger.info(f"📄 Generating contract PDF for {self.contract.contract_number}")

        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=self.margin,
            leftMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin,
            title=f"Service Agreement {self.contract.contract_number}",
            author=BUSINESS_NAME,
        )

        story = []
        story += self._header()
        story += self._parties()
        story += self._service_details()
        story += self._financial_terms()
        story += self._duration()
        story.append(PageBreak())
        story += self._terms()
        story += self._signatures()

        doc.build(story, onFirstPage=self._add_page_number, onLaterPages=self._add_page_number)
        pdf_bytes = buffer.getvalue()
        buffer.close()

        logger.info(f"✅ Generated contract PDF ({len(pdf_bytes)} bytes)")
        return pdf_bytes

    # ------------------------------------------------------------------
    # Building blocks
    # ------------------------------------------------------------------

    def _wrapped(self, text: Optional[str], width: float, style: Optional[ParagraphStyle] = None) -> Paragraph:
        style = style or self.body_style
        lines = wrap_text(text or "N/A", width, style.fontName, style.fontSize)
        return Paragraph("<br/>".join(escape(line) for line in lines), style)

    def _info_table(self, rows: list[tuple[str, Optional[str]]]) -> Table:
        # Cell padding eats into the printable width of each column
        padding = 4
        data = [
            [
                self._wrapped(label, self.label_width - 2 * padding, self.label_style),
                self._wrapped(value, self.value_width - 2 * padding),
            ]
            for label, value in rows
        ]
        table = Table(data, colWidths=[self.label_width, self.value_width])
        table.setStyle(
            TableStyle(
                [
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                    ("LEFTPADDING", (0, 0), (-1, -1), padding),
                    ("RIGHTPADDING", (0, 0), (-1, -1), padding),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
                ]
            )
        )
        return table

    def _header(self) -> list:
        return [
            Paragraph("SERVICE AGREEMENT", self.title_style),
            Paragraph(f"Contract Number: {escape(self.contract.contract_number)}", self.center_style),
            Paragraph(f"Generated: {format_date(self.generated_at.date())}", self.center_style),
            Spacer(1, 6 * mm),
        ]

    def _parties(self) -> list:
        c = self.contract
        rows = [
            ("Service Provider:", BUSINESS_NAME),
            ("ABN:", BUSINESS_ABN),
            ("Contact:", f"{BUSINESS_EMAIL} | {BUSINESS_PHONE}"),
            ("Client:", c.client_name),
        ]
        if c.client_company:
            rows.append(("Company:", c.client_company))
        rows.append(("Email:", c.client_email))
        if c.client_phone:
            rows.append(("Phone:", c.client_phone))
        return [Paragraph("PARTIES TO THIS AGREEMENT", self.heading_style), self._info_table(rows)]

    def _service_details(self) -> list:
        c = self.contract
        rows = [
            ("Property Address:", c.property_address),
            ("Property Type:", c.property_type),
            ("Service Description:", c.service_description),
        ]
        if c.service_frequency:
            rows.append(("Service Frequency:", c.service_frequency))
        if c.special_requirements:
            rows.append(("Special Requirements:", c.special_requirements))
        return [Paragraph("SERVICE DETAILS", self.heading_style), self._info_table(rows)]

    def _financial_terms(self) -> list:
        c = self.contract
        period = FREQUENCY_LABELS.get(c.payment_frequency, c.payment_frequency)
        data = [
            ["Item", "Amount"],
            ["Payment Frequency", c.payment_frequency.replace("-", " ").title()],
            [f"Payment Amount (per {period})", format_money(c.payment_amount_per_period, c.currency)],
            ["Billing Periods", str(c.billing_periods) if c.billing_periods else "Open-ended"],
            ["Deposit (25%)", format_money(c.deposit_amount, c.currency)],
            ["Total Contract Value", format_money(c.total_contract_value, c.currency)],
        ]
        # 8pt cell padding on each side of both columns
        padding = 8
        item_width = self.label_width + 20 * mm
        amount_width = self.value_width - 20 * mm
        if c.total_value_override and c.override_reason:
            data.append(["Pricing Note", self._wrapped(c.override_reason, amount_width - 2 * padding)])

        table = Table(data, colWidths=[item_width, amount_width], repeatRows=1)
        table.setStyle(
            TableStyle(
                [
                    # Header row
                    ("BACKGROUND", (0, 0), (-1, 0), self.brand_color),
                    ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                    ("FONT", (0, 0), (-1, 0), BOLD_FONT, BODY_SIZE),
                    # Data rows
                    ("FONT", (0, 1), (-1, -1), BODY_FONT, BODY_SIZE),
                    ("FONT", (0, 5), (-1, 5), BOLD_FONT, BODY_SIZE),
                    ("TEXTCOLOR", (0, 1), (-1, -1), self.dark_gray),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                    ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, self.light_gray]),
                    ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
                    ("LEFTPADDING", (0, 0), (-1, -1), padding),
                    ("RIGHTPADDING", (0, 0), (-1, -1), padding),
                    ("TOPPADDING", (0, 0), (-1, -1), 5),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
                ]
            )
        )
        return [Paragraph("FINANCIAL TERMS", self.heading_style), table]

    def _duration(self) -> list:
        c = self.contract
        rows = [("Start Date:", format_date(c.start_date))]
        if c.end_date:
            rows.append(("End Date:", format_date(c.end_date)))
        if c.duration_months:
            rows.append(("Duration:", f"{c.duration_months} months"))
        rows.append(("Auto-Renewal:", "Yes" if c.auto_renew else "No"))
        return [Paragraph("CONTRACT DURATION", self.heading_style), self._info_table(rows)]

    def _terms(self) -> list:
        story = [Paragraph("TERMS AND CONDITIONS", self.heading_style)]
        for term in TERMS_AND_CONDITIONS:
            story.append(self._wrapped(term, self.content_width))
            story.append(Spacer(1, 2 * mm))
        return story

    def _signature_block(
        self, title: str, signature_data: Optional[str], signed_at: Optional[datetime], signer: Optional[str]
    ) -> list:
        block = [Paragraph(f"<b>{escape(title)}</b>", self.body_style), Spacer(1, 2 * mm)]
        image_bytes = decode_signature(signature_data)
        image = self._signature_image(image_bytes) if image_bytes else None
        if image is not None:
            block.append(image)
        else:
            block.append(Spacer(1, 12 * mm))
            block.append(Paragraph("_" * 32, self.body_style))
            block.append(Paragraph("Signature", self.body_style))
        if signer:
            block.append(Paragraph(f"Name: {escape(signer)}", self.body_style))
        date_text = format_date(signed_at.date()) if signed_at else "_____________"
        block.append(Paragraph(f"Date: {date_text}", self.body_style))
        return block

    def _signature_image(self, image_bytes: bytes) -> Optional[Image]:
        try:
            reader = ImageReader(io.BytesIO(image_bytes))
            width, height = reader.getSize()
        except Exception as e:
            # Pillow raises several unrelated types for corrupt image data
            logger.warning(f"⚠️ Could not read signature image for {self.contract.contract_number}: {e}")
            return None
        max_width, max_height = 60 * mm, 20 * mm
        scale = min(max_width / width, max_height / height)
        return Image(io.BytesIO(image_bytes), width=width * scale, height=height * scale)

    def _signatures(self) -> list:
        c = self.contract
        client = self._signature_block("Client", c.client_signature_data, c.client_signed_at, c.client_name)
        business = self._signature_block(
            BUSINESS_NAME, c.business_signature_data, c.business_signed_at, c.business_signed_by
        )
        table = Table([[client, business]], colWidths=[self.content_width / 2] * 2)
        table.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP")]))
        return [
            KeepTogether(
                [
                    Spacer(1, 8 * mm),
                    Paragraph("SIGNATURES", self.heading_style),
                    table,
                    Spacer(1, 8 * mm),
                    Paragraph(
                        "<i>This is a legally binding agreement. Please read carefully before signing.</i>",
                        ParagraphStyle("Footer", parent=self.center_style, fontSize=8, textColor=colors.grey),
                    ),
                ]
            )
        ]

    def _add_page_number(self, canvas_obj, doc):
        """Add page numbers to PDF"""
        page_num = canvas_obj.getPageNumber()
        canvas_obj.setFont(BODY_FONT, 8)
        canvas_obj.setFillColor(colors.grey)
        canvas_obj.drawString(self.margin, self.margin / 2, self.contract.contract_number)
        canvas_obj.drawRightString(self.page_width - self.margin, self.margin / 2, f"Page {page_num}")


def render_contract_pdf(contract: Contract, generated_at: datetime) -> bytes:
    """Pure projection of a contract's current fields to PDF bytes"""
    return ContractPDFGenerator(contract, generated_at).render()


# ============================================================================
# STORAGE (Cloudflare R2)
# ============================================================================


def r2_configured() -> bool:
    return bool(R2_ACCOUNT_ID and R2_ACCESS_KEY_ID and R2_SECRET_ACCESS_KEY and R2_BUCKET_NAME)


def get_r2_client():
    """Get R2 client"""
    return boto3.client(
        "s3",
        endpoint_url=f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
        aws_access_key_id=R2_ACCESS_KEY_ID,
        aws_secret_access_key=R2_SECRET_ACCESS_KEY,
        region_name="auto",
    )


class R2DocumentStorage:
    """Stores rendered contract PDFs in an R2 (S3-compatible) bucket"""

    def __init__(self, client=None, bucket: str = R2_BUCKET_NAME):
        self.client = client or get_r2_client()
        self.bucket = bucket

    def put_pdf(self, contract: Contract, pdf_bytes: bytes, pdf_hash: str) -> str:
        """Upload and return the object key"""
        key = f"contracts/{contract.public_id}/{contract.contract_number}-{pdf_hash[:12]}.pdf"
        self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=pdf_bytes,
            ContentType="application/pdf",
            Metadata={"contract-number": contract.contract_number, "sha256": pdf_hash},
        )
        logger.info(f"✅ Uploaded contract PDF to R2: {key}")
        return key


def get_document_storage() -> Optional[R2DocumentStorage]:
    """Dependency injection for PDF storage; None when R2 is not configured"""
    if not r2_configured():
        return None
    return R2DocumentStorage()
