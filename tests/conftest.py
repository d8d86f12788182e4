import base64
import io
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from PIL import Image as PILImage
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from service_contracts.database import Base
from service_contracts.domain.contracts.schemas import ContractCreate
from service_contracts.domain.contracts.service import ContractService
from service_contracts.domain.invoices.service import InvoiceService
from service_contracts.domain.payments.gateway import PaymentArtifact
from service_contracts.exceptions import GatewayAmbiguous
from service_contracts.models import Contract

FROZEN_NOW = datetime(2025, 3, 3, 9, 30)


class FrozenClock:
    """Callable clock that only moves when a test moves it"""

    def __init__(self, now: datetime = FROZEN_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeGateway:
    """
    In-memory payment processor that honours idempotency keys.

    Creation calls are recorded by key; repeating a key returns the artifact
    first created for it. Queue exceptions with fail_next() to simulate
    outages, or time_out_after_create() for a request that took effect but
    whose response was lost.
    """

    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self.requests: dict[str, object] = {}
        self.artifacts: dict[str, PaymentArtifact] = {}
        self.cancelled: list[tuple[str, str]] = []
        self._failures: list[Exception] = []
        self._lose_responses = 0

    def fail_next(self, *errors: Exception) -> None:
        self._failures.extend(errors)

    def time_out_after_create(self, times: int = 1) -> None:
        self._lose_responses += times

    def _create(self, operation: str, key: str, request) -> PaymentArtifact:
        self.calls.append((operation, key))
        if self._failures:
            raise self._failures.pop(0)

        self.requests[key] = request
        if key not in self.artifacts:
            number = len(self.artifacts) + 1
            if operation == "payment_link":
                self.artifacts[key] = PaymentArtifact(
                    external_id=f"PL{number}",
                    artifact_url=f"https://square.link/u/{key}",
                    order_id=f"order-{key}",
                )
            else:
                self.artifacts[key] = PaymentArtifact(
                    external_id=f"inv-{number}",
                    artifact_url=f"https://squareup.com/pay-invoice/{key}",
                    order_id=f"order-{key}",
                    version=1,
                )

        if self._lose_responses:
            self._lose_responses -= 1
            raise GatewayAmbiguous("read timeout", key)
        return self.artifacts[key]

    def calls_for(self, key: str) -> int:
        return sum(1 for _, called_key in self.calls if called_key == key)

    async def create_payment_link(self, idempotency_key, request):
        return self._create("payment_link", idempotency_key, request)

    async def create_invoice(self, idempotency_key, request):
        return self._create("invoice", idempotency_key, request)

    async def cancel_payment_link(self, link_id):
        self.cancelled.append(("payment_link", link_id))

    async def cancel_invoice(self, invoice_id, version):
        self.cancelled.append(("invoice", invoice_id))


class FakeNotifier:
    def __init__(self, fail: bool = False):
        self.sent: list[tuple[str, int]] = []
        self.fail = fail

    async def payment_received(self, entity_type, entity):
        self.sent.append((entity_type, entity.id))
        if self.fail:
            raise RuntimeError("smtp down")


class FakeStorage:
    def __init__(self):
        self.objects: dict[str, bytes] = {}

    def put_pdf(self, contract, pdf_bytes, pdf_hash):
        key = f"contracts/{contract.public_id}/{contract.contract_number}-{pdf_hash[:12]}.pdf"
        self.objects[key] = pdf_bytes
        return key


def contract_payload(**overrides) -> dict:
    """3BR deep clean, moderate, weekend, 15 km: quotes at 445.63 - 604.33"""
    data = {
        "type": "residential_recurring",
        "client_name": "Jane Citizen",
        "client_email": "Jane@Example.com",
        "client_phone": "0412 345 678",
        "property_address": "12 Harbour Street, Sydney NSW 2000",
        "property_type": "House",
        "service_description": "Monthly deep clean of a three bedroom house",
        "service_frequency": "Monthly",
        "service_attributes": {
            "category": "residential",
            "service_tier": "deep",
            "bedrooms": 3,
            "condition": "moderate",
            "timing": ["weekend"],
            "distance_km": "15",
            "recurring_frequency": "monthly",
        },
        "payment_frequency": "monthly",
        "start_date": "2025-03-10",
        "duration_months": 12,
    }
    data.update(overrides)
    return data


def invoice_payload(**overrides) -> dict:
    data = {
        "client_name": "Acme Offices Pty Ltd",
        "client_email": "accounts@acme.example.com",
        "client_company": "Acme Offices",
        "line_items": [
            {"name": "Office deep clean", "quantity": 1, "unit_amount": "1250.00"},
            {"name": "Window cleaning (external)", "description": "Level 1 and 2", "quantity": 2, "unit_amount": "87.50"},
        ],
        "payment_terms": "Payment due within 14 days",
        "service_terms": "Services are provided in accordance with Australian Consumer Law.",
    }
    data.update(overrides)
    return data


def signature_data_url(color: str = "black", size: tuple = (300, 100)) -> str:
    image = PILImage.new("RGBA", size, (255, 255, 255, 0))
    for x in range(20, size[0] - 20):
        image.putpixel((x, size[1] // 2), (0, 0, 0, 255) if color == "black" else (0, 0, 255, 255))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'contracts.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def contract_service(db, gateway, clock, storage):
    return ContractService(db, gateway=gateway, clock=clock, storage=storage)


@pytest.fixture
def invoice_service(db, gateway, clock):
    return InvoiceService(db, gateway=gateway, clock=clock)


@pytest.fixture
def create_contract(contract_service):
    def _create(**overrides):
        return contract_service.create_contract(ContractCreate.model_validate(contract_payload(**overrides)))

    return _create


@pytest.fixture
def make_contract():
    """Unsaved Contract with every field the document renderer reads"""

    def _make(**overrides):
        fields = {
            "id": 1,
            "public_id": "6f1c1b1e-8d55-4a43-9a43-2c4f8e3f0a11",
            "contract_number": "CUB-25-0042",
            "type": "residential_recurring",
            "status": "draft",
            "version": 1,
            "client_name": "Jane Citizen",
            "client_email": "jane@example.com",
            "client_phone": "+61412345678",
            "client_company": None,
            "property_address": "12 Harbour Street, Sydney NSW 2000",
            "property_type": "House",
            "service_description": "Monthly deep clean of a three bedroom house",
            "service_frequency": "Monthly",
            "special_requirements": None,
            "service_attributes": {},
            "price_breakdown": {},
            "pricing_version": "2025.2",
            "payment_frequency": "monthly",
            "payment_amount_per_period": Decimal("445.63"),
            "billing_periods": 12,
            "total_contract_value": Decimal("5347.56"),
            "total_value_override": False,
            "override_reason": None,
            "deposit_amount": Decimal("111.41"),
            "currency": "AUD",
            "start_date": date(2025, 3, 10),
            "end_date": date(2026, 3, 9),
            "duration_months": 12,
            "auto_renew": False,
            "payment_pending_reconciliation": False,
        }
        fields.update(overrides)
        return Contract(**fields)

    return _make
