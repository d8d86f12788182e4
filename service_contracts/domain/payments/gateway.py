"""
Payment Gateway Client (Square)

Every creation call carries a caller-supplied idempotency key. Square returns
the original object when a request is repeated with the same key and body, so
retrying after a timeout never creates a second artifact.

Failure mapping:
- request never reached Square (connect/pool timeout, DNS, refused) or 5xx/429
  -> GatewayUnavailable, safe to retry with the same key
- request sent but no response (read/write timeout, dropped connection)
  -> GatewayAmbiguous, the caller must reconcile before trusting either outcome
- any other 4xx -> GatewayRejected

The client never retries on its own.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

from ...config import (
    BUSINESS_CURRENCY,
    GATEWAY_TIMEOUT_SECONDS,
    SQUARE_ACCESS_TOKEN,
    SQUARE_API_VERSION,
    SQUARE_ENVIRONMENT,
    SQUARE_LOCATION_ID,
)
from ...exceptions import GatewayAmbiguous, GatewayRejected, GatewayUnavailable
from .schemas import InvoiceCustomer, InvoiceRequest, PaymentLineItem, PaymentLinkRequest

logger = logging.getLogger(__name__)

# Square limits custom field values; longer terms are cut at the last word that fits
SERVICE_TERMS_MAX_LENGTH = 500


def square_api_url(environment: str) -> str:
    if environment == "production":
        return "https://connect.squareup.com/v2"
    return "https://connect.squareupsandbox.com/v2"


@dataclass(frozen=True)
class PaymentArtifact:
    """Result of a successful creation call"""

    external_id: str
    artifact_url: Optional[str]
    order_id: Optional[str] = None
    version: Optional[int] = None


class PaymentGateway(Protocol):
    async def create_payment_link(self, idempotency_key: str, request: PaymentLinkRequest) -> PaymentArtifact: ...

    async def create_invoice(self, idempotency_key: str, request: InvoiceRequest) -> PaymentArtifact: ...

    async def cancel_payment_link(self, link_id: str) -> None: ...

    async def cancel_invoice(self, invoice_id: str, version: Optional[int]) -> None: ...


def truncate_terms(text: Optional[str], limit: int = SERVICE_TERMS_MAX_LENGTH) -> Optional[str]:
    if not text or len(text) <= limit:
        return text
    cut = text[: limit - 3]
    if " " in cut:
        cut = cut[: cut.rfind(" ")]
    return f"{cut}..."


def _square_line_item(item: PaymentLineItem, currency: str) -> dict:
    line = {
        "name": item.name,
        "quantity": str(item.quantity),
        "base_price_money": {"amount": item.unit_amount_minor, "currency": currency},
    }
    if item.description:
        line["note"] = item.description[:2000]
    return line


def _split_name(name: str) -> tuple[str, Optional[str]]:
    parts = name.strip().split(" ", 1)
    return parts[0], (parts[1] if len(parts) > 1 else None)


class SquareGateway:
    """Square Checkout, Customers, Orders and Invoices API client"""

    def __init__(
        self,
        access_token: Optional[str] = None,
        location_id: Optional[str] = None,
        environment: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        currency: str = BUSINESS_CURRENCY,
    ):
        self.access_token = access_token or SQUARE_ACCESS_TOKEN
        self.location_id = location_id or SQUARE_LOCATION_ID
        self.base_url = square_api_url(environment or SQUARE_ENVIRONMENT)
        self.timeout = timeout if timeout is not None else GATEWAY_TIMEOUT_SECONDS
        self.transport = transport
        self.currency = currency

    def _headers(self) -> dict:
        return {
            "Square-Version": SQUARE_API_VERSION,
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        idempotency_key: Optional[str] = None,
        json: Optional[dict] = None,
    ) -> dict[str, Any]:
        if not self.access_token or not self.location_id:
            raise GatewayUnavailable("Square is not configured", idempotency_key)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as http_client:
                response = await http_client.request(
                    method, f"{self.base_url}{path}", json=json, headers=self._headers()
                )
        except (httpx.ConnectTimeout, httpx.PoolTimeout, httpx.ConnectError) as e:
            logger.error(f"❌ Square {operation} unreachable (key={idempotency_key}): {e!r}")
            raise GatewayUnavailable(f"Square {operation} unreachable: {e!r}", idempotency_key) from e
        except (httpx.TimeoutException, httpx.TransportError) as e:
            logger.warning(f"⚠️ Square {operation} outcome unknown (key={idempotency_key}): {e!r}")
            raise GatewayAmbiguous(f"Square {operation} outcome unknown: {e!r}", idempotency_key) from e

        if response.status_code >= 500 or response.status_code == 429:
            logger.error(f"❌ Square {operation} unavailable ({response.status_code}): {response.text}")
            raise GatewayUnavailable(
                f"Square {operation} returned {response.status_code}", idempotency_key
            )

        if response.status_code >= 400:
            try:
                errors = response.json().get("errors", [])
            except ValueError:
                errors = [{"detail": response.text}]
            detail = "; ".join(str(err.get("detail") or err.get("code")) for err in errors) or response.text
            logger.error(f"❌ Square {operation} rejected ({response.status_code}): {detail}")
            raise GatewayRejected(
                f"Square {operation} rejected: {detail}",
                idempotency_key,
                status_code=response.status_code,
                errors=errors,
            )

        if not response.content:
            return {}
        return response.json()

    # ------------------------------------------------------------------
    # Payment links
    # ------------------------------------------------------------------

    async def create_payment_link(self, idempotency_key: str, request: PaymentLinkRequest) -> PaymentArtifact:
        """Create a Square-hosted checkout link for the given line items"""
        payload: dict[str, Any] = {
            "idempotency_key": idempotency_key,
            "order": {
                "location_id": self.location_id,
                "reference_id": request.reference_id,
                "line_items": [_square_line_item(item, self.currency) for item in request.line_items],
            },
            "checkout_options": {"ask_for_shipping_address": False},
        }
        if request.redirect_url:
            payload["checkout_options"]["redirect_url"] = request.redirect_url
        if request.buyer_email:
            payload["pre_populated_data"] = {"buyer_email": request.buyer_email}
        if request.note:
            payload["payment_note"] = request.note[:500]

        data = await self._request(
            "POST", "/online-checkout/payment-links", "payment link", idempotency_key, payload
        )
        link = data.get("payment_link") or {}
        if not link.get("id"):
            raise GatewayRejected(f"No payment link in Square response: {data}", idempotency_key)

        logger.info(f"✅ Square payment link {link['id']} for {request.reference_id}")
        return PaymentArtifact(
            external_id=link["id"],
            artifact_url=link.get("url") or link.get("long_url"),
            order_id=link.get("order_id"),
            version=link.get("version"),
        )

    async def cancel_payment_link(self, link_id: str) -> None:
        await self._request("DELETE", f"/online-checkout/payment-links/{link_id}", "payment link delete")
        logger.info(f"✅ Square payment link {link_id} deleted")

    # ------------------------------------------------------------------
    # Invoices: customer -> order -> invoice -> publish
    # ------------------------------------------------------------------

    async def create_invoice(self, idempotency_key: str, request: InvoiceRequest) -> PaymentArtifact:
        """
        Create and publish a Square invoice.

        Each step has its own key, "<step>-<idempotency_key>", so replaying the
        whole flow after a failure part-way through re-uses the objects already
        created instead of duplicating them.
        """
        customer_id = await self._create_customer(f"customer-{idempotency_key}", request)
        order_id = await self._create_order(f"order-{idempotency_key}", request, customer_id)

        invoice: dict[str, Any] = {
            "location_id": self.location_id,
            "order_id": order_id,
            "primary_recipient": {"customer_id": customer_id},
            "payment_requests": [
                {
                    "request_type": "BALANCE",
                    "due_date": request.due_date.isoformat(),
                    "automatic_payment_source": "NONE",
                }
            ],
            "delivery_method": "EMAIL",
            "invoice_number": request.reference_id,
            "accepted_payment_methods": {"card": True, "bank_account": True},
        }
        if request.title:
            invoice["title"] = request.title[:255]
        description = "\n\n".join(part for part in (request.description, request.payment_terms) if part)
        if description:
            invoice["description"] = description[:65536]
        terms = truncate_terms(request.service_terms)
        if terms:
            invoice["custom_fields"] = [
                {"label": "Service Terms", "value": terms, "placement": "BELOW_LINE_ITEMS"}
            ]

        data = await self._request(
            "POST",
            "/invoices",
            "invoice",
            f"invoice-{idempotency_key}",
            {"idempotency_key": f"invoice-{idempotency_key}", "invoice": invoice},
        )
        created = data.get("invoice") or {}
        if not created.get("id"):
            raise GatewayRejected(f"No invoice in Square response: {data}", idempotency_key)

        published = await self._publish_invoice(f"publish-{idempotency_key}", created)

        logger.info(f"✅ Square invoice published: {published.get('id')} ({request.reference_id})")
        return PaymentArtifact(
            external_id=published.get("id") or created["id"],
            artifact_url=published.get("public_url"),
            order_id=order_id,
            version=published.get("version", created.get("version")),
        )

    async def _create_customer(self, key: str, request: InvoiceRequest) -> str:
        customer = request.customer
        payload: dict[str, Any] = {
            "idempotency_key": key,
            "given_name": customer.given_name,
            "email_address": customer.email,
            "reference_id": request.reference_id,
        }
        if customer.family_name:
            payload["family_name"] = customer.family_name
        if customer.phone:
            payload["phone_number"] = customer.phone
        if customer.company:
            payload["company_name"] = customer.company

        data = await self._request("POST", "/customers", "customer", key, payload)
        customer_id = (data.get("customer") or {}).get("id")
        if not customer_id:
            raise GatewayRejected(f"No customer in Square response: {data}", key)
        return customer_id

    async def _create_order(self, key: str, request: InvoiceRequest, customer_id: str) -> str:
        payload = {
            "idempotency_key": key,
            "order": {
                "location_id": self.location_id,
                "customer_id": customer_id,
                "reference_id": request.reference_id,
                "line_items": [_square_line_item(item, self.currency) for item in request.line_items],
            },
        }
        data = await self._request("POST", "/orders", "order", key, payload)
        order_id = (data.get("order") or {}).get("id")
        if not order_id:
            raise GatewayRejected(f"No order in Square response: {data}", key)
        return order_id

    async def _publish_invoice(self, key: str, invoice: dict) -> dict:
        data = await self._request(
            "POST",
            f"/invoices/{invoice['id']}/publish",
            "invoice publish",
            key,
            {"version": invoice.get("version", 0), "idempotency_key": key},
        )
        return data.get("invoice") or {}

    async def cancel_invoice(self, invoice_id: str, version: Optional[int]) -> None:
        await self._request(
            "POST", f"/invoices/{invoice_id}/cancel", "invoice cancel", json={"version": version or 0}
        )
        logger.info(f"✅ Square invoice {invoice_id} cancelled")


def customer_from_name(
    name: str, email: str, phone: Optional[str] = None, company: Optional[str] = None
) -> InvoiceCustomer:
    """Build an InvoiceCustomer from a single full-name field"""
    given_name, family_name = _split_name(name)
    return InvoiceCustomer(
        given_name=given_name, family_name=family_name, email=email, phone=phone, company=company
    )


def get_payment_gateway() -> PaymentGateway:
    """Dependency injection for the payment gateway"""
    return SquareGateway()
