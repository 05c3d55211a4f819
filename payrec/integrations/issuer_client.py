# payrec/integrations/issuer_client.py

"""
Invoice issuer clients.

HttpInvoiceIssuer posts orders to the invoicing service; StubInvoiceIssuer
returns deterministic fake documents for development and tests.
"""

from typing import Optional
import hashlib
import logging

import httpx

from payrec.config import Settings, get_settings
from payrec.core.issuer import InvoiceIssuer, IssuerError
from payrec.models import FiscalDocument, InvoiceOrder

logger = logging.getLogger(__name__)


class HttpInvoiceIssuer:
    """Client for an HTTP invoicing service."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 15.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        """Close the HTTP client if this issuer created it."""
        if self._owns_client:
            self.client.close()

    def issue(self, order: InvoiceOrder) -> FiscalDocument:
        payload = {
            "external_id": order.id,
            "account_id": order.account_id,
            "concept": order.concept,
            "period": order.period,
            "amount": str(order.amount),
            "currency": order.currency,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            response = self.client.post(f"{self.base_url}/invoices", json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise IssuerError(f"issuer returned {e.response.status_code}: {e.response.text[:200]}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise IssuerError(f"issuer request failed: {e}") from e

        try:
            return FiscalDocument(
                number=str(data["number"]),
                authorization_code=str(data["authorization_code"]),
                authorization_expires=data.get("authorization_expires"),
                pdf_url=data.get("pdf_url"),
            )
        except (KeyError, TypeError) as e:
            raise IssuerError(f"issuer response is missing {e}") from e


class StubInvoiceIssuer:
    """Issues fake documents whose numbers derive from the order id."""

    def __init__(self, point_of_sale: int = 1):
        self.point_of_sale = point_of_sale

    def issue(self, order: InvoiceOrder) -> FiscalDocument:
        digest = hashlib.sha256(order.id.encode("utf-8")).hexdigest()
        sequence = int(digest[:8], 16) % 100_000_000
        return FiscalDocument(
            number=f"{self.point_of_sale:05d}-{sequence:08d}",
            authorization_code=str(int(digest[8:24], 16))[:14].rjust(14, "0"),
        )

    def close(self) -> None:
        pass


def get_invoice_issuer(settings: Optional[Settings] = None) -> InvoiceIssuer:
    """HTTP issuer when `issuer_url` is configured, stub otherwise."""
    settings = settings or get_settings()
    if settings.issuer_url:
        return HttpInvoiceIssuer(
            settings.issuer_url,
            api_key=settings.issuer_api_key,
            timeout=settings.issuer_timeout_seconds,
        )

    logger.warning("ISSUER_URL is not set; using the stub invoice issuer")
    return StubInvoiceIssuer()
