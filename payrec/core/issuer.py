# payrec/core/issuer.py

"""
Issuer worker.

Drains pending invoice orders through an InvoiceIssuer. Resolution only ever
creates pending orders; this worker runs separately so resolving a case never
waits on the invoicing authority.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol
import logging

from payrec.models import FiscalDocument, InvoiceOrder
from payrec.repositories.base import InvoiceOrderRepository

logger = logging.getLogger(__name__)


class IssuerError(Exception):
    """The issuer could not produce a document for an order."""


class InvoiceIssuer(Protocol):
    def issue(self, order: InvoiceOrder) -> FiscalDocument: ...

    def close(self) -> None: ...


@dataclass
class IssueRunSummary:
    processed: int = 0
    issued: int = 0
    retried: int = 0
    failed: int = 0
    order_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "issued": self.issued,
            "retried": self.retried,
            "failed": self.failed,
            "order_ids": self.order_ids,
        }


class IssuerWorker:
    def __init__(
        self,
        invoices: InvoiceOrderRepository,
        issuer: InvoiceIssuer,
        max_retries: int = 3,
        batch_size: int = 50,
    ):
        self.invoices = invoices
        self.issuer = issuer
        self.max_retries = max_retries
        self.batch_size = batch_size

    def process_pending(self, school_id: Optional[str] = None, limit: Optional[int] = None) -> IssueRunSummary:
        """
        Issue pending orders, oldest first.

        A failed attempt increments `retry_count`; the order stays pending
        until it reaches `max_retries`, then it is marked failed.
        """
        summary = IssueRunSummary()

        for order in self.invoices.list_pending(school_id, limit or self.batch_size):
            summary.processed += 1
            summary.order_ids.append(order.id)
            now = datetime.now(timezone.utc)

            try:
                document = self.issuer.issue(order)
            except IssuerError as e:
                retries = order.retry_count + 1
                status = "failed" if retries >= self.max_retries else "pending"
                self.invoices.update_order(order.model_copy(update={
                    "status": status,
                    "retry_count": retries,
                    "failure_reason": str(e),
                    "updated_at": now,
                }))
                if status == "failed":
                    summary.failed += 1
                    logger.error(f"Invoice order {order.id} failed after {retries} attempts: {e}")
                else:
                    summary.retried += 1
                    logger.warning(f"Invoice order {order.id} attempt {retries} failed: {e}")
                continue

            self.invoices.update_order(order.model_copy(update={
                "status": "issued",
                "document": document,
                "failure_reason": None,
                "updated_at": now,
            }))
            summary.issued += 1
            logger.info(f"Invoice order {order.id} issued as {document.number}")

        return summary
