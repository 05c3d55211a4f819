# payrec/models/duplicate.py

from datetime import datetime
from decimal import Decimal
from typing import Optional, Literal
from pydantic import BaseModel, Field

from payrec.models.account import SCHEMA_VERSION


# ============================================
# Resolution
# ============================================

ResolutionType = Literal[
    "invoice_one_credit_rest",
    "invoice_all",
    "refund_one",
    "ignore_duplicates",
]


class ResolutionRequest(BaseModel):
    """Operator-chosen disposition for a duplicate case."""

    type: ResolutionType
    chosen_payment_ids: list[str] = Field(min_length=1)
    notes: str = ""


class Resolution(BaseModel):
    """A resolution as recorded on the case."""

    type: ResolutionType
    chosen_payment_ids: list[str]
    notes: str = ""
    resolved_by: str
    resolved_at: datetime


# ============================================
# Duplicate Case
# ============================================

DuplicateCaseStatus = Literal["open", "resolved"]


class DuplicateCase(BaseModel):
    """Approved payments covering the same account and period."""

    schema_version: int = SCHEMA_VERSION
    id: str
    school_id: str
    account_id: str
    period: str
    payment_ids: list[str]
    status: DuplicateCaseStatus = "open"
    resolution: Optional[Resolution] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ============================================
# Financial Artifacts
# ============================================

InvoiceOrderStatus = Literal["pending", "issued", "failed"]


class FiscalDocument(BaseModel):
    """Data returned by the invoice issuer for an issued order."""

    number: str
    authorization_code: str
    authorization_expires: Optional[str] = None
    pdf_url: Optional[str] = None


class InvoiceOrder(BaseModel):
    """A request for the issuer worker to produce one fiscal document."""

    schema_version: int = SCHEMA_VERSION
    id: str
    school_id: str
    account_id: str
    period: Optional[str] = None
    concept: str
    amount: Decimal
    currency: str
    payment_ids_applied: list[str]
    duplicate_case_id: Optional[str] = None
    status: InvoiceOrderStatus = "pending"
    document: Optional[FiscalDocument] = None
    failure_reason: Optional[str] = None
    retry_count: int = 0
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Credit(BaseModel):
    """Money held in favour of an account."""

    schema_version: int = SCHEMA_VERSION
    id: str
    school_id: str
    account_id: str
    amount: Decimal
    currency: str
    source_payment_ids: list[str]
    source_duplicate_case_id: Optional[str] = None
    created_at: datetime


class Refund(BaseModel):
    """A payment to be returned to the payer."""

    schema_version: int = SCHEMA_VERSION
    id: str
    school_id: str
    account_id: str
    payment_id: str
    amount: Decimal
    currency: str
    source_duplicate_case_id: Optional[str] = None
    created_at: datetime


class ResolutionResult(BaseModel):
    """Artifacts produced by resolving a duplicate case."""

    case_id: str
    type: ResolutionType
    invoice_order_ids: list[str] = Field(default_factory=list)
    credit_ids: list[str] = Field(default_factory=list)
    refund_ids: list[str] = Field(default_factory=list)
    pending_invoice_payment_ids: list[str] = Field(default_factory=list)

    @property
    def credit_id(self) -> Optional[str]:
        return self.credit_ids[0] if self.credit_ids else None
