# payrec/models/payment.py

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Literal
from pydantic import BaseModel, Field

from payrec.models.account import SCHEMA_VERSION, TargetType
from payrec.models.match import Candidate, MatchStatus

PaymentStatus = Literal["approved", "pending", "rejected", "refunded"]

DuplicateStatus = Literal[
    "none",
    "suspected",
    "invoiced",
    "credited",
    "refunded",
    "pending_invoice",
    "cleared",
]


# ============================================
# Import Rows
# ============================================

class RawPaymentRow(BaseModel):
    """
    One payment row from an import source (bank/Excel export or webhook).

    Values arrive loosely typed; the importer validates them with
    `parse_row` before anything is persisted.
    """

    payer_raw: Any = None
    amount: Any = None
    currency: Any = None
    period: Any = None
    provider: str = "import"
    provider_payment_id: Any = None
    reference: Any = None
    paid_at: Any = None
    status: Any = None
    target_type: TargetType = "account"
    account_raw: Any = None
    row_index: Optional[int] = None  # position in the source file, when known


class ParsedPaymentRow(BaseModel):
    """An import row that passed validation."""

    row_index: int
    payer_raw: str
    payer_key: str
    amount: Decimal
    currency: str
    period: str
    provider: str
    provider_payment_id: Optional[str] = None
    reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    status: PaymentStatus = "approved"
    target_type: TargetType = "account"
    account_raw: Optional[str] = None


class SkippedRow(BaseModel):
    """A row that was not imported, with the reason."""

    row_index: int
    reason: str
    kind: Literal["invalid", "duplicate", "not_applied"] = "invalid"
    idempotency_key: Optional[str] = None
    raw: Optional[dict] = None


# ============================================
# Payment
# ============================================

class Payment(BaseModel):
    """A recorded payment, unique per (school_id, idempotency_key)."""

    schema_version: int = SCHEMA_VERSION
    id: str
    school_id: str
    account_id: Optional[str] = None
    target_type: TargetType = "account"
    amount: Decimal
    currency: str
    period: str
    provider: str = "import"
    provider_payment_id: Optional[str] = None
    idempotency_key: str
    reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    payer_raw: str = ""
    payer_key: str = ""
    status: PaymentStatus = "approved"
    match_status: MatchStatus
    match_confidence: float = Field(ge=0, le=1)
    match_candidates: list[Candidate] = Field(default_factory=list)
    suggested_account_id: Optional[str] = None
    confirmed_by: Optional[str] = None
    duplicate_status: DuplicateStatus = "none"
    duplicate_case_id: Optional[str] = None
    import_batch_id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def needs_review(self) -> bool:
        return self.match_status != "auto"


# ============================================
# Import Batch
# ============================================

class ImportBatch(BaseModel):
    """Counters for one committed import."""

    schema_version: int = SCHEMA_VERSION
    id: str
    school_id: str
    created_at: datetime
    created_by: Optional[str] = None
    source: str = "import"
    payments_count: int = 0
    auto_count: int = 0
    review_count: int = 0
    nomatch_count: int = 0
    conflict_count: int = 0
    duplicate_count: int = 0
    invalid_count: int = 0

    class Config:
        from_attributes = True

    def recount(self, payments: list[Payment], extra_duplicates: int = 0) -> "ImportBatch":
        """Copy of this batch whose counters reflect exactly `payments`."""
        counts = {"auto": 0, "review": 0, "nomatch": 0, "conflict": 0}
        for payment in payments:
            counts[payment.match_status] += 1
        return self.model_copy(update={
            "payments_count": len(payments),
            "auto_count": counts["auto"],
            "review_count": counts["review"],
            "nomatch_count": counts["nomatch"],
            "conflict_count": counts["conflict"],
            "duplicate_count": self.duplicate_count + extra_duplicates,
        })

    @property
    def counters(self) -> dict:
        return {
            "payments_count": self.payments_count,
            "auto_count": self.auto_count,
            "review_count": self.review_count,
            "nomatch_count": self.nomatch_count,
            "conflict_count": self.conflict_count,
            "duplicate_count": self.duplicate_count,
            "invalid_count": self.invalid_count,
        }


class ImportResult(BaseModel):
    """Summary returned by every import, even under partial failure."""

    batch: ImportBatch
    payments: list[Payment] = Field(default_factory=list)
    skipped: list[SkippedRow] = Field(default_factory=list)
    pending_alias_ids: list[str] = Field(default_factory=list)
    replayed: bool = False
