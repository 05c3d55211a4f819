# payrec/models/__init__.py

from payrec.models.account import (
    Account,
    AliasMapping,
    AliasSource,
    PendingAlias,
    TargetType,
)
from payrec.models.match import (
    Candidate,
    MatchResult,
    MatchStatus,
    MatchTier,
)
from payrec.models.payment import (
    DuplicateStatus,
    ImportBatch,
    ImportResult,
    ParsedPaymentRow,
    Payment,
    PaymentStatus,
    RawPaymentRow,
    SkippedRow,
)
from payrec.models.duplicate import (
    Credit,
    DuplicateCase,
    FiscalDocument,
    InvoiceOrder,
    Refund,
    Resolution,
    ResolutionRequest,
    ResolutionResult,
    ResolutionType,
)
from payrec.models.audit import AuditAction, AuditEntry

__all__ = [
    # Account
    "Account",
    "AliasMapping",
    "AliasSource",
    "PendingAlias",
    "TargetType",
    # Match
    "Candidate",
    "MatchResult",
    "MatchStatus",
    "MatchTier",
    # Payment
    "DuplicateStatus",
    "ImportBatch",
    "ImportResult",
    "ParsedPaymentRow",
    "Payment",
    "PaymentStatus",
    "RawPaymentRow",
    "SkippedRow",
    # Duplicate
    "Credit",
    "DuplicateCase",
    "FiscalDocument",
    "InvoiceOrder",
    "Refund",
    "Resolution",
    "ResolutionRequest",
    "ResolutionResult",
    "ResolutionType",
    # Audit
    "AuditAction",
    "AuditEntry",
]
