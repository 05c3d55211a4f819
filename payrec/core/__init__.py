# payrec/core/__init__.py

from payrec.core.errors import (
    DomainError,
    ValidationError,
    NotFoundError,
    ConflictError,
    AuthorizationError,
)
from payrec.core.normalizers import (
    normalize_payer,
    tokenize,
    normalize_and_tokenize,
    build_payer_raw,
    normalize_amount,
    normalize_period,
    normalize_date,
)
from payrec.core.aliases import AliasStore, pending_alias_id
from payrec.core.matching import MatchPolicy, RosterIndex, match_payer
from payrec.core.importer import BatchImporter, compute_idempotency_key, parse_row
from payrec.core.review import ReviewWorkflow, ConfirmResult
from payrec.core.duplicates import DuplicateCaseDetector
from payrec.core.resolution import DuplicateResolutionEngine, compute_invoice_key
from payrec.core.issuer import IssuerWorker, IssuerError, InvoiceIssuer

__all__ = [
    "DomainError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "AuthorizationError",
    "normalize_payer",
    "tokenize",
    "normalize_and_tokenize",
    "build_payer_raw",
    "normalize_amount",
    "normalize_period",
    "normalize_date",
    "AliasStore",
    "pending_alias_id",
    "MatchPolicy",
    "RosterIndex",
    "match_payer",
    "BatchImporter",
    "compute_idempotency_key",
    "parse_row",
    "ReviewWorkflow",
    "ConfirmResult",
    "DuplicateCaseDetector",
    "DuplicateResolutionEngine",
    "compute_invoice_key",
    "IssuerWorker",
    "IssuerError",
    "InvoiceIssuer",
]
