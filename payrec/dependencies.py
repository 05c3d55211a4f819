# payrec/dependencies.py

"""
FastAPI dependencies.

Authentication validates Supabase JWTs; every school-scoped route also
checks that the user belongs to the school. Services are built per request
from the configured store.
"""

from functools import lru_cache
from typing import Iterator, Union

from fastapi import Depends, Header, HTTPException, Query, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from payrec.config import get_settings
from payrec.core import (
    AuthorizationError,
    BatchImporter,
    DuplicateCaseDetector,
    DuplicateResolutionEngine,
    IssuerWorker,
    MatchPolicy,
    ReviewWorkflow,
)
from payrec.database import SupabaseStore, get_supabase_admin
from payrec.integrations.issuer_client import get_invoice_issuer
from payrec.repositories import InMemoryStore

security = HTTPBearer()

Store = Union[InMemoryStore, SupabaseStore]


# ============================================
# Auth
# ============================================

def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> str:
    """
    Validate the Supabase JWT and return the user_id.

    Uses the admin client's auth.get_user() to verify the token.
    This is a sync function -- FastAPI auto-runs it in a threadpool.
    """
    token = credentials.credentials

    try:
        user_response = get_supabase_admin().auth.get_user(token)
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if user_response is None or user_response.user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user_response.user.id


def require_worker_secret(x_worker_secret: str = Header(default="")) -> None:
    """Shared-secret guard for the issuer worker endpoint."""
    secret = get_settings().worker_secret
    if not secret or x_worker_secret != secret:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid worker secret",
        )


# ============================================
# Storage
# ============================================

@lru_cache()
def _memory_store() -> InMemoryStore:
    return InMemoryStore()


def get_store() -> Store:
    """Store selected by `storage_backend`."""
    if get_settings().storage_backend == "memory":
        return _memory_store()
    return SupabaseStore()


def require_school_member(
    school_id: str = Query(..., min_length=1),
    user_id: str = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> str:
    """Return the school id once the user is known to belong to it."""
    if not store.roster.is_member(school_id, user_id):
        raise AuthorizationError(
            f"user is not a member of school {school_id}",
            details={"school_id": school_id},
        )
    return school_id


# ============================================
# Services
# ============================================

def get_policy() -> MatchPolicy:
    return MatchPolicy.from_settings(get_settings())


def get_importer(store: Store = Depends(get_store), policy: MatchPolicy = Depends(get_policy)) -> BatchImporter:
    return BatchImporter(store.roster, store.aliases, store.payments, policy)


def get_review(store: Store = Depends(get_store), policy: MatchPolicy = Depends(get_policy)) -> ReviewWorkflow:
    return ReviewWorkflow(store.roster, store.aliases, store.pending_aliases, store.payments, store.audit, policy)


def get_detector(store: Store = Depends(get_store)) -> DuplicateCaseDetector:
    return DuplicateCaseDetector(store.payments, store.cases)


def get_resolution_engine(store: Store = Depends(get_store)) -> DuplicateResolutionEngine:
    return DuplicateResolutionEngine(store.cases, store.payments)


def get_issuer_worker(store: Store = Depends(get_store)) -> Iterator[IssuerWorker]:
    """Worker for one request; its issuer is closed once the response is sent."""
    settings = get_settings()
    issuer = get_invoice_issuer(settings)
    try:
        yield IssuerWorker(
            store.invoices,
            issuer,
            max_retries=settings.issuer_max_retries,
            batch_size=settings.issuer_batch_size,
        )
    finally:
        issuer.close()
