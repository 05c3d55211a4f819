# payrec/routers/reconciliation.py

"""
Reconciliation review routes.

Pending aliases, the review queue, confirmations and alias rules.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from payrec.core import ConfirmResult, ReviewWorkflow
from payrec.dependencies import Store, get_current_user, get_review, get_store, require_school_member
from payrec.models import TargetType

router = APIRouter()


# ============================================
# Request Models
# ============================================

class ConfirmRequest(BaseModel):
    target_id: str = Field(min_length=1)
    rematch: bool = False


class AliasRuleRequest(BaseModel):
    payer: str = Field(min_length=1)
    target_id: str = Field(min_length=1)
    target_type: TargetType = "account"
    override: bool = False


class RematchRequest(BaseModel):
    payer: str = Field(min_length=1)
    target_type: TargetType = "account"


def _confirm_response(result: ConfirmResult) -> dict:
    return {
        "success": True,
        "already_confirmed": result.already_confirmed,
        "alias": result.alias.model_dump(mode="json"),
        "payment": result.payment.model_dump(mode="json") if result.payment else None,
        "rematched_payment_ids": result.rematched_payment_ids,
    }


# ============================================
# Pending Aliases
# ============================================

@router.get("/pending-aliases")
def list_pending_aliases(
    school_id: str = Depends(require_school_member),
    review: ReviewWorkflow = Depends(get_review),
):
    pending = review.list_pending_aliases(school_id)
    return {
        "success": True,
        "pending_aliases": [p.model_dump(mode="json") for p in pending],
    }


@router.post("/pending-aliases/{pending_id}/confirm")
def confirm_pending_alias(
    pending_id: str,
    request: ConfirmRequest,
    school_id: str = Depends(require_school_member),
    user_id: str = Depends(get_current_user),
    review: ReviewWorkflow = Depends(get_review),
):
    """
    Bind a pending alias to an account.

    Other payments of the same payer are re-matched only with `rematch=true`.
    """
    result = review.confirm_pending_alias(school_id, pending_id, request.target_id, user_id, rematch=request.rematch)
    return _confirm_response(result)


# ============================================
# Review Queue
# ============================================

@router.get("/review")
def list_review_queue(
    school_id: str = Depends(require_school_member),
    match_status: Optional[list[str]] = Query(None, description="review, conflict, nomatch"),
    review: ReviewWorkflow = Depends(get_review),
):
    """Payments waiting for a human decision."""
    if match_status:
        payments = review.list_review_queue(school_id, match_status)
    else:
        payments = review.list_review_queue(school_id)
    return {
        "success": True,
        "payments": [p.model_dump(mode="json") for p in payments],
        "total": len(payments),
    }


@router.post("/payments/{payment_id}/confirm")
def confirm_payment(
    payment_id: str,
    request: ConfirmRequest,
    school_id: str = Depends(require_school_member),
    user_id: str = Depends(get_current_user),
    review: ReviewWorkflow = Depends(get_review),
):
    result = review.confirm_payment(school_id, payment_id, request.target_id, user_id, rematch=request.rematch)
    return _confirm_response(result)


# ============================================
# Alias Rules
# ============================================

@router.get("/aliases")
def list_aliases(
    school_id: str = Depends(require_school_member),
    target_type: Optional[TargetType] = Query(None),
    review: ReviewWorkflow = Depends(get_review),
):
    aliases = review.alias_store.list_aliases(school_id, target_type)
    return {
        "success": True,
        "aliases": [a.model_dump(mode="json") for a in aliases],
    }


@router.post("/aliases")
def add_alias_rule(
    request: AliasRuleRequest,
    school_id: str = Depends(require_school_member),
    user_id: str = Depends(get_current_user),
    review: ReviewWorkflow = Depends(get_review),
):
    """Register a manual alias for future imports."""
    mapping = review.add_manual_rule(
        school_id,
        request.payer,
        request.target_id,
        user_id,
        target_type=request.target_type,
        override=request.override,
    )
    return {
        "success": True,
        "alias": mapping.model_dump(mode="json"),
    }


@router.delete("/aliases")
def remove_alias_rule(
    payer: str = Query(..., min_length=1),
    target_type: TargetType = Query("account"),
    school_id: str = Depends(require_school_member),
    user_id: str = Depends(get_current_user),
    review: ReviewWorkflow = Depends(get_review),
):
    removed = review.remove_rule(school_id, payer, user_id, target_type=target_type)
    return {
        "success": True,
        "removed": removed.model_dump(mode="json"),
    }


@router.post("/aliases/rematch")
def rematch_outstanding(
    request: RematchRequest,
    school_id: str = Depends(require_school_member),
    user_id: str = Depends(get_current_user),
    review: ReviewWorkflow = Depends(get_review),
):
    """Apply an existing alias to every unresolved payment of its payer."""
    updated = review.rematch_outstanding(school_id, request.payer, user_id, target_type=request.target_type)
    return {
        "success": True,
        "payment_ids": [p.id for p in updated],
    }


# ============================================
# Audit
# ============================================

@router.get("/audit/{resource_id}")
def list_audit_entries(
    resource_id: str,
    school_id: str = Depends(require_school_member),
    store: Store = Depends(get_store),
):
    entries = store.audit.list_entries(school_id, resource_id)
    return {
        "success": True,
        "entries": [e.model_dump(mode="json") for e in entries],
    }
