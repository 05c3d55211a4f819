# payrec/routers/duplicate_cases.py

"""
Duplicate case routes: detection, listing and resolution.
"""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query

from payrec.core import DuplicateCaseDetector, DuplicateResolutionEngine, NotFoundError
from payrec.dependencies import (
    Store,
    get_current_user,
    get_detector,
    get_resolution_engine,
    get_store,
    require_school_member,
)
from payrec.models import ResolutionRequest

router = APIRouter()


@router.post("/detect")
def detect_duplicates(
    school_id: str = Depends(require_school_member),
    detector: DuplicateCaseDetector = Depends(get_detector),
):
    """Open or refresh duplicate cases. Safe to run repeatedly."""
    cases = detector.detect(school_id)
    return {
        "success": True,
        "cases": [c.model_dump(mode="json") for c in cases],
    }


@router.get("")
def list_cases(
    school_id: str = Depends(require_school_member),
    status: Optional[Literal["open", "resolved"]] = Query("open"),
    store: Store = Depends(get_store),
):
    cases = store.cases.list_cases(school_id, status=status)
    return {
        "success": True,
        "cases": [c.model_dump(mode="json") for c in cases],
    }


@router.get("/{case_id}")
def get_case(
    case_id: str,
    school_id: str = Depends(require_school_member),
    store: Store = Depends(get_store),
):
    """A case with its payments."""
    case = store.cases.get(case_id)
    if case is None or case.school_id != school_id:
        raise NotFoundError(f"duplicate case {case_id} not found")

    payments = store.payments.get_many(school_id, case.payment_ids)
    return {
        "success": True,
        "case": case.model_dump(mode="json"),
        "payments": [p.model_dump(mode="json") for p in payments],
    }


@router.post("/{case_id}/resolve")
def resolve_case(
    case_id: str,
    request: ResolutionRequest,
    school_id: str = Depends(require_school_member),
    user_id: str = Depends(get_current_user),
    engine: DuplicateResolutionEngine = Depends(get_resolution_engine),
):
    """
    Resolve an open case.

    Returns 409 if the case was already resolved; nothing new is created then.
    """
    result = engine.resolve(school_id, case_id, request, user_id)
    return {
        "success": True,
        "result": result.model_dump(mode="json"),
        "credit_id": result.credit_id,
    }
