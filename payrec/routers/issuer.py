# payrec/routers/issuer.py

from typing import Optional

from fastapi import APIRouter, Depends, Query

from payrec.core import IssuerWorker
from payrec.dependencies import get_issuer_worker, require_worker_secret

router = APIRouter()


@router.post("/process", dependencies=[Depends(require_worker_secret)])
def process_pending_orders(
    school_id: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=500),
    worker: IssuerWorker = Depends(get_issuer_worker),
):
    """Issue pending invoice orders. Called by a scheduler with X-Worker-Secret."""
    summary = worker.process_pending(school_id, limit)
    return {
        "success": True,
        **summary.to_dict(),
    }
