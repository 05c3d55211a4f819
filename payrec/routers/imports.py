# payrec/routers/imports.py

"""
Payment import routes.

JSON rows and Excel exports both go through the BatchImporter; the response
is always the batch summary, including skipped rows and their reasons.
"""

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from payrec.core import BatchImporter, NotFoundError
from payrec.dependencies import Store, get_current_user, get_importer, get_store, require_school_member
from payrec.integrations.excel import ColumnMapping, read_payment_rows
from payrec.models import ImportResult, TargetType

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


# ============================================
# Request Models
# ============================================

class ImportRequest(BaseModel):
    rows: list[dict[str, Any]] = Field(min_length=1, description="Validated per row; bad rows are skipped")
    source: str = "import"


def _summary(result: ImportResult) -> dict:
    return {
        "success": True,
        "replayed": result.replayed,
        "batch": result.batch.model_dump(mode="json"),
        "payments": [p.model_dump(mode="json") for p in result.payments],
        "skipped": [s.model_dump(mode="json") for s in result.skipped],
        "pending_alias_ids": result.pending_alias_ids,
    }


# ============================================
# Imports
# ============================================

@router.post("")
def import_rows(
    request: ImportRequest,
    school_id: str = Depends(require_school_member),
    user_id: str = Depends(get_current_user),
    importer: BatchImporter = Depends(get_importer),
):
    """Import payment rows sent as JSON."""
    result = importer.import_batch(school_id, request.rows, actor_id=user_id, source=request.source)
    return _summary(result)


@router.post("/excel")
def import_excel(
    file: UploadFile = File(...),
    mapping: str = Form(..., description="JSON column mapping"),
    period: Optional[str] = Form(None),
    currency: Optional[str] = Form(None),
    target_type: TargetType = Form("account"),
    sheet: Optional[str] = Form(None),
    school_id: str = Depends(require_school_member),
    user_id: str = Depends(get_current_user),
    importer: BatchImporter = Depends(get_importer),
):
    """
    Import an .xlsx payments export.

    Rows whose "applied" column is not truthy are reported as skipped.
    """
    if file.filename and not file.filename.lower().endswith(".xlsx"):
        raise HTTPException(status_code=400, detail="Only .xlsx files are supported")

    try:
        columns = ColumnMapping.model_validate(json.loads(mapping))
    except (json.JSONDecodeError, PydanticValidationError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid column mapping: {e}")

    content = file.file.read(MAX_UPLOAD_BYTES + 1)
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")

    rows, not_applied = read_payment_rows(
        content,
        columns,
        period=period,
        currency=currency,
        target_type=target_type,
        sheet=sheet,
    )
    result = importer.import_batch(school_id, rows, actor_id=user_id, source="excel", skipped=not_applied)
    return _summary(result)


@router.get("")
def list_batches(
    school_id: str = Depends(require_school_member),
    store: Store = Depends(get_store),
):
    """Import batches of a school, newest first."""
    batches = store.payments.list_batches(school_id)
    return {
        "success": True,
        "batches": [b.model_dump(mode="json") for b in batches],
    }


@router.get("/{batch_id}")
def get_batch(
    batch_id: str,
    school_id: str = Depends(require_school_member),
    store: Store = Depends(get_store),
):
    batch = store.payments.get_batch(school_id, batch_id)
    if batch is None:
        raise NotFoundError(f"import batch {batch_id} not found")
    return {
        "success": True,
        "batch": batch.model_dump(mode="json"),
    }
