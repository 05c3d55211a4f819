# payrec/integrations/excel.py

"""
Excel (.xlsx) payment exports.

Reads the first (or named) sheet with openpyxl, maps header names to row
fields and produces import rows. Rows whose "applied" column is not truthy
are reported as skipped instead of imported.
"""

from io import BytesIO
from typing import Any, Optional
import logging
import zipfile

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException
from pydantic import BaseModel, Field

from payrec.core.errors import ValidationError
from payrec.core.normalizers import build_payer_raw, normalize_payer
from payrec.models import RawPaymentRow, SkippedRow, TargetType

logger = logging.getLogger(__name__)

APPLIED_VALUES = {"sí", "si", "yes", "true", "1", "s", "x", "y"}


class ColumnMapping(BaseModel):
    """Header names of the columns to read. Header matching ignores case and accents."""

    payer: list[str] = Field(min_length=1, description="Joined with a space, e.g. ['Apellido', 'Nombre']")
    amount: str
    currency: Optional[str] = None
    period: Optional[str] = None
    provider_payment_id: Optional[str] = None
    reference: Optional[str] = None
    paid_at: Optional[str] = None
    applied: Optional[str] = None
    account: Optional[str] = None


def is_applied(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in APPLIED_VALUES


def _cell(row: tuple, index: Optional[int]) -> Any:
    if index is None or index >= len(row):
        return None
    return row[index]


def read_payment_rows(
    content: bytes,
    mapping: ColumnMapping,
    period: Optional[str] = None,
    currency: Optional[str] = None,
    provider: str = "excel",
    target_type: TargetType = "account",
    sheet: Optional[str] = None,
) -> tuple[list[RawPaymentRow], list[SkippedRow]]:
    """
    Parse an .xlsx export.

    Args:
        content: Workbook bytes
        mapping: Which header holds which field
        period: Period for every row, when the sheet has no period column
        currency: Currency for every row, when the sheet has no currency column
        provider: Provider label stored on the payments
        target_type: What the payer column identifies
        sheet: Sheet name; defaults to the active sheet

    Returns:
        (rows to import, rows skipped as not applied). Row indexes are
        1-based sheet row numbers.

    Raises:
        ValidationError: unreadable workbook, unknown sheet or missing headers
    """
    try:
        wb = openpyxl.load_workbook(BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as e:
        raise ValidationError(f"unreadable Excel file: {e}")

    try:
        if sheet is not None and sheet not in wb.sheetnames:
            raise ValidationError(f"sheet '{sheet}' not found", details={"sheets": wb.sheetnames})
        ws = wb[sheet] if sheet is not None else wb.active

        rows_iter = ws.iter_rows(values_only=True)
        header = next(rows_iter, None)
        if not header:
            raise ValidationError("the sheet is empty")

        columns = {normalize_payer(h): i for i, h in enumerate(header) if h is not None}

        def index_of(name: Optional[str]) -> Optional[int]:
            if name is None:
                return None
            key = normalize_payer(name)
            if key not in columns:
                raise ValidationError(f"column '{name}' not found", details={"headers": [h for h in header if h]})
            return columns[key]

        payer_cols = [index_of(name) for name in mapping.payer]
        amount_col = index_of(mapping.amount)
        currency_col = index_of(mapping.currency)
        period_col = index_of(mapping.period)
        id_col = index_of(mapping.provider_payment_id)
        reference_col = index_of(mapping.reference)
        paid_at_col = index_of(mapping.paid_at)
        applied_col = index_of(mapping.applied)
        account_col = index_of(mapping.account)

        if period_col is None and not period:
            raise ValidationError("a period column or a period for the whole file is required")

        rows: list[RawPaymentRow] = []
        skipped: list[SkippedRow] = []

        for number, values in enumerate(rows_iter, start=2):
            if not values or all(v is None or str(v).strip() == "" for v in values):
                continue

            row = RawPaymentRow(
                payer_raw=build_payer_raw(*(_cell(values, c) for c in payer_cols)),
                amount=_cell(values, amount_col),
                currency=_cell(values, currency_col) or currency,
                period=_cell(values, period_col) or period,
                provider=provider,
                provider_payment_id=_cell(values, id_col),
                reference=_cell(values, reference_col),
                paid_at=_cell(values, paid_at_col),
                target_type=target_type,
                account_raw=_cell(values, account_col),
                row_index=number,
            )

            if applied_col is not None and not is_applied(_cell(values, applied_col)):
                skipped.append(SkippedRow(
                    row_index=number,
                    reason="not applied",
                    kind="not_applied",
                    raw=row.model_dump(mode="json", exclude_none=True),
                ))
                continue

            rows.append(row)
    finally:
        wb.close()

    logger.info(f"Excel export read: {len(rows)} rows, {len(skipped)} not applied")
    return rows, skipped
