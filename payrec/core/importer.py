# payrec/core/importer.py

"""
Batch payment importer.

Validates raw rows, skips rows already recorded (by idempotency key), matches
each new payer against the roster and commits payments, pending aliases and
batch counters as one unit. A bad row never aborts the batch: it is returned
as a SkippedRow with the reason.
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Union
import hashlib
import logging
import uuid

import pydantic

from payrec.config import get_settings
from payrec.core.aliases import AliasStore, pending_alias_id
from payrec.core.errors import ValidationError
from payrec.core.matching import MatchPolicy, RosterIndex, match_payer
from payrec.core.normalizers import (
    normalize_amount,
    normalize_date,
    normalize_payer,
    normalize_period,
    normalize_reference,
)
from payrec.models import (
    AuditEntry,
    ImportResult,
    ImportBatch,
    MatchResult,
    ParsedPaymentRow,
    Payment,
    PendingAlias,
    RawPaymentRow,
    SkippedRow,
    TargetType,
)
from payrec.repositories.base import AliasRepository, PaymentRepository, RosterRepository

logger = logging.getLogger(__name__)

STATUS_MAP = {
    "approved": "approved",
    "accredited": "approved",
    "acreditado": "approved",
    "aprobado": "approved",
    "succeeded": "approved",
    "paid": "approved",
    "pending": "pending",
    "pendiente": "pending",
    "rejected": "rejected",
    "rechazado": "rejected",
    "cancelled": "rejected",
    "failed": "rejected",
    "refunded": "refunded",
    "devuelto": "refunded",
}


# ============================================
# Row Parsing
# ============================================

def parse_row(row_index: int, row: Union[RawPaymentRow, dict], default_currency: Optional[str] = None) -> ParsedPaymentRow:
    """
    Validate one raw row.

    Raises:
        ValidationError: missing payer, malformed amount/period/date, unknown status
    """
    if not isinstance(row, RawPaymentRow):
        try:
            row = RawPaymentRow.model_validate(row)
        except pydantic.ValidationError as e:
            raise ValidationError(f"invalid row: {e.errors()[0]['msg']}", details={"row_index": row_index})

    payer_raw = str(row.payer_raw).strip() if row.payer_raw is not None else ""
    payer_key = normalize_payer(payer_raw)
    if not payer_key:
        raise ValidationError("payer is required")

    currency = str(row.currency or default_currency or get_settings().default_currency).strip().upper()
    if len(currency) != 3 or not currency.isalpha():
        raise ValidationError(f"malformed currency: {row.currency!r}")

    status = "approved"
    if row.status is not None and str(row.status).strip():
        status = STATUS_MAP.get(str(row.status).strip().lower())
        if status is None:
            raise ValidationError(f"unknown payment status: {row.status!r}")

    provider_payment_id = str(row.provider_payment_id).strip() if row.provider_payment_id is not None else ""
    reference = normalize_reference(row.reference)

    return ParsedPaymentRow(
        row_index=row_index,
        payer_raw=payer_raw,
        payer_key=payer_key,
        amount=normalize_amount(row.amount),
        currency=currency,
        period=normalize_period(row.period),
        provider=(row.provider or "import").strip().lower(),
        provider_payment_id=provider_payment_id or None,
        reference=reference or None,
        paid_at=normalize_date(row.paid_at),
        status=status,
        target_type=row.target_type,
        account_raw=str(row.account_raw).strip() if row.account_raw else None,
    )


def compute_idempotency_key(school_id: str, row: ParsedPaymentRow) -> str:
    """
    Stable key of a payment.

    Provider rows use `{provider}_{provider_payment_id}`; other rows hash the
    immutable fields (payer, amount, currency, period, reference, paid-at).
    """
    if row.provider_payment_id:
        return f"{row.provider}_{row.provider_payment_id}"

    fields = [
        school_id,
        row.provider,
        row.payer_key,
        str(row.amount),
        row.currency,
        row.period,
        row.reference or "",
        row.paid_at.isoformat() if row.paid_at else "",
        row.target_type,
    ]
    digest = hashlib.sha256("|".join(fields).encode("utf-8")).hexdigest()
    return f"row_{digest[:32]}"


def compute_batch_id(school_id: str, keys: Iterable[str]) -> str:
    """Batch id derived from its payment keys, so replaying a batch finds it again."""
    digest = hashlib.sha256("|".join([school_id, *sorted(set(keys))]).encode("utf-8")).hexdigest()
    return f"batch_{digest[:24]}"


def payment_id_for(school_id: str, idempotency_key: str) -> str:
    digest = hashlib.sha256(f"{school_id}|{idempotency_key}".encode("utf-8")).hexdigest()
    return f"pay_{digest[:24]}"


# ============================================
# Importer
# ============================================

class BatchImporter:
    """Imports payment rows for one school at a time."""

    def __init__(
        self,
        roster: RosterRepository,
        aliases: AliasRepository,
        payments: PaymentRepository,
        policy: Optional[MatchPolicy] = None,
        default_currency: Optional[str] = None,
    ):
        self.roster = roster
        self.aliases = AliasStore(aliases)
        self.payments = payments
        self.policy = policy or MatchPolicy.from_settings()
        self.default_currency = default_currency or get_settings().default_currency

    def import_batch(
        self,
        school_id: str,
        rows: Iterable[Union[RawPaymentRow, dict]],
        actor_id: Optional[str] = None,
        source: str = "import",
        skipped: Optional[list[SkippedRow]] = None,
    ) -> ImportResult:
        """
        Import a batch of rows.

        Args:
            school_id: Tenant scope
            rows: Raw rows from a spreadsheet, API call or webhook
            actor_id: User running the import (None for webhooks)
            source: Label stored on the batch ("import", "excel", "stripe")
            skipped: Rows the caller already rejected (e.g. not applied), reported as-is

        Returns:
            ImportResult with the committed batch, new payments and skipped rows
        """
        now = datetime.now(timezone.utc)
        skipped = list(skipped or [])
        parsed: list[ParsedPaymentRow] = []

        for position, row in enumerate(rows):
            index = _source_index(row, position)
            try:
                parsed.append(parse_row(index, row, self.default_currency))
            except ValidationError as e:
                logger.warning(f"Import row {index} skipped in school {school_id}: {e.message}")
                skipped.append(SkippedRow(row_index=index, reason=e.message, kind="invalid", raw=_raw_dict(row)))

        keys = [compute_idempotency_key(school_id, p) for p in parsed]
        invalid_count = sum(1 for s in skipped if s.kind == "invalid")
        total_rows = len(parsed) + len(skipped)

        if keys:
            batch_id = compute_batch_id(school_id, keys)
            existing_batch = self.payments.get_batch(school_id, batch_id)
            if existing_batch is not None:
                logger.info(f"Import batch {batch_id} replayed in school {school_id}")
                return ImportResult(batch=existing_batch, skipped=_sorted(skipped), replayed=True)
        else:
            batch_id = f"batch_{uuid.uuid4().hex[:24]}"

        already = self.payments.existing_keys(school_id, keys)
        rosters: dict[TargetType, RosterIndex] = {}
        snapshots: dict[TargetType, dict] = {}

        new_payments: list[Payment] = []
        pending: dict[str, PendingAlias] = {}
        seen: set[str] = set()

        for row, key in zip(parsed, keys):
            if key in already or key in seen:
                skipped.append(SkippedRow(
                    row_index=row.row_index,
                    reason="payment already imported",
                    kind="duplicate",
                    idempotency_key=key,
                ))
                continue
            seen.add(key)

            target_type = row.target_type
            if target_type not in rosters:
                rosters[target_type] = RosterIndex.build(
                    self.roster.list_accounts(school_id, target_type),
                    self.policy,
                    school_id=school_id,
                    target_type=target_type,
                )
                snapshots[target_type] = self.aliases.snapshot(school_id, target_type)

            result = match_payer(
                school_id,
                row.payer_raw,
                target_type,
                rosters[target_type],
                snapshots[target_type],
                self.policy,
            )
            new_payments.append(self._build_payment(school_id, row, key, result, batch_id, now))

            if result.status == "nomatch":
                pid = pending_alias_id(school_id, result.payer_key, target_type)
                pending.setdefault(pid, PendingAlias(
                    id=pid,
                    school_id=school_id,
                    payer_raw=row.payer_raw,
                    payer_key=result.payer_key,
                    target_type=target_type,
                    account_raw=row.account_raw,
                    created_at=now,
                ))

        batch = ImportBatch(
            id=batch_id,
            school_id=school_id,
            created_at=now,
            created_by=actor_id,
            source=source,
            duplicate_count=len(parsed) - len(new_payments),
            invalid_count=invalid_count,
        )
        audit = AuditEntry.new(
            "import_committed",
            resource_id=batch_id,
            school_id=school_id,
            actor_id=actor_id,
            details={"source": source, "rows": total_rows},
            timestamp=now,
        )

        final, inserted = self.payments.commit_import(batch, new_payments, list(pending.values()), audit)

        # Lost a race on the unique key: the other writer's payment stands
        inserted_ids = {p.id for p in inserted}
        for payment in new_payments:
            if payment.id not in inserted_ids:
                skipped.append(SkippedRow(
                    row_index=_row_index_of(parsed, keys, payment.idempotency_key),
                    reason="payment already imported",
                    kind="duplicate",
                    idempotency_key=payment.idempotency_key,
                ))

        logger.info(
            f"Import batch {final.id} committed in school {school_id}: "
            f"{final.payments_count} payments ({final.auto_count} auto, {final.review_count} review, "
            f"{final.conflict_count} conflict, {final.nomatch_count} nomatch), {len(skipped)} skipped"
        )

        return ImportResult(
            batch=final,
            payments=inserted,
            skipped=_sorted(skipped),
            pending_alias_ids=sorted(pending),
        )

    def _build_payment(
        self,
        school_id: str,
        row: ParsedPaymentRow,
        key: str,
        result: MatchResult,
        batch_id: str,
        now: datetime,
    ) -> Payment:
        auto = result.status == "auto"
        return Payment(
            id=payment_id_for(school_id, key),
            school_id=school_id,
            account_id=result.target_id if auto else None,
            target_type=row.target_type,
            amount=row.amount,
            currency=row.currency,
            period=row.period,
            provider=row.provider,
            provider_payment_id=row.provider_payment_id,
            idempotency_key=key,
            reference=row.reference,
            paid_at=row.paid_at,
            payer_raw=row.payer_raw,
            payer_key=result.payer_key,
            status=row.status,
            match_status=result.status,
            match_confidence=result.confidence,
            match_candidates=result.candidates,
            suggested_account_id=None if auto else result.target_id,
            import_batch_id=batch_id,
            created_at=now,
        )


def _source_index(row: Any, position: int) -> int:
    if isinstance(row, RawPaymentRow):
        value = row.row_index
    elif isinstance(row, dict):
        value = row.get("row_index")
    else:
        value = None
    return value if isinstance(value, int) else position


def _raw_dict(row: Any) -> Optional[dict]:
    if isinstance(row, RawPaymentRow):
        return row.model_dump(mode="json")
    if isinstance(row, dict):
        return {str(k): (v if isinstance(v, (str, int, float, bool)) or v is None else str(v)) for k, v in row.items()}
    return None


def _row_index_of(parsed: list[ParsedPaymentRow], keys: list[str], key: str) -> int:
    for row, k in zip(parsed, keys):
        if k == key:
            return row.row_index
    return -1


def _sorted(skipped: list[SkippedRow]) -> list[SkippedRow]:
    return sorted(skipped, key=lambda s: s.row_index)
