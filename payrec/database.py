# payrec/database.py

"""
Supabase-backed implementation of the storage ports.

Single-table reads and writes go through the PostgREST query builder; the
multi-record units (import commit, alias binding, case save, case
resolution) are Postgres functions called with `rpc` so they commit or roll
back as one transaction. See supabase/migrations/0001_reconciliation.sql.
"""

from functools import lru_cache
from typing import Any, Iterable, Optional
import logging

from postgrest.exceptions import APIError
from supabase import create_client, Client

from payrec.config import get_settings
from payrec.core.errors import ConflictError
from payrec.models import (
    Account,
    AliasMapping,
    AuditEntry,
    Credit,
    DuplicateCase,
    ImportBatch,
    InvoiceOrder,
    Payment,
    PendingAlias,
    Refund,
    Resolution,
    TargetType,
)

logger = logging.getLogger(__name__)


@lru_cache()
def get_supabase_admin() -> Client:
    """Admin client (bypasses RLS - use carefully)."""
    settings = get_settings()
    return create_client(settings.supabase_url, settings.supabase_service_role_key)


def _dump(model: Any) -> dict:
    return model.model_dump(mode="json")


def _dump_all(models: Iterable[Any]) -> list[dict]:
    return [_dump(m) for m in models]


def _rpc(client: Client, fn: str, params: dict) -> Any:
    """Call a database function, turning its guard violations into ConflictError."""
    try:
        return client.rpc(fn, params).execute().data
    except APIError as e:
        # Guards raise with SQLSTATE P0001 (raise exception) or 23505 (unique violation)
        if e.code in ("P0001", "23505"):
            raise ConflictError(e.message or "conflicting write", details={"function": fn})
        logger.error(f"Database function {fn} failed: {e.message}")
        raise


class SupabaseStore:
    """Exposes one repository per port, all sharing one Supabase client."""

    def __init__(self, client: Optional[Client] = None):
        self.client = client or get_supabase_admin()

        self.roster = SupabaseRoster(self.client)
        self.aliases = SupabaseAliases(self.client)
        self.pending_aliases = SupabasePendingAliases(self.client)
        self.payments = SupabasePayments(self.client)
        self.cases = SupabaseCases(self.client)
        self.invoices = SupabaseInvoices(self.client)
        self.audit = SupabaseAudit(self.client)


# ============================================
# Roster
# ============================================

class SupabaseRoster:
    def __init__(self, client: Client):
        self.client = client

    def list_accounts(self, school_id: str, target_type: TargetType = "account") -> list[Account]:
        response = (
            self.client.table("accounts")
            .select("*")
            .eq("school_id", school_id)
            .eq("target_type", target_type)
            .order("id")
            .execute()
        )
        return [Account.model_validate(row) for row in response.data]

    def get_account(self, account_id: str, target_type: TargetType = "account") -> Optional[Account]:
        response = (
            self.client.table("accounts")
            .select("*")
            .eq("id", account_id)
            .eq("target_type", target_type)
            .execute()
        )
        return Account.model_validate(response.data[0]) if response.data else None

    def is_member(self, school_id: str, user_id: str) -> bool:
        response = (
            self.client.table("school_members")
            .select("user_id")
            .eq("school_id", school_id)
            .eq("user_id", user_id)
            .execute()
        )
        return bool(response.data)


# ============================================
# Aliases
# ============================================

class SupabaseAliases:
    def __init__(self, client: Client):
        self.client = client

    def get(self, school_id: str, payer_key: str, target_type: TargetType) -> Optional[AliasMapping]:
        response = (
            self.client.table("payer_aliases")
            .select("*")
            .eq("school_id", school_id)
            .eq("payer_key", payer_key)
            .eq("target_type", target_type)
            .execute()
        )
        return AliasMapping.model_validate(response.data[0]) if response.data else None

    def list_aliases(self, school_id: str, target_type: Optional[TargetType] = None) -> list[AliasMapping]:
        query = self.client.table("payer_aliases").select("*").eq("school_id", school_id)
        if target_type:
            query = query.eq("target_type", target_type)
        response = query.order("payer_key").execute()
        return [AliasMapping.model_validate(row) for row in response.data]

    def put(self, mapping: AliasMapping, override: bool = False) -> AliasMapping:
        _rpc(self.client, "bind_payer_alias", {
            "p_alias": _dump(mapping),
            "p_pending_id": None,
            "p_payments": [],
            "p_audit": None,
            "p_override": override,
        })
        return mapping

    def delete(self, school_id: str, payer_key: str, target_type: TargetType) -> bool:
        response = (
            self.client.table("payer_aliases")
            .delete()
            .eq("school_id", school_id)
            .eq("payer_key", payer_key)
            .eq("target_type", target_type)
            .execute()
        )
        return bool(response.data)

    def find_by_pending_id(self, school_id: str, pending_id: str) -> Optional[AliasMapping]:
        response = (
            self.client.table("payer_aliases")
            .select("*")
            .eq("school_id", school_id)
            .eq("pending_id", pending_id)
            .limit(1)
            .execute()
        )
        return AliasMapping.model_validate(response.data[0]) if response.data else None

    def bind(
        self,
        mapping: AliasMapping,
        pending_id: Optional[str],
        payment_updates: list[Payment],
        audit: AuditEntry,
        override: bool = False,
    ) -> AliasMapping:
        _rpc(self.client, "bind_payer_alias", {
            "p_alias": _dump(mapping),
            "p_pending_id": pending_id,
            "p_payments": _dump_all(payment_updates),
            "p_audit": _dump(audit),
            "p_override": override,
        })
        return mapping


class SupabasePendingAliases:
    def __init__(self, client: Client):
        self.client = client

    def get(self, school_id: str, pending_id: str) -> Optional[PendingAlias]:
        response = (
            self.client.table("pending_payer_aliases")
            .select("*")
            .eq("school_id", school_id)
            .eq("id", pending_id)
            .execute()
        )
        return PendingAlias.model_validate(response.data[0]) if response.data else None

    def list_pending(self, school_id: str) -> list[PendingAlias]:
        response = (
            self.client.table("pending_payer_aliases")
            .select("*")
            .eq("school_id", school_id)
            .order("created_at")
            .execute()
        )
        return [PendingAlias.model_validate(row) for row in response.data]

    def delete(self, school_id: str, pending_id: str) -> bool:
        response = (
            self.client.table("pending_payer_aliases")
            .delete()
            .eq("school_id", school_id)
            .eq("id", pending_id)
            .execute()
        )
        return bool(response.data)


# ============================================
# Payments
# ============================================

class SupabasePayments:
    def __init__(self, client: Client):
        self.client = client

    def get(self, school_id: str, payment_id: str) -> Optional[Payment]:
        response = (
            self.client.table("payments")
            .select("*")
            .eq("school_id", school_id)
            .eq("id", payment_id)
            .execute()
        )
        return Payment.model_validate(response.data[0]) if response.data else None

    def get_many(self, school_id: str, payment_ids: Iterable[str]) -> list[Payment]:
        ids = list(payment_ids)
        if not ids:
            return []
        response = (
            self.client.table("payments")
            .select("*")
            .eq("school_id", school_id)
            .in_("id", ids)
            .execute()
        )
        by_id = {row["id"]: Payment.model_validate(row) for row in response.data}
        return [by_id[i] for i in ids if i in by_id]

    def list_payments(
        self,
        school_id: str,
        *,
        status: Optional[str] = None,
        match_statuses: Optional[Iterable[str]] = None,
        payer_key: Optional[str] = None,
    ) -> list[Payment]:
        query = self.client.table("payments").select("*").eq("school_id", school_id)

        if status:
            query = query.eq("status", status)
        if match_statuses is not None:
            query = query.in_("match_status", list(match_statuses))
        if payer_key is not None:
            query = query.eq("payer_key", payer_key)

        response = query.order("created_at").order("id").execute()
        return [Payment.model_validate(row) for row in response.data]

    def existing_keys(self, school_id: str, keys: Iterable[str]) -> set[str]:
        keys = list(set(keys))
        found: set[str] = set()
        # Keep the IN list within URL limits
        for start in range(0, len(keys), 200):
            chunk = keys[start:start + 200]
            response = (
                self.client.table("payments")
                .select("idempotency_key")
                .eq("school_id", school_id)
                .in_("idempotency_key", chunk)
                .execute()
            )
            found.update(row["idempotency_key"] for row in response.data)
        return found

    def get_batch(self, school_id: str, batch_id: str) -> Optional[ImportBatch]:
        response = (
            self.client.table("import_batches")
            .select("*")
            .eq("school_id", school_id)
            .eq("id", batch_id)
            .execute()
        )
        return ImportBatch.model_validate(response.data[0]) if response.data else None

    def list_batches(self, school_id: str) -> list[ImportBatch]:
        response = (
            self.client.table("import_batches")
            .select("*")
            .eq("school_id", school_id)
            .order("created_at", desc=True)
            .execute()
        )
        return [ImportBatch.model_validate(row) for row in response.data]

    def commit_import(
        self,
        batch: ImportBatch,
        payments: list[Payment],
        pending_aliases: list[PendingAlias],
        audit: AuditEntry,
    ) -> tuple[ImportBatch, list[Payment]]:
        data = _rpc(self.client, "commit_import_batch", {
            "p_batch": _dump(batch),
            "p_payments": _dump_all(payments),
            "p_pending": _dump_all(pending_aliases),
            "p_audit": _dump(audit),
        })
        inserted_ids = set(data.get("inserted_ids") or [])
        return (
            ImportBatch.model_validate(data["batch"]),
            [p for p in payments if p.id in inserted_ids],
        )

    def update_payments(self, payments: list[Payment], audit: Optional[AuditEntry] = None) -> None:
        _rpc(self.client, "update_payments", {
            "p_payments": _dump_all(payments),
            "p_audit": _dump(audit) if audit is not None else None,
        })


# ============================================
# Duplicate Cases
# ============================================

class SupabaseCases:
    def __init__(self, client: Client):
        self.client = client

    def get(self, case_id: str) -> Optional[DuplicateCase]:
        response = self.client.table("duplicate_cases").select("*").eq("id", case_id).execute()
        return DuplicateCase.model_validate(response.data[0]) if response.data else None

    def list_cases(self, school_id: str, status: Optional[str] = None) -> list[DuplicateCase]:
        query = self.client.table("duplicate_cases").select("*").eq("school_id", school_id)
        if status:
            query = query.eq("status", status)
        response = query.order("created_at").order("id").execute()
        return [DuplicateCase.model_validate(row) for row in response.data]

    def find_open(self, school_id: str, account_id: str, period: str) -> Optional[DuplicateCase]:
        response = (
            self.client.table("duplicate_cases")
            .select("*")
            .eq("school_id", school_id)
            .eq("account_id", account_id)
            .eq("period", period)
            .eq("status", "open")
            .execute()
        )
        return DuplicateCase.model_validate(response.data[0]) if response.data else None

    def save_case(self, case: DuplicateCase, payment_updates: list[Payment]) -> DuplicateCase:
        _rpc(self.client, "save_duplicate_case", {
            "p_case": _dump(case),
            "p_payments": _dump_all(payment_updates),
        })
        return case

    def apply_resolution(
        self,
        case_id: str,
        resolution: Resolution,
        invoice_orders: list[InvoiceOrder],
        credits: list[Credit],
        refunds: list[Refund],
        payment_updates: list[Payment],
        audit: AuditEntry,
    ) -> DuplicateCase:
        data = _rpc(self.client, "apply_duplicate_resolution", {
            "p_case_id": case_id,
            "p_resolution": _dump(resolution),
            "p_orders": _dump_all(invoice_orders),
            "p_credits": _dump_all(credits),
            "p_refunds": _dump_all(refunds),
            "p_payments": _dump_all(payment_updates),
            "p_audit": _dump(audit),
        })
        return DuplicateCase.model_validate(data)


# ============================================
# Invoice Orders, Credits, Refunds
# ============================================

class SupabaseInvoices:
    def __init__(self, client: Client):
        self.client = client

    def get(self, order_id: str) -> Optional[InvoiceOrder]:
        response = self.client.table("invoice_orders").select("*").eq("id", order_id).execute()
        return InvoiceOrder.model_validate(response.data[0]) if response.data else None

    def list_orders(self, school_id: str, status: Optional[str] = None) -> list[InvoiceOrder]:
        query = self.client.table("invoice_orders").select("*").eq("school_id", school_id)
        if status:
            query = query.eq("status", status)
        response = query.order("created_at").execute()
        return [InvoiceOrder.model_validate(row) for row in response.data]

    def list_pending(self, school_id: Optional[str] = None, limit: int = 50) -> list[InvoiceOrder]:
        query = self.client.table("invoice_orders").select("*").eq("status", "pending")
        if school_id:
            query = query.eq("school_id", school_id)
        response = query.order("created_at").order("id").limit(limit).execute()
        return [InvoiceOrder.model_validate(row) for row in response.data]

    def update_order(self, order: InvoiceOrder) -> InvoiceOrder:
        self.client.table("invoice_orders").update(_dump(order)).eq("id", order.id).execute()
        return order

    def list_credits(self, school_id: str, account_id: Optional[str] = None) -> list[Credit]:
        query = self.client.table("customer_credits").select("*").eq("school_id", school_id)
        if account_id:
            query = query.eq("account_id", account_id)
        response = query.order("created_at").execute()
        return [Credit.model_validate(row) for row in response.data]

    def list_refunds(self, school_id: str, account_id: Optional[str] = None) -> list[Refund]:
        query = self.client.table("refunds").select("*").eq("school_id", school_id)
        if account_id:
            query = query.eq("account_id", account_id)
        response = query.order("created_at").execute()
        return [Refund.model_validate(row) for row in response.data]


# ============================================
# Audit
# ============================================

class SupabaseAudit:
    def __init__(self, client: Client):
        self.client = client

    def append(self, entry: AuditEntry) -> None:
        self.client.table("audit_log").insert(_dump(entry)).execute()

    def list_entries(self, school_id: str, resource_id: Optional[str] = None) -> list[AuditEntry]:
        query = self.client.table("audit_log").select("*").eq("school_id", school_id)
        if resource_id:
            query = query.eq("resource_id", resource_id)
        response = query.order("timestamp").execute()
        return [AuditEntry.model_validate(row) for row in response.data]
