# payrec/repositories/base.py

"""
Storage ports used by the reconciliation core.

Each component receives the ports it needs explicitly; the in-memory store
(tests, local runs) and the Supabase store (production) both implement them.
Operations documented as atomic must apply all of their writes or none.
"""

from typing import Iterable, Optional, Protocol

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


class RosterRepository(Protocol):
    """Read-only view of the accounts managed elsewhere."""

    def list_accounts(self, school_id: str, target_type: TargetType = "account") -> list[Account]: ...

    def get_account(self, account_id: str, target_type: TargetType = "account") -> Optional[Account]: ...

    def is_member(self, school_id: str, user_id: str) -> bool: ...


class AliasRepository(Protocol):
    def get(self, school_id: str, payer_key: str, target_type: TargetType) -> Optional[AliasMapping]: ...

    def list_aliases(self, school_id: str, target_type: Optional[TargetType] = None) -> list[AliasMapping]: ...

    def put(self, mapping: AliasMapping, override: bool = False) -> AliasMapping:
        """Upsert the alias; ConflictError if bound to another target and not `override`."""
        ...

    def delete(self, school_id: str, payer_key: str, target_type: TargetType) -> bool: ...

    def find_by_pending_id(self, school_id: str, pending_id: str) -> Optional[AliasMapping]: ...

    def bind(
        self,
        mapping: AliasMapping,
        pending_id: Optional[str],
        payment_updates: list[Payment],
        audit: AuditEntry,
        override: bool = False,
    ) -> AliasMapping:
        """
        Atomically upsert the alias, drop the pending alias, update payments
        and append the audit entry.

        The rebind check is repeated inside the unit: ConflictError if the key
        is bound to another target by then and `override` is not set.
        """
        ...


class PendingAliasRepository(Protocol):
    def get(self, school_id: str, pending_id: str) -> Optional[PendingAlias]: ...

    def list_pending(self, school_id: str) -> list[PendingAlias]: ...

    def delete(self, school_id: str, pending_id: str) -> bool: ...


class PaymentRepository(Protocol):
    def get(self, school_id: str, payment_id: str) -> Optional[Payment]: ...

    def get_many(self, school_id: str, payment_ids: Iterable[str]) -> list[Payment]: ...

    def list_payments(
        self,
        school_id: str,
        *,
        status: Optional[str] = None,
        match_statuses: Optional[Iterable[str]] = None,
        payer_key: Optional[str] = None,
    ) -> list[Payment]: ...

    def existing_keys(self, school_id: str, keys: Iterable[str]) -> set[str]: ...

    def get_batch(self, school_id: str, batch_id: str) -> Optional[ImportBatch]: ...

    def list_batches(self, school_id: str) -> list[ImportBatch]: ...

    def commit_import(
        self,
        batch: ImportBatch,
        payments: list[Payment],
        pending_aliases: list[PendingAlias],
        audit: AuditEntry,
    ) -> tuple[ImportBatch, list[Payment]]:
        """
        Atomically insert payments, pending aliases, the batch and its audit entry.

        Payments whose idempotency key already exists are skipped; the
        returned batch counters reflect only the payments actually inserted.
        """
        ...

    def update_payments(self, payments: list[Payment], audit: Optional[AuditEntry] = None) -> None: ...


class DuplicateCaseRepository(Protocol):
    def get(self, case_id: str) -> Optional[DuplicateCase]: ...

    def list_cases(self, school_id: str, status: Optional[str] = None) -> list[DuplicateCase]: ...

    def find_open(self, school_id: str, account_id: str, period: str) -> Optional[DuplicateCase]: ...

    def save_case(self, case: DuplicateCase, payment_updates: list[Payment]) -> DuplicateCase:
        """Create or update an open case together with its payments' duplicate markers."""
        ...

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
        """
        Status-guarded resolution: only succeeds while the case is open.

        Raises ConflictError when the case is no longer open; nothing is written then.
        """
        ...


class InvoiceOrderRepository(Protocol):
    def get(self, order_id: str) -> Optional[InvoiceOrder]: ...

    def list_orders(self, school_id: str, status: Optional[str] = None) -> list[InvoiceOrder]: ...

    def list_pending(self, school_id: Optional[str] = None, limit: int = 50) -> list[InvoiceOrder]: ...

    def update_order(self, order: InvoiceOrder) -> InvoiceOrder: ...

    def list_credits(self, school_id: str, account_id: Optional[str] = None) -> list[Credit]: ...

    def list_refunds(self, school_id: str, account_id: Optional[str] = None) -> list[Refund]: ...


class AuditSink(Protocol):
    def append(self, entry: AuditEntry) -> None: ...

    def list_entries(self, school_id: str, resource_id: Optional[str] = None) -> list[AuditEntry]: ...
