# payrec/repositories/memory.py

"""
In-memory implementation of the storage ports.

Used by the test-suite and by `storage_backend=memory` local runs. All
repositories share one store and one re-entrant lock; multi-record units
(import commit, alias confirmation, case resolution) validate first and then
mutate under the lock, so readers never see half of a unit.
"""

import threading
from typing import Iterable, Optional

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


class InMemoryStore:
    """Holds every record and exposes one repository per port."""

    def __init__(self):
        self.lock = threading.RLock()

        self.accounts: dict[tuple[str, str], Account] = {}
        self.members: set[tuple[str, str]] = set()
        self.alias_rows: dict[tuple[str, str, str], AliasMapping] = {}
        self.pending_rows: dict[tuple[str, str], PendingAlias] = {}
        self.payment_rows: dict[str, Payment] = {}
        self.payment_keys: dict[tuple[str, str], str] = {}
        self.batch_rows: dict[str, ImportBatch] = {}
        self.case_rows: dict[str, DuplicateCase] = {}
        self.order_rows: dict[str, InvoiceOrder] = {}
        self.credit_rows: dict[str, Credit] = {}
        self.refund_rows: dict[str, Refund] = {}
        self.audit_rows: list[AuditEntry] = []

        self.roster = InMemoryRoster(self)
        self.aliases = InMemoryAliases(self)
        self.pending_aliases = InMemoryPendingAliases(self)
        self.payments = InMemoryPayments(self)
        self.cases = InMemoryCases(self)
        self.invoices = InMemoryInvoices(self)
        self.audit = InMemoryAudit(self)

    # ============================================
    # Seeding helpers (roster is owned elsewhere)
    # ============================================

    def add_account(self, account: Account) -> Account:
        with self.lock:
            self.accounts[(account.target_type, account.id)] = account.model_copy()
        return account

    def add_member(self, school_id: str, user_id: str) -> None:
        with self.lock:
            self.members.add((school_id, user_id))

    # ============================================
    # Internal writes (callers hold the lock)
    # ============================================

    def _write_payment(self, payment: Payment) -> None:
        existing = self.payment_keys.get((payment.school_id, payment.idempotency_key))
        if existing is not None and existing != payment.id:
            raise ConflictError(
                f"idempotency key {payment.idempotency_key} already used by payment {existing}"
            )
        self.payment_rows[payment.id] = payment.model_copy(deep=True)
        self.payment_keys[(payment.school_id, payment.idempotency_key)] = payment.id

    def _write_audit(self, entry: AuditEntry) -> None:
        self.audit_rows.append(entry.model_copy(deep=True))


class InMemoryRoster:
    def __init__(self, store: InMemoryStore):
        self.store = store

    def list_accounts(self, school_id: str, target_type: TargetType = "account") -> list[Account]:
        with self.store.lock:
            return sorted(
                (
                    a.model_copy()
                    for (kind, _), a in self.store.accounts.items()
                    if kind == target_type and a.school_id == school_id
                ),
                key=lambda a: a.id,
            )

    def get_account(self, account_id: str, target_type: TargetType = "account") -> Optional[Account]:
        with self.store.lock:
            account = self.store.accounts.get((target_type, account_id))
            return account.model_copy() if account else None

    def is_member(self, school_id: str, user_id: str) -> bool:
        with self.store.lock:
            return (school_id, user_id) in self.store.members


class InMemoryAliases:
    def __init__(self, store: InMemoryStore):
        self.store = store

    def get(self, school_id: str, payer_key: str, target_type: TargetType) -> Optional[AliasMapping]:
        with self.store.lock:
            mapping = self.store.alias_rows.get((school_id, payer_key, target_type))
            return mapping.model_copy() if mapping else None

    def list_aliases(self, school_id: str, target_type: Optional[TargetType] = None) -> list[AliasMapping]:
        with self.store.lock:
            return [
                m.model_copy()
                for (school, _, kind), m in sorted(self.store.alias_rows.items())
                if school == school_id and (target_type is None or kind == target_type)
            ]

    def put(self, mapping: AliasMapping, override: bool = False) -> AliasMapping:
        with self.store.lock:
            self._check_rebind(mapping, override)
            self.store.alias_rows[(mapping.school_id, mapping.payer_key, mapping.target_type)] = mapping.model_copy()
        return mapping

    def _check_rebind(self, mapping: AliasMapping, override: bool) -> None:
        # Caller holds the lock
        current = self.store.alias_rows.get((mapping.school_id, mapping.payer_key, mapping.target_type))
        if current is not None and current.target_id != mapping.target_id and not override:
            raise ConflictError(
                f"payer '{mapping.payer_key}' is already bound to {current.target_id}",
                details={"payer_key": mapping.payer_key, "target_id": current.target_id},
            )

    def delete(self, school_id: str, payer_key: str, target_type: TargetType) -> bool:
        with self.store.lock:
            return self.store.alias_rows.pop((school_id, payer_key, target_type), None) is not None

    def find_by_pending_id(self, school_id: str, pending_id: str) -> Optional[AliasMapping]:
        with self.store.lock:
            for (school, _, _), mapping in self.store.alias_rows.items():
                if school == school_id and mapping.pending_id == pending_id:
                    return mapping.model_copy()
        return None

    def bind(
        self,
        mapping: AliasMapping,
        pending_id: Optional[str],
        payment_updates: list[Payment],
        audit: AuditEntry,
        override: bool = False,
    ) -> AliasMapping:
        with self.store.lock:
            self._check_rebind(mapping, override)
            self.store.alias_rows[(mapping.school_id, mapping.payer_key, mapping.target_type)] = mapping.model_copy()
            if pending_id:
                self.store.pending_rows.pop((mapping.school_id, pending_id), None)
            for payment in payment_updates:
                self.store._write_payment(payment)
            self.store._write_audit(audit)
        return mapping


class InMemoryPendingAliases:
    def __init__(self, store: InMemoryStore):
        self.store = store

    def get(self, school_id: str, pending_id: str) -> Optional[PendingAlias]:
        with self.store.lock:
            pending = self.store.pending_rows.get((school_id, pending_id))
            return pending.model_copy() if pending else None

    def list_pending(self, school_id: str) -> list[PendingAlias]:
        with self.store.lock:
            rows = [p.model_copy() for (school, _), p in self.store.pending_rows.items() if school == school_id]
        return sorted(rows, key=lambda p: (p.created_at, p.id))

    def delete(self, school_id: str, pending_id: str) -> bool:
        with self.store.lock:
            return self.store.pending_rows.pop((school_id, pending_id), None) is not None


class InMemoryPayments:
    def __init__(self, store: InMemoryStore):
        self.store = store

    def get(self, school_id: str, payment_id: str) -> Optional[Payment]:
        with self.store.lock:
            payment = self.store.payment_rows.get(payment_id)
            if payment is None or payment.school_id != school_id:
                return None
            return payment.model_copy(deep=True)

    def get_many(self, school_id: str, payment_ids: Iterable[str]) -> list[Payment]:
        found = []
        for payment_id in payment_ids:
            payment = self.get(school_id, payment_id)
            if payment is not None:
                found.append(payment)
        return found

    def list_payments(
        self,
        school_id: str,
        *,
        status: Optional[str] = None,
        match_statuses: Optional[Iterable[str]] = None,
        payer_key: Optional[str] = None,
    ) -> list[Payment]:
        wanted = set(match_statuses) if match_statuses is not None else None
        with self.store.lock:
            rows = [
                p.model_copy(deep=True)
                for p in self.store.payment_rows.values()
                if p.school_id == school_id
                and (status is None or p.status == status)
                and (wanted is None or p.match_status in wanted)
                and (payer_key is None or p.payer_key == payer_key)
            ]
        return sorted(rows, key=lambda p: (p.created_at, p.id))

    def existing_keys(self, school_id: str, keys: Iterable[str]) -> set[str]:
        with self.store.lock:
            return {k for k in keys if (school_id, k) in self.store.payment_keys}

    def get_batch(self, school_id: str, batch_id: str) -> Optional[ImportBatch]:
        with self.store.lock:
            batch = self.store.batch_rows.get(batch_id)
            if batch is None or batch.school_id != school_id:
                return None
            return batch.model_copy()

    def list_batches(self, school_id: str) -> list[ImportBatch]:
        with self.store.lock:
            rows = [b.model_copy() for b in self.store.batch_rows.values() if b.school_id == school_id]
        return sorted(rows, key=lambda b: b.created_at, reverse=True)

    def commit_import(
        self,
        batch: ImportBatch,
        payments: list[Payment],
        pending_aliases: list[PendingAlias],
        audit: AuditEntry,
    ) -> tuple[ImportBatch, list[Payment]]:
        with self.store.lock:
            existing = self.store.batch_rows.get(batch.id)
            if existing is not None:
                return existing.model_copy(), []

            inserted = []
            seen: set[tuple[str, str]] = set()
            for payment in payments:
                key = (payment.school_id, payment.idempotency_key)
                if key in self.store.payment_keys or key in seen:
                    continue
                seen.add(key)
                inserted.append(payment)

            final = batch.recount(inserted, extra_duplicates=len(payments) - len(inserted))

            for payment in inserted:
                self.store._write_payment(payment)
            for pending in pending_aliases:
                self.store.pending_rows.setdefault((pending.school_id, pending.id), pending.model_copy())
            self.store.batch_rows[final.id] = final.model_copy()
            self.store._write_audit(audit.model_copy(update={"details": {**audit.details, **final.counters}}))

        return final, inserted

    def update_payments(self, payments: list[Payment], audit: Optional[AuditEntry] = None) -> None:
        with self.store.lock:
            for payment in payments:
                self.store._write_payment(payment)
            if audit is not None:
                self.store._write_audit(audit)


class InMemoryCases:
    def __init__(self, store: InMemoryStore):
        self.store = store

    def get(self, case_id: str) -> Optional[DuplicateCase]:
        with self.store.lock:
            case = self.store.case_rows.get(case_id)
            return case.model_copy(deep=True) if case else None

    def list_cases(self, school_id: str, status: Optional[str] = None) -> list[DuplicateCase]:
        with self.store.lock:
            rows = [
                c.model_copy(deep=True)
                for c in self.store.case_rows.values()
                if c.school_id == school_id and (status is None or c.status == status)
            ]
        return sorted(rows, key=lambda c: (c.created_at, c.id))

    def find_open(self, school_id: str, account_id: str, period: str) -> Optional[DuplicateCase]:
        with self.store.lock:
            for case in self.store.case_rows.values():
                if (
                    case.status == "open"
                    and case.school_id == school_id
                    and case.account_id == account_id
                    and case.period == period
                ):
                    return case.model_copy(deep=True)
        return None

    def save_case(self, case: DuplicateCase, payment_updates: list[Payment]) -> DuplicateCase:
        with self.store.lock:
            current = self.store.case_rows.get(case.id)
            if current is None:
                other = self.find_open(case.school_id, case.account_id, case.period)
                if other is not None:
                    raise ConflictError(
                        f"open duplicate case {other.id} already exists for "
                        f"{case.account_id} / {case.period}"
                    )
            elif current.status != "open":
                raise ConflictError(f"duplicate case {case.id} is already resolved")

            self.store.case_rows[case.id] = case.model_copy(deep=True)
            for payment in payment_updates:
                self.store._write_payment(payment)
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
        with self.store.lock:
            case = self.store.case_rows.get(case_id)
            if case is None or case.status != "open":
                raise ConflictError("duplicate case already resolved", details={"case_id": case_id})

            for order in invoice_orders:
                self.store.order_rows.setdefault(order.id, order.model_copy(deep=True))
            for credit in credits:
                self.store.credit_rows[credit.id] = credit.model_copy(deep=True)
            for refund in refunds:
                self.store.refund_rows[refund.id] = refund.model_copy(deep=True)
            for payment in payment_updates:
                self.store._write_payment(payment)

            resolved = case.model_copy(update={
                "status": "resolved",
                "resolution": resolution,
                "updated_at": resolution.resolved_at,
            })
            self.store.case_rows[case_id] = resolved
            self.store._write_audit(audit)

        return resolved.model_copy(deep=True)


class InMemoryInvoices:
    def __init__(self, store: InMemoryStore):
        self.store = store

    def get(self, order_id: str) -> Optional[InvoiceOrder]:
        with self.store.lock:
            order = self.store.order_rows.get(order_id)
            return order.model_copy(deep=True) if order else None

    def list_orders(self, school_id: str, status: Optional[str] = None) -> list[InvoiceOrder]:
        with self.store.lock:
            rows = [
                o.model_copy(deep=True)
                for o in self.store.order_rows.values()
                if o.school_id == school_id and (status is None or o.status == status)
            ]
        return sorted(rows, key=lambda o: (o.created_at, o.id))

    def list_pending(self, school_id: Optional[str] = None, limit: int = 50) -> list[InvoiceOrder]:
        with self.store.lock:
            rows = [
                o.model_copy(deep=True)
                for o in self.store.order_rows.values()
                if o.status == "pending" and (school_id is None or o.school_id == school_id)
            ]
        return sorted(rows, key=lambda o: (o.created_at, o.id))[:limit]

    def update_order(self, order: InvoiceOrder) -> InvoiceOrder:
        with self.store.lock:
            self.store.order_rows[order.id] = order.model_copy(deep=True)
        return order

    def list_credits(self, school_id: str, account_id: Optional[str] = None) -> list[Credit]:
        with self.store.lock:
            return [
                c.model_copy(deep=True)
                for c in self.store.credit_rows.values()
                if c.school_id == school_id and (account_id is None or c.account_id == account_id)
            ]

    def list_refunds(self, school_id: str, account_id: Optional[str] = None) -> list[Refund]:
        with self.store.lock:
            return [
                r.model_copy(deep=True)
                for r in self.store.refund_rows.values()
                if r.school_id == school_id and (account_id is None or r.account_id == account_id)
            ]


class InMemoryAudit:
    def __init__(self, store: InMemoryStore):
        self.store = store

    def append(self, entry: AuditEntry) -> None:
        with self.store.lock:
            self.store._write_audit(entry)

    def list_entries(self, school_id: str, resource_id: Optional[str] = None) -> list[AuditEntry]:
        with self.store.lock:
            return [
                e.model_copy(deep=True)
                for e in self.store.audit_rows
                if e.school_id == school_id and (resource_id is None or e.resource_id == resource_id)
            ]
