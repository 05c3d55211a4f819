# payrec/core/review.py

"""
Reconciliation review workflow.

Operators resolve what the matcher could not: they confirm pending aliases,
confirm review/conflict payments, and register or remove alias rules. Each
confirmation writes the alias, drops the pending alias, updates payments and
appends the audit entry as one unit.

Confirming does not touch other payments of the same payer unless the caller
asks for a rematch.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional
import logging

from payrec.core.aliases import AliasStore, pending_alias_id
from payrec.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from payrec.core.matching import MatchPolicy, match_payer
from payrec.core.normalizers import normalize_payer
from payrec.models import (
    Account,
    AliasMapping,
    AuditEntry,
    Payment,
    PendingAlias,
    TargetType,
)
from payrec.repositories.base import (
    AliasRepository,
    AuditSink,
    PaymentRepository,
    PendingAliasRepository,
    RosterRepository,
)

logger = logging.getLogger(__name__)

UNRESOLVED_STATUSES = ("review", "conflict", "nomatch")


@dataclass
class ConfirmResult:
    """Outcome of a confirmation."""

    alias: AliasMapping
    payment: Optional[Payment] = None
    rematched_payment_ids: list[str] = field(default_factory=list)
    already_confirmed: bool = False


class ReviewWorkflow:
    """Operator actions on unresolved payers and payments."""

    def __init__(
        self,
        roster: RosterRepository,
        aliases: AliasRepository,
        pending: PendingAliasRepository,
        payments: PaymentRepository,
        audit: AuditSink,
        policy: Optional[MatchPolicy] = None,
    ):
        self.roster = roster
        self.aliases = aliases
        self.alias_store = AliasStore(aliases)
        self.pending = pending
        self.payments = payments
        self.audit = audit
        self.policy = policy or MatchPolicy.from_settings()

    # ============================================
    # Listings
    # ============================================

    def list_pending_aliases(self, school_id: str) -> list[PendingAlias]:
        return self.pending.list_pending(school_id)

    def list_review_queue(
        self,
        school_id: str,
        match_statuses: Iterable[str] = UNRESOLVED_STATUSES,
    ) -> list[Payment]:
        """Payments still waiting for a human decision."""
        return self.payments.list_payments(school_id, match_statuses=list(match_statuses))

    # ============================================
    # Confirmation
    # ============================================

    def confirm_pending_alias(
        self,
        school_id: str,
        pending_id: str,
        target_id: str,
        actor_id: str,
        rematch: bool = False,
    ) -> ConfirmResult:
        """
        Bind a pending alias to a target.

        Confirming a pending alias that was already confirmed is a no-op;
        an unknown id is a NotFoundError.
        """
        pending = self.pending.get(school_id, pending_id)
        if pending is None:
            done = self.aliases.find_by_pending_id(school_id, pending_id)
            if done is not None:
                logger.info(f"Pending alias {pending_id} already confirmed to {done.target_id}")
                return ConfirmResult(alias=done, already_confirmed=True)
            raise NotFoundError(f"pending alias {pending_id} not found", details={"pending_id": pending_id})

        self._require_target(school_id, target_id, pending.target_type)

        mapping = self.alias_store.prepare(
            school_id,
            pending.payer_key,
            target_id,
            pending.target_type,
            source="confirmed",
            source_raw=pending.payer_raw,
            actor_id=actor_id,
            override=True,
            pending_id=pending_id,
        )
        updates = self._rematch_updates(school_id, mapping, actor_id) if rematch else []

        audit = AuditEntry.new(
            "alias_confirmed",
            resource_id=pending_id,
            school_id=school_id,
            actor_id=actor_id,
            details={
                "payer_key": mapping.payer_key,
                "target_id": target_id,
                "target_type": mapping.target_type,
                "rematched_payment_ids": [p.id for p in updates],
            },
        )
        self.aliases.bind(mapping, pending_id, updates, audit, override=True)

        logger.info(f"Pending alias {pending_id} confirmed: '{mapping.payer_key}' -> {target_id}")
        return ConfirmResult(alias=mapping, rematched_payment_ids=[p.id for p in updates])

    def confirm_payment(
        self,
        school_id: str,
        payment_id: str,
        target_id: str,
        actor_id: str,
        rematch: bool = False,
    ) -> ConfirmResult:
        """Resolve one review/conflict/nomatch payment and remember its payer."""
        payment = self.payments.get(school_id, payment_id)
        if payment is None:
            raise NotFoundError(f"payment {payment_id} not found", details={"payment_id": payment_id})

        if payment.match_status == "auto":
            if payment.account_id != target_id:
                raise ConflictError(
                    f"payment {payment_id} is already matched to {payment.account_id}",
                    details={"payment_id": payment_id, "account_id": payment.account_id},
                )
            alias = self.aliases.get(school_id, payment.payer_key, payment.target_type)
            if alias is not None:
                return ConfirmResult(alias=alias, payment=payment, already_confirmed=True)

        self._require_target(school_id, target_id, payment.target_type)

        pid = pending_alias_id(school_id, payment.payer_key, payment.target_type)
        has_pending = self.pending.get(school_id, pid) is not None

        mapping = self.alias_store.prepare(
            school_id,
            payment.payer_key,
            target_id,
            payment.target_type,
            source="confirmed",
            source_raw=payment.payer_raw,
            actor_id=actor_id,
            override=True,
            pending_id=pid if has_pending else None,
        )

        now = datetime.now(timezone.utc)
        confirmed = payment.model_copy(update={
            "account_id": target_id,
            "match_status": "auto",
            "match_confidence": self.policy.alias_confidence,
            "suggested_account_id": None,
            "confirmed_by": actor_id,
            "updated_at": now,
        })

        updates = [confirmed]
        if rematch:
            updates += self._rematch_updates(school_id, mapping, actor_id, exclude={payment_id})

        audit = AuditEntry.new(
            "payment_confirmed",
            resource_id=payment_id,
            school_id=school_id,
            actor_id=actor_id,
            details={
                "payer_key": mapping.payer_key,
                "target_id": target_id,
                "previous_match_status": payment.match_status,
                "rematched_payment_ids": [p.id for p in updates[1:]],
            },
            timestamp=now,
        )
        self.aliases.bind(mapping, pid if has_pending else None, updates, audit, override=True)

        logger.info(f"Payment {payment_id} confirmed to {target_id} by {actor_id}")
        return ConfirmResult(
            alias=mapping,
            payment=confirmed,
            rematched_payment_ids=[p.id for p in updates[1:]],
        )

    # ============================================
    # Alias Rules
    # ============================================

    def add_manual_rule(
        self,
        school_id: str,
        payer_raw: str,
        target_id: str,
        actor_id: str,
        target_type: TargetType = "account",
        override: bool = False,
    ) -> AliasMapping:
        """Pre-register a binding for future imports."""
        self._require_target(school_id, target_id, target_type)

        key = normalize_payer(payer_raw)
        pid = pending_alias_id(school_id, key, target_type)
        has_pending = self.pending.get(school_id, pid) is not None

        mapping = self.alias_store.prepare(
            school_id,
            payer_raw,
            target_id,
            target_type,
            source="manual",
            source_raw=payer_raw,
            actor_id=actor_id,
            override=override,
            pending_id=pid if has_pending else None,
        )
        audit = AuditEntry.new(
            "alias_rule_added",
            resource_id=mapping.payer_key,
            school_id=school_id,
            actor_id=actor_id,
            details={"target_id": target_id, "target_type": target_type, "override": override},
        )
        self.aliases.bind(mapping, pid if has_pending else None, [], audit, override=override)

        logger.info(f"Manual alias '{mapping.payer_key}' -> {target_id} added in school {school_id}")
        return mapping

    def remove_rule(
        self,
        school_id: str,
        payer_raw: str,
        actor_id: str,
        target_type: TargetType = "account",
    ) -> AliasMapping:
        removed = self.alias_store.remove(school_id, payer_raw, target_type)
        self.audit.append(AuditEntry.new(
            "alias_removed",
            resource_id=removed.payer_key,
            school_id=school_id,
            actor_id=actor_id,
            details={"target_id": removed.target_id, "target_type": target_type},
        ))
        return removed

    def rematch_outstanding(
        self,
        school_id: str,
        payer_raw: str,
        actor_id: str,
        target_type: TargetType = "account",
    ) -> list[Payment]:
        """Apply an existing alias to every unresolved payment of its payer."""
        alias = self.alias_store.lookup(school_id, payer_raw, target_type)
        if alias is None:
            raise NotFoundError(f"no alias for payer '{normalize_payer(payer_raw)}'")

        updates = self._rematch_updates(school_id, alias, actor_id)
        if updates:
            audit = AuditEntry.new(
                "payments_rematched",
                resource_id=alias.payer_key,
                school_id=school_id,
                actor_id=actor_id,
                details={"target_id": alias.target_id, "payment_ids": [p.id for p in updates]},
            )
            self.payments.update_payments(updates, audit)

        logger.info(f"Rematched {len(updates)} payments of '{alias.payer_key}' in school {school_id}")
        return updates

    # ============================================
    # Helpers
    # ============================================

    def _require_target(self, school_id: str, target_id: str, target_type: TargetType) -> Account:
        if not target_id:
            raise ValidationError("target_id is required")

        account = self.roster.get_account(target_id, target_type)
        if account is None:
            raise NotFoundError(f"{target_type} {target_id} not found", details={"target_id": target_id})
        if account.school_id != school_id:
            raise AuthorizationError(
                f"{target_type} {target_id} does not belong to school {school_id}",
                details={"target_id": target_id},
            )
        return account

    def _rematch_updates(
        self,
        school_id: str,
        mapping: AliasMapping,
        actor_id: Optional[str],
        exclude: Optional[set[str]] = None,
    ) -> list[Payment]:
        """Unresolved payments of the mapping's payer, re-run through the alias tier."""
        exclude = exclude or set()
        now = datetime.now(timezone.utc)
        snapshot = {mapping.payer_key: mapping}

        updates = []
        for payment in self.payments.list_payments(
            school_id,
            match_statuses=UNRESOLVED_STATUSES,
            payer_key=mapping.payer_key,
        ):
            if payment.id in exclude or payment.target_type != mapping.target_type:
                continue

            result = match_payer(school_id, payment.payer_raw, payment.target_type, [], snapshot, self.policy)
            if not result.resolved:
                continue

            updates.append(payment.model_copy(update={
                "account_id": result.target_id,
                "match_status": result.status,
                "match_confidence": result.confidence,
                "suggested_account_id": None,
                "confirmed_by": actor_id,
                "updated_at": now,
            }))
        return updates
