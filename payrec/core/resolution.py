# payrec/core/resolution.py

"""
Duplicate case resolution engine.

Turns an operator's decision into financial artifacts (invoice orders,
credits, refunds), payment markers, an audit entry and the case's move to
`resolved`, all written as one status-guarded unit. Resolution is one-way:
a resolved case can never be resolved again.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional
import hashlib
import logging

from payrec.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from payrec.models import (
    AuditEntry,
    Credit,
    DuplicateCase,
    InvoiceOrder,
    Payment,
    Refund,
    Resolution,
    ResolutionRequest,
    ResolutionResult,
)
from payrec.repositories.base import DuplicateCaseRepository, PaymentRepository

logger = logging.getLogger(__name__)


def compute_invoice_key(
    account_id: str,
    concept: str,
    period: Optional[str],
    amount: Decimal,
    currency: str,
    payment_ids: Iterable[str],
) -> str:
    """Idempotency key of an invoice order; the same order always gets the same key."""
    raw = "|".join([
        account_id,
        concept,
        period or "",
        f"{Decimal(amount):.2f}",
        currency,
        ",".join(sorted(payment_ids)),
    ])
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _artifact_id(prefix: str, case_id: str, payment_id: str) -> str:
    digest = hashlib.sha256(f"{case_id}|{payment_id}".encode("utf-8")).hexdigest()
    return f"{prefix}_{digest[:24]}"


class _Plan:
    """Artifacts and payment changes of one resolution, before they are written."""

    def __init__(self):
        self.orders: list[InvoiceOrder] = []
        self.credits: list[Credit] = []
        self.refunds: list[Refund] = []
        self.payments: list[Payment] = []
        self.pending_invoice: list[str] = []


class DuplicateResolutionEngine:
    def __init__(self, cases: DuplicateCaseRepository, payments: PaymentRepository):
        self.cases = cases
        self.payments = payments

    def resolve(
        self,
        school_id: str,
        case_id: str,
        request: ResolutionRequest,
        actor_id: str,
    ) -> ResolutionResult:
        """
        Resolve an open duplicate case.

        Raises:
            NotFoundError: unknown case or case payment
            AuthorizationError: case belongs to another school
            ConflictError: case already resolved (also for the loser of a race)
            ValidationError: chosen payments not in the case, or wrong count for the type
        """
        case = self.cases.get(case_id)
        if case is None:
            raise NotFoundError(f"duplicate case {case_id} not found", details={"case_id": case_id})
        if case.school_id != school_id:
            raise AuthorizationError(f"duplicate case {case_id} does not belong to school {school_id}")
        if case.status != "open":
            raise ConflictError("duplicate case already resolved", details={"case_id": case_id})

        chosen = list(dict.fromkeys(request.chosen_payment_ids))
        if not chosen:
            raise ValidationError("chosen_payment_ids must not be empty")

        outside = [pid for pid in chosen if pid not in case.payment_ids]
        if outside:
            raise ValidationError(
                "chosen payments do not belong to this case",
                details={"payment_ids": outside},
            )

        if request.type == "invoice_one_credit_rest" and len(chosen) != 1:
            raise ValidationError("invoice_one_credit_rest needs exactly one chosen payment")

        payments = self.payments.get_many(school_id, case.payment_ids)
        missing = set(case.payment_ids) - {p.id for p in payments}
        if missing:
            raise NotFoundError("case payments not found", details={"payment_ids": sorted(missing)})

        currencies = {p.currency for p in payments}
        if len(currencies) > 1:
            raise ValidationError(
                "case payments are in different currencies",
                details={"currencies": sorted(currencies)},
            )

        now = datetime.now(timezone.utc)
        plan = self._plan(case, request, chosen, payments, now)

        resolution = Resolution(
            type=request.type,
            chosen_payment_ids=chosen,
            notes=request.notes,
            resolved_by=actor_id,
            resolved_at=now,
        )
        result = ResolutionResult(
            case_id=case.id,
            type=request.type,
            invoice_order_ids=[o.id for o in plan.orders],
            credit_ids=[c.id for c in plan.credits],
            refund_ids=[r.id for r in plan.refunds],
            pending_invoice_payment_ids=plan.pending_invoice,
        )
        audit = AuditEntry.new(
            "duplicate_case_resolved",
            resource_id=case.id,
            school_id=school_id,
            actor_id=actor_id,
            details={
                "resolution_type": request.type,
                "chosen_payment_ids": chosen,
                "invoice_order_ids": result.invoice_order_ids,
                "credit_ids": result.credit_ids,
                "refund_ids": result.refund_ids,
                "notes": request.notes,
            },
            timestamp=now,
        )

        self.cases.apply_resolution(
            case.id,
            resolution,
            plan.orders,
            plan.credits,
            plan.refunds,
            plan.payments,
            audit,
        )

        logger.info(
            f"Duplicate case {case.id} resolved as {request.type} by {actor_id}: "
            f"{len(plan.orders)} invoice orders, {len(plan.credits)} credits, {len(plan.refunds)} refunds"
        )
        return result

    # ============================================
    # Planning
    # ============================================

    def _plan(
        self,
        case: DuplicateCase,
        request: ResolutionRequest,
        chosen: list[str],
        payments: list[Payment],
        now: datetime,
    ) -> _Plan:
        plan = _Plan()
        by_id = {p.id: p for p in payments}
        ordered = [by_id[pid] for pid in case.payment_ids]

        if request.type == "invoice_one_credit_rest":
            invoiced = by_id[chosen[0]]
            plan.orders.append(self._order(case, [invoiced], now))
            plan.payments.append(_marked(invoiced, case.id, "invoiced", now))

            for payment in ordered:
                if payment.id == invoiced.id:
                    continue
                plan.credits.append(Credit(
                    id=_artifact_id("cr", case.id, payment.id),
                    school_id=case.school_id,
                    account_id=case.account_id,
                    amount=payment.amount,
                    currency=payment.currency,
                    source_payment_ids=[payment.id],
                    source_duplicate_case_id=case.id,
                    created_at=now,
                ))
                plan.payments.append(_marked(payment, case.id, "credited", now))

            total = sum((p.amount for p in ordered), Decimal("0"))
            applied = sum((o.amount for o in plan.orders), Decimal("0")) + sum(
                (c.amount for c in plan.credits), Decimal("0")
            )
            if applied != total:
                raise ValidationError(
                    "resolution does not account for the full case amount",
                    details={"case_total": str(total), "applied": str(applied)},
                )

        elif request.type == "invoice_all":
            for payment in ordered:
                plan.orders.append(self._order(case, [payment], now))
                plan.payments.append(_marked(payment, case.id, "invoiced", now))

        elif request.type == "refund_one":
            for payment in ordered:
                if payment.id in chosen:
                    plan.refunds.append(Refund(
                        id=_artifact_id("rf", case.id, payment.id),
                        school_id=case.school_id,
                        account_id=case.account_id,
                        payment_id=payment.id,
                        amount=payment.amount,
                        currency=payment.currency,
                        source_duplicate_case_id=case.id,
                        created_at=now,
                    ))
                    plan.payments.append(_marked(payment, case.id, "refunded", now, status="refunded"))
                else:
                    plan.pending_invoice.append(payment.id)
                    plan.payments.append(_marked(payment, case.id, "pending_invoice", now))

        else:  # ignore_duplicates
            for payment in ordered:
                plan.payments.append(_marked(payment, case.id, "cleared", now))

        return plan

    def _order(self, case: DuplicateCase, applied: list[Payment], now: datetime) -> InvoiceOrder:
        amount = sum((p.amount for p in applied), Decimal("0"))
        currency = applied[0].currency
        concept = f"Fee {case.period}"
        payment_ids = [p.id for p in applied]

        return InvoiceOrder(
            id=compute_invoice_key(case.account_id, concept, case.period, amount, currency, payment_ids),
            school_id=case.school_id,
            account_id=case.account_id,
            period=case.period,
            concept=concept,
            amount=amount,
            currency=currency,
            payment_ids_applied=payment_ids,
            duplicate_case_id=case.id,
            created_at=now,
        )


def _marked(payment: Payment, case_id: str, duplicate_status: str, now: datetime, status: Optional[str] = None) -> Payment:
    update = {"duplicate_status": duplicate_status, "duplicate_case_id": case_id, "updated_at": now}
    if status:
        update["status"] = status
    return payment.model_copy(update=update)
