# payrec/core/duplicates.py

"""
Duplicate case detection.

Approved payments of the same account and period are suspected
over-payments. Detection is idempotent: one open case per (account, period),
updated in place when its payment set changes. Payments already adjudicated
by a resolved case are never reopened.
"""

from collections import defaultdict
from datetime import datetime, timezone
import logging
import uuid

from payrec.core.errors import ConflictError
from payrec.models import DuplicateCase, Payment
from payrec.repositories.base import DuplicateCaseRepository, PaymentRepository

logger = logging.getLogger(__name__)


class DuplicateCaseDetector:
    def __init__(self, payments: PaymentRepository, cases: DuplicateCaseRepository):
        self.payments = payments
        self.cases = cases

    def detect(self, school_id: str) -> list[DuplicateCase]:
        """
        Open or refresh duplicate cases for a school.

        Returns:
            The open case of every (account, period) group with two or more
            approved payments, ordered by account and period
        """
        adjudicated = {
            payment_id
            for case in self.cases.list_cases(school_id, status="resolved")
            for payment_id in case.payment_ids
        }

        groups: dict[tuple[str, str], list[Payment]] = defaultdict(list)
        for payment in self.payments.list_payments(school_id, status="approved"):
            if payment.account_id and payment.id not in adjudicated:
                groups[(payment.account_id, payment.period)].append(payment)

        cases = []
        for (account_id, period), group in sorted(groups.items()):
            if len(group) < 2:
                continue
            cases.append(self._open_or_update(school_id, account_id, period, group))

        logger.info(f"Duplicate detection in school {school_id}: {len(cases)} open cases")
        return cases

    def _open_or_update(
        self,
        school_id: str,
        account_id: str,
        period: str,
        group: list[Payment],
    ) -> DuplicateCase:
        payment_ids = [p.id for p in group]
        now = datetime.now(timezone.utc)

        case = self.cases.find_open(school_id, account_id, period)
        if case is not None and set(case.payment_ids) == set(payment_ids):
            updates = _mark(group, case.id, now)
            if updates:
                self.cases.save_case(case, updates)
            return case

        if case is not None:
            case = case.model_copy(update={"payment_ids": payment_ids, "updated_at": now})
            logger.info(f"Duplicate case {case.id} now covers {len(payment_ids)} payments")
        else:
            case = DuplicateCase(
                id=str(uuid.uuid4()),
                school_id=school_id,
                account_id=account_id,
                period=period,
                payment_ids=payment_ids,
                created_at=now,
            )
            logger.info(f"Duplicate case {case.id} opened for {account_id} / {period}")

        try:
            return self.cases.save_case(case, _mark(group, case.id, now))
        except ConflictError:
            # Another detector opened the case first
            existing = self.cases.find_open(school_id, account_id, period)
            if existing is None:
                raise
            return existing


def _mark(group: list[Payment], case_id: str, now: datetime) -> list[Payment]:
    return [
        p.model_copy(update={"duplicate_status": "suspected", "duplicate_case_id": case_id, "updated_at": now})
        for p in group
        if p.duplicate_status != "suspected" or p.duplicate_case_id != case_id
    ]
