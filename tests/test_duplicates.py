# tests/test_duplicates.py

"""
Tests for duplicate case detection.
"""

from decimal import Decimal

from payrec.models import ResolutionRequest

from conftest import SCHOOL, OPERATOR, make_payment


def seed(store, *payments):
    store.payments.update_payments(list(payments))


class TestDetect:

    def test_two_payments_same_period_open_a_case(self, store, detector):
        seed(store, make_payment("a"), make_payment("b"))

        cases = detector.detect(SCHOOL)

        assert len(cases) == 1
        case = cases[0]
        assert (case.account_id, case.period, case.status) == ("p123", "2024-05", "open")
        assert case.payment_ids == ["a", "b"]
        for payment_id in ("a", "b"):
            payment = store.payments.get(SCHOOL, payment_id)
            assert payment.duplicate_status == "suspected"
            assert payment.duplicate_case_id == case.id

    def test_detection_is_idempotent(self, store, detector):
        seed(store, make_payment("a"), make_payment("b"))

        first = detector.detect(SCHOOL)
        second = detector.detect(SCHOOL)

        assert [c.id for c in first] == [c.id for c in second]
        assert len(store.cases.list_cases(SCHOOL)) == 1

    def test_new_payment_joins_the_open_case(self, store, detector):
        seed(store, make_payment("a"), make_payment("b"))
        case_id = detector.detect(SCHOOL)[0].id

        seed(store, make_payment("c"))
        cases = detector.detect(SCHOOL)

        assert [c.id for c in cases] == [case_id]
        assert cases[0].payment_ids == ["a", "b", "c"]
        assert store.payments.get(SCHOOL, "c").duplicate_case_id == case_id

    def test_no_case_without_a_second_payment(self, store, detector):
        seed(
            store,
            make_payment("a"),
            make_payment("b", period="2024-06"),
            make_payment("c", account_id="p200"),
        )

        assert detector.detect(SCHOOL) == []

    def test_only_approved_matched_payments_count(self, store, detector):
        seed(
            store,
            make_payment("a"),
            make_payment("b", status="rejected"),
            make_payment("c", match_status="nomatch"),
        )

        assert detector.detect(SCHOOL) == []

    def test_other_school_is_not_scanned(self, store, detector):
        seed(store, make_payment("a", school_id="school_2"), make_payment("b", school_id="school_2"))

        assert detector.detect(SCHOOL) == []

    def test_resolved_payments_are_not_reopened(self, store, detector, engine):
        seed(store, make_payment("a"), make_payment("b"))
        case = detector.detect(SCHOOL)[0]
        engine.resolve(SCHOOL, case.id, ResolutionRequest(type="ignore_duplicates", chosen_payment_ids=["a"]), OPERATOR)

        seed(store, make_payment("c", amount="700"))

        assert detector.detect(SCHOOL) == []
        assert store.payments.get(SCHOOL, "c").amount == Decimal("700")
        assert store.payments.get(SCHOOL, "c").duplicate_status == "none"
