# tests/test_importer.py

"""
Tests for the batch importer.
"""

import pytest
from decimal import Decimal

from payrec.core import BatchImporter
from payrec.core.aliases import AliasStore, pending_alias_id
from payrec.core.errors import ValidationError
from payrec.core.importer import compute_idempotency_key, parse_row
from payrec.models import RawPaymentRow, SkippedRow

from conftest import SCHOOL, OPERATOR


def row(payer: str, provider_id: str = None, amount="1500", period="2024-05", **extra) -> dict:
    data = {"payer_raw": payer, "amount": amount, "period": period, **extra}
    if provider_id:
        data["provider"] = "mercadopago"
        data["provider_payment_id"] = provider_id
    return data


# ============================================
# Row Parsing
# ============================================

class TestParseRow:

    def test_normalizes_fields(self):
        parsed = parse_row(0, row("  JUAN PEREZ ", "111", amount="$ 1.500,00", period="2024/5", status="Acreditado"), "ars")

        assert parsed.payer_raw == "JUAN PEREZ"
        assert parsed.payer_key == "juan perez"
        assert parsed.amount == Decimal("1500.00")
        assert parsed.currency == "ARS"
        assert parsed.period == "2024-05"
        assert parsed.status == "approved"
        assert parsed.provider == "mercadopago"
        assert parsed.provider_payment_id == "111"

    @pytest.mark.parametrize("bad", [
        {"payer_raw": "", "amount": "10", "period": "2024-05"},
        {"payer_raw": "Juan", "amount": "-10", "period": "2024-05"},
        {"payer_raw": "Juan", "amount": "10", "period": "2024-13"},
        {"payer_raw": "Juan", "amount": "10", "period": "2024-05", "currency": "pesos"},
        {"payer_raw": "Juan", "amount": "10", "period": "2024-05", "status": "maybe"},
    ])
    def test_rejects_bad_rows(self, bad):
        with pytest.raises(ValidationError):
            parse_row(0, bad, "ARS")

    def test_provider_key_uses_provider_id(self):
        parsed = parse_row(0, row("Juan Perez", "111"), "ARS")
        assert compute_idempotency_key(SCHOOL, parsed) == "mercadopago_111"

    def test_row_key_hashes_immutable_fields(self):
        a = parse_row(0, row("Juan Perez", reference="cuota"), "ARS")
        b = parse_row(5, row("JUAN  PÉREZ", reference="cuota"), "ARS")
        c = parse_row(0, row("Juan Perez", reference="cuota", amount="1600"), "ARS")

        assert compute_idempotency_key(SCHOOL, a) == compute_idempotency_key(SCHOOL, b)
        assert compute_idempotency_key(SCHOOL, a) != compute_idempotency_key(SCHOOL, c)
        assert compute_idempotency_key(SCHOOL, a).startswith("row_")


# ============================================
# Import Batches
# ============================================

class TestImportBatch:

    def test_classifies_each_row(self, importer):
        result = importer.import_batch(SCHOOL, [
            row("JUAN PEREZ", "1"),
            row("TRANSF PEREZ J", "2"),
            row("Carlos Ruiz", "3"),
        ], actor_id=OPERATOR)

        by_payer = {p.payer_raw: p for p in result.payments}
        assert by_payer["JUAN PEREZ"].match_status == "auto"
        assert by_payer["JUAN PEREZ"].account_id == "p123"
        assert by_payer["TRANSF PEREZ J"].match_status == "nomatch"
        assert by_payer["TRANSF PEREZ J"].account_id is None
        assert by_payer["Carlos Ruiz"].match_status == "review"
        assert by_payer["Carlos Ruiz"].account_id is None

        batch = result.batch
        assert (batch.payments_count, batch.auto_count, batch.nomatch_count, batch.review_count) == (3, 1, 1, 1)
        assert batch.created_by == OPERATOR
        assert result.replayed is False

    def test_confident_review_keeps_suggestion_off_the_account(self, importer):
        result = importer.import_batch(SCHOOL, [row("Carlos Alberto Ruiz Diaz", "1")])

        payment = result.payments[0]
        assert payment.match_status == "review"
        assert payment.account_id is None
        assert payment.suggested_account_id == "p300"

    def test_nomatch_queues_one_pending_alias_per_key(self, importer, store):
        result = importer.import_batch(SCHOOL, [
            row("TRANSF PEREZ J", "1"),
            row("transf. perez j", "2"),
        ])

        pid = pending_alias_id(SCHOOL, "transf perez j")
        assert result.pending_alias_ids == [pid]
        pending = store.pending_aliases.list_pending(SCHOOL)
        assert [p.id for p in pending] == [pid]
        assert pending[0].payer_raw == "TRANSF PEREZ J"

    def test_player_rows_match_player_roster(self, importer):
        result = importer.import_batch(SCHOOL, [row("Sofia Ruiz", "1", target_type="player")])

        payment = result.payments[0]
        assert payment.target_type == "player"
        assert payment.account_id == "j500"

    def test_alias_applies_on_import(self, importer, store):
        AliasStore(store.aliases).upsert(SCHOOL, "TRANSF PEREZ J", "p123", source="confirmed")

        result = importer.import_batch(SCHOOL, [row("TRANSF PEREZ J", "1")])

        payment = result.payments[0]
        assert payment.match_status == "auto"
        assert payment.account_id == "p123"
        assert payment.match_confidence == 1.0

    def test_audit_entry_records_counters(self, importer, store):
        result = importer.import_batch(SCHOOL, [row("JUAN PEREZ", "1"), row("", "2")], actor_id=OPERATOR, source="excel")

        entries = store.audit.list_entries(SCHOOL, result.batch.id)
        assert [e.action for e in entries] == ["import_committed"]
        assert entries[0].actor_id == OPERATOR
        assert entries[0].details["source"] == "excel"
        assert entries[0].details["rows"] == 2
        assert entries[0].details["payments_count"] == 1


class TestIdempotency:

    def test_replayed_batch_returns_existing_batch(self, importer, store):
        rows = [row("JUAN PEREZ", "1"), row("Maria Gonzalez", "2")]

        first = importer.import_batch(SCHOOL, rows)
        second = importer.import_batch(SCHOOL, list(reversed(rows)))

        assert second.replayed is True
        assert second.batch.id == first.batch.id
        assert second.payments == []
        assert len(store.payments.list_payments(SCHOOL)) == 2
        assert len(store.payments.list_batches(SCHOOL)) == 1

    def test_overlapping_batch_skips_known_payments(self, importer, store):
        importer.import_batch(SCHOOL, [row("JUAN PEREZ", "1")])

        result = importer.import_batch(SCHOOL, [row("JUAN PEREZ", "1"), row("Maria Gonzalez", "2")])

        assert [p.provider_payment_id for p in result.payments] == ["2"]
        assert result.batch.duplicate_count == 1
        assert result.skipped[0].kind == "duplicate"
        assert result.skipped[0].idempotency_key == "mercadopago_1"
        assert len(store.payments.list_payments(SCHOOL)) == 2

    def test_payment_committed_by_concurrent_import_is_skipped(self, store, policy):
        class KeysReadBeforeCommit:
            """Lets another import commit right after the duplicate check."""

            def __init__(self, inner, race):
                self.inner = inner
                self.race = race

            def existing_keys(self, school_id, keys):
                known = self.inner.existing_keys(school_id, keys)
                if self.race:
                    self.race.pop()()
                return known

            def __getattr__(self, name):
                return getattr(self.inner, name)

        other = BatchImporter(store.roster, store.aliases, store.payments, policy, default_currency="ARS")
        payments = KeysReadBeforeCommit(store.payments, [lambda: other.import_batch(SCHOOL, [row("JUAN PEREZ", "1")])])
        importer = BatchImporter(store.roster, store.aliases, payments, policy, default_currency="ARS")

        result = importer.import_batch(SCHOOL, [row("JUAN PEREZ", "1"), row("Maria Gonzalez", "2")])

        assert [p.provider_payment_id for p in result.payments] == ["2"]
        assert [(s.row_index, s.kind, s.idempotency_key) for s in result.skipped] == [
            (0, "duplicate", "mercadopago_1"),
        ]
        assert result.batch.duplicate_count == 1
        assert result.batch.payments_count == 1
        assert len(store.payments.list_payments(SCHOOL)) == 2

    def test_duplicate_rows_within_a_batch(self, importer):
        result = importer.import_batch(SCHOOL, [row("Juan Perez"), row("JUAN PEREZ")])

        assert len(result.payments) == 1
        assert [(s.row_index, s.kind) for s in result.skipped] == [(1, "duplicate")]

    def test_redelivered_provider_payment_is_skipped(self, importer):
        importer.import_batch(SCHOOL, [row("JUAN PEREZ", "evt_1")])

        result = importer.import_batch(SCHOOL, [row("Juan Perez", "evt_1", amount="999")])

        assert result.replayed is True
        assert result.payments == []


class TestPartialFailure:

    def test_bad_rows_do_not_abort_the_batch(self, importer):
        result = importer.import_batch(SCHOOL, [
            row("JUAN PEREZ", "1"),
            row("Maria Gonzalez", "2", amount="abc"),
            row("", "3"),
        ])

        assert [p.provider_payment_id for p in result.payments] == ["1"]
        assert [(s.row_index, s.kind) for s in result.skipped] == [(1, "invalid"), (2, "invalid")]
        assert result.batch.invalid_count == 2
        assert result.skipped[0].raw["amount"] == "abc"

    def test_source_row_index_is_kept(self, importer):
        result = importer.import_batch(SCHOOL, [RawPaymentRow(payer_raw="", amount="10", period="2024-05", row_index=7)])

        assert result.skipped[0].row_index == 7

    def test_caller_skipped_rows_are_reported(self, importer):
        not_applied = SkippedRow(row_index=3, reason="not applied", kind="not_applied")

        result = importer.import_batch(SCHOOL, [RawPaymentRow(payer_raw="Juan Perez", amount="10", period="2024-05", row_index=2)], skipped=[not_applied])

        assert [(s.row_index, s.kind) for s in result.skipped] == [(3, "not_applied")]
        assert result.batch.invalid_count == 0

    def test_all_rows_invalid_still_commits_batch(self, importer, store):
        result = importer.import_batch(SCHOOL, [row("", "1")])

        assert result.batch.payments_count == 0
        assert result.batch.invalid_count == 1
        assert store.payments.get_batch(SCHOOL, result.batch.id) is not None
