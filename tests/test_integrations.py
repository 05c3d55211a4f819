# tests/test_integrations.py

"""
Tests for the Stripe webhook mapping and the Excel export reader.
"""

import pytest
from decimal import Decimal
from io import BytesIO

import openpyxl

from payrec.core.errors import ValidationError
from payrec.integrations.excel import ColumnMapping, is_applied, read_payment_rows
from payrec.integrations.stripe import event_to_row

from conftest import SCHOOL


# ============================================
# Stripe
# ============================================

def charge_event(**overrides) -> dict:
    charge = {
        "id": "ch_1",
        "object": "charge",
        "amount": 150000,
        "currency": "ars",
        "created": 1714560000,
        "description": "Cuota mayo",
        "payment_intent": "pi_1",
        "billing_details": {"name": "Juan Perez", "email": "juan@example.com"},
        "metadata": {"school_id": SCHOOL, "period": "2024-05"},
    }
    charge.update(overrides)
    return {"id": "evt_1", "type": "charge.succeeded", "data": {"object": charge}}


class TestStripeEventToRow:

    def test_charge_becomes_row(self):
        school_id, row = event_to_row(charge_event())

        assert school_id == SCHOOL
        assert row.payer_raw == "Juan Perez"
        assert row.amount == Decimal("1500")
        assert row.currency == "ARS"
        assert row.period == "2024-05"
        assert row.provider == "stripe"
        assert row.provider_payment_id == "pi_1"
        assert row.paid_at == 1714560000

    def test_charge_without_intent_uses_charge_id(self):
        _, row = event_to_row(charge_event(payment_intent=None))
        assert row.provider_payment_id == "ch_1"

    def test_zero_decimal_currency(self):
        _, row = event_to_row(charge_event(amount=5000, currency="clp"))
        assert row.amount == Decimal("5000")

    def test_payer_falls_back_to_metadata_then_email(self):
        _, row = event_to_row(charge_event(
            billing_details={},
            metadata={"school_id": SCHOOL, "period": "2024-05", "payer_first_name": "Juan", "payer_last_name": "Perez"},
        ))
        assert row.payer_raw == "Juan Perez"

        _, row = event_to_row(charge_event(billing_details={}, receipt_email="jp@example.com"))
        assert row.payer_raw == "jp@example.com"

    def test_player_target_from_metadata(self):
        _, row = event_to_row(charge_event(metadata={"school_id": SCHOOL, "period": "2024-05", "target_type": "player"}))
        assert row.target_type == "player"

    def test_ignored_events(self):
        assert event_to_row({"id": "evt_2", "type": "customer.created", "data": {"object": {}}}) is None
        assert event_to_row(charge_event(metadata={"period": "2024-05"})) is None

    def test_webhook_row_imports_once(self, importer):
        _, row = event_to_row(charge_event())

        first = importer.import_batch(SCHOOL, [row], source="stripe")
        again = importer.import_batch(SCHOOL, [row], source="stripe")

        assert first.payments[0].account_id == "p123"
        assert first.payments[0].idempotency_key == "stripe_pi_1"
        assert again.replayed is True


# ============================================
# Excel
# ============================================

def workbook(rows: list[list]) -> bytes:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Pagos"
    for values in rows:
        ws.append(values)
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


MAPPING = ColumnMapping(payer=["Apellido", "Nombre"], amount="Importe", applied="Aplicado", provider_payment_id="Operación")


class TestExcelReader:

    def test_reads_rows_and_skips_not_applied(self):
        content = workbook([
            ["Apellido", "Nombre", "Importe", "Aplicado", "Operacion"],
            ["Perez", "Juan", 1500, "Sí", "op-1"],
            ["Gonzalez", "Maria", 1500, "No", "op-2"],
            [None, None, None, None, None],
            ["Ruiz", "Carlos", "1.500,00", "x", "op-3"],
        ])

        rows, skipped = read_payment_rows(content, MAPPING, period="2024-05", currency="ARS")

        assert [r.payer_raw for r in rows] == ["Perez Juan", "Ruiz Carlos"]
        assert [r.row_index for r in rows] == [2, 5]
        assert rows[0].provider == "excel"
        assert rows[0].period == "2024-05"
        assert rows[0].provider_payment_id == "op-1"
        assert [(s.row_index, s.kind) for s in skipped] == [(3, "not_applied")]

    def test_missing_column(self):
        content = workbook([["Apellido", "Nombre", "Monto"], ["Perez", "Juan", 1500]])

        with pytest.raises(ValidationError, match="Importe"):
            read_payment_rows(content, ColumnMapping(payer=["Apellido"], amount="Importe"), period="2024-05")

    def test_period_is_required(self):
        content = workbook([["Apellido", "Importe"], ["Perez", 1500]])

        with pytest.raises(ValidationError):
            read_payment_rows(content, ColumnMapping(payer=["Apellido"], amount="Importe"))

    def test_unknown_sheet(self):
        content = workbook([["Apellido", "Importe"]])

        with pytest.raises(ValidationError):
            read_payment_rows(content, ColumnMapping(payer=["Apellido"], amount="Importe"), period="2024-05", sheet="Otra")

    def test_not_an_excel_file(self):
        with pytest.raises(ValidationError):
            read_payment_rows(b"payer,amount\n", MAPPING, period="2024-05")

    def test_rows_feed_the_importer(self, importer):
        content = workbook([
            ["Apellido", "Nombre", "Importe", "Aplicado", "Operacion"],
            ["Perez", "Juan", 1500, "si", "op-1"],
            ["Nadie", "", "abc", "si", "op-2"],
        ])
        rows, skipped = read_payment_rows(content, MAPPING, period="2024-05")

        result = importer.import_batch(SCHOOL, rows, source="excel", skipped=skipped)

        # "Perez Juan" has the same tokens as "Juan Pérez" but not the same key
        assert result.payments[0].match_status == "review"
        assert result.payments[0].suggested_account_id == "p123"
        assert [(s.row_index, s.kind) for s in result.skipped] == [(3, "invalid")]


@pytest.mark.parametrize("value, expected", [
    ("Sí", True), ("X", True), (True, True), (1, True),
    ("No", False), ("", False), (None, False), (False, False),
])
def test_is_applied(value, expected):
    assert is_applied(value) is expected
