# tests/test_financials.py
"""
Tests for the invoice financial model (billing/financials.py).

Pure functions, no database.
"""

from decimal import Decimal

import pytest

from billing.financials import (
    InvalidAmount,
    InvoiceTotals,
    outstanding_balance,
    payments_total,
    quantize_money,
    recompute_invoice_totals,
    recompute_line_total,
    summarize_invoice,
    to_decimal,
    validate_payment_amount,
)


D = Decimal


class TestLineTotal:
    def test_quantity_times_price(self):
        assert recompute_line_total(2, "50.00") == D("100.00")

    def test_rounds_half_up_to_cents(self):
        # 1.5 x 0.05 = 0.075 -> 0.08
        assert recompute_line_total("1.5", "0.05") == D("0.08")
        # 0.333 x 10.00 = 3.33
        assert recompute_line_total("0.333", "10.00") == D("3.33")

    def test_zero_quantity(self):
        assert recompute_line_total(0, "99.99") == D("0.00")

    def test_result_beyond_money_column_rejected(self):
        with pytest.raises(InvalidAmount) as exc:
            recompute_line_total("999999999.999", "999999999999.99")
        assert exc.value.field == "line_total"

    def test_largest_storable_line_total(self):
        assert recompute_line_total(1, "999999999999.99") == D("999999999999.99")

    @pytest.mark.parametrize("quantity,price", [(-1, "10"), (1, "-0.01")])
    def test_negative_inputs_rejected(self, quantity, price):
        with pytest.raises(InvalidAmount):
            recompute_line_total(quantity, price)


class TestInvoiceTotals:
    def test_reference_scenario(self):
        items = [
            {"quantity": 2, "unit_price": "50.00"},
            {"quantity": 1, "unit_price": "25.00"},
        ]
        totals = recompute_invoice_totals(items, 10)
        assert totals == InvoiceTotals(
            subtotal=D("125.00"),
            tax_amount=D("12.50"),
            total=D("137.50"),
        )

    def test_empty_invoice_is_zero(self):
        totals = recompute_invoice_totals([], "15")
        assert totals.subtotal == totals.tax_amount == totals.total == D("0.00")

    def test_zero_tax_total_equals_subtotal(self):
        totals = recompute_invoice_totals([{"quantity": 3, "unit_price": "9.99"}], 0)
        assert totals.tax_amount == D("0.00")
        assert totals.total == totals.subtotal == D("29.97")

    def test_tax_is_rounded_half_up(self):
        # 10.05 x 5% = 0.5025 -> 0.50; 10.10 x 5% = 0.505 -> 0.51
        assert recompute_invoice_totals([{"line_total": "10.05"}], 5).tax_amount == D("0.50")
        assert recompute_invoice_totals([{"line_total": "10.10"}], 5).tax_amount == D("0.51")

    def test_idempotent_and_order_independent(self):
        items = [
            {"quantity": "1.25", "unit_price": "19.99"},
            {"quantity": 4, "unit_price": "0.35"},
            {"quantity": 1, "unit_price": "100"},
        ]
        first = recompute_invoice_totals(items, "7.5")
        assert recompute_invoice_totals(items, "7.5") == first
        assert recompute_invoice_totals(list(reversed(items)), "7.5") == first

    def test_stale_line_total_is_ignored_when_inputs_present(self):
        items = [{"quantity": 2, "unit_price": "50.00", "line_total": "1.00"}]
        assert recompute_invoice_totals(items, 0).subtotal == D("100.00")

    def test_accepts_objects(self):
        class Line:
            quantity = D("2")
            unit_price = D("12.50")

        assert recompute_invoice_totals([Line()], 0).total == D("25.00")

    @pytest.mark.parametrize("rate", ["-1", "100.01", "abc"])
    def test_tax_rate_out_of_range(self, rate):
        with pytest.raises(InvalidAmount):
            recompute_invoice_totals([], rate)

    def test_total_beyond_money_column_rejected(self):
        items = [{"line_total": "999999999999.99"}]
        assert recompute_invoice_totals(items, 0).total == D("999999999999.99")
        with pytest.raises(InvalidAmount):
            recompute_invoice_totals(items, 1)
        with pytest.raises(InvalidAmount):
            recompute_invoice_totals(items * 2, 0)

    def test_deleting_a_line_reduces_totals(self):
        items = [
            {"quantity": 2, "unit_price": "50.00"},
            {"quantity": 1, "unit_price": "25.00"},
        ]
        totals = recompute_invoice_totals(items[:1], 10)
        assert totals.subtotal == D("100.00")
        assert totals.tax_amount == D("10.00")
        assert totals.total == D("110.00")


class TestPayments:
    def test_full_payment_settles(self):
        summary = summarize_invoice(D("137.50"), [{"amount": "137.50"}])
        assert summary.outstanding == D("0.00")
        assert summary.is_settled

    def test_partial_payments(self):
        payments = [{"amount": "100.00"}, {"amount": "20.00"}]
        assert payments_total(payments) == D("120.00")
        assert outstanding_balance(D("137.50"), payments) == D("17.50")
        assert not summarize_invoice(D("137.50"), payments).is_settled

    def test_summary_from_totals(self):
        totals = recompute_invoice_totals([{"quantity": 1, "unit_price": "10"}], 0)
        summary = summarize_invoice(totals, [])
        assert summary.total == D("10.00")
        assert summary.paid == D("0.00")

    @pytest.mark.parametrize("value", [-5, 0, "0.00", "abc", "", None, "NaN", "Infinity", True, "1e30", "1000000000000.00"])
    def test_invalid_payment_amounts(self, value):
        with pytest.raises(InvalidAmount):
            validate_payment_amount(value)

    def test_too_many_decimals_rejected(self):
        with pytest.raises(InvalidAmount):
            validate_payment_amount("10.001")

    @pytest.mark.parametrize("value,expected", [("137.50", "137.50"), (12, "12.00"), (0.1, "0.10")])
    def test_valid_payment_amounts(self, value, expected):
        assert validate_payment_amount(value) == D(expected)

    def test_invalid_amount_is_a_value_error(self):
        with pytest.raises(ValueError):
            validate_payment_amount("abc")


class TestConversions:
    def test_float_goes_through_str(self):
        assert to_decimal(0.1) == D("0.1")

    def test_quantize_money(self):
        assert quantize_money("2.675") == D("2.68")
        assert quantize_money(3) == D("3.00")

    def test_quantize_beyond_precision_is_invalid_amount(self):
        with pytest.raises(InvalidAmount):
            quantize_money("1e30")

    def test_error_names_field(self):
        with pytest.raises(InvalidAmount) as exc:
            to_decimal("x", field="unit_price")
        assert exc.value.field == "unit_price"
