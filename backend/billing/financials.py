# billing/financials.py
"""
Invoice financial model.

Pure functions over decimal.Decimal. Nothing here touches the database;
commands load rows, call these functions and persist the results.

Formulas:
    line_total = round(quantity * unit_price, 2)
    subtotal   = sum(line_total)
    tax_amount = round(subtotal * tax_rate / 100, 2)
    total      = subtotal + tax_amount
    outstanding balance = total - sum(payment.amount)

All rounding is ROUND_HALF_UP to the cent.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable


MONEY_Q = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")
# Largest value a 14,2 money column holds
MAX_MONEY = Decimal("999999999999.99")


class InvalidAmount(ValueError):
    """A monetary input that is not a finite number in the allowed range."""

    def __init__(self, message: str, field: str = "amount"):
        super().__init__(message)
        self.field = field


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal

    def as_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "tax_amount": self.tax_amount,
            "total": self.total,
        }


@dataclass(frozen=True)
class PaymentSummary:
    total: Decimal
    paid: Decimal
    outstanding: Decimal

    @property
    def is_settled(self) -> bool:
        return self.outstanding <= ZERO


def to_decimal(value, field: str = "amount") -> Decimal:
    """
    Convert input to a finite Decimal.

    Floats go through str() so 0.1 stays 0.1 rather than its binary
    expansion. Booleans, blanks, NaN and infinities are rejected.
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmount(f"{field} must be a number.", field)
    if isinstance(value, Decimal):
        result = value
    else:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise InvalidAmount(f"{field} must be a number.", field)
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            raise InvalidAmount(f"{field} must be a number.", field)
    if not result.is_finite():
        raise InvalidAmount(f"{field} must be a finite number.", field)
    return result


def quantize_money(value, field: str = "amount") -> Decimal:
    try:
        return to_decimal(value, field).quantize(MONEY_Q, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidAmount(f"{field} is too large.", field)


def _within_money_range(amount: Decimal, field: str) -> Decimal:
    if abs(amount) > MAX_MONEY:
        raise InvalidAmount(f"{field} cannot exceed {MAX_MONEY}.", field)
    return amount


def _non_negative(value, field: str) -> Decimal:
    amount = to_decimal(value, field)
    if amount < 0:
        raise InvalidAmount(f"{field} cannot be negative.", field)
    return amount


def validate_tax_rate(tax_rate) -> Decimal:
    rate = _non_negative(tax_rate, "tax_rate")
    if rate > HUNDRED:
        raise InvalidAmount("tax_rate cannot exceed 100.", "tax_rate")
    return rate


def recompute_line_total(quantity, unit_price) -> Decimal:
    """Return quantity * unit_price rounded to the cent."""
    q = _non_negative(quantity, "quantity")
    p = _non_negative(unit_price, "unit_price")
    return _within_money_range(quantize_money(q * p, "line_total"), "line_total")


def _field(item, name):
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def _line_total_of(item) -> Decimal:
    quantity = _field(item, "quantity")
    unit_price = _field(item, "unit_price")
    if quantity is not None and unit_price is not None:
        return recompute_line_total(quantity, unit_price)
    line_total = _field(item, "line_total")
    if line_total is None:
        raise InvalidAmount("Line item needs quantity and unit_price or line_total.", "line_total")
    return quantize_money(line_total)


def recompute_invoice_totals(line_items: Iterable, tax_rate) -> InvoiceTotals:
    """
    Reduce an invoice's line items to subtotal, tax and total.

    Line items may be model instances or mappings. Where quantity and
    unit_price are present the line total is recomputed from them, so a
    stale stored line_total cannot leak into the invoice.
    """
    rate = validate_tax_rate(tax_rate)
    subtotal = sum((_line_total_of(item) for item in line_items), ZERO)
    subtotal = _within_money_range(quantize_money(subtotal, "subtotal"), "subtotal")
    tax_amount = quantize_money(subtotal * rate / HUNDRED, "tax_amount")
    return InvoiceTotals(
        subtotal=subtotal,
        tax_amount=tax_amount,
        total=_within_money_range(subtotal + tax_amount, "total"),
    )


def validate_payment_amount(value) -> Decimal:
    """
    Parse a payment amount. Must be numeric, finite and strictly positive.

    Amounts with more than two decimal places are rejected rather than
    silently rounded.
    """
    amount = to_decimal(value, "amount")
    if amount <= 0:
        raise InvalidAmount("Payment amount must be greater than zero.", "amount")
    if amount > MAX_MONEY:
        raise InvalidAmount(f"Payment amount cannot exceed {MAX_MONEY}.", "amount")
    if amount != amount.quantize(MONEY_Q):
        raise InvalidAmount("Payment amount cannot have more than 2 decimal places.", "amount")
    return amount.quantize(MONEY_Q)


def _amount_of(payment) -> Decimal:
    return quantize_money(_field(payment, "amount"))


def payments_total(payments: Iterable) -> Decimal:
    return sum((_amount_of(p) for p in payments), ZERO)


def outstanding_balance(total, payments: Iterable) -> Decimal:
    return quantize_money(total) - payments_total(payments)


def summarize_invoice(total, payments: Iterable) -> PaymentSummary:
    """`total` may be an InvoiceTotals, an invoice or a plain amount."""
    if not isinstance(total, (Decimal, int, float, str)):
        total = _field(total, "total")
    payments = list(payments)
    total = quantize_money(total)
    paid = payments_total(payments)
    return PaymentSummary(total=total, paid=paid, outstanding=total - paid)
