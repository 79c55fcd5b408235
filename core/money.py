"""
Invoice arithmetic.

Pure functions, no I/O. All amounts are Decimal and every figure that leaves
this module is rounded to 2 places using ROUND_HALF_UP.

Invoice totals are computed by summing unrounded per-item subtotal and tax and
rounding once at the end. Summing already-rounded line totals would compound
rounding error across many line items.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Protocol

_TWO_PLACES = Decimal("0.01")
_HUNDRED = Decimal("100")


class PricedItem(Protocol):
    """Anything with quantity, unit price and tax rate (percent)."""

    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal


@dataclass(frozen=True)
class LineTotals:
    """Rounded figures for a single line item."""

    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal


@dataclass(frozen=True)
class InvoiceTotals:
    """Rounded figures for a whole invoice."""

    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def round_money(value: Decimal | int | str) -> Decimal:
    """Round to 2 decimal places, half-up."""
    return Decimal(value).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def line_total(quantity: Decimal, unit_price: Decimal, tax_rate: Decimal) -> LineTotals:
    """
    Compute subtotal, tax and total for one line item.

    Args:
        quantity: Units billed (> 0)
        unit_price: Price per unit (>= 0)
        tax_rate: Tax rate in percent (0-100)

    Returns:
        LineTotals with each figure rounded independently from exact values.
    """
    subtotal = Decimal(quantity) * Decimal(unit_price)
    tax_amount = subtotal * Decimal(tax_rate) / _HUNDRED
    return LineTotals(
        subtotal=round_money(subtotal),
        tax_amount=round_money(tax_amount),
        total=round_money(subtotal + tax_amount),
    )


def invoice_totals(items: Iterable[PricedItem]) -> InvoiceTotals:
    """
    Compute invoice subtotal, tax and total from its line items.

    Subtotal and tax are accumulated unrounded and rounded once. The total is
    the sum of the rounded subtotal and tax so that the persisted figures
    always satisfy subtotal + tax_amount == total_amount exactly. Rounding
    subtotal + tax as a single figure instead differs by 0.01 in half-cent
    cases (10.004 + 0.004 gives 10.01 there, 10.00 here).
    """
    subtotal = Decimal("0")
    tax_amount = Decimal("0")

    for item in items:
        item_subtotal = Decimal(item.quantity) * Decimal(item.unit_price)
        subtotal += item_subtotal
        tax_amount += item_subtotal * Decimal(item.tax_rate) / _HUNDRED

    rounded_subtotal = round_money(subtotal)
    rounded_tax = round_money(tax_amount)
    return InvoiceTotals(
        subtotal=rounded_subtotal,
        tax_amount=rounded_tax,
        total_amount=rounded_subtotal + rounded_tax,
    )
