"""Tests for core domain models - custom validators and derived properties."""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from pydantic import ValidationError
from uuid import uuid4

from core.models import (
    CANCELLABLE_STATUSES,
    SUBMITTABLE_STATUSES,
    Invoice,
    InvoiceCreate,
    InvoiceFilter,
    InvoicePage,
    InvoiceStatus,
    LineItemInput,
    PaymentCreate,
    PaymentMethod,
    PaymentStatus,
    RequestContext,
)


def _line_item(**overrides) -> dict:
    values = {"description": "Consulting", "quantity": "1", "unit_price": "100.00", "tax_rate": "10"}
    values.update(overrides)
    return values


def _invoice(**overrides) -> Invoice:
    now = datetime(2025, 3, 7, 12, 0, tzinfo=timezone.utc)
    values = {
        "id": uuid4(), "organization_id": uuid4(), "customer_id": uuid4(), "created_by": uuid4(),
        "invoice_number": "INV-20250307-0001", "invoice_date": date(2025, 3, 7),
        "due_date": date(2025, 4, 6), "currency": "MYR", "status": InvoiceStatus.VALIDATED,
        "subtotal": Decimal("200.00"), "tax_amount": Decimal("20.00"), "total_amount": Decimal("220.00"),
        "payment_status": PaymentStatus.UNPAID, "paid_amount": Decimal("0"), "payment_date": None,
        "government_id": None, "government_status": None, "submitted_at": None,
        "validated_at": None, "cancelled_at": None, "document": None, "notes": None,
        "created_at": now, "updated_at": now,
    }
    values.update(overrides)
    return Invoice(**values)


class TestLineItemInput:

    def test_defaults_tax_rate_to_zero(self):
        item = LineItemInput(description="Widget", quantity="3", unit_price="9.99")
        assert item.tax_rate == Decimal("0")

    @pytest.mark.parametrize("field,value", [
        ("quantity", "0"),
        ("unit_price", "-0.01"),
        ("tax_rate", "100.01"),
        ("description", ""),
    ])
    def test_rejects_out_of_range(self, field, value):
        with pytest.raises(ValidationError, match=field):
            LineItemInput(**_line_item(**{field: value}))


class TestInvoiceCreate:

    def test_requires_a_line_item(self):
        with pytest.raises(ValidationError, match="line_items"):
            InvoiceCreate(customer_id=uuid4(), invoice_date=date(2025, 3, 7), line_items=[])

    def test_rejects_more_than_100_line_items(self):
        with pytest.raises(ValidationError, match="line_items"):
            InvoiceCreate(
                customer_id=uuid4(), invoice_date=date(2025, 3, 7),
                line_items=[_line_item() for _ in range(101)],
            )

    def test_rejects_lowercase_currency(self):
        with pytest.raises(ValidationError, match="currency"):
            InvoiceCreate(
                customer_id=uuid4(), invoice_date=date(2025, 3, 7), currency="myr", line_items=[_line_item()]
            )


class TestInvoiceFilter:

    def test_rejects_inverted_date_range(self):
        with pytest.raises(ValidationError, match="date_from must not be after date_to"):
            InvoiceFilter(date_from=date(2025, 3, 8), date_to=date(2025, 3, 7))

    def test_accepts_single_day(self):
        f = InvoiceFilter(date_from=date(2025, 3, 7), date_to=date(2025, 3, 7))
        assert f.date_from == f.date_to


class TestInvoice:

    def test_balance_due(self):
        assert _invoice(paid_amount=Decimal("50.00")).balance_due == Decimal("170.00")

    def test_overdue_after_due_date_until_paid(self):
        invoice = _invoice()
        assert not invoice.is_overdue(date(2025, 4, 6))
        assert invoice.is_overdue(date(2025, 4, 7))
        assert not _invoice(payment_status=PaymentStatus.PAID).is_overdue(date(2025, 4, 7))

    def test_no_due_date_never_overdue(self):
        assert not _invoice(due_date=None).is_overdue(date(2030, 1, 1))

    def test_cancelled_never_overdue(self):
        assert not _invoice(status=InvoiceStatus.CANCELLED).is_overdue(date(2025, 4, 7))

    def test_government_outcome(self):
        assert not _invoice().has_government_outcome
        assert _invoice(government_id="GOV-1").has_government_outcome


class TestStatusSets:

    def test_validated_and_cancelled_not_cancellable(self):
        assert InvoiceStatus.VALIDATED not in CANCELLABLE_STATUSES
        assert InvoiceStatus.CANCELLED not in CANCELLABLE_STATUSES

    def test_only_draft_and_pending_submittable(self):
        assert SUBMITTABLE_STATUSES == {InvoiceStatus.DRAFT, InvoiceStatus.PENDING_APPROVAL}


class TestInvoicePage:

    @pytest.mark.parametrize("total,limit,pages", [(0, 20, 0), (20, 20, 1), (21, 20, 2), (3, 2, 2)])
    def test_total_pages(self, total, limit, pages):
        assert InvoicePage(invoices=[], page=1, limit=limit, total=total).total_pages == pages


class TestPaymentCreate:

    def test_rejects_non_positive_amount(self):
        with pytest.raises(ValidationError, match="amount"):
            PaymentCreate(amount="0", payment_date=date(2025, 3, 7), payment_method=PaymentMethod.CASH)

    def test_rejects_three_decimal_places(self):
        with pytest.raises(ValidationError, match="amount"):
            PaymentCreate(amount="1.005", payment_date=date(2025, 3, 7), payment_method=PaymentMethod.CASH)


class TestRequestContext:

    def test_is_frozen(self):
        ctx = RequestContext(organization_id=uuid4(), user_id=uuid4())
        with pytest.raises(ValidationError):
            ctx.organization_id = uuid4()
