"""
Tests for the late-payment penalty policy.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from django.test import SimpleTestCase

from billing.models import Bill
from billing.penalties import calculate_penalty, days_overdue

DUE = datetime(2024, 1, 10, tzinfo=timezone.utc)


def make_bill(status="pending", due_date=DUE):
    bill = Bill(
        id=1,
        bill_number="BILL-2024-01-001",
        tenant_id=1,
        room_id=1,
        month=1,
        year=2024,
        due_date=due_date,
        base_amount=Decimal("1000.00"),
        status=status,
    )
    bill.recalculate_totals()
    return bill


class DaysOverdueTests(SimpleTestCase):
    def test_whole_days_are_counted(self):
        self.assertEqual(days_overdue(DUE, DUE + timedelta(days=5)), 5)

    def test_partial_days_are_floored(self):
        self.assertEqual(days_overdue(DUE, DUE + timedelta(days=2, hours=23)), 2)

    def test_not_past_due_is_zero(self):
        self.assertEqual(days_overdue(DUE, DUE), 0)
        self.assertEqual(days_overdue(DUE, DUE - timedelta(days=3)), 0)


class CalculatePenaltyTests(SimpleTestCase):
    def test_five_days_overdue(self):
        quote = calculate_penalty(make_bill(), datetime(2024, 1, 15, tzinfo=timezone.utc))

        self.assertTrue(quote.should_apply)
        self.assertEqual(quote.days, 5)
        self.assertEqual(quote.amount, Decimal("250.00"))

    def test_no_penalty_on_due_date(self):
        quote = calculate_penalty(make_bill(), DUE)

        self.assertFalse(quote.should_apply)
        self.assertEqual(quote.amount, Decimal("0"))
        self.assertEqual(quote.reason, "not due")

    def test_no_penalty_before_due_date(self):
        quote = calculate_penalty(make_bill(), DUE - timedelta(days=1))

        self.assertFalse(quote.should_apply)
        self.assertEqual(quote.days, 0)

    def test_paid_bill_never_accrues(self):
        quote = calculate_penalty(make_bill(status="paid"), DUE + timedelta(days=30))

        self.assertFalse(quote.should_apply)
        self.assertEqual(quote.amount, Decimal("0"))
        self.assertEqual(quote.reason, "already paid")

    def test_first_partial_day_is_overdue_with_zero_penalty(self):
        quote = calculate_penalty(make_bill(), DUE + timedelta(hours=6))

        self.assertTrue(quote.should_apply)
        self.assertEqual(quote.days, 0)
        self.assertEqual(quote.amount, Decimal("0.00"))

    def test_custom_rate(self):
        quote = calculate_penalty(
            make_bill(), DUE + timedelta(days=4), rate_per_day=Decimal("12.50")
        )
        self.assertEqual(quote.amount, Decimal("50.00"))

    def test_partially_paid_and_overdue_bills_accrue(self):
        now = DUE + timedelta(days=3)
        for status in ("partially_paid", "overdue"):
            quote = calculate_penalty(make_bill(status=status), now)
            self.assertTrue(quote.should_apply, status)
            self.assertEqual(quote.amount, Decimal("150.00"))

    def test_penalty_depends_only_on_due_date_and_now(self):
        bill = make_bill(status="overdue")
        bill.penalty_amount = Decimal("999.00")
        bill.penalty_days = 40
        bill.recalculate_totals()

        quote = calculate_penalty(bill, DUE + timedelta(days=2))
        self.assertEqual(quote.amount, Decimal("100.00"))
        self.assertEqual(quote.days, 2)

    def test_penalty_never_decreases_as_time_passes(self):
        bill = make_bill()
        previous = Decimal("0")
        for hours in range(0, 24 * 20, 7):
            quote = calculate_penalty(bill, DUE + timedelta(hours=hours))
            self.assertGreaterEqual(quote.amount, previous)
            previous = quote.amount
