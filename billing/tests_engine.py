"""
Tests for the penalty accrual engine, payment recording and reminders.
Run against the in-memory bill store; no database involved.
"""
import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from django.test import SimpleTestCase

from billing.clock import FrozenClock
from billing.engine import PenaltyAccrualEngine
from billing.events import PaymentReminderDue, PenaltiesBatchApplied, PenaltyApplied
from billing.exceptions import (
    BillNotFound,
    InvalidAdjustment,
    InvalidPayment,
    NotifyError,
    StoreError,
    VersionConflict,
)
from billing.models import Bill
from billing.payments import record_payment
from billing.reminders import send_payment_reminders
from billing.store import InMemoryBillStore

DUE = datetime(2024, 1, 10, tzinfo=timezone.utc)
NOW = datetime(2024, 1, 15, tzinfo=timezone.utc)


def make_bill(pk=1, base="1000.00", due_date=DUE, status="pending", paid="0.00"):
    bill = Bill(
        id=pk,
        bill_number=f"BILL-2024-01-{pk:03d}",
        tenant_id=100 + pk,
        room_id=pk,
        month=1,
        year=2024,
        due_date=due_date,
        base_amount=Decimal(base),
        paid_amount=Decimal(paid),
        status=status,
    )
    bill.recalculate_totals()
    return bill


def assert_totals_consistent(test, bill):
    test.assertEqual(bill.total_amount, bill.base_amount + bill.penalty_amount)
    test.assertEqual(
        bill.remaining_amount,
        max(Decimal("0"), bill.total_amount - bill.paid_amount),
    )


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)


class BrokenNotifier:
    def notify(self, event):
        raise NotifyError("smtp down")


class FailingSaveStore(InMemoryBillStore):
    def __init__(self, bills, fail_ids):
        super().__init__(bills)
        self.fail_ids = set(fail_ids)

    def save(self, bill):
        if bill.pk in self.fail_ids:
            raise StoreError("database unavailable")
        return super().save(bill)


class ConcurrentPaymentStore(InMemoryBillStore):
    """A payment lands between the engine's read and its first write."""

    def __init__(self, bills, payment):
        super().__init__(bills)
        self.payment = Decimal(payment)
        self.saves = 0

    def save(self, bill):
        self.saves += 1
        if self.payment:
            stored = self.find_by_id(bill.pk)
            stored.paid_amount += self.payment
            stored.recalculate_totals()
            stored.status = "paid" if stored.remaining_amount == 0 else "partially_paid"
            self.payment = Decimal("0")
            super().save(stored)
        return super().save(bill)


class AlwaysConflictingStore(InMemoryBillStore):
    def __init__(self, bills):
        super().__init__(bills)
        self.attempts = 0

    def save(self, bill):
        self.attempts += 1
        raise VersionConflict(bill.pk, bill.version)


def build_engine(store, notifier=None, **kwargs):
    return PenaltyAccrualEngine(
        store=store,
        notifier=notifier if notifier is not None else RecordingNotifier(),
        clock=FrozenClock(NOW),
        **kwargs,
    )


# =========================
# apply_penalty_to_bill
# =========================
class ApplyPenaltyToBillTests(SimpleTestCase):
    def setUp(self):
        self.bill = make_bill()
        self.store = InMemoryBillStore([self.bill])
        self.notifier = RecordingNotifier()
        self.engine = build_engine(self.store, self.notifier)

    def test_overdue_bill_gets_daily_penalty(self):
        result = self.engine.apply_penalty_to_bill(self.bill, NOW)

        self.assertTrue(result.applied)
        self.assertEqual(result.amount, Decimal("250.00"))
        self.assertEqual(self.bill.penalty_days, 5)
        self.assertEqual(self.bill.penalty_amount, Decimal("250.00"))
        self.assertEqual(self.bill.total_amount, Decimal("1250.00"))
        self.assertEqual(self.bill.remaining_amount, Decimal("1250.00"))
        self.assertEqual(self.bill.penalty_applied_at, NOW)
        self.assertEqual(self.bill.status, "overdue")

    def test_penalty_is_persisted(self):
        self.engine.apply_penalty_to_bill(self.bill, NOW)

        stored = self.store.get(self.bill.pk)
        self.assertEqual(stored.penalty_amount, Decimal("250.00"))
        self.assertEqual(stored.total_amount, Decimal("1250.00"))
        self.assertEqual(stored.status, "overdue")
        self.assertEqual(stored.version, self.bill.version)

    def test_penalty_event_is_emitted(self):
        self.engine.apply_penalty_to_bill(self.bill, NOW)

        self.assertEqual(len(self.notifier.events), 1)
        event = self.notifier.events[0]
        self.assertIsInstance(event, PenaltyApplied)
        self.assertEqual(event.bill_id, self.bill.pk)
        self.assertEqual(event.tenant_id, self.bill.tenant_id)
        self.assertEqual(event.amount, Decimal("250.00"))
        self.assertEqual(event.days_overdue, 5)
        self.assertEqual(event.total_outstanding, Decimal("1250.00"))

    def test_uses_clock_when_no_instant_given(self):
        result = self.engine.apply_penalty_to_bill(self.bill)

        self.assertEqual(result.amount, Decimal("250.00"))
        self.assertEqual(self.bill.penalty_applied_at, NOW)

    def test_applying_twice_is_idempotent(self):
        self.engine.apply_penalty_to_bill(self.bill, NOW)
        first = (self.bill.penalty_amount, self.bill.total_amount, self.bill.remaining_amount)

        self.engine.apply_penalty_to_bill(self.bill, NOW)
        second = (self.bill.penalty_amount, self.bill.total_amount, self.bill.remaining_amount)

        self.assertEqual(first, second)
        self.assertEqual(self.bill.total_amount, Decimal("1250.00"))

    def test_later_run_replaces_penalty_instead_of_adding(self):
        self.engine.apply_penalty_to_bill(self.bill, NOW)
        self.engine.apply_penalty_to_bill(self.bill, NOW + timedelta(days=2))

        self.assertEqual(self.bill.penalty_days, 7)
        self.assertEqual(self.bill.penalty_amount, Decimal("350.00"))
        self.assertEqual(self.bill.total_amount, Decimal("1350.00"))
        self.assertEqual(self.bill.base_amount, Decimal("1000.00"))
        assert_totals_consistent(self, self.bill)

    def test_not_due_bill_is_untouched(self):
        result = self.engine.apply_penalty_to_bill(self.bill, DUE - timedelta(days=1))

        self.assertFalse(result.applied)
        self.assertEqual(result.amount, Decimal("0"))
        self.assertEqual(result.reason, "not due")
        self.assertEqual(self.bill.status, "pending")
        self.assertEqual(self.bill.version, 0)
        self.assertEqual(self.store.get(self.bill.pk).version, 0)
        self.assertEqual(self.notifier.events, [])

    def test_partially_paid_bill_keeps_status(self):
        bill = make_bill(pk=2, status="partially_paid", paid="400.00")
        store = InMemoryBillStore([bill])
        engine = build_engine(store)

        result = engine.apply_penalty_to_bill(bill, NOW)

        self.assertTrue(result.applied)
        self.assertEqual(bill.status, "partially_paid")
        self.assertEqual(bill.total_amount, Decimal("1250.00"))
        self.assertEqual(bill.remaining_amount, Decimal("850.00"))

    def test_paid_bill_is_frozen(self):
        bill = make_bill(pk=3, status="paid", paid="1000.00")
        store = InMemoryBillStore([bill])
        notifier = RecordingNotifier()
        engine = build_engine(store, notifier)

        for days in (1, 5, 30):
            result = engine.apply_penalty_to_bill(bill, DUE + timedelta(days=days))
            self.assertFalse(result.applied)
            self.assertEqual(result.reason, "already paid")

        self.assertEqual(bill.penalty_amount, Decimal("0"))
        self.assertEqual(bill.remaining_amount, Decimal("0"))
        self.assertEqual(store.get(bill.pk).version, 0)
        self.assertEqual(notifier.events, [])

    def test_notifier_failure_does_not_undo_penalty(self):
        engine = build_engine(self.store, BrokenNotifier())

        with self.assertLogs("billing.engine", level="ERROR"):
            result = engine.apply_penalty_to_bill(self.bill, NOW)

        self.assertTrue(result.applied)
        self.assertEqual(self.store.get(self.bill.pk).penalty_amount, Decimal("250.00"))

    def test_store_failure_leaves_bill_untouched(self):
        store = FailingSaveStore([self.bill], fail_ids=[self.bill.pk])
        engine = build_engine(store, self.notifier)

        with self.assertRaises(StoreError):
            engine.apply_penalty_to_bill(self.bill, NOW)

        self.assertEqual(self.bill.penalty_amount, Decimal("0"))
        self.assertEqual(self.bill.total_amount, Decimal("1000.00"))
        self.assertEqual(self.bill.status, "pending")
        self.assertEqual(self.notifier.events, [])

    def test_concurrent_payment_is_retried_and_preserved(self):
        store = ConcurrentPaymentStore([self.bill], payment="300.00")
        engine = build_engine(store)

        with self.assertLogs("billing.store", level="WARNING"):
            result = engine.apply_penalty_to_bill(self.bill, NOW)

        self.assertTrue(result.applied)
        stored = store.get(self.bill.pk)
        self.assertEqual(stored.paid_amount, Decimal("300.00"))
        self.assertEqual(stored.penalty_amount, Decimal("250.00"))
        self.assertEqual(stored.total_amount, Decimal("1250.00"))
        self.assertEqual(stored.remaining_amount, Decimal("950.00"))
        self.assertEqual(stored.status, "partially_paid")
        self.assertEqual(self.bill.remaining_amount, Decimal("950.00"))

    def test_exhausted_conflicts_are_reported(self):
        store = AlwaysConflictingStore([self.bill])
        engine = build_engine(store, max_save_attempts=3)

        with self.assertLogs("billing.store", level="WARNING"):
            with self.assertRaises(VersionConflict):
                engine.apply_penalty_to_bill(self.bill, NOW)

        self.assertEqual(store.attempts, 3)
        self.assertEqual(self.bill.penalty_amount, Decimal("0"))


# =========================
# run_batch
# =========================
class RunBatchTests(SimpleTestCase):
    def test_batch_applies_to_overdue_bills_only(self):
        bills = [
            make_bill(pk=1),
            make_bill(pk=2, status="partially_paid", paid="100.00"),
            make_bill(pk=3, status="paid", paid="1000.00"),
            make_bill(pk=4, due_date=NOW + timedelta(days=3)),
        ]
        store = InMemoryBillStore(bills)
        notifier = RecordingNotifier()
        engine = build_engine(store, notifier)

        result = engine.run_batch(NOW)

        self.assertEqual(result.processed_bills, 2)
        self.assertEqual(result.penalties_applied, 2)
        self.assertEqual(result.total_penalty_amount, Decimal("500.00"))
        self.assertEqual(result.failures, [])
        self.assertEqual(store.get(3).penalty_amount, Decimal("0"))
        self.assertEqual(store.get(4).status, "pending")

        summaries = [e for e in notifier.events if isinstance(e, PenaltiesBatchApplied)]
        self.assertEqual(len(summaries), 1)
        self.assertEqual(summaries[0].count, 2)
        self.assertEqual(summaries[0].total_amount, Decimal("500.00"))

    def test_one_failing_bill_does_not_abort_batch(self):
        bills = [make_bill(pk=1), make_bill(pk=2), make_bill(pk=3)]
        store = FailingSaveStore(bills, fail_ids=[2])
        engine = build_engine(store)

        with self.assertLogs("billing.engine", level="ERROR"):
            result = engine.run_batch(NOW)

        self.assertEqual(result.penalties_applied, 2)
        self.assertEqual(result.total_penalty_amount, Decimal("500.00"))
        self.assertEqual(result.processed_bills, 3)
        self.assertEqual(len(result.failures), 1)
        self.assertEqual(result.failures[0].bill_id, 2)
        self.assertEqual(result.failures[0].code, "STORE_ERROR")

        untouched = store.get(2)
        self.assertEqual(untouched.penalty_amount, Decimal("0"))
        self.assertEqual(untouched.total_amount, Decimal("1000.00"))
        self.assertEqual(untouched.status, "pending")
        self.assertEqual(untouched.version, 0)

    def test_rerunning_batch_reaches_same_state(self):
        store = InMemoryBillStore([make_bill(pk=1), make_bill(pk=2, base="800.00")])
        engine = build_engine(store)

        engine.run_batch(NOW)
        first = [(store.get(pk).penalty_amount, store.get(pk).total_amount) for pk in (1, 2)]
        engine.run_batch(NOW)
        second = [(store.get(pk).penalty_amount, store.get(pk).total_amount) for pk in (1, 2)]

        self.assertEqual(first, second)
        self.assertEqual(second[1], (Decimal("250.00"), Decimal("1050.00")))

    def test_bill_late_by_hours_turns_overdue_with_zero_penalty(self):
        store = InMemoryBillStore([make_bill(pk=1, due_date=NOW - timedelta(hours=3))])
        engine = build_engine(store)

        result = engine.run_batch(NOW)

        self.assertEqual(result.processed_bills, 1)
        self.assertEqual(result.penalties_applied, 1)
        self.assertEqual(result.total_penalty_amount, Decimal("0.00"))

        stored = store.get(1)
        self.assertEqual(stored.status, "overdue")
        self.assertEqual(stored.penalty_days, 0)
        self.assertEqual(stored.penalty_amount, Decimal("0.00"))
        self.assertEqual(stored.total_amount, Decimal("1000.00"))

    def test_no_summary_when_nothing_applied(self):
        store = InMemoryBillStore([make_bill(pk=1, status="paid", paid="1000.00")])
        notifier = RecordingNotifier()
        engine = build_engine(store, notifier)

        result = engine.run_batch(NOW)

        self.assertEqual(result.processed_bills, 0)
        self.assertEqual(result.penalties_applied, 0)
        self.assertEqual(notifier.events, [])

    def test_parallel_batch(self):
        class CountingStore(InMemoryBillStore):
            def __init__(self, bills):
                super().__init__(bills)
                self.released = 0
                self.release_lock = threading.Lock()

            def release_thread_resources(self):
                with self.release_lock:
                    self.released += 1

        store = CountingStore([make_bill(pk=pk) for pk in range(1, 11)])
        engine = build_engine(store, max_workers=4)

        result = engine.run_batch(NOW)

        self.assertEqual(result.penalties_applied, 10)
        self.assertEqual(result.total_penalty_amount, Decimal("2500.00"))
        self.assertEqual(store.released, 10)
        for pk in range(1, 11):
            assert_totals_consistent(self, store.get(pk))

    def test_batch_result_as_dict(self):
        store = FailingSaveStore([make_bill(pk=1), make_bill(pk=2)], fail_ids=[1])
        engine = build_engine(store)

        with self.assertLogs("billing.engine", level="ERROR"):
            data = engine.run_batch(NOW).as_dict()

        self.assertEqual(data["penalties_applied"], 1)
        self.assertEqual(data["processed_bills"], 2)
        self.assertEqual(
            data["failed_bills"],
            [{"bill_id": 1, "bill_number": "BILL-2024-01-001", "code": "STORE_ERROR"}],
        )


# =========================
# adjust_penalty / history / preview
# =========================
class AdjustPenaltyTests(SimpleTestCase):
    def setUp(self):
        self.bill = make_bill()
        self.store = InMemoryBillStore([self.bill])
        self.engine = build_engine(self.store)
        self.engine.apply_penalty_to_bill(self.bill, NOW)

    def test_removing_whole_penalty_clears_it(self):
        result = self.engine.adjust_penalty(self.bill.pk, Decimal("-250"))

        self.assertEqual(result.previous_penalty, Decimal("250.00"))
        self.assertEqual(result.new_penalty, Decimal("0"))
        self.assertEqual(result.total_amount, Decimal("1000.00"))

        stored = self.store.get(self.bill.pk)
        self.assertEqual(stored.total_amount, Decimal("1000.00"))
        self.assertIsNone(stored.penalty_applied_at)
        self.assertEqual(stored.penalty_days, 0)
        assert_totals_consistent(self, stored)

    def test_penalty_never_goes_negative(self):
        result = self.engine.adjust_penalty(self.bill.pk, "-5000")

        self.assertEqual(result.new_penalty, Decimal("0"))
        self.assertEqual(result.total_amount, Decimal("1000.00"))

    def test_partial_adjustment_keeps_penalty_details(self):
        result = self.engine.adjust_penalty(self.bill.pk, Decimal("-50"))

        self.assertEqual(result.new_penalty, Decimal("200.00"))
        stored = self.store.get(self.bill.pk)
        self.assertEqual(stored.total_amount, Decimal("1200.00"))
        self.assertEqual(stored.remaining_amount, Decimal("1200.00"))
        self.assertEqual(stored.penalty_days, 5)
        self.assertEqual(stored.penalty_applied_at, NOW)

    def test_unknown_bill(self):
        with self.assertRaises(BillNotFound):
            self.engine.adjust_penalty(999, Decimal("10"))

    def test_paid_bill_cannot_be_adjusted(self):
        record_payment(self.store, self.bill.pk, "1250.00")

        for delta in ("200", "-100"):
            with self.assertRaises(InvalidAdjustment):
                self.engine.adjust_penalty(self.bill.pk, delta)

        stored = self.store.get(self.bill.pk)
        self.assertEqual(stored.status, "paid")
        self.assertEqual(stored.penalty_amount, Decimal("250.00"))
        self.assertEqual(stored.remaining_amount, Decimal("0"))

    def test_history(self):
        history = self.engine.get_penalty_history(self.bill.pk, NOW + timedelta(days=1))

        self.assertEqual(history["bill"]["bill_number"], "BILL-2024-01-001")
        self.assertEqual(history["bill"]["base_amount"], Decimal("1000.00"))
        self.assertEqual(history["bill"]["total_amount"], Decimal("1250.00"))
        self.assertEqual(history["bill"]["status"], "overdue")
        self.assertEqual(history["penalty"]["amount"], Decimal("250.00"))
        self.assertEqual(history["penalty"]["days"], 5)
        self.assertEqual(history["penalty"]["applied_at"], NOW)
        self.assertEqual(history["penalty"]["projected"]["amount"], Decimal("300.00"))

    def test_history_unknown_bill(self):
        with self.assertRaises(BillNotFound):
            self.engine.get_penalty_history(999)

    def test_preview_does_not_mutate(self):
        bill = make_bill(pk=7)
        store = InMemoryBillStore([bill])
        engine = build_engine(store)

        quote = engine.calculate_current_penalty(bill)

        self.assertEqual(quote.amount, Decimal("250.00"))
        self.assertEqual(bill.penalty_amount, Decimal("0"))
        self.assertEqual(store.get(7).version, 0)


# =========================
# Payment recording
# =========================
class RecordPaymentTests(SimpleTestCase):
    def test_full_payment_after_penalty_settles_bill(self):
        bill = make_bill()
        store = InMemoryBillStore([bill])
        engine = build_engine(store)
        engine.apply_penalty_to_bill(bill, NOW)

        paid = record_payment(store, bill.pk, "1250.00")

        self.assertEqual(paid.remaining_amount, Decimal("0"))
        self.assertEqual(paid.status, "paid")

        result = engine.apply_penalty_to_bill(paid, NOW + timedelta(days=3))
        self.assertFalse(result.applied)
        self.assertEqual(store.get(bill.pk).total_amount, Decimal("1250.00"))

    def test_partial_payment_on_pending_bill(self):
        store = InMemoryBillStore([make_bill()])

        bill = record_payment(store, 1, Decimal("400.00"))

        self.assertEqual(bill.status, "partially_paid")
        self.assertEqual(bill.remaining_amount, Decimal("600.00"))

    def test_partial_payment_keeps_overdue_status(self):
        store = InMemoryBillStore([make_bill(status="overdue")])

        bill = record_payment(store, 1, Decimal("400.00"))

        self.assertEqual(bill.status, "overdue")

    def test_invalid_amounts(self):
        store = InMemoryBillStore([make_bill()])
        for amount in ("0", "-10", "abc"):
            with self.assertRaises(InvalidPayment):
                record_payment(store, 1, amount)

    def test_paid_bill_rejects_payment(self):
        store = InMemoryBillStore([make_bill(status="paid", paid="1000.00")])
        with self.assertRaises(InvalidPayment):
            record_payment(store, 1, "10.00")

    def test_payment_racing_a_settling_payment_is_rejected(self):
        store = ConcurrentPaymentStore([make_bill()], payment="1000.00")

        with self.assertLogs("billing.store", level="WARNING"):
            with self.assertRaises(InvalidPayment):
                record_payment(store, 1, "1000.00")

        stored = store.get(1)
        self.assertEqual(stored.paid_amount, Decimal("1000.00"))
        self.assertEqual(stored.remaining_amount, Decimal("0"))
        self.assertEqual(stored.status, "paid")


# =========================
# Payment reminders
# =========================
class PaymentReminderTests(SimpleTestCase):
    def test_reminds_about_bills_due_soon(self):
        store = InMemoryBillStore([
            make_bill(pk=1, due_date=NOW + timedelta(days=2)),
            make_bill(pk=2, due_date=NOW + timedelta(days=10)),
            make_bill(pk=3, due_date=NOW + timedelta(days=1), status="paid", paid="1000.00"),
            make_bill(pk=4, due_date=NOW - timedelta(days=1)),
        ])
        notifier = RecordingNotifier()

        sent = send_payment_reminders(store, notifier, NOW, days_ahead=3)

        self.assertEqual(sent, 1)
        event = notifier.events[0]
        self.assertIsInstance(event, PaymentReminderDue)
        self.assertEqual(event.bill_id, 1)
        self.assertEqual(event.days_until_due, 2)
        self.assertEqual(event.amount_due, Decimal("1000.00"))

    def test_notifier_failure_skips_bill(self):
        store = InMemoryBillStore([make_bill(pk=1, due_date=NOW + timedelta(days=1))])

        with self.assertLogs("billing.reminders", level="ERROR"):
            sent = send_payment_reminders(store, BrokenNotifier(), NOW)

        self.assertEqual(sent, 0)
