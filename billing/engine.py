"""
Penalty accrual engine.

Applies the daily late-payment penalty to overdue bills, keeps each bill's
totals consistent with its base amount, persists the result through a
``BillStore`` and hands ``PenaltyApplied`` / ``PenaltiesBatchApplied``
events to a notifier.

Bill states as seen by the engine:

    pending --(penalty applies)--> overdue
    partially_paid                 keeps its status, still accrues
    overdue                        penalty recomputed and replaced
    paid                           never touched

The penalty is recomputed from ``due_date`` and ``now`` on every run, so a
batch can be re-run any number of times a day and every bill settles on the
same amount.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from .clock import SystemClock
from .constants import BATCH_WORKERS, MAX_SAVE_ATTEMPTS, RATE_PER_DAY, ZERO
from .events import PenaltiesBatchApplied, PenaltyApplied
from .exceptions import InvalidAdjustment
from .penalties import calculate_penalty
from .store import save_with_retry

logger = logging.getLogger(__name__)


@dataclass
class AccrualResult:
    bill_id: Optional[int]
    applied: bool
    amount: Decimal = ZERO
    reason: str = ""

    def as_dict(self):
        data = {"bill_id": self.bill_id, "applied": self.applied, "amount": self.amount}
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass
class BatchFailure:
    bill_id: Optional[int]
    bill_number: str
    error: Exception

    @property
    def code(self):
        return getattr(self.error, "code", "UNEXPECTED_ERROR")


@dataclass
class BatchResult:
    penalties_applied: int = 0
    total_penalty_amount: Decimal = ZERO
    processed_bills: int = 0
    failures: List[BatchFailure] = field(default_factory=list)

    def as_dict(self):
        return {
            "penalties_applied": self.penalties_applied,
            "total_penalty_amount": self.total_penalty_amount,
            "processed_bills": self.processed_bills,
            "failed_bills": [
                {"bill_id": f.bill_id, "bill_number": f.bill_number, "code": f.code}
                for f in self.failures
            ],
        }


@dataclass
class AdjustmentResult:
    bill_id: int
    previous_penalty: Decimal
    new_penalty: Decimal
    total_amount: Decimal
    remaining_amount: Decimal

    def as_dict(self):
        return {
            "bill_id": self.bill_id,
            "previous_penalty": self.previous_penalty,
            "new_penalty": self.new_penalty,
            "total_amount": self.total_amount,
            "remaining_amount": self.remaining_amount,
        }


class PenaltyAccrualEngine:
    def __init__(
        self,
        store,
        notifier=None,
        clock=None,
        rate_per_day=RATE_PER_DAY,
        max_save_attempts=MAX_SAVE_ATTEMPTS,
        max_workers=BATCH_WORKERS,
    ):
        self.store = store
        self.notifier = notifier
        self.clock = clock or SystemClock()
        self.rate_per_day = Decimal(rate_per_day)
        self.max_save_attempts = max(1, int(max_save_attempts))
        self.max_workers = max(1, int(max_workers))

    # -------------------------
    # Read-only preview
    # -------------------------
    def calculate_current_penalty(self, bill, now=None):
        now = now or self.clock.now()
        return calculate_penalty(bill, now, self.rate_per_day)

    # -------------------------
    # Single bill
    # -------------------------
    def apply_penalty_to_bill(self, bill, now=None):
        """
        Accrue the penalty owed on ``bill`` as of ``now``.

        The bill object passed in is only updated once the store write has
        succeeded. Raises ``VersionConflict`` when the write keeps
        conflicting and ``StoreError`` when the store is unavailable;
        notifier failures are logged and never raised.
        """
        try:
            return self._apply(bill, now)
        finally:
            self._flush_notifier()

    def _apply(self, bill, now=None):
        now = now or self.clock.now()

        def accrue(working):
            quote = calculate_penalty(working, now, self.rate_per_day)
            if not quote.should_apply:
                return False, quote

            working.penalty_amount = quote.amount
            working.penalty_days = quote.days
            working.penalty_applied_at = now
            working.recalculate_totals()
            if working.status == "pending":
                working.status = "overdue"
            return True, quote

        saved, quote = save_with_retry(
            self.store, bill, accrue, max_attempts=self.max_save_attempts
        )
        if saved is None:
            return AccrualResult(bill_id=bill.pk, applied=False, reason=quote.reason)

        bill.copy_state_from(saved)
        logger.info(
            f"Applied {quote.amount} penalty ({quote.days} days) "
            f"to bill {bill.bill_number}"
        )

        self._emit(
            PenaltyApplied(
                bill_id=bill.pk,
                tenant_id=bill.tenant_id,
                amount=quote.amount,
                days_overdue=quote.days,
                total_outstanding=bill.remaining_amount,
                bill_number=bill.bill_number,
                month=bill.month,
                year=bill.year,
                due_date=bill.due_date,
            )
        )
        return AccrualResult(bill_id=bill.pk, applied=True, amount=quote.amount)

    # -------------------------
    # Scheduled batch
    # -------------------------
    def run_batch(self, now=None):
        """
        Accrue penalties on every unpaid bill past its due date.

        Each bill is handled on its own: a failure is recorded in
        ``BatchResult.failures`` and the run carries on. Counts and amounts
        only cover bills that were actually updated.
        """
        now = now or self.clock.now()
        bills = self.store.find_overdue_candidates(now)
        result = BatchResult(processed_bills=len(bills))

        for bill, outcome in self._process_all(bills, now):
            if isinstance(outcome, Exception):
                result.failures.append(
                    BatchFailure(bill_id=bill.pk, bill_number=bill.bill_number, error=outcome)
                )
            elif outcome.applied:
                result.penalties_applied += 1
                result.total_penalty_amount += outcome.amount

        if result.penalties_applied > 0:
            self._emit(
                PenaltiesBatchApplied(
                    count=result.penalties_applied,
                    total_amount=result.total_penalty_amount,
                )
            )
        self._flush_notifier()

        logger.info(
            f"Penalty run at {now.isoformat()}: {result.penalties_applied} applied, "
            f"{len(result.failures)} failed, {result.processed_bills} processed"
        )
        return result

    def _process_all(self, bills, now):
        if self.max_workers == 1 or len(bills) <= 1:
            return [(bill, self._process_one(bill, now)) for bill in bills]

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            outcomes = list(pool.map(lambda bill: self._process_in_worker(bill, now), bills))
        return list(zip(bills, outcomes))

    def _process_one(self, bill, now):
        try:
            return self._apply(bill, now)
        except Exception as exc:
            logger.exception(f"Could not apply penalty to bill {bill.bill_number}")
            return exc

    def _process_in_worker(self, bill, now):
        try:
            return self._process_one(bill, now)
        finally:
            self.store.release_thread_resources()

    # -------------------------
    # Administrative override
    # -------------------------
    def adjust_penalty(self, bill_id, delta):
        """
        Shift a bill's penalty by ``delta``, never below zero.

        Paid bills are settled and raise ``InvalidAdjustment``.
        """
        delta = Decimal(delta)
        bill = self.store.find_by_id(bill_id)

        def adjust(working):
            if working.status == "paid":
                raise InvalidAdjustment(
                    f"Bill {working.bill_number} is paid; its penalty can no longer change."
                )

            previous = working.penalty_amount
            new_penalty = max(ZERO, previous + delta)

            working.penalty_amount = new_penalty
            if new_penalty == ZERO:
                working.penalty_days = 0
                working.penalty_applied_at = None
            working.recalculate_totals()

            return True, AdjustmentResult(
                bill_id=working.pk,
                previous_penalty=previous,
                new_penalty=new_penalty,
                total_amount=working.total_amount,
                remaining_amount=working.remaining_amount,
            )

        _, result = save_with_retry(
            self.store, bill, adjust, max_attempts=self.max_save_attempts
        )
        logger.info(
            f"Penalty on bill {bill.bill_number} adjusted "
            f"{result.previous_penalty} -> {result.new_penalty}"
        )
        return result

    # -------------------------
    # History
    # -------------------------
    def get_penalty_history(self, bill_id, now=None):
        now = now or self.clock.now()
        bill = self.store.find_by_id(bill_id)
        projected = calculate_penalty(bill, now, self.rate_per_day)

        return {
            "bill": {
                "id": bill.pk,
                "bill_number": bill.bill_number,
                "tenant_id": bill.tenant_id,
                "room_id": bill.room_id,
                "month": bill.month,
                "year": bill.year,
                "due_date": bill.due_date,
                "base_amount": bill.base_amount,
                "total_amount": bill.total_amount,
                "paid_amount": bill.paid_amount,
                "remaining_amount": bill.remaining_amount,
                "status": bill.status,
            },
            "penalty": {
                "amount": bill.penalty_amount,
                "days": bill.penalty_days,
                "applied_at": bill.penalty_applied_at,
                "rate_per_day": self.rate_per_day,
                "projected": projected.as_dict(),
            },
        }

    # -------------------------
    # Notifications
    # -------------------------
    def _emit(self, event):
        if self.notifier is None:
            return
        try:
            self.notifier.notify(event)
        except Exception:
            logger.exception(f"Could not deliver {type(event).__name__} notification")

    def _flush_notifier(self):
        # Notifiers may queue slow deliveries (email) until the bills are saved.
        flush = getattr(self.notifier, "flush", None)
        if flush is None:
            return
        try:
            flush()
        except Exception:
            logger.exception("Could not send queued notifications")
