"""
Bill persistence used by the penalty engine and payment recording.

Writes are optimistic: every bill carries a ``version`` and a save only
succeeds when the stored version still matches the one that was read.
A mismatch raises ``VersionConflict``; ``save_with_retry`` re-reads the
bill and re-applies the change a bounded number of times.
"""
import copy
import logging
import threading

from django.db import DatabaseError, connection
from django.db.models import F
from django.utils import timezone

from .constants import ACCRUING_STATUSES, MAX_SAVE_ATTEMPTS
from .exceptions import BillNotFound, StoreError, VersionConflict
from .models import Bill

logger = logging.getLogger(__name__)


class BillStore:
    def find_overdue_candidates(self, now):
        """Unpaid bills whose due date is before ``now``."""
        raise NotImplementedError

    def find_due_between(self, start, end):
        """Unpaid bills falling due in ``(start, end]``."""
        raise NotImplementedError

    def find_by_id(self, bill_id):
        raise NotImplementedError

    def save(self, bill):
        """Persist the mutable fields of ``bill`` and bump its version."""
        raise NotImplementedError

    def release_thread_resources(self):
        """Called by batch worker threads when they are done with the store."""


# =========================
# Django ORM store
# =========================
class DjangoBillStore(BillStore):
    def find_overdue_candidates(self, now):
        try:
            return list(
                Bill.objects.filter(
                    status__in=ACCRUING_STATUSES,
                    due_date__lt=now,
                ).order_by("due_date", "id")
            )
        except DatabaseError as exc:
            raise StoreError(f"Could not load overdue bills: {exc}") from exc

    def find_due_between(self, start, end):
        try:
            return list(
                Bill.objects.filter(
                    status__in=("pending", "partially_paid"),
                    due_date__gt=start,
                    due_date__lte=end,
                ).order_by("due_date", "id")
            )
        except DatabaseError as exc:
            raise StoreError(f"Could not load upcoming bills: {exc}") from exc

    def find_by_id(self, bill_id):
        try:
            return Bill.objects.get(pk=bill_id)
        except Bill.DoesNotExist:
            raise BillNotFound(bill_id) from None
        except (DatabaseError, ValueError) as exc:
            raise StoreError(f"Could not load bill {bill_id}: {exc}") from exc

    def save(self, bill):
        values = {field: getattr(bill, field) for field in Bill.MUTABLE_FIELDS}
        try:
            updated = Bill.objects.filter(pk=bill.pk, version=bill.version).update(
                version=F("version") + 1,
                updated_at=timezone.now(),
                **values,
            )
            if not updated and not Bill.objects.filter(pk=bill.pk).exists():
                raise BillNotFound(bill.pk)
        except DatabaseError as exc:
            raise StoreError(f"Could not save bill {bill.pk}: {exc}") from exc

        if not updated:
            raise VersionConflict(bill.pk, bill.version)

        bill.version += 1
        return bill

    def release_thread_resources(self):
        connection.close()


# =========================
# In-memory store
# =========================
class InMemoryBillStore(BillStore):
    """
    Store holding bills in a dict owned by the instance.

    Bills are copied on the way in and out, so callers never share state
    with the store. Used for tests and dry runs.
    """

    def __init__(self, bills=()):
        self._bills = {}
        self._lock = threading.Lock()
        for bill in bills:
            self.add(bill)

    def add(self, bill):
        with self._lock:
            self._bills[bill.pk] = copy.copy(bill)

    def get(self, bill_id):
        """Stored copy of a bill, for inspection."""
        return self._bills.get(bill_id)

    def find_overdue_candidates(self, now):
        with self._lock:
            bills = [
                copy.copy(bill)
                for bill in self._bills.values()
                if bill.status in ACCRUING_STATUSES and bill.due_date < now
            ]
        return sorted(bills, key=lambda b: (b.due_date, b.pk))

    def find_due_between(self, start, end):
        with self._lock:
            bills = [
                copy.copy(bill)
                for bill in self._bills.values()
                if bill.status in ("pending", "partially_paid")
                and start < bill.due_date <= end
            ]
        return sorted(bills, key=lambda b: (b.due_date, b.pk))

    def find_by_id(self, bill_id):
        with self._lock:
            bill = self._bills.get(bill_id)
            if bill is None:
                raise BillNotFound(bill_id)
            return copy.copy(bill)

    def save(self, bill):
        with self._lock:
            stored = self._bills.get(bill.pk)
            if stored is None:
                raise BillNotFound(bill.pk)
            if stored.version != bill.version:
                raise VersionConflict(bill.pk, bill.version)
            bill.version += 1
            self._bills[bill.pk] = copy.copy(bill)
        return bill


def save_with_retry(store, bill, mutate, max_attempts=MAX_SAVE_ATTEMPTS):
    """
    Apply ``mutate`` to a working copy of ``bill`` and persist the copy.

    ``mutate(working)`` returns ``(changed, outcome)``. When ``changed`` is
    false nothing is written. On a version conflict the bill is re-read
    from the store and ``mutate`` runs again on the fresh copy, at most
    ``max_attempts`` times in total; the last conflict is re-raised.

    Returns ``(saved, outcome)`` where ``saved`` is the written copy or None.
    The ``bill`` passed in is never modified.
    """
    current = bill
    for attempt in range(1, max_attempts + 1):
        working = copy.copy(current)
        changed, outcome = mutate(working)
        if not changed:
            return None, outcome

        try:
            store.save(working)
        except VersionConflict:
            if attempt >= max_attempts:
                logger.error(
                    f"Giving up on bill {bill.pk} after {attempt} conflicting writes"
                )
                raise
            logger.warning(
                f"Version conflict on bill {bill.pk} "
                f"(attempt {attempt}/{max_attempts}), re-reading"
            )
            current = store.find_by_id(bill.pk)
            continue

        return working, outcome
