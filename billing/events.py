"""
Events the billing core hands to a notifier.

Events are plain immutable records; delivery (in-app inbox, email) is the
notifier's concern.
"""
from dataclasses import dataclass, asdict
from datetime import datetime
from decimal import Decimal


@dataclass(frozen=True)
class PenaltyApplied:
    bill_id: int
    tenant_id: int
    amount: Decimal
    days_overdue: int
    total_outstanding: Decimal
    bill_number: str = ""
    month: int = 0
    year: int = 0
    due_date: datetime = None

    def as_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class PenaltiesBatchApplied:
    count: int
    total_amount: Decimal

    def as_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class PaymentReminderDue:
    bill_id: int
    tenant_id: int
    bill_number: str
    month: int
    year: int
    due_date: datetime
    amount_due: Decimal
    days_until_due: int

    def as_dict(self):
        return asdict(self)
