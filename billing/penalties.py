"""
Late-payment penalty policy.

Pure functions: given a bill and an instant they say whether a penalty is
due and how large it is. The penalty is always the full amount for the
days elapsed since the due date, so evaluating it again later never
stacks on top of an earlier result.
"""
from dataclasses import dataclass
from decimal import Decimal

from .constants import RATE_PER_DAY, SECONDS_PER_DAY, ZERO


@dataclass(frozen=True)
class PenaltyQuote:
    amount: Decimal
    days: int
    should_apply: bool
    reason: str = ""

    def as_dict(self):
        return {
            "amount": self.amount,
            "days": self.days,
            "should_apply": self.should_apply,
            "reason": self.reason,
        }


def days_overdue(due_date, now):
    """Whole days elapsed since ``due_date``; 0 when not yet past due."""
    if now <= due_date:
        return 0
    return int((now - due_date).total_seconds() // SECONDS_PER_DAY)


def calculate_penalty(bill, now, rate_per_day=RATE_PER_DAY):
    if bill.status == "paid":
        return PenaltyQuote(ZERO, 0, False, "already paid")

    if now <= bill.due_date:
        return PenaltyQuote(ZERO, 0, False, "not due")

    # Less than a whole day late: overdue, but zero days accrued so far.
    days = days_overdue(bill.due_date, now)
    amount = (Decimal(rate_per_day) * days).quantize(Decimal("0.01"))
    return PenaltyQuote(amount, days, True)
