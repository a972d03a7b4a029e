import logging
from decimal import Decimal, InvalidOperation

from .constants import MAX_SAVE_ATTEMPTS, ZERO
from .exceptions import InvalidPayment
from .store import save_with_retry

logger = logging.getLogger(__name__)


def record_payment(store, bill_id, amount, max_attempts=MAX_SAVE_ATTEMPTS):
    """
    Add a tenant payment to a bill and return the updated bill.

    Fully covered bills become ``paid``; a first partial payment moves a
    ``pending`` bill to ``partially_paid``. Overdue bills stay overdue until
    they are settled.
    """
    try:
        amount = Decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidPayment(f"Invalid payment amount: {amount!r}") from None

    if amount <= ZERO:
        raise InvalidPayment("Payment amount must be greater than zero.")

    bill = store.find_by_id(bill_id)

    def pay(working):
        # Re-checked on every attempt: a competing payment may have settled the bill.
        if working.status == "paid":
            raise InvalidPayment(f"Bill {working.bill_number} is already paid.")

        working.paid_amount = working.paid_amount + amount
        working.recalculate_totals()
        if working.remaining_amount == ZERO:
            working.status = "paid"
        elif working.status == "pending":
            working.status = "partially_paid"
        return True, working.status

    saved, status = save_with_retry(store, bill, pay, max_attempts=max_attempts)
    logger.info(
        f"Recorded payment of {amount} on bill {saved.bill_number} "
        f"(remaining {saved.remaining_amount}, status {status})"
    )
    return saved
