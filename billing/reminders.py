import logging
from datetime import timedelta

from .constants import REMINDER_DAYS_AHEAD, SECONDS_PER_DAY
from .events import PaymentReminderDue

logger = logging.getLogger(__name__)


def send_payment_reminders(store, notifier, now, days_ahead=REMINDER_DAYS_AHEAD):
    """
    Remind tenants about unpaid bills falling due within ``days_ahead`` days.

    Returns the number of reminders handed to the notifier.
    """
    bills = store.find_due_between(now, now + timedelta(days=days_ahead))
    sent = 0

    for bill in bills:
        seconds_left = (bill.due_date - now).total_seconds()
        event = PaymentReminderDue(
            bill_id=bill.pk,
            tenant_id=bill.tenant_id,
            bill_number=bill.bill_number,
            month=bill.month,
            year=bill.year,
            due_date=bill.due_date,
            amount_due=bill.remaining_amount,
            days_until_due=max(0, int(seconds_left // SECONDS_PER_DAY)),
        )
        try:
            notifier.notify(event)
        except Exception:
            logger.exception(f"Could not send payment reminder for bill {bill.bill_number}")
            continue
        sent += 1

    logger.info(f"Sent {sent} payment reminders for {len(bills)} upcoming bills")
    return sent
