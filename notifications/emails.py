from django.core.mail import send_mail
from django.conf import settings

from billing.constants import MONTH_NAMES


def format_amount(amount):
    return f"{getattr(settings, 'CURRENCY_SYMBOL', 'Rs.')}{amount:,.2f}"


def billing_period(month, year):
    return f"{MONTH_NAMES[month - 1]} {year}"


def send_late_fee_email(tenant, event):
    subject = f"Late Payment Penalty Applied - {event.bill_number}"
    message = f"""
Dear {tenant.display_name},

A late payment penalty has been applied to your {billing_period(event.month, event.year)} bill.

Bill number: {event.bill_number}
Due date: {event.due_date:%d %B %Y}
Days overdue: {event.days_overdue}
Late fee: {format_amount(event.amount)}
Total outstanding: {format_amount(event.total_outstanding)}

The late fee grows every day the bill stays unpaid. Please clear the
outstanding amount as soon as possible.

Bhuyan Complex Management
"""

    send_mail(
        subject,
        message,
        settings.DEFAULT_FROM_EMAIL,
        [tenant.email],
        fail_silently=False,
    )


def send_payment_reminder_email(tenant, event):
    subject = f"Payment Reminder - {event.bill_number} due in {event.days_until_due} day(s)"
    message = f"""
Dear {tenant.display_name},

This is a reminder that your {billing_period(event.month, event.year)} bill is due soon.

Bill number: {event.bill_number}
Due date: {event.due_date:%d %B %Y}
Amount due: {format_amount(event.amount_due)}

Paying before the due date avoids late payment penalties.

Bhuyan Complex Management
"""

    send_mail(
        subject=subject,
        message=message,
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[tenant.email],
        fail_silently=False,
    )
