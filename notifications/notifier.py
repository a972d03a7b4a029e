"""
Delivery of billing events to tenants and admins.

``DjangoNotifier`` is the notifier the penalty engine and the reminder job
are wired with: every event becomes an in-app ``Notification`` and, for
tenant-facing events, an email.
"""
import logging
import threading

from django.contrib.auth import get_user_model

from billing.events import PaymentReminderDue, PenaltiesBatchApplied, PenaltyApplied
from billing.exceptions import NotifyError
from .emails import (
    billing_period,
    format_amount,
    send_late_fee_email,
    send_payment_reminder_email,
)
from .models import Notification

logger = logging.getLogger(__name__)

User = get_user_model()


def bill_link(bill_id):
    return f"/billing/bills/{bill_id}"


class DjangoNotifier:
    """
    With ``defer_email=True`` emails are queued and only sent by ``flush()``,
    so a slow mail server never holds up the bills still being processed.
    """

    def __init__(self, send_email=True, defer_email=False):
        self.send_email = send_email
        self.defer_email = defer_email
        self._outbox = []
        self._outbox_lock = threading.Lock()

    def flush(self):
        """Send queued emails; returns how many went out."""
        with self._outbox_lock:
            pending, self._outbox = self._outbox, []

        sent = 0
        for send, tenant, event in pending:
            try:
                send(tenant, event)
            except Exception:
                logger.exception(f"Could not email {tenant.email} about bill {event.bill_number}")
                continue
            sent += 1
        return sent

    def _email(self, send, tenant, event):
        if not (self.send_email and tenant.email):
            return
        if self.defer_email:
            with self._outbox_lock:
                self._outbox.append((send, tenant, event))
        else:
            send(tenant, event)

    def notify(self, event):
        handler = self._handlers.get(type(event))
        if handler is None:
            raise NotifyError(f"Unsupported event {type(event).__name__}")

        try:
            handler(self, event)
        except NotifyError:
            raise
        except Exception as exc:
            raise NotifyError(
                f"Could not deliver {type(event).__name__}: {exc}"
            ) from exc

    def _get_tenant(self, tenant_id):
        tenant = User.objects.filter(pk=tenant_id).first()
        if tenant is None:
            raise NotifyError(f"Tenant {tenant_id} not found")
        return tenant

    # -------------------------
    # Penalty applied
    # -------------------------
    def _penalty_applied(self, event):
        # First day overdue: the bill is overdue but nothing has accrued yet.
        if event.amount == 0:
            return

        tenant = self._get_tenant(event.tenant_id)
        title = "Late Payment Penalty Applied"
        message = (
            f"A late payment penalty of {format_amount(event.amount)} "
            f"({event.days_overdue} days overdue) has been added to your "
            f"{billing_period(event.month, event.year)} bill. "
            f"Total outstanding: {format_amount(event.total_outstanding)}."
        )
        link = bill_link(event.bill_id)

        # Same bill, same penalty: an earlier run today already told the tenant.
        if Notification.objects.filter(
            recipient=tenant, title=title, link=link, message=message
        ).exists():
            logger.info(f"Penalty notice for bill {event.bill_number} already delivered")
            return

        Notification.objects.create(
            recipient=tenant,
            title=title,
            message=message,
            category="BILLING",
            type="WARNING",
            link=link,
        )

        self._email(send_late_fee_email, tenant, event)

    # -------------------------
    # Batch summary
    # -------------------------
    def _penalties_batch_applied(self, event):
        if event.total_amount == 0:
            return

        admins = User.objects.filter(is_active=True, role="ADMIN")
        notifications = [
            Notification(
                recipient=admin,
                title="Late Payment Penalties Applied",
                message=(
                    f"{event.count} overdue bill(s) received late payment "
                    f"penalties totalling {format_amount(event.total_amount)}."
                ),
                category="BILLING",
                type="INFO",
                link="/billing/bills",
            )
            for admin in admins
        ]
        Notification.objects.bulk_create(notifications)

    # -------------------------
    # Payment reminder
    # -------------------------
    def _payment_reminder_due(self, event):
        tenant = self._get_tenant(event.tenant_id)
        Notification.objects.create(
            recipient=tenant,
            title="Payment Reminder",
            message=(
                f"Your {billing_period(event.month, event.year)} bill "
                f"({event.bill_number}) of {format_amount(event.amount_due)} is due "
                f"on {event.due_date:%d %B %Y}."
            ),
            category="BILLING",
            type="INFO",
            link=bill_link(event.bill_id),
        )

        self._email(send_payment_reminder_email, tenant, event)

    _handlers = {
        PenaltyApplied: _penalty_applied,
        PenaltiesBatchApplied: _penalties_batch_applied,
        PaymentReminderDue: _payment_reminder_due,
    }
