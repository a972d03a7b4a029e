from datetime import datetime, timezone as dt_timezone
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core import mail
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from billing.events import PaymentReminderDue, PenaltiesBatchApplied, PenaltyApplied
from billing.exceptions import NotifyError
from .emails import billing_period, format_amount
from .models import Notification
from .notifier import DjangoNotifier

User = get_user_model()


class NotificationTests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(
            email="tenant@rentdesk.test",
            password="pass123",
            first_name="Test",
            last_name="Tenant",
        )
        self.other = User.objects.create_user(
            email="other@rentdesk.test",
            password="pass123",
        )
        self.client.force_authenticate(user=self.user)

    def test_list_notifications(self):
        Notification.objects.create(recipient=self.user, title="Notification 1", message="Message 1")
        Notification.objects.create(recipient=self.user, title="Notification 2", message="Message 2")
        Notification.objects.create(recipient=self.other, title="Not yours", message="Hidden")

        response = self.client.get(reverse("notification-list"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 2)
        self.assertNotIn("Not yours", [n["title"] for n in response.data])

    def test_unread_filter(self):
        Notification.objects.create(recipient=self.user, title="Read", message="m", is_read=True)
        Notification.objects.create(recipient=self.user, title="Unread", message="m")

        response = self.client.get(reverse("notification-list"), {"unread": "true"})

        self.assertEqual([n["title"] for n in response.data], ["Unread"])

    def test_mark_notification_as_read(self):
        notification = Notification.objects.create(
            recipient=self.user, title="Unread", message="m"
        )

        response = self.client.post(reverse("notification-mark-read", args=[notification.id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        notification.refresh_from_db()
        self.assertTrue(notification.is_read)

    def test_cannot_mark_someone_elses_notification(self):
        notification = Notification.objects.create(
            recipient=self.other, title="Unread", message="m"
        )

        response = self.client.post(reverse("notification-mark-read", args=[notification.id]))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        notification.refresh_from_db()
        self.assertFalse(notification.is_read)

    def test_mark_all_read(self):
        Notification.objects.create(recipient=self.user, title="A", message="m")
        Notification.objects.create(recipient=self.user, title="B", message="m")
        theirs = Notification.objects.create(recipient=self.other, title="C", message="m")

        response = self.client.post(reverse("notification-mark-all-read"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(
            Notification.objects.filter(recipient=self.user, is_read=False).exists()
        )
        theirs.refresh_from_db()
        self.assertFalse(theirs.is_read)


class DjangoNotifierTests(TestCase):
    def setUp(self):
        self.tenant = User.objects.create_user(
            email="tenant@rentdesk.test",
            password="pass123",
            first_name="Ravi",
        )
        self.admin = User.objects.create_user(
            email="admin@rentdesk.test",
            password="pass123",
            role="ADMIN",
        )
        self.notifier = DjangoNotifier()
        self.due_date = datetime(2024, 3, 10, tzinfo=dt_timezone.utc)

    def penalty_event(self, **overrides):
        data = {
            "bill_id": 7,
            "tenant_id": self.tenant.id,
            "amount": Decimal("150.00"),
            "days_overdue": 3,
            "total_outstanding": Decimal("1150.00"),
            "bill_number": "BILL-2024-03-007",
            "month": 3,
            "year": 2024,
            "due_date": self.due_date,
        }
        data.update(overrides)
        return PenaltyApplied(**data)

    def test_formatting_helpers(self):
        self.assertEqual(format_amount(Decimal("1250")), "Rs.1,250.00")
        self.assertEqual(billing_period(3, 2024), "March 2024")

    def test_penalty_notice_and_email(self):
        self.notifier.notify(self.penalty_event())

        notice = Notification.objects.get(recipient=self.tenant)
        self.assertEqual(notice.category, "BILLING")
        self.assertEqual(notice.type, "WARNING")
        self.assertEqual(
            notice.message,
            "A late payment penalty of Rs.150.00 (3 days overdue) has been added "
            "to your March 2024 bill. Total outstanding: Rs.1,150.00.",
        )
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn("Ravi", mail.outbox[0].body)

    def test_duplicate_penalty_notice_is_skipped(self):
        self.notifier.notify(self.penalty_event())
        self.notifier.notify(self.penalty_event())

        self.assertEqual(Notification.objects.filter(recipient=self.tenant).count(), 1)
        self.assertEqual(len(mail.outbox), 1)

    def test_grown_penalty_is_notified_again(self):
        self.notifier.notify(self.penalty_event())
        self.notifier.notify(
            self.penalty_event(
                amount=Decimal("200.00"),
                days_overdue=4,
                total_outstanding=Decimal("1200.00"),
            )
        )

        self.assertEqual(Notification.objects.filter(recipient=self.tenant).count(), 2)

    def test_email_can_be_disabled(self):
        DjangoNotifier(send_email=False).notify(self.penalty_event())

        self.assertTrue(Notification.objects.filter(recipient=self.tenant).exists())
        self.assertEqual(len(mail.outbox), 0)

    def test_deferred_email_waits_for_flush(self):
        notifier = DjangoNotifier(defer_email=True)
        notifier.notify(self.penalty_event())

        self.assertTrue(Notification.objects.filter(recipient=self.tenant).exists())
        self.assertEqual(len(mail.outbox), 0)

        self.assertEqual(notifier.flush(), 1)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(notifier.flush(), 0)

    def test_zero_penalty_is_not_announced(self):
        self.notifier.notify(
            self.penalty_event(amount=Decimal("0.00"), days_overdue=0)
        )
        self.notifier.notify(PenaltiesBatchApplied(count=1, total_amount=Decimal("0.00")))

        self.assertFalse(Notification.objects.exists())
        self.assertEqual(len(mail.outbox), 0)

    def test_batch_summary_goes_to_admins(self):
        self.notifier.notify(PenaltiesBatchApplied(count=4, total_amount=Decimal("600.00")))

        notice = Notification.objects.get(recipient=self.admin)
        self.assertEqual(notice.title, "Late Payment Penalties Applied")
        self.assertIn("Rs.600.00", notice.message)
        self.assertFalse(Notification.objects.filter(recipient=self.tenant).exists())

    def test_payment_reminder(self):
        self.notifier.notify(
            PaymentReminderDue(
                bill_id=7,
                tenant_id=self.tenant.id,
                bill_number="BILL-2024-03-007",
                month=3,
                year=2024,
                due_date=self.due_date,
                amount_due=Decimal("1000.00"),
                days_until_due=2,
            )
        )

        notice = Notification.objects.get(recipient=self.tenant)
        self.assertEqual(notice.title, "Payment Reminder")
        self.assertIn("10 March 2024", notice.message)
        self.assertIn("due in 2 day(s)", mail.outbox[0].subject)

    def test_unknown_tenant(self):
        with self.assertRaises(NotifyError):
            self.notifier.notify(self.penalty_event(tenant_id=9999))

    def test_unsupported_event(self):
        with self.assertRaises(NotifyError):
            self.notifier.notify(object())
