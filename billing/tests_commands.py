from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from io import StringIO

from django.contrib.auth import get_user_model
from django.core import mail
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase
from django.utils import timezone

from notifications.models import Notification
from rooms.models import Room
from .management.commands.apply_penalties import parse_instant
from .models import Bill

User = get_user_model()


class ApplyPenaltiesCommandTests(TestCase):
    def setUp(self):
        self.tenant = User.objects.create_user(
            email="tenant@rentdesk.test",
            password="TenantPass123!",
        )
        self.room = Room.objects.create(room_number="12", tenant=self.tenant)
        self.bill = Bill.objects.create(
            bill_number="BILL-2024-01-012",
            tenant=self.tenant,
            room=self.room,
            month=1,
            year=2024,
            due_date=datetime(2024, 1, 10, tzinfo=dt_timezone.utc),
            base_amount=Decimal("1000.00"),
        )

    def test_applies_penalties_as_of_given_date(self):
        out = StringIO()
        call_command("apply_penalties", at="2024-01-15", stdout=out)

        self.bill.refresh_from_db()
        self.assertEqual(self.bill.penalty_amount, Decimal("250.00"))
        self.assertEqual(self.bill.total_amount, Decimal("1250.00"))
        self.assertEqual(self.bill.status, "overdue")

        output = out.getvalue()
        self.assertIn("Processed: 1", output)
        self.assertIn("Applied: 1", output)
        self.assertIn("Total penalty amount: 250.00", output)
        self.assertEqual(len(mail.outbox), 1)

    def test_running_twice_is_safe(self):
        call_command("apply_penalties", at="2024-01-15", stdout=StringIO())
        call_command("apply_penalties", at="2024-01-15", stdout=StringIO())

        self.bill.refresh_from_db()
        self.assertEqual(self.bill.total_amount, Decimal("1250.00"))
        self.assertEqual(
            Notification.objects.filter(
                recipient=self.tenant, title="Late Payment Penalty Applied"
            ).count(),
            1,
        )

    def test_dry_run_mode(self):
        out = StringIO()
        call_command("apply_penalties", at="2024-01-15", dry_run=True, stdout=out)

        self.bill.refresh_from_db()
        self.assertEqual(self.bill.penalty_amount, Decimal("0.00"))
        self.assertEqual(self.bill.version, 0)
        self.assertFalse(Notification.objects.exists())
        self.assertEqual(len(mail.outbox), 0)

        output = out.getvalue()
        self.assertIn("DRY-RUN", output)
        self.assertIn("250.00", output)
        self.assertIn("Applied: 1", output)

    def test_dry_run_on_first_overdue_day(self):
        out = StringIO()
        call_command("apply_penalties", at="2024-01-10T12:00:00", dry_run=True, stdout=out)

        self.assertIn("Would set penalty 0.00 (0 days) on BILL-2024-01-012", out.getvalue())

    def test_first_overdue_day_marks_bill_overdue_without_notice(self):
        call_command("apply_penalties", at="2024-01-10T12:00:00", stdout=StringIO())

        self.bill.refresh_from_db()
        self.assertEqual(self.bill.status, "overdue")
        self.assertEqual(self.bill.penalty_amount, Decimal("0.00"))
        self.assertFalse(Notification.objects.exists())
        self.assertEqual(len(mail.outbox), 0)

    def test_invalid_date(self):
        with self.assertRaises(CommandError):
            call_command("apply_penalties", at="next tuesday", stdout=StringIO())

    def test_parse_instant(self):
        self.assertEqual(
            parse_instant("2024-01-15"),
            datetime(2024, 1, 15, tzinfo=dt_timezone.utc),
        )
        self.assertEqual(
            parse_instant("2024-01-15T06:30:00+05:30"),
            datetime(2024, 1, 15, 1, 0, tzinfo=dt_timezone.utc),
        )


class SendPaymentRemindersCommandTests(TestCase):
    def setUp(self):
        self.tenant = User.objects.create_user(
            email="tenant@rentdesk.test",
            password="TenantPass123!",
        )
        self.room = Room.objects.create(room_number="14", tenant=self.tenant)

    def create_bill(self, number, due_in):
        return Bill.objects.create(
            bill_number=number,
            tenant=self.tenant,
            room=self.room,
            month=2,
            year=2024,
            due_date=timezone.now() + due_in,
            base_amount=Decimal("800.00"),
        )

    def test_reminds_about_bills_due_soon(self):
        self.create_bill("BILL-SOON", timedelta(days=2))
        self.create_bill("BILL-LATER", timedelta(days=20))

        out = StringIO()
        call_command("send_payment_reminders", days=3, stdout=out)

        self.assertIn("Reminders sent: 1", out.getvalue())
        notice = Notification.objects.get(recipient=self.tenant)
        self.assertEqual(notice.title, "Payment Reminder")
        self.assertIn("BILL-SOON", notice.message)
        self.assertEqual(len(mail.outbox), 1)

    def test_rejects_non_positive_days(self):
        with self.assertRaises(CommandError):
            call_command("send_payment_reminders", days=0, stdout=StringIO())
