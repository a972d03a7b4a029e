from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from smtplib import SMTPException
from unittest.mock import patch

from django.contrib import admin
from django.contrib.auth import get_user_model
from django.core import mail
from django.core.exceptions import ValidationError
from django.test import RequestFactory, TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase
from rest_framework_simplejwt.tokens import RefreshToken

from notifications.models import Notification
from notifications.notifier import DjangoNotifier
from rooms.models import Room
from .clock import FrozenClock
from .engine import PenaltyAccrualEngine
from .exceptions import BillNotFound, InvalidAdjustment, VersionConflict
from .models import Bill, PenaltyAdjustment
from .store import DjangoBillStore

User = get_user_model()

DUE = datetime(2024, 1, 10, tzinfo=dt_timezone.utc)
NOW = datetime(2024, 1, 15, tzinfo=dt_timezone.utc)


def create_bill(tenant, room, number="BILL-2024-01-001", due_date=DUE, **extra):
    return Bill.objects.create(
        bill_number=number,
        tenant=tenant,
        room=room,
        month=1,
        year=2024,
        due_date=due_date,
        base_amount=Decimal("1000.00"),
        **extra,
    )


# =========================
# Model & store
# =========================
class DjangoBillStoreTests(TestCase):
    def setUp(self):
        self.tenant = User.objects.create_user(
            email="tenant@rentdesk.test",
            password="TenantPass123!",
        )
        self.room = Room.objects.create(room_number="101", tenant=self.tenant)
        self.bill = create_bill(self.tenant, self.room)
        self.store = DjangoBillStore()

    def test_new_bill_totals(self):
        self.assertEqual(self.bill.total_amount, Decimal("1000.00"))
        self.assertEqual(self.bill.remaining_amount, Decimal("1000.00"))
        self.assertEqual(self.bill.version, 0)
        self.assertEqual(self.bill.status, "pending")

    def test_base_amount_cannot_change(self):
        self.bill.base_amount = Decimal("900.00")
        with self.assertRaises(ValidationError):
            self.bill.save()

    def test_save_bumps_version(self):
        bill = self.store.find_by_id(self.bill.pk)
        bill.paid_amount = Decimal("100.00")
        bill.recalculate_totals()

        self.store.save(bill)

        self.bill.refresh_from_db()
        self.assertEqual(bill.version, 1)
        self.assertEqual(self.bill.version, 1)
        self.assertEqual(self.bill.remaining_amount, Decimal("900.00"))

    def test_stale_save_conflicts(self):
        first = self.store.find_by_id(self.bill.pk)
        second = self.store.find_by_id(self.bill.pk)
        first.paid_amount = Decimal("100.00")
        self.store.save(first)

        second.paid_amount = Decimal("200.00")
        with self.assertRaises(VersionConflict):
            self.store.save(second)

        self.bill.refresh_from_db()
        self.assertEqual(self.bill.paid_amount, Decimal("100.00"))

    def test_direct_save_invalidates_stale_copies(self):
        stale = self.store.find_by_id(self.bill.pk)
        self.bill.paid_amount = Decimal("50.00")
        self.bill.save()

        self.assertEqual(self.bill.version, 1)
        with self.assertRaises(VersionConflict):
            self.store.save(stale)

    def test_save_never_writes_base_amount(self):
        bill = self.store.find_by_id(self.bill.pk)
        bill.base_amount = Decimal("1.00")
        self.store.save(bill)

        self.bill.refresh_from_db()
        self.assertEqual(self.bill.base_amount, Decimal("1000.00"))

    def test_missing_bill(self):
        with self.assertRaises(BillNotFound):
            self.store.find_by_id(9999)

    def test_overdue_candidates(self):
        create_bill(self.tenant, self.room, number="BILL-PAID", status="paid")
        create_bill(self.tenant, self.room, number="BILL-FUTURE", due_date=NOW + timedelta(days=2))
        create_bill(self.tenant, self.room, number="BILL-PART", status="partially_paid")

        numbers = [b.bill_number for b in self.store.find_overdue_candidates(NOW)]

        self.assertEqual(sorted(numbers), ["BILL-2024-01-001", "BILL-PART"])

    def test_due_between(self):
        create_bill(self.tenant, self.room, number="BILL-SOON", due_date=NOW + timedelta(days=2))
        create_bill(self.tenant, self.room, number="BILL-LATER", due_date=NOW + timedelta(days=9))

        bills = self.store.find_due_between(NOW, NOW + timedelta(days=3))

        self.assertEqual([b.bill_number for b in bills], ["BILL-SOON"])


# =========================
# Engine against the database
# =========================
class PenaltyEngineDatabaseTests(TestCase):
    def setUp(self):
        self.tenant = User.objects.create_user(
            email="tenant@rentdesk.test",
            password="TenantPass123!",
            first_name="Asha",
        )
        self.admin = User.objects.create_user(
            email="admin@rentdesk.test",
            password="AdminPass123!",
            role="ADMIN",
        )
        self.room = Room.objects.create(room_number="204", tenant=self.tenant)
        self.bill = create_bill(self.tenant, self.room)
        self.engine = PenaltyAccrualEngine(
            store=DjangoBillStore(),
            notifier=DjangoNotifier(),
            clock=FrozenClock(NOW),
        )

    def test_batch_applies_and_notifies(self):
        result = self.engine.run_batch()

        self.assertEqual(result.penalties_applied, 1)
        self.assertEqual(result.total_penalty_amount, Decimal("250.00"))

        self.bill.refresh_from_db()
        self.assertEqual(self.bill.penalty_amount, Decimal("250.00"))
        self.assertEqual(self.bill.penalty_days, 5)
        self.assertEqual(self.bill.total_amount, Decimal("1250.00"))
        self.assertEqual(self.bill.status, "overdue")
        self.assertEqual(self.bill.version, 1)

        notice = Notification.objects.get(recipient=self.tenant)
        self.assertEqual(notice.title, "Late Payment Penalty Applied")
        self.assertEqual(notice.type, "WARNING")
        self.assertEqual(notice.link, f"/billing/bills/{self.bill.pk}")
        self.assertIn("5 days overdue", notice.message)
        self.assertIn("January 2024", notice.message)

        self.assertTrue(
            Notification.objects.filter(
                recipient=self.admin, title="Late Payment Penalties Applied"
            ).exists()
        )

        self.assertEqual(len(mail.outbox), 1)
        self.assertIn("BILL-2024-01-001", mail.outbox[0].subject)
        self.assertEqual(mail.outbox[0].to, ["tenant@rentdesk.test"])

    def test_same_day_rerun_does_not_duplicate_notice(self):
        self.engine.run_batch()
        self.engine.run_batch()

        self.bill.refresh_from_db()
        self.assertEqual(self.bill.total_amount, Decimal("1250.00"))
        self.assertEqual(
            Notification.objects.filter(
                recipient=self.tenant, title="Late Payment Penalty Applied"
            ).count(),
            1,
        )
        self.assertEqual(len(mail.outbox), 1)

    def test_next_day_penalty_is_replaced(self):
        self.engine.run_batch()
        self.engine.clock.advance(timedelta(days=1))
        self.engine.run_batch()

        self.bill.refresh_from_db()
        self.assertEqual(self.bill.penalty_amount, Decimal("300.00"))
        self.assertEqual(self.bill.total_amount, Decimal("1300.00"))
        self.assertEqual(self.bill.base_amount, Decimal("1000.00"))

    @patch("notifications.notifier.send_late_fee_email", side_effect=SMTPException("down"))
    def test_email_failure_keeps_penalty(self, _mock_send):
        with self.assertLogs("billing.engine", level="ERROR"):
            result = self.engine.apply_penalty_to_bill(self.bill)

        self.assertTrue(result.applied)
        self.bill.refresh_from_db()
        self.assertEqual(self.bill.penalty_amount, Decimal("250.00"))

    def test_deferred_emails_go_out_after_every_bill_is_saved(self):
        second = create_bill(self.tenant, self.room, number="BILL-2024-01-002")
        penalties_at_send = []

        def record_state(tenant, event):
            penalties_at_send.append(
                sorted(Bill.objects.values_list("penalty_amount", flat=True))
            )

        engine = PenaltyAccrualEngine(
            store=DjangoBillStore(),
            notifier=DjangoNotifier(defer_email=True),
            clock=FrozenClock(NOW),
        )
        with patch("notifications.notifier.send_late_fee_email", side_effect=record_state):
            result = engine.run_batch()

        self.assertEqual(result.penalties_applied, 2)
        self.assertEqual(
            penalties_at_send,
            [[Decimal("250.00"), Decimal("250.00")]] * 2,
        )
        second.refresh_from_db()
        self.assertEqual(second.status, "overdue")

    @patch("notifications.notifier.send_late_fee_email", side_effect=SMTPException("down"))
    def test_deferred_email_failure_is_logged(self, _mock_send):
        engine = PenaltyAccrualEngine(
            store=DjangoBillStore(),
            notifier=DjangoNotifier(defer_email=True),
            clock=FrozenClock(NOW),
        )

        with self.assertLogs("notifications.notifier", level="ERROR"):
            result = engine.run_batch()

        self.assertEqual(result.penalties_applied, 1)
        self.assertEqual(result.failures, [])
        self.assertTrue(Notification.objects.filter(recipient=self.tenant).exists())

    def test_adjusting_paid_bill_is_rejected(self):
        self.bill.paid_amount = Decimal("1000.00")
        self.bill.status = "paid"
        self.bill.save()

        with self.assertRaises(InvalidAdjustment):
            self.engine.adjust_penalty(self.bill.pk, Decimal("200"))

        self.bill.refresh_from_db()
        self.assertEqual(self.bill.status, "paid")
        self.assertEqual(self.bill.remaining_amount, Decimal("0.00"))


# =========================
# API
# =========================
class BillApiTests(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(
            email="admin@rentdesk.test",
            password="AdminPass123!",
            role="ADMIN",
        )
        self.tenant = User.objects.create_user(
            email="tenant@rentdesk.test",
            password="TenantPass123!",
        )
        self.other_tenant = User.objects.create_user(
            email="other@rentdesk.test",
            password="OtherPass123!",
        )
        self.room = Room.objects.create(room_number="301", tenant=self.tenant)
        self.other_room = Room.objects.create(room_number="302", tenant=self.other_tenant)

        # One hour past five whole days so the request's clock sees exactly 5 days.
        overdue_since = timezone.now() - timedelta(days=5, hours=1)
        self.bill = create_bill(self.tenant, self.room, due_date=overdue_since)
        self.other_bill = create_bill(
            self.other_tenant,
            self.other_room,
            number="BILL-2024-01-002",
            due_date=overdue_since,
        )

    def authenticate(self, user):
        refresh = RefreshToken.for_user(user)
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")

    def test_unauthenticated_request_is_rejected(self):
        response = self.client.get(reverse("bill-list"))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_tenant_lists_only_own_bills(self):
        self.authenticate(self.tenant)

        response = self.client.get(reverse("bill-list"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([b["bill_number"] for b in response.data], ["BILL-2024-01-001"])
        self.assertEqual(response.data[0]["room_number"], "301")

    def test_admin_lists_all_bills_with_status_filter(self):
        self.other_bill.status = "paid"
        self.other_bill.paid_amount = Decimal("1000.00")
        self.other_bill.save()
        self.authenticate(self.admin)

        response = self.client.get(reverse("bill-list"))
        self.assertEqual(len(response.data), 2)

        response = self.client.get(reverse("bill-list"), {"status": "paid"})
        self.assertEqual([b["bill_number"] for b in response.data], ["BILL-2024-01-002"])

    def test_admin_runs_penalties(self):
        self.authenticate(self.admin)

        response = self.client.post(reverse("penalties-run"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["penalties_applied"], 2)
        self.assertEqual(response.data["processed_bills"], 2)
        self.assertEqual(float(response.data["total_penalty_amount"]), 500.0)
        self.assertEqual(response.data["failed_bills"], [])

        self.bill.refresh_from_db()
        self.assertEqual(self.bill.total_amount, Decimal("1250.00"))

    def test_tenant_cannot_run_penalties(self):
        self.authenticate(self.tenant)

        response = self.client.post(reverse("penalties-run"))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.bill.refresh_from_db()
        self.assertEqual(self.bill.penalty_amount, Decimal("0"))

    def test_tenant_views_own_penalty(self):
        self.client.force_authenticate(user=self.admin)
        self.client.post(reverse("penalties-run"))
        self.client.force_authenticate(user=self.tenant)

        response = self.client.get(reverse("bill-penalty", args=[self.bill.pk]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(float(response.data["penalty"]["amount"]), 250.0)
        self.assertEqual(response.data["penalty"]["days"], 5)
        self.assertEqual(float(response.data["bill"]["total_amount"]), 1250.0)
        self.assertEqual(response.data["adjustments"], [])

    def test_tenant_cannot_view_other_bill(self):
        self.client.force_authenticate(user=self.tenant)

        response = self.client.get(reverse("bill-penalty", args=[self.other_bill.pk]))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_preview_does_not_persist(self):
        self.client.force_authenticate(user=self.tenant)

        response = self.client.get(reverse("bill-preview-penalty", args=[self.bill.pk]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["should_apply"])
        self.assertEqual(float(response.data["amount"]), 250.0)
        self.assertEqual(float(response.data["projected_total_amount"]), 1250.0)

        self.bill.refresh_from_db()
        self.assertEqual(self.bill.penalty_amount, Decimal("0"))
        self.assertEqual(self.bill.version, 0)

    def test_admin_adjusts_penalty(self):
        self.client.force_authenticate(user=self.admin)
        self.client.post(reverse("penalties-run"))

        response = self.client.post(
            reverse("bill-adjust-penalty", args=[self.bill.pk]),
            {"delta": "-250.00", "reason": "Tenant was travelling"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(float(response.data["new_penalty"]), 0.0)
        self.assertEqual(float(response.data["total_amount"]), 1000.0)

        self.bill.refresh_from_db()
        self.assertEqual(self.bill.total_amount, Decimal("1000.00"))
        self.assertIsNone(self.bill.penalty_applied_at)

        adjustment = PenaltyAdjustment.objects.get(bill=self.bill)
        self.assertEqual(adjustment.previous_penalty, Decimal("250.00"))
        self.assertEqual(adjustment.delta, Decimal("-250.00"))
        self.assertEqual(adjustment.applied_by, self.admin)

        history = self.client.get(reverse("bill-penalty", args=[self.bill.pk]))
        self.assertEqual(len(history.data["adjustments"]), 1)
        self.assertEqual(history.data["adjustments"][0]["reason"], "Tenant was travelling")

    def test_adjusting_paid_bill_returns_400(self):
        self.client.force_authenticate(user=self.admin)
        self.client.post(
            reverse("bill-payments", args=[self.bill.pk]),
            {"amount": "1000.00"},
            format="json",
        )

        response = self.client.post(
            reverse("bill-adjust-penalty", args=[self.bill.pk]),
            {"delta": "200.00"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "INVALID_ADJUSTMENT")
        self.assertFalse(PenaltyAdjustment.objects.exists())

    def test_zero_adjustment_is_rejected(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            reverse("bill-adjust-penalty", args=[self.bill.pk]),
            {"delta": "0"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(PenaltyAdjustment.objects.exists())

    def test_tenant_cannot_adjust_penalty(self):
        self.client.force_authenticate(user=self.tenant)

        response = self.client.post(
            reverse("bill-adjust-penalty", args=[self.bill.pk]),
            {"delta": "-10.00"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_records_payment(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            reverse("bill-payments", args=[self.bill.pk]),
            {"amount": "400.00"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "partially_paid")
        self.assertEqual(float(response.data["remaining_amount"]), 600.0)

    def test_payment_on_paid_bill_is_rejected(self):
        self.client.force_authenticate(user=self.admin)
        url = reverse("bill-payments", args=[self.bill.pk])
        self.client.post(url, {"amount": "1000.00"}, format="json")

        response = self.client.post(url, {"amount": "10.00"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "INVALID_PAYMENT")


# =========================
# Admin site
# =========================
class BillAdminTests(TestCase):
    def setUp(self):
        self.tenant = User.objects.create_user(
            email="tenant@rentdesk.test",
            password="TenantPass123!",
        )
        self.room = Room.objects.create(room_number="401", tenant=self.tenant)
        self.model_admin = admin.site._registry[Bill]
        self.request = RequestFactory().get("/admin/billing/bill/")

    def test_payment_and_status_fields_are_read_only(self):
        fields = self.model_admin.get_readonly_fields(self.request)

        for field in ("paid_amount", "status", "penalty_amount", "remaining_amount"):
            self.assertIn(field, fields)
        self.assertNotIn("base_amount", fields)

    def test_base_amount_is_read_only_once_created(self):
        bill = create_bill(self.tenant, self.room)

        fields = self.model_admin.get_readonly_fields(self.request, bill)

        self.assertIn("base_amount", fields)
        self.assertIn("paid_amount", fields)
