"""
Management command to remind tenants about bills that fall due soon.

Run daily via cron/scheduler:
    python manage.py send_payment_reminders --days 3
"""
from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from billing.constants import REMINDER_DAYS_AHEAD
from billing.exceptions import StoreError
from billing.reminders import send_payment_reminders
from billing.store import DjangoBillStore
from notifications.notifier import DjangoNotifier


class Command(BaseCommand):
    help = "Send payment reminders for bills due within the next few days"

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=getattr(settings, "PAYMENT_REMINDER_DAYS", REMINDER_DAYS_AHEAD),
            help="Remind about bills due within this many days",
        )

    def handle(self, *args, **options):
        days = options["days"]
        if days < 1:
            raise CommandError("--days must be at least 1")

        try:
            sent = send_payment_reminders(
                DjangoBillStore(),
                DjangoNotifier(),
                timezone.now(),
                days_ahead=days,
            )
        except StoreError as exc:
            raise CommandError(str(exc))

        self.stdout.write(self.style.SUCCESS(f"Reminders sent: {sent}"))
