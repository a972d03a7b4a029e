"""
Management command to apply daily late-payment penalties to overdue bills.

Run daily via cron/scheduler (safe to run more than once a day):
    python manage.py apply_penalties
"""
from datetime import datetime, time, timezone as dt_timezone

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from billing.exceptions import StoreError
from billing.services import build_penalty_engine
from billing.store import DjangoBillStore, InMemoryBillStore


def parse_instant(value):
    moment = parse_datetime(value)
    if moment is None:
        day = parse_date(value)
        if day is None:
            raise ValueError(value)
        moment = datetime.combine(day, time.min)
    if timezone.is_naive(moment):
        moment = moment.replace(tzinfo=dt_timezone.utc)
    return moment


class Command(BaseCommand):
    help = "Apply late-payment penalties to overdue bills"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be applied without saving or notifying",
        )
        parser.add_argument(
            "--at",
            type=str,
            help="Evaluate penalties as of this instant (ISO date or datetime)",
        )
        parser.add_argument(
            "--workers",
            type=int,
            help="Number of bills processed in parallel",
        )

    def handle(self, *args, **options):
        dry_run = options.get("dry_run", False)
        at = options.get("at")

        if at:
            try:
                now = parse_instant(at)
            except ValueError:
                raise CommandError("Invalid --at value. Use YYYY-MM-DD or an ISO datetime")
        else:
            now = timezone.now()

        self.stdout.write(f"Applying penalties as of {now.isoformat()}")

        if dry_run:
            try:
                candidates = DjangoBillStore().find_overdue_candidates(now)
            except StoreError as exc:
                raise CommandError(str(exc))

            engine = build_penalty_engine(
                store=InMemoryBillStore(candidates),
                max_workers=1,
                notify=False,
            )
            for bill in candidates:
                quote = engine.calculate_current_penalty(bill, now)
                if quote.should_apply:
                    self.stdout.write(
                        self.style.SUCCESS(
                            f"  DRY-RUN: Would set penalty {quote.amount} "
                            f"({quote.days} days) on {bill.bill_number}"
                        )
                    )
                else:
                    self.stdout.write(
                        self.style.WARNING(f"  SKIP: {bill.bill_number} ({quote.reason})")
                    )
        else:
            engine = build_penalty_engine(max_workers=options.get("workers"))

        try:
            result = engine.run_batch(now)
        except StoreError as exc:
            raise CommandError(str(exc))

        for failure in result.failures:
            self.stderr.write(
                self.style.ERROR(f"  FAILED: {failure.bill_number} ({failure.code})")
            )

        # Summary
        self.stdout.write("")
        self.stdout.write(f"Processed: {result.processed_bills}")
        self.stdout.write(self.style.SUCCESS(f"Applied: {result.penalties_applied}"))
        self.stdout.write(
            self.style.SUCCESS(f"Total penalty amount: {result.total_penalty_amount}")
        )
        if result.failures:
            self.stdout.write(self.style.ERROR(f"Failed: {len(result.failures)}"))
