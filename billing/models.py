from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from rooms.models import Room
from .constants import ZERO

User = settings.AUTH_USER_MODEL


@dataclass(frozen=True)
class Penalty:
    amount: Decimal
    days: int
    applied_at: Optional[datetime]


# =========================
# Bill Model
# =========================
class Bill(models.Model):
    STATUS_CHOICES = [
        ("pending", "Pending"),
        ("partially_paid", "Partially paid"),
        ("overdue", "Overdue"),
        ("paid", "Paid"),
    ]

    # Fields the penalty engine and payment recording may write.
    # base_amount is not among them: it never changes once set.
    MUTABLE_FIELDS = (
        "penalty_amount",
        "penalty_days",
        "penalty_applied_at",
        "total_amount",
        "paid_amount",
        "remaining_amount",
        "status",
    )

    bill_number = models.CharField(max_length=50, unique=True)
    tenant = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name="bills",
    )
    room = models.ForeignKey(
        Room,
        on_delete=models.PROTECT,
        related_name="bills",
    )
    month = models.PositiveSmallIntegerField(
        validators=[MinValueValidator(1), MaxValueValidator(12)],
    )
    year = models.PositiveSmallIntegerField()
    due_date = models.DateTimeField()

    base_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Charge before any penalty. Immutable once set.",
    )

    penalty_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    penalty_days = models.PositiveIntegerField(default=0)
    penalty_applied_at = models.DateTimeField(null=True, blank=True)

    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    remaining_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default="pending",
    )

    version = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["due_date", "id"]
        indexes = [
            models.Index(fields=["status", "due_date"], name="bill_status_due_idx"),
        ]

    def __str__(self):
        return f"{self.bill_number} - {self.total_amount} ({self.status})"

    @property
    def penalty(self):
        return Penalty(
            amount=self.penalty_amount,
            days=self.penalty_days,
            applied_at=self.penalty_applied_at,
        )

    # -------------------------
    # Totals
    # -------------------------
    def recalculate_totals(self):
        """Rebuild the running totals from the base amount and current penalty."""
        self.base_amount = Decimal(self.base_amount)
        self.penalty_amount = Decimal(self.penalty_amount)
        self.paid_amount = Decimal(self.paid_amount)
        self.total_amount = self.base_amount + self.penalty_amount
        self.remaining_amount = max(ZERO, self.total_amount - self.paid_amount)

    def copy_state_from(self, other):
        """Take over the mutable fields and version of another copy of this bill."""
        for field in self.MUTABLE_FIELDS + ("version",):
            setattr(self, field, getattr(other, field))

    def clean(self):
        if self.base_amount is not None and self.base_amount < 0:
            raise ValidationError({"base_amount": "Amount cannot be negative."})
        if self.paid_amount < 0:
            raise ValidationError({"paid_amount": "Amount cannot be negative."})

    def save(self, *args, **kwargs):
        if not self._state.adding and self.pk is not None:
            stored_base = (
                Bill.objects.filter(pk=self.pk)
                .values_list("base_amount", flat=True)
                .first()
            )
            if stored_base is not None and stored_base != Decimal(self.base_amount):
                raise ValidationError("The base amount of a bill cannot be changed.")
            self.version += 1

        self.recalculate_totals()
        super().save(*args, **kwargs)


# =========================
# Penalty Adjustment (Audit Trail)
# =========================
class PenaltyAdjustment(models.Model):
    """Administrative overrides of a bill's penalty."""

    bill = models.ForeignKey(
        Bill,
        on_delete=models.CASCADE,
        related_name="penalty_adjustments",
    )
    previous_penalty = models.DecimalField(max_digits=12, decimal_places=2)
    new_penalty = models.DecimalField(max_digits=12, decimal_places=2)
    delta = models.DecimalField(max_digits=12, decimal_places=2)
    reason = models.CharField(max_length=255, blank=True)
    applied_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        related_name="penalty_adjustments",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"Penalty {self.previous_penalty} -> {self.new_penalty} on {self.bill}"
