from django.contrib import admin
from .models import Bill, PenaltyAdjustment


@admin.register(Bill)
class BillAdmin(admin.ModelAdmin):
    list_display = (
        "bill_number",
        "tenant",
        "room",
        "month",
        "year",
        "due_date",
        "base_amount",
        "penalty_amount",
        "total_amount",
        "remaining_amount",
        "status",
    )
    list_filter = ("status", "year", "month")
    search_fields = ("bill_number", "tenant__email", "room__room_number")
    # Payments go through record_payment, penalties through the engine.
    readonly_fields = (
        "penalty_amount",
        "penalty_days",
        "penalty_applied_at",
        "total_amount",
        "paid_amount",
        "remaining_amount",
        "status",
        "version",
    )

    def get_readonly_fields(self, request, obj=None):
        fields = super().get_readonly_fields(request, obj)
        if obj is not None:
            return fields + ("base_amount",)
        return fields


@admin.register(PenaltyAdjustment)
class PenaltyAdjustmentAdmin(admin.ModelAdmin):
    list_display = ("bill", "previous_penalty", "new_penalty", "delta", "applied_by", "created_at")
    search_fields = ("bill__bill_number", "reason")
