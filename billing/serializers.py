from decimal import Decimal

from rest_framework import serializers

from .models import Bill, PenaltyAdjustment


class BillSerializer(serializers.ModelSerializer):
    room_number = serializers.CharField(source="room.room_number", read_only=True)

    class Meta:
        model = Bill
        fields = (
            "id",
            "bill_number",
            "tenant",
            "room",
            "room_number",
            "month",
            "year",
            "due_date",
            "base_amount",
            "penalty_amount",
            "penalty_days",
            "penalty_applied_at",
            "total_amount",
            "paid_amount",
            "remaining_amount",
            "status",
            "created_at",
        )
        read_only_fields = fields


class PenaltyAdjustmentSerializer(serializers.ModelSerializer):
    applied_by = serializers.StringRelatedField()

    class Meta:
        model = PenaltyAdjustment
        fields = (
            "id",
            "previous_penalty",
            "new_penalty",
            "delta",
            "reason",
            "applied_by",
            "created_at",
        )
        read_only_fields = fields


class AdjustPenaltySerializer(serializers.Serializer):
    delta = serializers.DecimalField(max_digits=12, decimal_places=2)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True)

    def validate_delta(self, value):
        if value == Decimal("0"):
            raise serializers.ValidationError("Delta must not be zero.")
        return value


class RecordPaymentSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("Amount must be greater than zero.")
        return value
