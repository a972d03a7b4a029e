from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.permissions import IsAdminOnly
from .constants import ZERO
from .exceptions import (
    BillNotFound,
    InvalidAdjustment,
    InvalidPayment,
    StoreError,
    VersionConflict,
)
from .models import Bill, PenaltyAdjustment
from .payments import record_payment
from .permissions import BillPermission
from .serializers import (
    AdjustPenaltySerializer,
    BillSerializer,
    PenaltyAdjustmentSerializer,
    RecordPaymentSerializer,
)
from .services import build_penalty_engine
from .store import DjangoBillStore

ERROR_STATUS = (
    (BillNotFound, status.HTTP_404_NOT_FOUND),
    (VersionConflict, status.HTTP_409_CONFLICT),
    (InvalidPayment, status.HTTP_400_BAD_REQUEST),
    (InvalidAdjustment, status.HTTP_400_BAD_REQUEST),
    (StoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def billing_error_response(exc):
    for error_class, http_status in ERROR_STATUS:
        if isinstance(exc, error_class):
            return Response({"detail": str(exc), "code": exc.code}, status=http_status)
    raise exc


# =========================
# Bills
# =========================
class BillViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = BillSerializer

    def get_permissions(self):
        if self.action in ["adjust_penalty", "payments"]:
            return [IsAuthenticated(), IsAdminOnly()]
        return [IsAuthenticated(), BillPermission()]

    def get_queryset(self):
        user = self.request.user
        queryset = Bill.objects.select_related("room")

        if user.is_superuser or user.role == "ADMIN":
            queryset = queryset.all()
        else:
            queryset = queryset.filter(tenant=user)

        bill_status = self.request.query_params.get("status")
        if bill_status:
            queryset = queryset.filter(status=bill_status)
        return queryset

    @action(detail=True, methods=["get"])
    def penalty(self, request, pk=None):
        bill = self.get_object()
        engine = build_penalty_engine()
        try:
            history = engine.get_penalty_history(bill.pk)
        except (BillNotFound, StoreError) as exc:
            return billing_error_response(exc)

        adjustments = PenaltyAdjustment.objects.filter(bill=bill).select_related("applied_by")
        history["adjustments"] = PenaltyAdjustmentSerializer(adjustments, many=True).data
        return Response(history, status=status.HTTP_200_OK)

    @action(detail=True, methods=["get"], url_path="penalty/preview")
    def preview_penalty(self, request, pk=None):
        bill = self.get_object()
        quote = build_penalty_engine().calculate_current_penalty(bill)

        projected_total = bill.base_amount + (quote.amount if quote.should_apply else bill.penalty_amount)
        data = quote.as_dict()
        data["projected_total_amount"] = projected_total
        data["projected_remaining_amount"] = max(ZERO, projected_total - bill.paid_amount)
        return Response(data, status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="penalty/adjust")
    def adjust_penalty(self, request, pk=None):
        bill = self.get_object()
        serializer = AdjustPenaltySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        delta = serializer.validated_data["delta"]
        try:
            result = build_penalty_engine().adjust_penalty(bill.pk, delta)
        except (BillNotFound, VersionConflict, InvalidAdjustment, StoreError) as exc:
            return billing_error_response(exc)

        PenaltyAdjustment.objects.create(
            bill=bill,
            previous_penalty=result.previous_penalty,
            new_penalty=result.new_penalty,
            delta=delta,
            reason=serializer.validated_data.get("reason", ""),
            applied_by=request.user,
        )
        return Response(result.as_dict(), status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"])
    def payments(self, request, pk=None):
        bill = self.get_object()
        serializer = RecordPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            updated = record_payment(
                DjangoBillStore(),
                bill.pk,
                serializer.validated_data["amount"],
            )
        except (BillNotFound, VersionConflict, InvalidPayment, StoreError) as exc:
            return billing_error_response(exc)

        updated.refresh_from_db()
        return Response(BillSerializer(updated).data, status=status.HTTP_200_OK)


# =========================
# Penalty run (admin trigger)
# =========================
class RunPenaltiesView(APIView):
    """
    Runs the penalty batch immediately, as the daily scheduler would.
    """
    permission_classes = [IsAuthenticated, IsAdminOnly]

    def post(self, request):
        engine = build_penalty_engine()
        try:
            result = engine.run_batch()
        except StoreError as exc:
            return billing_error_response(exc)

        return Response(result.as_dict(), status=status.HTTP_200_OK)
