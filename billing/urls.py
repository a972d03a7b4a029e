from django.urls import path
from rest_framework.routers import SimpleRouter
from .views import BillViewSet, RunPenaltiesView

router = SimpleRouter()
router.register("bills", BillViewSet, basename="bill")

urlpatterns = [
    path("penalties/run/", RunPenaltiesView.as_view(), name="penalties-run"),
] + router.urls
