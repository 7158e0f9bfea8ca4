# labs_core/views_stats.py
from __future__ import annotations

from decimal import Decimal

from django.db.models import Count, Q, Sum
from django.utils import timezone
from django.utils.dateparse import parse_date
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import (
    LabOrder,
    LabOrderStatus,
    LabPriority,
    LabResult,
    PaymentStatus,
    Specimen,
    SpecimenStatus,
)
from .views_queue import _day_bounds

# Orders still moving through collection and the bench share one counter.
IN_PROGRESS_STATUSES = [
    LabOrderStatus.COLLECTING,
    LabOrderStatus.COLLECTED,
    LabOrderStatus.PROCESSING,
]

CENTS = Decimal("0.01")


def _money(value) -> str:
    return str((value or Decimal("0")).quantize(CENTS))


def _order_stats(orders):
    counts = {
        status.value: Count("id", filter=Q(status=status))
        for status in (
            LabOrderStatus.PENDING_PAYMENT,
            LabOrderStatus.PAID,
            LabOrderStatus.COMPLETED,
            LabOrderStatus.VERIFIED,
            LabOrderStatus.RELEASED,
            LabOrderStatus.CANCELLED,
        )
    }
    return orders.aggregate(
        total=Count("id"),
        processing=Count("id", filter=Q(status__in=IN_PROGRESS_STATUSES)),
        **counts,
    )


class LabStatsView(APIView):
    """
    GET /labs/stats/?date=YYYY-MM-DD

    Dashboard counters for one day (default today). Orders and revenue
    follow placed_at, specimens follow created_at and results follow
    their last update.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        tags=["Lab queue"],
        parameters=[OpenApiParameter("date", OpenApiTypes.DATE, required=False)],
    )
    def get(self, request):
        raw = request.query_params.get("date")
        day = parse_date(raw) if raw else timezone.localdate()
        if day is None:
            raise ValidationError({"date": "Use YYYY-MM-DD."})

        start, end = _day_bounds(day)
        orders = LabOrder.objects.filter(placed_at__gte=start, placed_at__lt=end)

        priority = orders.aggregate(
            **{p: Count("id", filter=Q(priority=p)) for p in LabPriority.values}
        )
        revenue = orders.aggregate(
            total=Sum("total_amount", filter=Q(payment_status=PaymentStatus.PAID)),
            pending=Sum("total_amount", filter=Q(payment_status=PaymentStatus.UNPAID)),
        )

        specimens = Specimen.objects.filter(created_at__gte=start, created_at__lt=end)
        specimen_stats = specimens.aggregate(
            total=Count("id"),
            **{s: Count("id", filter=Q(status=s)) for s in SpecimenStatus.values},
        )
        specimen_stats["by_type"] = {
            row["specimen_type"]: row["n"]
            for row in specimens.values("specimen_type")
            .annotate(n=Count("id"))
            .order_by("specimen_type")
        }

        results = LabResult.objects.filter(updated_at__gte=start, updated_at__lt=end)
        result_stats = results.aggregate(
            total=Count("id"),
            verified=Count("id", filter=Q(verified_at__isnull=False)),
            released=Count("id", filter=Q(released_at__isnull=False)),
            pending=Count("id", filter=Q(verified_at__isnull=True)),
        )

        return Response(
            {
                "date": day.isoformat(),
                "orders": _order_stats(orders),
                "priority": priority,
                "revenue": {
                    "total": _money(revenue["total"]),
                    "pending": _money(revenue["pending"]),
                },
                "specimens": specimen_stats,
                "results": result_stats,
            }
        )
