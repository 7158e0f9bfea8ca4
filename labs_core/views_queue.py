# labs_core/views_queue.py
from __future__ import annotations

from datetime import datetime, time, timedelta

from django.db.models import Case, Count, IntegerField, Q, Value, When
from django.utils import timezone
from django.utils.dateparse import parse_date
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import LabOrder, LabOrderStatus

# Board lanes in workflow order; cancelled orders never appear on the board.
QUEUE_LANES = [s for s in LabOrderStatus.values if s != LabOrderStatus.CANCELLED]

PRIORITY_RANK = Case(
    When(priority="stat", then=Value(0)),
    When(priority="urgent", then=Value(1)),
    default=Value(2),
    output_field=IntegerField(),
)


def _day_bounds(day):
    tz = timezone.get_current_timezone()
    start = timezone.make_aware(datetime.combine(day, time.min), tz)
    return start, start + timedelta(days=1)


class LabQueueView(APIView):
    """
    GET /labs/queue/?date=YYYY-MM-DD

    Orders placed on the given day (default today), grouped into status
    lanes. Within a lane: stat, then urgent, then routine, oldest first.
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
        orders = (
            LabOrder.objects.filter(placed_at__gte=start, placed_at__lt=end)
            .exclude(status=LabOrderStatus.CANCELLED)
            .annotate(
                items_count=Count("items", distinct=True),
                completed_count=Count(
                    "items", filter=Q(items__result__isnull=False), distinct=True
                ),
                verified_count=Count(
                    "items",
                    filter=Q(items__result__verified_at__isnull=False),
                    distinct=True,
                ),
                priority_rank=PRIORITY_RANK,
            )
            .order_by("priority_rank", "placed_at", "id")
        )

        lanes = {status: [] for status in QUEUE_LANES}
        for order in orders:
            items = order.items_count
            lanes[order.status].append(
                {
                    "id": order.pk,
                    "order_number": order.order_number,
                    "patient_ref": order.patient_ref,
                    "status": order.status,
                    "payment_status": order.payment_status,
                    "priority": order.priority,
                    "placed_at": order.placed_at,
                    "total_amount": str(order.total_amount),
                    "items_count": items,
                    "completed_count": order.completed_count,
                    "verified_count": order.verified_count,
                    "progress": round(order.completed_count * 100 / items) if items else 0,
                }
            )

        totals = {status: len(entries) for status, entries in lanes.items()}
        totals["total"] = sum(totals.values())

        return Response({"date": day.isoformat(), "lanes": lanes, "totals": totals})
