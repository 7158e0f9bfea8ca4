# labs_core/workflows/cascade.py
"""
Order status cascades derived from child rows.

Every helper here re-queries items, specimens and results from the
database. Nothing is cached on the order, so running a recomputation twice
is harmless and an order can never drift from its children.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from django.db.models import Count, Q

from labs_core.models import LabOrder, LabOrderItem, Specimen
from labs_core.workflows import SPECIMEN_COLLECTED_OR_LATER, normalize_status


@dataclass(frozen=True)
class ItemProgress:
    total: int
    with_result: int
    verified: int

    @property
    def all_have_results(self) -> bool:
        return self.total > 0 and self.with_result == self.total

    @property
    def all_verified(self) -> bool:
        return self.total > 0 and self.verified == self.total

    @property
    def unverified(self) -> int:
        return self.total - self.verified


def item_progress(order: LabOrder) -> ItemProgress:
    agg = LabOrderItem.objects.filter(order_id=order.pk).aggregate(
        total=Count("id"),
        with_result=Count("id", filter=Q(result__isnull=False)),
        verified=Count("id", filter=Q(result__verified_at__isnull=False)),
    )
    return ItemProgress(
        total=agg["total"] or 0,
        with_result=agg["with_result"] or 0,
        verified=agg["verified"] or 0,
    )


def all_specimens_collected(order: LabOrder) -> bool:
    """
    True when the order has at least one specimen and every one of them
    has reached collection. A rejected specimen is not collected, so it
    holds the order in collecting.
    """
    specimens = Specimen.objects.filter(order_id=order.pk)
    if not specimens.exists():
        return False
    return not specimens.exclude(status__in=SPECIMEN_COLLECTED_OR_LATER).exists()


# Order states a cascade may move forward from, per target.
_CASCADE_SOURCES = {
    "collected": {"paid", "collecting"},
    "processing": {"collected", "processing"},
    "completed": {"collected", "processing", "completed"},
    "verified": {"collected", "processing", "completed", "verified"},
}


def cascade_target(order: LabOrder, progress: Optional[ItemProgress] = None) -> Optional[str]:
    """
    Status the order should hold given its results, or None when the
    current status must be kept. Never regresses a more advanced order.
    """
    progress = progress or item_progress(order)
    current = normalize_status(order.status)

    if progress.all_verified:
        target = "verified"
    elif progress.all_have_results:
        target = "completed"
    elif progress.with_result > 0:
        target = "processing"
    else:
        return None

    if current not in _CASCADE_SOURCES[target]:
        return None
    return target


def collection_target(order: LabOrder) -> Optional[str]:
    if normalize_status(order.status) not in _CASCADE_SOURCES["collected"]:
        return None
    if not all_specimens_collected(order):
        return None
    return "collected"
