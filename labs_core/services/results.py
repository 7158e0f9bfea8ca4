# labs_core/services/results.py
"""
Result entry and verification.

Release is an order-level operation and lives in labs_core.services.orders.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Tuple

from django.db import transaction
from django.utils import timezone

from labs_core.models import LabOrderItem, LabResult, Specimen
from labs_core.services.orders import recompute_order_status
from labs_core.services.specimens import advance_to_processing
from labs_core.workflows import RESULT_ENTRY_STATUSES
from labs_core.workflows.cascade import item_progress
from labs_core.workflows.errors import (
    AlreadyReleased,
    AlreadyVerified,
    DuplicateResult,
    NotFound,
    NotModifiable,
    ResultReleased,
)
from labs_core.workflows.transition_service import lock_order

logger = logging.getLogger(__name__)

RESULT_FIELDS = (
    "result_value",
    "result_text",
    "units",
    "reference_range",
    "abnormal_flag",
    "notes",
)


def _clean_values(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: ("" if v is None else v) for k, v in (values or {}).items() if k in RESULT_FIELDS}


def _lock_result(result_id) -> Tuple[Any, LabResult]:
    order_id = (
        LabResult.objects.filter(pk=result_id)
        .values_list("order_item__order_id", flat=True)
        .first()
    )
    if order_id is None:
        raise NotFound("Result not found", entity="LabResult", id=str(result_id))
    order = lock_order(order_id)
    result = LabResult.objects.select_for_update().select_related("order_item").get(pk=result_id)
    return order, result


def create_result(
    *,
    order_item_id,
    values: Dict[str, Any],
    specimen_id=None,
    performed_by=None,
    now=None,
) -> LabResult:
    """
    Enter the result for one order item.

    The item becomes completed, a received specimen moves into processing,
    and the order cascades to processing or completed.
    """
    now = now or timezone.now()

    order_id = (
        LabOrderItem.objects.filter(pk=order_item_id).values_list("order_id", flat=True).first()
    )
    if order_id is None:
        raise NotFound("Order item not found", entity="LabOrderItem", id=str(order_item_id))

    with transaction.atomic():
        order = lock_order(order_id)

        if order.status not in RESULT_ENTRY_STATUSES:
            raise NotModifiable(
                f"Cannot enter results for an order in {order.status} status",
                status=order.status,
            )

        item = LabOrderItem.objects.get(pk=order_item_id)
        if LabResult.objects.filter(order_item_id=item.pk).exists():
            raise DuplicateResult()

        specimen = None
        if specimen_id:
            specimen = (
                Specimen.objects.select_for_update()
                .filter(pk=specimen_id, order_id=order.pk)
                .first()
            )
            if specimen is None:
                raise NotFound("Specimen not found", entity="Specimen", id=str(specimen_id))

        result = LabResult.objects.create(
            order_item=item,
            specimen=specimen,
            entered_at=now,
            entered_by=performed_by,
            **_clean_values(values),
        )
        LabOrderItem.objects.filter(pk=item.pk).update(status="completed")

        if specimen is not None:
            advance_to_processing(specimen, performed_by=performed_by, now=now)

        recompute_order_status(order, performed_by=performed_by, now=now)

    logger.info("Result entered for %s on order %s", item.test_code, order.order_number)
    return result


def update_result(*, result_id, values: Dict[str, Any], performed_by=None) -> LabResult:
    with transaction.atomic():
        _order, result = _lock_result(result_id)

        if result.released_at is not None:
            raise ResultReleased()

        for name, value in _clean_values(values).items():
            setattr(result, name, value)
        result.save()

    logger.info("Result %s updated", result.pk)
    return result


def verify_result(*, result_id, performed_by=None, now=None) -> Tuple[LabResult, bool]:
    """
    Verify one result.

    Returns (result, order_fully_verified). When the last result of an order
    is verified the order moves to verified in the same transaction.
    """
    now = now or timezone.now()

    with transaction.atomic():
        order, result = _lock_result(result_id)

        # A released result is always verified, so it reports AlreadyVerified
        if result.verified_at is not None:
            raise AlreadyVerified()
        if result.released_at is not None:
            raise AlreadyReleased("Result has already been released")

        result.verified_at = now
        result.verified_by = performed_by
        result.save(update_fields=["verified_at", "verified_by", "updated_at"])
        LabOrderItem.objects.filter(pk=result.order_item_id).update(status="verified")

        progress = item_progress(order)
        recompute_order_status(order, performed_by=performed_by, now=now)

    logger.info(
        "Result %s verified (%d/%d verified on order %s)",
        result.pk,
        progress.verified,
        progress.total,
        order.order_number,
    )
    return result, progress.all_verified
