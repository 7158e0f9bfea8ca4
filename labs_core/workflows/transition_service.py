# labs_core/workflows/transition_service.py
from __future__ import annotations

import logging

from django.db import transaction
from django.utils import timezone

from labs_core.models import LabOrder, LabOrderTransition, Specimen
from labs_core.workflows import normalize_status, validate_transition
from labs_core.workflows.errors import ConcurrentUpdate, NotFound

logger = logging.getLogger(__name__)


def lock_order(order_id) -> LabOrder:
    """
    Re-read an order under a row lock. Must be called inside transaction.atomic().

    Every mutation against an order goes through here first so that two
    requests for the same order serialize on the row instead of racing on a
    stale read.
    """
    try:
        return LabOrder.objects.select_for_update().get(pk=order_id)
    except LabOrder.DoesNotExist:
        raise NotFound("Lab order not found", entity="LabOrder", id=str(order_id))


def lock_specimen(specimen_id) -> Specimen:
    try:
        return Specimen.objects.select_for_update().get(pk=specimen_id)
    except Specimen.DoesNotExist:
        raise NotFound("Specimen not found", entity="Specimen", id=str(specimen_id))


def apply_order_status(
    order: LabOrder,
    to_status: str,
    *,
    performed_by=None,
    reason: str = "",
    extra_fields: dict | None = None,
    validate: bool = True,
    now=None,
) -> dict:
    """
    Atomically:
      1) Validate current -> target against the order workflow (optional)
      2) Write the LabOrderTransition row
      3) Update order.status (and any extra fields) with a guarded UPDATE

    The UPDATE is conditional on the status read under lock, so a concurrent
    writer that slipped past the lock cannot be overwritten silently.

    Returns a small dict for logging/testing.
    """
    now = now or timezone.now()
    from_status = normalize_status(order.status)
    to_status = normalize_status(to_status)

    if validate:
        validate_transition("order", from_status, to_status)

    fields = dict(extra_fields or {})

    if from_status == to_status and not fields:
        return {
            "changed": False,
            "order_id": order.pk,
            "from_status": from_status,
            "to_status": to_status,
            "transition_id": None,
        }

    with transaction.atomic():
        fields.update(status=to_status, updated_at=now)
        updated = (
            LabOrder.objects.filter(pk=order.pk, status=from_status).update(**fields)
        )
        if updated != 1:
            raise ConcurrentUpdate(
                f"Lab order {order.order_number} changed concurrently; reload and retry",
                current=from_status,
            )

        t = None
        if from_status != to_status:
            t = LabOrderTransition.objects.create(
                order=order,
                from_status=from_status,
                to_status=to_status,
                performed_by=performed_by,
                reason=reason or "",
            )

    for name, value in fields.items():
        setattr(order, name, value)

    if t is not None:
        logger.info(
            "Order %s status %s -> %s", order.order_number, from_status, to_status
        )

    return {
        "changed": t is not None,
        "order_id": order.pk,
        "from_status": from_status,
        "to_status": to_status,
        "transition_id": t.id if t else None,
    }
