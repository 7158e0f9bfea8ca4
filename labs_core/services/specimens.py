# labs_core/services/specimens.py
"""
Specimen lifecycle services.

pending -> collected -> received -> processing -> completed, with rejection
possible from any non-terminal state. Every move appends a SpecimenEvent.
The owning order row is locked before the specimen row, the same order the
order services use, so the two never deadlock against each other.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from django.db import transaction
from django.utils import timezone

from labs_core.models import LabOrder, LabOrderItem, Specimen, SpecimenEvent
from labs_core.services.sequences import next_accession_number
from labs_core.workflows import can_transition, normalize_status
from labs_core.workflows.cascade import collection_target
from labs_core.workflows.errors import (
    InvalidState,
    NotFound,
    NotModifiable,
    OrderCancelled,
    ReasonRequired,
)
from labs_core.workflows.transition_service import (
    apply_order_status,
    lock_order,
    lock_specimen,
)

logger = logging.getLogger(__name__)


def _lock_with_order(specimen_id) -> Tuple[LabOrder, Specimen]:
    order_id = (
        Specimen.objects.filter(pk=specimen_id).values_list("order_id", flat=True).first()
    )
    if order_id is None:
        raise NotFound("Specimen not found", entity="Specimen", id=str(specimen_id))
    order = lock_order(order_id)
    specimen = lock_specimen(specimen_id)
    return order, specimen


def _move_specimen(
    specimen: Specimen,
    to_status: str,
    *,
    event_type: str,
    performed_by=None,
    fields: Optional[Dict[str, Any]] = None,
    details: Optional[Dict[str, Any]] = None,
    now=None,
) -> SpecimenEvent:
    now = now or timezone.now()
    values = dict(fields or {})
    values.update(status=to_status, updated_at=now)

    Specimen.objects.filter(pk=specimen.pk).update(**values)
    for name, value in values.items():
        setattr(specimen, name, value)

    return SpecimenEvent.objects.create(
        specimen=specimen,
        event_type=event_type,
        details=details or {},
        performed_at=now,
        performed_by=performed_by,
    )


def _require_state(specimen: Specimen, target: str, action: str) -> None:
    current = normalize_status(specimen.status)
    if not can_transition("specimen", current, target):
        raise InvalidState(
            f"Cannot {action} a specimen in {current} status",
            status=current,
        )


# ---------------------------------------------------------------------
# Accession
# ---------------------------------------------------------------------

def accession_specimen(
    *,
    order_id,
    specimen_type: str,
    order_item_id=None,
    container: str = "",
    collection_notes: str = "",
    performed_by=None,
    now=None,
) -> Specimen:
    """
    Register a specimen against a paid order.

    The first specimen on a paid order moves the order into collecting.
    """
    now = now or timezone.now()

    with transaction.atomic():
        order = lock_order(order_id)

        if order.status == "cancelled":
            raise OrderCancelled("Cannot add specimens to a cancelled order")
        if order.payment_status != "paid":
            raise NotModifiable(
                "Order is unpaid; confirm payment before collecting specimens",
                payment_status=order.payment_status,
            )

        item = None
        if order_item_id:
            item = LabOrderItem.objects.filter(pk=order_item_id, order_id=order.pk).first()
            if item is None:
                raise NotFound(
                    "Order item not found", entity="LabOrderItem", id=str(order_item_id)
                )

        specimen = Specimen.objects.create(
            order=order,
            order_item=item,
            accession_number=next_accession_number(now=now),
            specimen_type=specimen_type,
            container=container or "",
            collection_notes=collection_notes or "",
            status="pending",
        )
        SpecimenEvent.objects.create(
            specimen=specimen,
            event_type="accessioned",
            details={"specimen_type": specimen_type},
            performed_at=now,
            performed_by=performed_by,
        )

        if order.status == "paid":
            apply_order_status(
                order,
                "collecting",
                performed_by=performed_by,
                reason=f"Specimen {specimen.accession_number} accessioned",
                now=now,
            )

    logger.info(
        "Specimen %s accessioned for order %s",
        specimen.accession_number,
        order.order_number,
    )
    return specimen


# ---------------------------------------------------------------------
# Collect / receive / reject
# ---------------------------------------------------------------------

def collect_specimen(
    *,
    specimen_id,
    appearance: str = "",
    volume_ml=None,
    notes: str = "",
    performed_by=None,
    now=None,
) -> Specimen:
    now = now or timezone.now()

    with transaction.atomic():
        order, specimen = _lock_with_order(specimen_id)
        _require_state(specimen, "collected", "collect")

        fields: Dict[str, Any] = {
            "collected_at": now,
            "collected_by": performed_by,
            "appearance": appearance or "",
        }
        if volume_ml is not None:
            fields["volume_ml"] = volume_ml
        if notes:
            fields["collection_notes"] = notes

        _move_specimen(
            specimen,
            "collected",
            event_type="collected",
            performed_by=performed_by,
            fields=fields,
            details={
                "appearance": appearance or "",
                "volume_ml": str(volume_ml) if volume_ml is not None else None,
                "notes": notes or "",
            },
            now=now,
        )

        target = collection_target(order)
        if target:
            # paid -> collected skips collecting when the specimen was
            # accessioned and collected in the same visit.
            apply_order_status(
                order,
                target,
                performed_by=performed_by,
                reason="All specimens collected",
                validate=False,
                now=now,
            )

    logger.info("Specimen %s collected", specimen.accession_number)
    return specimen


def receive_specimen(
    *,
    specimen_id,
    notes: str = "",
    performed_by=None,
    now=None,
) -> Specimen:
    now = now or timezone.now()

    with transaction.atomic():
        _order, specimen = _lock_with_order(specimen_id)
        _require_state(specimen, "received", "receive")

        _move_specimen(
            specimen,
            "received",
            event_type="received",
            performed_by=performed_by,
            fields={"received_at": now, "received_by": performed_by},
            details={"notes": notes or ""},
            now=now,
        )

    logger.info("Specimen %s received in lab", specimen.accession_number)
    return specimen


def reject_specimen(
    *,
    specimen_id,
    reason: str,
    performed_by=None,
    now=None,
) -> Specimen:
    """
    Reject a specimen. The order status is left as is; a replacement
    specimen is accessioned separately.
    """
    now = now or timezone.now()
    reason = (reason or "").strip()
    if not reason:
        raise ReasonRequired()

    with transaction.atomic():
        _order, specimen = _lock_with_order(specimen_id)
        _require_state(specimen, "rejected", "reject")

        _move_specimen(
            specimen,
            "rejected",
            event_type="rejected",
            performed_by=performed_by,
            fields={
                "rejected_at": now,
                "rejected_by": performed_by,
                "rejected_reason": reason,
            },
            details={"reason": reason},
            now=now,
        )

    logger.info("Specimen %s rejected: %s", specimen.accession_number, reason)
    return specimen


def advance_to_processing(specimen: Specimen, *, performed_by=None, now=None) -> bool:
    """
    Move a received specimen into processing when its first result lands.
    Caller holds the order lock. Returns True when the specimen moved.
    """
    if normalize_status(specimen.status) != "received":
        return False
    _move_specimen(
        specimen,
        "processing",
        event_type="processing",
        performed_by=performed_by,
        details={},
        now=now,
    )
    return True
