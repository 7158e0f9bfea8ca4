# labs_core/services/orders.py
"""
Order lifecycle services.

All order status changes MUST go through this module (or the specimen and
result services, which cascade into it). Never update LabOrder.status
directly in views or serializers.

Every public function:
  1) opens a transaction and locks the order row
  2) validates everything it needs to (no writes before this point)
  3) applies the mutation and any cascades
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from labs_core.models import (
    LabOrder,
    LabOrderItem,
    LabPanel,
    LabResult,
    LabTest,
    Specimen,
    SpecimenEvent,
)
from labs_core.services.sequences import next_order_number
from labs_core.workflows import (
    MANUAL_CANCEL_STATUSES,
    MODIFIABLE_STATUSES,
    RESULT_GATED_STATUSES,
    allowed_next_states,
    normalize_status,
    validate_transition,
)
from labs_core.workflows.cascade import cascade_target, item_progress
from labs_core.workflows.errors import (
    AlreadyCancelled,
    AlreadyPaid,
    AlreadyReleased,
    DuplicateTest,
    LastItemProtected,
    NotFound,
    NotFullyVerified,
    NotModifiable,
    NothingToAdd,
    OrderCancelled,
    ReleasedImmutable,
    RequiresManualCancellation,
    ResultExists,
)
from labs_core.workflows.transition_service import apply_order_status, lock_order

logger = logging.getLogger(__name__)

ORDER_CANCELLED_REASON = "Order cancelled"


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def _get_test(test_id) -> LabTest:
    try:
        return LabTest.objects.get(pk=test_id, is_active=True)
    except (LabTest.DoesNotExist, ValueError):
        raise NotFound("Test not found", entity="LabTest", id=str(test_id))


def _get_panel(panel_id) -> LabPanel:
    try:
        return LabPanel.objects.get(pk=panel_id, is_active=True)
    except (LabPanel.DoesNotExist, ValueError):
        raise NotFound("Panel not found", entity="LabPanel", id=str(panel_id))


def _item_row(order: LabOrder, test: LabTest, *, panel=None, price=None) -> LabOrderItem:
    return LabOrderItem(
        order=order,
        test=test,
        panel=panel,
        test_code=test.code,
        test_name=test.name,
        section=test.section,
        status="pending",
        price_snapshot=test.price if price is None else price,
    )


def _expand_request(
    order: LabOrder,
    *,
    test_id=None,
    panel_id=None,
    present: set,
) -> List[LabOrderItem]:
    """
    Build (unsaved) item rows for one add request.

    A panel contributes every constituent test not already present. Its
    price rides on the first inserted constituent so the order total stays
    a plain sum of item snapshots.
    """
    if bool(test_id) == bool(panel_id):
        raise NothingToAdd("Provide exactly one of test_id or panel_id.")

    if test_id:
        test = _get_test(test_id)
        if test.pk in present:
            raise DuplicateTest(
                f"Test {test.code} is already in this order",
                test_id=test.pk,
            )
        return [_item_row(order, test)]

    panel = _get_panel(panel_id)
    rows: List[LabOrderItem] = []
    for panel_item in panel.panel_items.select_related("test"):
        test = panel_item.test
        if test.pk in present or any(r.test_id == test.pk for r in rows):
            continue
        price = panel.price if not rows else Decimal("0")
        rows.append(_item_row(order, test, panel=panel, price=price))

    if not rows:
        raise NothingToAdd(
            "All tests in this panel are already in the order",
            panel_id=panel.pk,
        )
    return rows


def recompute_totals(order: LabOrder) -> Decimal:
    """
    Re-derive subtotal/total_amount from persisted item snapshots.
    """
    total = (
        LabOrderItem.objects.filter(order_id=order.pk)
        .aggregate(total=Sum("price_snapshot"))["total"]
        or Decimal("0")
    )
    now = timezone.now()
    LabOrder.objects.filter(pk=order.pk).update(
        subtotal=total, total_amount=total, updated_at=now
    )
    order.subtotal = total
    order.total_amount = total
    order.updated_at = now
    return total


def recompute_order_status(order: LabOrder, *, performed_by=None, now=None) -> Dict[str, Any]:
    """
    Idempotent cascade: move the order to whatever its items and results
    imply, never backwards. Safe to call after every result write.
    """
    target = cascade_target(order)
    if target is None or target == normalize_status(order.status):
        return {
            "changed": False,
            "order_id": order.pk,
            "from_status": order.status,
            "to_status": order.status,
            "transition_id": None,
        }
    return apply_order_status(
        order,
        target,
        performed_by=performed_by,
        reason="Status recomputed from results",
        validate=False,
        now=now,
    )


def _stamp_released(order: LabOrder, *, performed_by=None, now=None) -> int:
    """
    Stamp every result of the order that is not released yet.

    Results are saved one by one so each release is written to the audit
    log. Earlier stamps are left as they are.
    """
    now = now or timezone.now()
    pending = (
        LabResult.objects.select_for_update()
        .filter(order_item__order_id=order.pk, released_at__isnull=True)
        .select_related("order_item")
        .order_by("id")
    )
    stamped = 0
    for result in pending:
        result.released_at = now
        result.released_by = performed_by
        result.save(update_fields=["released_at", "released_by", "updated_at"])
        stamped += 1
    return stamped


# ---------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------

def create_order(
    *,
    patient_ref: str,
    items: Iterable[Dict[str, Any]],
    priority: str = "routine",
    notes: str = "",
    ordering_provider_ref: str = "",
    performed_by=None,
    now=None,
) -> LabOrder:
    """
    Place a new order in pending_payment.

    `items` is a list of {"test_id": ...} or {"panel_id": ...} entries.
    """
    now = now or timezone.now()
    requests = list(items or [])
    if not requests:
        raise NothingToAdd("At least one test or panel is required.")

    with transaction.atomic():
        order = LabOrder.objects.create(
            order_number=next_order_number(now=now),
            patient_ref=patient_ref,
            ordering_provider_ref=ordering_provider_ref or "",
            priority=priority or "routine",
            notes=notes or "",
            status="pending_payment",
            payment_status="unpaid",
            placed_at=now,
        )

        present: set = set()
        rows: List[LabOrderItem] = []
        for req in requests:
            new_rows = _expand_request(
                order,
                test_id=req.get("test_id"),
                panel_id=req.get("panel_id"),
                present=present,
            )
            present.update(r.test_id for r in new_rows)
            rows.extend(new_rows)

        LabOrderItem.objects.bulk_create(rows)
        recompute_totals(order)

    logger.info(
        "Order %s placed for %s with %d item(s), total %s",
        order.order_number,
        patient_ref,
        len(rows),
        order.total_amount,
    )
    return order


# ---------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------

def confirm_payment(
    *,
    order_id,
    reference: str = "",
    amount: Optional[Decimal] = None,
    performed_by=None,
    now=None,
) -> LabOrder:
    now = now or timezone.now()

    with transaction.atomic():
        order = lock_order(order_id)

        if order.status == "cancelled":
            raise OrderCancelled("Cannot confirm payment for a cancelled order")
        if order.payment_status == "paid":
            raise AlreadyPaid()

        reason = f"Payment confirmed ({reference or 'no reference'})"
        if amount is not None:
            reason = f"{reason}, amount {amount}"

        apply_order_status(
            order,
            "paid",
            performed_by=performed_by,
            reason=reason,
            extra_fields={
                "payment_status": "paid",
                "payment_reference": reference or "",
                "paid_at": now,
            },
            validate=False,
            now=now,
        )

    logger.info("Payment confirmed for order %s", order.order_number)
    return order


# ---------------------------------------------------------------------
# Cancel
# ---------------------------------------------------------------------

def cancel_order(
    *,
    order_id,
    reason: str = "",
    performed_by=None,
    now=None,
) -> Dict[str, Any]:
    """
    Cancel an order that has no lab work in flight.

    Specimens still pending or collected are rejected with
    "Order cancelled". Received/processing specimens are left alone.
    """
    now = now or timezone.now()
    reason = (reason or "").strip()

    with transaction.atomic():
        order = lock_order(order_id)
        current = order.status

        if current == "cancelled":
            raise AlreadyCancelled()
        if current == "released":
            raise ReleasedImmutable()
        if current in MANUAL_CANCEL_STATUSES:
            raise RequiresManualCancellation(
                f"Cannot cancel an order in {current} status. Please contact lab management.",
                status=current,
            )

        apply_order_status(
            order,
            "cancelled",
            performed_by=performed_by,
            reason=reason,
            extra_fields={"cancelled_at": now, "cancel_reason": reason},
            now=now,
        )

        doomed = list(
            Specimen.objects.filter(
                order_id=order.pk, status__in=("pending", "collected")
            ).values_list("pk", flat=True)
        )
        if doomed:
            Specimen.objects.filter(pk__in=doomed).update(
                status="rejected",
                rejected_reason=ORDER_CANCELLED_REASON,
                rejected_at=now,
                rejected_by=performed_by,
                updated_at=now,
            )
            # One insert per event so each rejection reaches the audit log
            for pk in doomed:
                SpecimenEvent.objects.create(
                    specimen_id=pk,
                    event_type="rejected",
                    details={"reason": ORDER_CANCELLED_REASON},
                    performed_at=now,
                    performed_by=performed_by,
                )

    logger.info(
        "Order %s cancelled, %d specimen(s) rejected", order.order_number, len(doomed)
    )
    return {"order": order, "rejected_specimens": doomed}


# ---------------------------------------------------------------------
# Operator override
# ---------------------------------------------------------------------

def set_status(
    *,
    order_id,
    new_status: str,
    performed_by=None,
    reason: str = "",
    now=None,
) -> Dict[str, Any]:
    """
    Move an order along one edge of the transition table.

    pending_payment -> paid stamps payment the same way confirm_payment does.
    The table lets an operator jump completed -> verified or released, but
    the order may only claim those states once every item has a verified
    result (NotFullyVerified otherwise). A released override stamps the
    results the same way release_order does.
    """
    now = now or timezone.now()
    target = normalize_status(new_status)

    with transaction.atomic():
        order = lock_order(order_id)
        previous = order.status
        validate_transition("order", previous, target)

        if target in RESULT_GATED_STATUSES:
            progress = item_progress(order)
            if not progress.all_verified:
                raise NotFullyVerified(unverified_count=progress.unverified)

        extra: Dict[str, Any] = {}
        if previous == "pending_payment" and target == "paid":
            extra = {"payment_status": "paid", "paid_at": now}

        if target == "released":
            _stamp_released(order, performed_by=performed_by, now=now)

        apply_order_status(
            order,
            target,
            performed_by=performed_by,
            reason=reason,
            extra_fields=extra,
            now=now,
        )

    return {
        "order": order,
        "previous_status": previous,
        "new_status": target,
        "allowed_next": allowed_next_states("order", target),
    }


# ---------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------

def add_item(
    *,
    order_id,
    test_id=None,
    panel_id=None,
    performed_by=None,
) -> Dict[str, Any]:
    with transaction.atomic():
        order = lock_order(order_id)

        if order.status not in MODIFIABLE_STATUSES:
            raise NotModifiable(
                f"Cannot add items to an order in {order.status} status",
                status=order.status,
            )

        present = set(
            LabOrderItem.objects.filter(order_id=order.pk)
            .exclude(test_id__isnull=True)
            .values_list("test_id", flat=True)
        )
        rows = _expand_request(order, test_id=test_id, panel_id=panel_id, present=present)

        LabOrderItem.objects.bulk_create(rows)
        previous_total = order.total_amount
        new_total = recompute_totals(order)

    logger.info("Added %d item(s) to order %s", len(rows), order.order_number)
    return {
        "order": order,
        "items_added": len(rows),
        "additional_amount": new_total - previous_total,
        "new_total": new_total,
    }


def remove_item(*, order_id, item_id, performed_by=None) -> Dict[str, Any]:
    with transaction.atomic():
        order = lock_order(order_id)

        if order.status not in MODIFIABLE_STATUSES:
            raise NotModifiable(
                f"Cannot remove items from an order in {order.status} status",
                status=order.status,
            )

        try:
            item = LabOrderItem.objects.get(pk=item_id, order_id=order.pk)
        except (LabOrderItem.DoesNotExist, ValueError):
            raise NotFound("Order item not found", entity="LabOrderItem", id=str(item_id))

        if LabResult.objects.filter(order_item_id=item.pk).exists():
            raise ResultExists()

        if LabOrderItem.objects.filter(order_id=order.pk).count() <= 1:
            raise LastItemProtected()

        price_reduction = item.price_snapshot
        item.delete()
        new_total = recompute_totals(order)

    logger.info("Removed item %s from order %s", item.test_code, order.order_number)
    return {
        "order": order,
        "price_reduction": price_reduction,
        "new_total": new_total,
    }


# ---------------------------------------------------------------------
# Release
# ---------------------------------------------------------------------

def release_order(*, order_id, performed_by=None, now=None) -> LabOrder:
    """
    Release every result of a fully verified order.

    Results are stamped first and the order flips to released last, in
    one transaction. Only unstamped results are touched, so re-running
    after an interrupted release finishes the job without rewriting
    earlier stamps.
    """
    now = now or timezone.now()

    with transaction.atomic():
        order = lock_order(order_id)

        if order.status == "released":
            raise AlreadyReleased()
        if order.status == "cancelled":
            raise OrderCancelled("Cannot release results for a cancelled order")

        progress = item_progress(order)
        if not progress.all_verified:
            raise NotFullyVerified(unverified_count=progress.unverified)

        stamped = _stamp_released(order, performed_by=performed_by, now=now)

        apply_order_status(
            order,
            "released",
            performed_by=performed_by,
            reason="Results released",
            validate=False,
            now=now,
        )

    logger.info("Released %d result(s) for order %s", stamped, order.order_number)
    return order
