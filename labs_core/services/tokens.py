# labs_core/services/tokens.py
"""
Patient-facing result access links.

A token grants read access to one order's results until it expires, runs
out of views, or is deactivated.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from labs_core.models import LabOrder, LabResultToken
from labs_core.workflows.errors import NotFound, NotModifiable, TokenExpired, TokenInactive
from labs_core.workflows.transition_service import lock_order

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
TOKEN_BLOCKED_STATUSES = {"pending_payment", "cancelled"}


def _default_hours() -> int:
    return int(getattr(settings, "RESULT_TOKEN_DEFAULT_HOURS", 48))


def _default_max_views() -> int:
    return int(getattr(settings, "RESULT_TOKEN_DEFAULT_MAX_VIEWS", 10))


def result_url(token: LabResultToken) -> str:
    base = getattr(settings, "RESULTS_BASE_URL", "").rstrip("/")
    return f"{base}/labs/results/view/{token.token}/"


def generate_token(
    *,
    order_id,
    expires_in_hours: int | None = None,
    max_views: int | None = None,
    now=None,
) -> LabResultToken:
    now = now or timezone.now()
    hours = expires_in_hours or _default_hours()
    views = max_views or _default_max_views()

    with transaction.atomic():
        order = lock_order(order_id)
        if order.status in TOKEN_BLOCKED_STATUSES:
            raise NotModifiable(
                f"Cannot generate a result link for an order in {order.status} status",
                status=order.status,
            )

        token = LabResultToken.objects.create(
            order=order,
            token=secrets.token_hex(TOKEN_BYTES),
            expires_at=now + timedelta(hours=hours),
            max_views=views,
        )

    logger.info(
        "Result link issued for order %s (expires %s, %d views)",
        order.order_number,
        token.expires_at.isoformat(),
        views,
    )
    return token


def _get_token(value: str) -> LabResultToken:
    token = LabResultToken.objects.select_related("order").filter(token=value).first()
    if token is None:
        raise NotFound("Invalid or expired link", entity="LabResultToken")
    return token


def view_with_token(value: str, *, now=None) -> LabOrder:
    """
    Resolve a token to its order and count the view.

    The increment is a conditional UPDATE so concurrent views can never push
    view_count past max_views.
    """
    now = now or timezone.now()
    token = _get_token(value)

    if not token.is_active:
        raise TokenInactive()
    if token.expires_at <= now:
        raise TokenExpired()

    counted = LabResultToken.objects.filter(
        pk=token.pk,
        is_active=True,
        view_count__lt=F("max_views"),
    ).update(view_count=F("view_count") + 1, last_viewed_at=now)

    if counted != 1:
        raise TokenExpired("This access link has reached its view limit.")

    return token.order


def deactivate_token(value: str) -> LabResultToken:
    token = _get_token(value)
    if token.is_active:
        LabResultToken.objects.filter(pk=token.pk).update(is_active=False)
        token.is_active = False
        logger.info("Result link for order %s deactivated", token.order.order_number)
    return token


def expire_stale_tokens(*, now=None) -> int:
    """Deactivate tokens past expiry or out of views. Returns how many."""
    now = now or timezone.now()
    stale = LabResultToken.objects.filter(is_active=True).filter(
        Q(expires_at__lte=now) | Q(view_count__gte=F("max_views"))
    )
    count = stale.update(is_active=False)
    if count:
        logger.info("Deactivated %d stale result link(s)", count)
    return count
