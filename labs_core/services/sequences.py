# labs_core/services/sequences.py
"""
Order number and accession number generation.

Numbers are `<PREFIX>-<YYYYMMDD>-<NNNN>` and unique per day. The counter
row is locked for the duration of the caller's transaction.
"""

from __future__ import annotations

from django.db import transaction
from django.utils import timezone

from labs_core.models import AccessionCounter

ORDER_PREFIX = "LAB"
ACCESSION_PREFIX = "ACC"


def next_number(prefix: str, *, now=None) -> str:
    now = now or timezone.now()
    day = timezone.localdate(now)

    with transaction.atomic():
        counter, _created = AccessionCounter.objects.select_for_update().get_or_create(
            prefix=prefix,
            day=day,
        )
        counter.last_value += 1
        counter.save(update_fields=["last_value"])

    return f"{prefix}-{day:%Y%m%d}-{counter.last_value:04d}"


def next_order_number(*, now=None) -> str:
    return next_number(ORDER_PREFIX, now=now)


def next_accession_number(*, now=None) -> str:
    return next_number(ACCESSION_PREFIX, now=now)
