# labs_core/tasks.py
from __future__ import annotations

from celery import shared_task

from labs_core.services.tokens import expire_stale_tokens


@shared_task
def expire_result_tokens() -> int:
    return expire_stale_tokens()
