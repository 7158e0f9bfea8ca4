# labs_core/tests/test_tokens.py

from datetime import timedelta

import pytest
from django.utils import timezone

from labs_core.models import LabResultToken
from labs_core.services import orders as order_service
from labs_core.services import tokens as token_service
from labs_core.tasks import expire_result_tokens
from labs_core.workflows.errors import NotFound, NotModifiable, TokenExpired, TokenInactive


@pytest.mark.django_db
def test_token_refused_for_unpaid_order(order_factory, three_tests):
    order = order_factory(tests=three_tests)
    with pytest.raises(NotModifiable):
        token_service.generate_token(order_id=order.pk)
    assert not LabResultToken.objects.exists()


@pytest.mark.django_db
def test_token_refused_for_cancelled_order(paid_order_factory, three_tests):
    order = paid_order_factory(tests=three_tests)
    order_service.cancel_order(order_id=order.pk)
    with pytest.raises(NotModifiable):
        token_service.generate_token(order_id=order.pk)


@pytest.mark.django_db
def test_generate_token_defaults(paid_order_factory, three_tests, settings):
    settings.RESULT_TOKEN_DEFAULT_HOURS = 12
    settings.RESULT_TOKEN_DEFAULT_MAX_VIEWS = 4
    settings.RESULTS_BASE_URL = "https://results.example.org/"
    order = paid_order_factory(tests=three_tests)
    now = timezone.now()

    token = token_service.generate_token(order_id=order.pk, now=now)

    assert len(token.token) == 64
    assert token.max_views == 4
    assert token.view_count == 0
    assert token.is_active
    assert token.expires_at == now + timedelta(hours=12)
    assert token_service.result_url(token) == (
        f"https://results.example.org/labs/results/view/{token.token}/"
    )


@pytest.mark.django_db
def test_tokens_are_unique_per_issue(paid_order_factory, three_tests):
    order = paid_order_factory(tests=three_tests)
    first = token_service.generate_token(order_id=order.pk)
    second = token_service.generate_token(order_id=order.pk)
    assert first.token != second.token


@pytest.mark.django_db
def test_view_counts_until_limit(paid_order_factory, three_tests):
    order = paid_order_factory(tests=three_tests)
    token = token_service.generate_token(order_id=order.pk, max_views=2)

    assert token_service.view_with_token(token.token) == order
    assert token_service.view_with_token(token.token) == order

    with pytest.raises(TokenExpired):
        token_service.view_with_token(token.token)

    token.refresh_from_db()
    assert token.view_count == 2
    assert token.last_viewed_at is not None


@pytest.mark.django_db
def test_view_after_expiry_is_refused(paid_order_factory, three_tests):
    order = paid_order_factory(tests=three_tests)
    issued = timezone.now()
    token = token_service.generate_token(order_id=order.pk, expires_in_hours=1, now=issued)

    with pytest.raises(TokenExpired):
        token_service.view_with_token(token.token, now=issued + timedelta(hours=2))

    token.refresh_from_db()
    assert token.view_count == 0


@pytest.mark.django_db
def test_deactivated_token_is_inactive(paid_order_factory, three_tests):
    order = paid_order_factory(tests=three_tests)
    token = token_service.generate_token(order_id=order.pk)

    token_service.deactivate_token(token.token)

    with pytest.raises(TokenInactive):
        token_service.view_with_token(token.token)


@pytest.mark.django_db
def test_unknown_token_is_not_found():
    with pytest.raises(NotFound):
        token_service.view_with_token("0" * 64)


@pytest.mark.django_db
def test_expire_stale_tokens(paid_order_factory, three_tests):
    order = paid_order_factory(tests=three_tests)
    now = timezone.now()
    fresh = token_service.generate_token(order_id=order.pk, now=now)
    old = token_service.generate_token(order_id=order.pk, expires_in_hours=1, now=now - timedelta(hours=3))
    used_up = token_service.generate_token(order_id=order.pk, max_views=1, now=now)
    token_service.view_with_token(used_up.token, now=now)

    assert token_service.expire_stale_tokens(now=now) == 2

    active = set(LabResultToken.objects.filter(is_active=True).values_list("pk", flat=True))
    assert active == {fresh.pk}
    assert old.pk not in active


@pytest.mark.django_db
def test_expire_task_runs_eagerly(paid_order_factory, three_tests):
    order = paid_order_factory(tests=three_tests)
    token = token_service.generate_token(
        order_id=order.pk, expires_in_hours=1, now=timezone.now() - timedelta(hours=5)
    )

    outcome = expire_result_tokens.delay()

    assert outcome.get() == 1
    token.refresh_from_db()
    assert token.is_active is False
