# labs_core/tests/conftest.py

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any, Callable, List, Optional

import pytest
from django.contrib.auth import authenticate, get_user_model
from rest_framework.test import APIClient

from labs_core.models import LabOrder, LabPanel, LabPanelItem, LabResult, LabTest, Specimen
from labs_core.services import orders as order_service
from labs_core.services import results as result_service
from labs_core.services import specimens as specimen_service


def _rand(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}".upper()


class AuthAPIClient(APIClient):
    """
    Test client that uses force_authenticate for predictable DRF auth.
    """

    _user = None

    def login(self, username: str, password: str, **kwargs) -> bool:  # type: ignore[override]
        user = authenticate(username=username, password=password)
        if not user:
            return False
        self.force_authenticate(user=user)
        self._user = user
        return True

    def logout(self) -> None:  # type: ignore[override]
        # DRF's force_authenticate(user=None) calls self.logout() internally.
        super().logout()
        self.handler._force_user = None
        self.handler._force_token = None
        self._user = None


@pytest.fixture
def api_client() -> AuthAPIClient:
    return AuthAPIClient()


@pytest.fixture
def user_technician(db):
    User = get_user_model()
    user, _created = User.objects.get_or_create(username="labtech")
    user.set_password("pass123")
    user.save(update_fields=["password"])
    return user


@pytest.fixture
def user_pathologist(db):
    User = get_user_model()
    user, _created = User.objects.get_or_create(username="pathologist")
    user.set_password("pass123")
    user.save(update_fields=["password"])
    return user


@pytest.fixture
def auth_client(api_client, user_technician) -> AuthAPIClient:
    assert api_client.login(username="labtech", password="pass123") is True
    return api_client


# ---------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------
@pytest.fixture
def lab_test_factory(db) -> Callable[..., LabTest]:
    def _factory(
        *,
        code: Optional[str] = None,
        name: Optional[str] = None,
        price: str = "100.00",
        section: str = "hematology",
        **extra: Any,
    ) -> LabTest:
        code = code or _rand("T")
        return LabTest.objects.create(
            code=code,
            name=name or f"Test {code}",
            price=Decimal(price),
            section=section,
            **extra,
        )

    return _factory


@pytest.fixture
def panel_factory(db, lab_test_factory) -> Callable[..., LabPanel]:
    def _factory(*, tests: List[LabTest], price: str = "500.00", code: Optional[str] = None) -> LabPanel:
        code = code or _rand("P")
        panel = LabPanel.objects.create(code=code, name=f"Panel {code}", price=Decimal(price))
        for idx, test in enumerate(tests):
            LabPanelItem.objects.create(panel=panel, test=test, sort_order=idx)
        return panel

    return _factory


@pytest.fixture
def three_tests(lab_test_factory) -> List[LabTest]:
    return [
        lab_test_factory(code="CBC", name="Complete blood count", price="250.00"),
        lab_test_factory(code="FBS", name="Fasting blood sugar", price="150.00", section="chemistry"),
        lab_test_factory(code="UA", name="Urinalysis", price="100.00", section="urinalysis"),
    ]


# ---------------------------------------------------------------
# Orders at various points of the lifecycle
# ---------------------------------------------------------------
@pytest.fixture
def order_factory(db, user_technician) -> Callable[..., LabOrder]:
    def _factory(*, tests: List[LabTest], priority: str = "routine", **extra: Any) -> LabOrder:
        return order_service.create_order(
            patient_ref=extra.pop("patient_ref", _rand("PT")),
            items=[{"test_id": t.pk} for t in tests],
            priority=priority,
            performed_by=user_technician,
            **extra,
        )

    return _factory


@pytest.fixture
def paid_order_factory(order_factory, user_technician) -> Callable[..., LabOrder]:
    def _factory(**kwargs: Any) -> LabOrder:
        order = order_factory(**kwargs)
        return order_service.confirm_payment(
            order_id=order.pk, reference="OR-1001", performed_by=user_technician
        )

    return _factory


@pytest.fixture
def collected_order_factory(paid_order_factory, user_technician) -> Callable[..., LabOrder]:
    """
    Paid order with one blood specimen accessioned, collected and received.
    """

    def _factory(**kwargs: Any) -> LabOrder:
        order = paid_order_factory(**kwargs)
        specimen = specimen_service.accession_specimen(
            order_id=order.pk, specimen_type="blood", performed_by=user_technician
        )
        specimen_service.collect_specimen(specimen_id=specimen.pk, performed_by=user_technician)
        specimen_service.receive_specimen(specimen_id=specimen.pk, performed_by=user_technician)
        order.refresh_from_db()
        return order

    return _factory


@pytest.fixture
def enter_all_results(user_technician) -> Callable[[LabOrder], List[LabResult]]:
    def _enter(order: LabOrder, *, specimen: Optional[Specimen] = None) -> List[LabResult]:
        out = []
        for item in order.items.order_by("id"):
            out.append(
                result_service.create_result(
                    order_item_id=item.pk,
                    specimen_id=specimen.pk if specimen else None,
                    values={"result_value": "5.2", "units": "mmol/L", "abnormal_flag": "N"},
                    performed_by=user_technician,
                )
            )
        return out

    return _enter
