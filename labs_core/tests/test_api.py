# labs_core/tests/test_api.py

from decimal import Decimal

import pytest
from django.contrib.auth.models import User
from django.core import mail
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from labs_core.models import LabOrder, LabResult, LabTest
from labs_core.services import results as result_service
from labs_core.services import specimens as specimen_service
from labs_core.services import tokens as token_service


class OrderLifecycleApiTests(TestCase):
    """
    Drives one order through the whole lifecycle over HTTP.
    """

    def setUp(self):
        self.client = APIClient()
        self.tech = User.objects.create_user(username="tech", password="pass")
        self.pathologist = User.objects.create_user(username="patho", password="pass")
        self.client.force_authenticate(user=self.tech)

        self.cbc = LabTest.objects.create(code="CBC", name="Complete blood count", price=Decimal("250.00"))
        self.fbs = LabTest.objects.create(code="FBS", name="Fasting blood sugar", price=Decimal("150.00"))

    def _post(self, url, data=None):
        return self.client.post(url, data or {}, format="json")

    @override_settings(
        LAB_RELEASE_EMAIL_NOTIFICATIONS=True,
        LAB_RELEASE_NOTIFY_EMAILS=["results@clinic.test"],
    )
    def test_full_lifecycle_over_http(self):
        resp = self._post(
            "/labs/orders/",
            {
                "patient_ref": "PT-100",
                "priority": "urgent",
                "items": [{"test_id": self.cbc.pk}, {"test_id": self.fbs.pk}],
            },
        )
        self.assertEqual(resp.status_code, 201, resp.content)
        order = resp.json()
        order_id = order["id"]
        self.assertEqual(order["status"], "pending_payment")
        self.assertEqual(order["total_amount"], "400.00")
        self.assertEqual(order["allowed_next"], ["cancelled", "paid"])
        self.assertEqual(len(order["items"]), 2)

        resp = self._post(
            f"/labs/orders/{order_id}/confirm-payment/",
            {"payment_reference": "OR-55", "amount": "400.00"},
        )
        self.assertEqual(resp.status_code, 200, resp.content)
        self.assertEqual(resp.json()["payment_status"], "paid")

        resp = self._post("/labs/specimens/", {"order_id": order_id, "specimen_type": "blood"})
        self.assertEqual(resp.status_code, 201, resp.content)
        specimen_id = resp.json()["id"]
        self.assertEqual(resp.json()["events"][0]["event_type"], "accessioned")

        resp = self._post(f"/labs/specimens/{specimen_id}/collect/", {"volume_ml": "3.00"})
        self.assertEqual(resp.json()["status"], "collected")
        resp = self._post(f"/labs/specimens/{specimen_id}/receive/")
        self.assertEqual(resp.json()["status"], "received")
        self.assertEqual(LabOrder.objects.get(pk=order_id).status, "collected")

        result_ids = []
        for item in order["items"]:
            resp = self._post(
                "/labs/results/",
                {
                    "order_item_id": item["id"],
                    "specimen_id": specimen_id,
                    "result_value": "7.1",
                    "units": "mmol/L",
                },
            )
            self.assertEqual(resp.status_code, 201, resp.content)
            result_ids.append(resp.json()["id"])

        resp = self.client.get(f"/labs/orders/{order_id}/")
        self.assertEqual(resp.json()["status"], "completed")

        # Release before verification is refused with the unverified count
        resp = self._post(f"/labs/orders/{order_id}/release/")
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["error"]["code"], "NotFullyVerified")
        self.assertEqual(resp.json()["error"]["unverified_count"], 2)

        self.client.force_authenticate(user=self.pathologist)
        resp = self._post(f"/labs/results/{result_ids[0]}/verify/")
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.json()["order_fully_verified"])
        resp = self._post(f"/labs/results/{result_ids[1]}/verify/")
        self.assertTrue(resp.json()["order_fully_verified"])

        resp = self._post(f"/labs/orders/{order_id}/release/")
        self.assertEqual(resp.status_code, 200, resp.content)
        self.assertEqual(resp.json()["status"], "released")
        self.assertEqual(resp.json()["allowed_next"], [])
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn(resp.json()["order_number"], mail.outbox[0].subject)

        resp = self.client.patch(
            f"/labs/results/{result_ids[0]}/", {"result_value": "0"}, format="json"
        )
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["error"]["code"], "ResultReleased")

        resp = self.client.get(f"/labs/orders/{order_id}/transitions/")
        self.assertEqual(
            [row["to_status"] for row in resp.json()],
            ["paid", "collecting", "collected", "processing", "completed", "verified", "released"],
        )

    def test_invalid_status_change_lists_allowed_states(self):
        resp = self._post(
            "/labs/orders/",
            {"patient_ref": "PT-101", "items": [{"test_id": self.cbc.pk}]},
        )
        order_id = resp.json()["id"]

        resp = self._post(f"/labs/orders/{order_id}/status/", {"status": "released"})

        self.assertEqual(resp.status_code, 409)
        error = resp.json()["error"]
        self.assertEqual(error["code"], "InvalidTransition")
        self.assertEqual(error["current"], "pending_payment")
        self.assertEqual(error["allowed"], ["cancelled", "paid"])

    def test_item_add_and_remove(self):
        resp = self._post(
            "/labs/orders/",
            {"patient_ref": "PT-102", "items": [{"test_id": self.cbc.pk}]},
        )
        order_id = resp.json()["id"]

        resp = self._post(f"/labs/orders/{order_id}/items/", {"test_id": self.fbs.pk})
        self.assertEqual(resp.status_code, 201, resp.content)
        self.assertEqual(resp.json()["items_added"], 1)
        self.assertEqual(resp.json()["new_total"], "400.00")

        fbs_item = next(i for i in resp.json()["order"]["items"] if i["test_code"] == "FBS")
        resp = self.client.delete(f"/labs/orders/{order_id}/items/{fbs_item['id']}/")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["price_reduction"], "150.00")
        self.assertEqual(resp.json()["new_total"], "250.00")

        cbc_item = resp.json()["order"]["items"][0]
        resp = self.client.delete(f"/labs/orders/{order_id}/items/{cbc_item['id']}/")
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["error"]["code"], "LastItemProtected")


# ---------------------------------------------------------------
# Smaller endpoint checks
# ---------------------------------------------------------------
@pytest.mark.django_db
def test_endpoints_require_authentication(api_client):
    resp = api_client.get("/labs/orders/")
    assert resp.status_code in (401, 403)
    assert "error" in resp.json()


@pytest.mark.django_db
def test_create_order_validation_error_envelope(auth_client):
    resp = auth_client.post("/labs/orders/", {"patient_ref": "PT-1"}, format="json")
    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["message"] == "Validation failed"
    assert "items" in error["details"]


@pytest.mark.django_db
def test_missing_order_is_404(auth_client):
    resp = auth_client.post("/labs/orders/999999/confirm-payment/", {}, format="json")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NotFound"


@pytest.mark.django_db
def test_reject_without_reason_is_400(auth_client, paid_order_factory, three_tests):
    order = paid_order_factory(tests=three_tests)
    resp = auth_client.post("/labs/specimens/", {"order_id": order.pk, "specimen_type": "blood"}, format="json")
    specimen_id = resp.json()["id"]

    resp = auth_client.post(f"/labs/specimens/{specimen_id}/reject/", {"reason": ""}, format="json")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "ReasonRequired"


@pytest.mark.django_db
def test_cancel_endpoint_returns_rejected_specimens(auth_client, paid_order_factory, three_tests):
    order = paid_order_factory(tests=three_tests)
    resp = auth_client.post("/labs/specimens/", {"order_id": order.pk, "specimen_type": "urine"}, format="json")
    specimen_id = resp.json()["id"]

    resp = auth_client.post(f"/labs/orders/{order.pk}/cancel/", {"reason": "Wrong patient"}, format="json")

    assert resp.status_code == 200
    assert resp.json()["order"]["status"] == "cancelled"
    assert resp.json()["rejected_specimens"] == [specimen_id]


@pytest.mark.django_db
def test_order_list_filters_by_status(auth_client, order_factory, paid_order_factory, three_tests):
    order_factory(tests=three_tests)
    paid = paid_order_factory(tests=three_tests)

    resp = auth_client.get("/labs/orders/", {"status": "paid"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["count"] == 1
    assert body["results"][0]["order_number"] == paid.order_number


@pytest.mark.django_db
def test_order_allowed_endpoint(auth_client, order_factory, three_tests):
    order = order_factory(tests=three_tests)
    resp = auth_client.get(f"/labs/orders/{order.pk}/allowed/")
    assert resp.status_code == 200
    assert resp.json() == {
        "order_id": order.pk,
        "current": "pending_payment",
        "allowed": ["cancelled", "paid"],
        "terminal": False,
    }


@pytest.mark.django_db
def test_workflow_definition_endpoints(auth_client):
    resp = auth_client.get("/labs/workflows/specimen/")
    assert resp.status_code == 200
    assert resp.json()["terminal_states"] == ["completed", "rejected"]

    resp = auth_client.get("/labs/workflows/order/next/", {"current": "verified"})
    assert resp.json()["allowed_next"] == ["cancelled", "released"]

    resp = auth_client.get("/labs/workflows/invoice/")
    assert resp.status_code == 400


@pytest.mark.django_db
def test_queue_board_groups_by_status_and_priority(auth_client, order_factory, paid_order_factory, three_tests):
    routine = order_factory(tests=three_tests, priority="routine")
    stat = order_factory(tests=three_tests, priority="stat")
    paid = paid_order_factory(tests=three_tests)
    cancelled = order_factory(tests=three_tests)
    auth_client.post(f"/labs/orders/{cancelled.pk}/cancel/", {}, format="json")

    resp = auth_client.get("/labs/queue/")

    assert resp.status_code == 200
    body = resp.json()
    pending_lane = [row["order_number"] for row in body["lanes"]["pending_payment"]]
    assert pending_lane == [stat.order_number, routine.order_number]
    assert [row["id"] for row in body["lanes"]["paid"]] == [paid.pk]
    assert "cancelled" not in body["lanes"]
    assert body["totals"]["total"] == 3
    assert body["lanes"]["paid"][0]["items_count"] == 3


@pytest.mark.django_db
def test_queue_board_rejects_bad_date(auth_client):
    resp = auth_client.get("/labs/queue/", {"date": "yesterday"})
    assert resp.status_code == 400


@pytest.mark.django_db
def test_stats_counts_one_day(auth_client, order_factory, paid_order_factory, three_tests):
    order_factory(tests=three_tests, priority="routine")
    paid = paid_order_factory(tests=three_tests, priority="stat")
    specimen_service.accession_specimen(order_id=paid.pk, specimen_type="blood")
    urine = specimen_service.accession_specimen(order_id=paid.pk, specimen_type="urine")
    specimen_service.reject_specimen(specimen_id=urine.pk, reason="Leaked")

    resp = auth_client.get("/labs/stats/")

    assert resp.status_code == 200
    body = resp.json()
    assert body["orders"]["total"] == 2
    assert body["orders"]["pending_payment"] == 1
    assert body["orders"]["processing"] == 1
    assert body["priority"] == {"routine": 1, "urgent": 0, "stat": 1}
    assert body["revenue"] == {"total": "500.00", "pending": "500.00"}
    assert body["specimens"]["total"] == 2
    assert body["specimens"]["pending"] == 1
    assert body["specimens"]["rejected"] == 1
    assert body["specimens"]["by_type"] == {"blood": 1, "urine": 1}
    assert body["results"]["total"] == 0


@pytest.mark.django_db
def test_stats_for_other_day_is_empty(auth_client, paid_order_factory, three_tests):
    paid_order_factory(tests=three_tests)

    resp = auth_client.get("/labs/stats/", {"date": "2001-01-01"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["date"] == "2001-01-01"
    assert body["orders"]["total"] == 0
    assert body["revenue"]["total"] == "0.00"
    assert body["specimens"]["by_type"] == {}

    assert auth_client.get("/labs/stats/", {"date": "soon"}).status_code == 400


@pytest.mark.django_db
def test_public_result_view_needs_no_login(
    api_client, collected_order_factory, three_tests, enter_all_results
):
    order = collected_order_factory(tests=three_tests)
    results = enter_all_results(order)
    # Only one result is verified and released by hand; the link shows released rows only
    result_service.verify_result(result_id=results[0].pk)
    LabResult.objects.filter(pk=results[0].pk).update(released_at=results[0].entered_at)
    token = token_service.generate_token(order_id=order.pk, max_views=1)

    resp = api_client.get(f"/labs/results/view/{token.token}/")

    assert resp.status_code == 200
    payload = resp.json()["order"]
    assert payload["order_number"] == order.order_number
    assert [r["test_code"] for r in payload["results"]] == ["CBC"]

    resp = api_client.get(f"/labs/results/view/{token.token}/")
    assert resp.status_code == 410
    assert resp.json()["error"]["code"] == "TokenExpired"


@pytest.mark.django_db
def test_generate_token_endpoint(auth_client, paid_order_factory, three_tests):
    order = paid_order_factory(tests=three_tests)
    resp = auth_client.post(
        f"/labs/orders/{order.pk}/generate-token/", {"max_views": 3}, format="json"
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["max_views"] == 3
    assert body["url"].endswith(f"/labs/results/view/{body['token']}/")


@pytest.mark.django_db
def test_catalog_lists_active_tests(auth_client, lab_test_factory):
    lab_test_factory(code="ACT")
    lab_test_factory(code="OLD", is_active=False)
    resp = auth_client.get("/labs/catalog/tests/")
    assert [t["code"] for t in resp.json()] == ["ACT"]


@pytest.mark.django_db
def test_api_home_lists_lab_routes(api_client):
    resp = api_client.get("/api/")
    assert resp.status_code == 200
    body = resp.json()
    assert body["endpoints"]["orders"] == "/labs/orders/"
    assert body["endpoints"]["stats"] == "/labs/stats/"
    assert body["endpoints"]["order_workflow"] == "/labs/workflows/order/"
    assert "pending_payment" in body["order_statuses"]
