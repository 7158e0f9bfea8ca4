from django.urls import reverse
from rest_framework.response import Response
from rest_framework.views import APIView

from labs_core.workflows import ORDER_STATUSES

# Named routes advertised on the API landing page.
LANDING_ROUTES = {
    "token_obtain": "token_obtain_pair",
    "token_refresh": "token_refresh",
    "schema": "schema",
    "swagger": "swagger-ui",
    "orders": "labs_core:order-list",
    "specimens": "labs_core:specimen-list",
    "results": "labs_core:result-create",
    "queue": "labs_core:queue",
    "stats": "labs_core:stats",
    "catalog_tests": "labs_core:catalog-tests",
    "catalog_panels": "labs_core:catalog-panels",
}


class ApiHomeView(APIView):
    """Unauthenticated index of the lab API."""

    authentication_classes = []
    permission_classes = []

    def get(self, request):
        endpoints = {key: reverse(name) for key, name in LANDING_ROUTES.items()}
        endpoints["order_workflow"] = reverse("labs_core:workflow-definition", kwargs={"kind": "order"})
        return Response(
            {
                "service": "Clinic LIMS",
                "order_statuses": sorted(ORDER_STATUSES),
                "endpoints": endpoints,
            }
        )
