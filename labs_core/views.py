# labs_core/views.py
"""
HTTP adapter for the lab lifecycle.

Views only parse input and render output. Every state change is delegated
to labs_core.services, which raise LabWorkflowError subclasses that
labs_core.exceptions.api_exception_handler renders.
"""

from __future__ import annotations

from django.db.models import Prefetch
from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import extend_schema
from rest_framework import generics, status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .filters import LabOrderFilter, SpecimenFilter
from .models import LabOrder, LabOrderItem, LabPanel, LabResult, LabTest, Specimen
from .serializers import (
    CancelOrderSerializer,
    ConfirmPaymentSerializer,
    GenerateTokenSerializer,
    LabOrderDetailSerializer,
    LabOrderSerializer,
    LabOrderTransitionSerializer,
    LabPanelSerializer,
    LabResultSerializer,
    LabResultTokenSerializer,
    LabTestSerializer,
    OrderCreateSerializer,
    OrderItemRequestSerializer,
    PublicOrderSerializer,
    ResultCreateSerializer,
    ResultValuesSerializer,
    SpecimenAccessionSerializer,
    SpecimenCollectSerializer,
    SpecimenDetailSerializer,
    SpecimenReceiveSerializer,
    SpecimenRejectSerializer,
    SpecimenSerializer,
    StatusChangeSerializer,
)
from .services import orders as order_service
from .services import results as result_service
from .services import specimens as specimen_service
from .services import tokens as token_service


# ===============================================================
# Utilities
# ===============================================================
def _actor(request):
    user = getattr(request, "user", None)
    if user is not None and user.is_authenticated:
        return user
    return None


def _validated(serializer_class, request, *, partial: bool = False) -> dict:
    serializer = serializer_class(data=request.data or {}, partial=partial)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


def _order_queryset():
    return LabOrder.objects.prefetch_related(
        Prefetch(
            "items",
            queryset=LabOrderItem.objects.select_related("result").order_by("id"),
        ),
        "specimens",
    )


def _order_payload(order_id) -> dict:
    order = _order_queryset().get(pk=order_id)
    return LabOrderDetailSerializer(order).data


def _specimen_payload(specimen_id) -> dict:
    specimen = Specimen.objects.select_related("order").prefetch_related("events").get(pk=specimen_id)
    return SpecimenDetailSerializer(specimen).data


def _result_payload(result_id) -> dict:
    result = LabResult.objects.select_related(
        "order_item", "entered_by", "verified_by", "released_by"
    ).get(pk=result_id)
    return LabResultSerializer(result).data


# ===============================================================
# Orders
# ===============================================================
class LabOrderListCreateView(generics.ListAPIView):
    """
    GET  /labs/orders/  filterable order list
    POST /labs/orders/  place an order
    """

    serializer_class = LabOrderSerializer
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend]
    filterset_class = LabOrderFilter
    queryset = LabOrder.objects.all()

    @extend_schema(tags=["Lab orders"], request=OrderCreateSerializer, responses=LabOrderDetailSerializer)
    def post(self, request):
        data = _validated(OrderCreateSerializer, request)
        order = order_service.create_order(
            patient_ref=data["patient_ref"],
            items=data["items"],
            priority=data.get("priority"),
            notes=data.get("notes", ""),
            ordering_provider_ref=data.get("ordering_provider_ref", ""),
            performed_by=_actor(request),
        )
        return Response(_order_payload(order.pk), status=status.HTTP_201_CREATED)


class LabOrderDetailView(generics.RetrieveAPIView):
    serializer_class = LabOrderDetailSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return _order_queryset()


class LabOrderTransitionHistoryView(generics.ListAPIView):
    serializer_class = LabOrderTransitionSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = None

    def get_queryset(self):
        order = generics.get_object_or_404(LabOrder, pk=self.kwargs["pk"])
        return order.transitions.select_related("performed_by").order_by("created_at", "id")


class ConfirmPaymentView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Lab orders"], request=ConfirmPaymentSerializer, responses=LabOrderDetailSerializer)
    def post(self, request, pk: int):
        data = _validated(ConfirmPaymentSerializer, request)
        order_service.confirm_payment(
            order_id=pk,
            reference=data.get("payment_reference", ""),
            amount=data.get("amount"),
            performed_by=_actor(request),
        )
        return Response(_order_payload(pk))


class CancelOrderView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Lab orders"], request=CancelOrderSerializer)
    def post(self, request, pk: int):
        data = _validated(CancelOrderSerializer, request)
        outcome = order_service.cancel_order(
            order_id=pk,
            reason=data.get("reason", ""),
            performed_by=_actor(request),
        )
        return Response(
            {
                "order": _order_payload(pk),
                "rejected_specimens": outcome["rejected_specimens"],
            }
        )


class OrderStatusView(APIView):
    """
    POST /labs/orders/<pk>/status/

    Operator override along one edge of the order workflow.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Lab orders"], request=StatusChangeSerializer)
    def post(self, request, pk: int):
        data = _validated(StatusChangeSerializer, request)
        outcome = order_service.set_status(
            order_id=pk,
            new_status=data["status"],
            reason=data.get("reason", ""),
            performed_by=_actor(request),
        )
        return Response(
            {
                "order": _order_payload(pk),
                "previous_status": outcome["previous_status"],
                "new_status": outcome["new_status"],
                "allowed_next": outcome["allowed_next"],
            }
        )


class OrderItemsView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Lab orders"], request=OrderItemRequestSerializer)
    def post(self, request, pk: int):
        data = _validated(OrderItemRequestSerializer, request)
        outcome = order_service.add_item(
            order_id=pk,
            test_id=data.get("test_id"),
            panel_id=data.get("panel_id"),
            performed_by=_actor(request),
        )
        return Response(
            {
                "order": _order_payload(pk),
                "items_added": outcome["items_added"],
                "additional_amount": str(outcome["additional_amount"]),
                "new_total": str(outcome["new_total"]),
            },
            status=status.HTTP_201_CREATED,
        )


class OrderItemDetailView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Lab orders"], request=None)
    def delete(self, request, pk: int, item_id: int):
        outcome = order_service.remove_item(
            order_id=pk,
            item_id=item_id,
            performed_by=_actor(request),
        )
        return Response(
            {
                "order": _order_payload(pk),
                "price_reduction": str(outcome["price_reduction"]),
                "new_total": str(outcome["new_total"]),
            }
        )


class ReleaseOrderView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Lab orders"], request=None, responses=LabOrderDetailSerializer)
    def post(self, request, pk: int):
        order_service.release_order(order_id=pk, performed_by=_actor(request))
        return Response(_order_payload(pk))


class GenerateTokenView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Lab orders"], request=GenerateTokenSerializer, responses=LabResultTokenSerializer)
    def post(self, request, pk: int):
        data = _validated(GenerateTokenSerializer, request)
        token = token_service.generate_token(
            order_id=pk,
            expires_in_hours=data.get("expires_in_hours"),
            max_views=data.get("max_views"),
        )
        return Response(LabResultTokenSerializer(token).data, status=status.HTTP_201_CREATED)


# ===============================================================
# Specimens
# ===============================================================
class SpecimenListCreateView(generics.ListAPIView):
    serializer_class = SpecimenSerializer
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend]
    filterset_class = SpecimenFilter
    queryset = Specimen.objects.select_related("order")

    @extend_schema(tags=["Specimens"], request=SpecimenAccessionSerializer, responses=SpecimenDetailSerializer)
    def post(self, request):
        data = _validated(SpecimenAccessionSerializer, request)
        specimen = specimen_service.accession_specimen(
            order_id=data["order_id"],
            specimen_type=data["specimen_type"],
            order_item_id=data.get("order_item_id"),
            container=data.get("container", ""),
            collection_notes=data.get("collection_notes", ""),
            performed_by=_actor(request),
        )
        return Response(_specimen_payload(specimen.pk), status=status.HTTP_201_CREATED)


class SpecimenDetailView(generics.RetrieveAPIView):
    serializer_class = SpecimenDetailSerializer
    permission_classes = [IsAuthenticated]
    queryset = Specimen.objects.select_related("order").prefetch_related("events")


class SpecimenCollectView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Specimens"], request=SpecimenCollectSerializer, responses=SpecimenDetailSerializer)
    def post(self, request, pk: int):
        data = _validated(SpecimenCollectSerializer, request)
        specimen_service.collect_specimen(
            specimen_id=pk,
            appearance=data.get("appearance", ""),
            volume_ml=data.get("volume_ml"),
            notes=data.get("notes", ""),
            performed_by=_actor(request),
        )
        return Response(_specimen_payload(pk))


class SpecimenReceiveView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Specimens"], request=SpecimenReceiveSerializer, responses=SpecimenDetailSerializer)
    def post(self, request, pk: int):
        data = _validated(SpecimenReceiveSerializer, request)
        specimen_service.receive_specimen(
            specimen_id=pk,
            notes=data.get("notes", ""),
            performed_by=_actor(request),
        )
        return Response(_specimen_payload(pk))


class SpecimenRejectView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Specimens"], request=SpecimenRejectSerializer, responses=SpecimenDetailSerializer)
    def post(self, request, pk: int):
        data = _validated(SpecimenRejectSerializer, request)
        specimen_service.reject_specimen(
            specimen_id=pk,
            reason=data.get("reason", ""),
            performed_by=_actor(request),
        )
        return Response(_specimen_payload(pk))


# ===============================================================
# Results
# ===============================================================
class ResultCreateView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Results"], request=ResultCreateSerializer, responses=LabResultSerializer)
    def post(self, request):
        data = dict(_validated(ResultCreateSerializer, request))
        order_item_id = data.pop("order_item_id")
        specimen_id = data.pop("specimen_id", None)
        result = result_service.create_result(
            order_item_id=order_item_id,
            specimen_id=specimen_id,
            values=data,
            performed_by=_actor(request),
        )
        return Response(_result_payload(result.pk), status=status.HTTP_201_CREATED)


class ResultDetailView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Results"], responses=LabResultSerializer)
    def get(self, request, pk: int):
        result = generics.get_object_or_404(
            LabResult.objects.select_related("order_item", "entered_by", "verified_by", "released_by"),
            pk=pk,
        )
        return Response(LabResultSerializer(result).data)

    @extend_schema(tags=["Results"], request=ResultValuesSerializer, responses=LabResultSerializer)
    def patch(self, request, pk: int):
        data = _validated(ResultValuesSerializer, request, partial=True)
        result_service.update_result(result_id=pk, values=data, performed_by=_actor(request))
        return Response(_result_payload(pk))


class ResultVerifyView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Results"], request=None)
    def post(self, request, pk: int):
        result, fully_verified = result_service.verify_result(
            result_id=pk, performed_by=_actor(request)
        )
        return Response(
            {
                "result": _result_payload(result.pk),
                "order_fully_verified": fully_verified,
            }
        )


class PublicResultView(APIView):
    """
    GET /labs/results/view/<token>/

    Patient-facing, no authentication. Each call counts against the
    token's view limit. Only released results are shown.
    """

    permission_classes = [AllowAny]
    authentication_classes = []

    @extend_schema(tags=["Results"], responses=PublicOrderSerializer)
    def get(self, request, token: str):
        order = token_service.view_with_token(token)
        return Response({"order": PublicOrderSerializer(order).data})


# ===============================================================
# Catalog (read-only)
# ===============================================================
class LabTestListView(generics.ListAPIView):
    serializer_class = LabTestSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = None
    queryset = LabTest.objects.filter(is_active=True)


class LabPanelListView(generics.ListAPIView):
    serializer_class = LabPanelSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = None
    queryset = LabPanel.objects.filter(is_active=True).prefetch_related("tests")
