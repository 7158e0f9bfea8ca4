# labs_core/urls.py

from django.urls import path

from .views import (
    CancelOrderView,
    ConfirmPaymentView,
    GenerateTokenView,
    LabOrderDetailView,
    LabOrderListCreateView,
    LabOrderTransitionHistoryView,
    LabPanelListView,
    LabTestListView,
    OrderItemDetailView,
    OrderItemsView,
    OrderStatusView,
    PublicResultView,
    ReleaseOrderView,
    ResultCreateView,
    ResultDetailView,
    ResultVerifyView,
    SpecimenCollectView,
    SpecimenDetailView,
    SpecimenListCreateView,
    SpecimenReceiveView,
    SpecimenRejectView,
)
from .views_queue import LabQueueView
from .views_stats import LabStatsView
from .views_workflows import OrderAllowedView, WorkflowDefinitionView, WorkflowNextStatesView


app_name = "labs_core"

urlpatterns = [
    # ============================================================
    # Catalog
    # ============================================================
    path("catalog/tests/", LabTestListView.as_view(), name="catalog-tests"),
    path("catalog/panels/", LabPanelListView.as_view(), name="catalog-panels"),

    # ============================================================
    # Orders
    # ============================================================
    path("orders/", LabOrderListCreateView.as_view(), name="order-list"),
    path("orders/<int:pk>/", LabOrderDetailView.as_view(), name="order-detail"),
    path("orders/<int:pk>/allowed/", OrderAllowedView.as_view(), name="order-allowed"),
    path("orders/<int:pk>/transitions/", LabOrderTransitionHistoryView.as_view(), name="order-transitions"),
    path("orders/<int:pk>/confirm-payment/", ConfirmPaymentView.as_view(), name="order-confirm-payment"),
    path("orders/<int:pk>/cancel/", CancelOrderView.as_view(), name="order-cancel"),
    path("orders/<int:pk>/status/", OrderStatusView.as_view(), name="order-status"),
    path("orders/<int:pk>/items/", OrderItemsView.as_view(), name="order-items"),
    path("orders/<int:pk>/items/<int:item_id>/", OrderItemDetailView.as_view(), name="order-item-detail"),
    path("orders/<int:pk>/release/", ReleaseOrderView.as_view(), name="order-release"),
    path("orders/<int:pk>/generate-token/", GenerateTokenView.as_view(), name="order-generate-token"),

    # ============================================================
    # Specimens
    # ============================================================
    path("specimens/", SpecimenListCreateView.as_view(), name="specimen-list"),
    path("specimens/<int:pk>/", SpecimenDetailView.as_view(), name="specimen-detail"),
    path("specimens/<int:pk>/collect/", SpecimenCollectView.as_view(), name="specimen-collect"),
    path("specimens/<int:pk>/receive/", SpecimenReceiveView.as_view(), name="specimen-receive"),
    path("specimens/<int:pk>/reject/", SpecimenRejectView.as_view(), name="specimen-reject"),

    # ============================================================
    # Results
    # ============================================================
    path("results/", ResultCreateView.as_view(), name="result-create"),
    path("results/view/<str:token>/", PublicResultView.as_view(), name="result-public-view"),
    path("results/<int:pk>/", ResultDetailView.as_view(), name="result-detail"),
    path("results/<int:pk>/verify/", ResultVerifyView.as_view(), name="result-verify"),

    # ============================================================
    # Workflow definitions / queue board / stats
    # ============================================================
    path("workflows/<str:kind>/", WorkflowDefinitionView.as_view(), name="workflow-definition"),
    path("workflows/<str:kind>/next/", WorkflowNextStatesView.as_view(), name="workflow-next-states"),
    path("queue/", LabQueueView.as_view(), name="queue"),
    path("stats/", LabStatsView.as_view(), name="stats"),
]
