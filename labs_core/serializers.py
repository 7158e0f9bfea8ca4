from __future__ import annotations

from typing import Any, Dict

from django.contrib.auth import get_user_model
from rest_framework import serializers

from .models import (
    AbnormalFlag,
    LabOrder,
    LabOrderItem,
    LabOrderTransition,
    LabPanel,
    LabPriority,
    LabResult,
    LabResultToken,
    LabTest,
    Specimen,
    SpecimenEvent,
    SpecimenType,
)
from .workflows import allowed_next_states


# ===============================================================
# Helpers
# ===============================================================

class UserSlimSerializer(serializers.ModelSerializer):
    class Meta:
        model = get_user_model()
        fields = ("id", "username", "email")
        read_only_fields = fields


# ===============================================================
# Catalog
# ===============================================================

class LabTestSerializer(serializers.ModelSerializer):
    class Meta:
        model = LabTest
        fields = (
            "id",
            "code",
            "name",
            "section",
            "specimen_type",
            "price",
            "requires_verification",
            "is_active",
        )
        read_only_fields = fields


class LabPanelSerializer(serializers.ModelSerializer):
    tests = LabTestSerializer(many=True, read_only=True)

    class Meta:
        model = LabPanel
        fields = ("id", "code", "name", "price", "is_active", "tests")
        read_only_fields = fields


# ===============================================================
# Results
# ===============================================================

class LabResultSerializer(serializers.ModelSerializer):
    entered_by = UserSlimSerializer(read_only=True)
    verified_by = UserSlimSerializer(read_only=True)
    released_by = UserSlimSerializer(read_only=True)
    test_code = serializers.CharField(source="order_item.test_code", read_only=True)
    test_name = serializers.CharField(source="order_item.test_name", read_only=True)
    order_id = serializers.IntegerField(source="order_item.order_id", read_only=True)

    class Meta:
        model = LabResult
        fields = (
            "id",
            "order_id",
            "order_item",
            "test_code",
            "test_name",
            "specimen",
            "result_value",
            "result_text",
            "units",
            "reference_range",
            "abnormal_flag",
            "notes",
            "entered_at",
            "entered_by",
            "verified_at",
            "verified_by",
            "released_at",
            "released_by",
            "updated_at",
        )
        read_only_fields = fields


class ResultValuesSerializer(serializers.Serializer):
    result_value = serializers.CharField(max_length=100, required=False, allow_blank=True)
    result_text = serializers.CharField(required=False, allow_blank=True)
    units = serializers.CharField(max_length=50, required=False, allow_blank=True)
    reference_range = serializers.CharField(max_length=100, required=False, allow_blank=True)
    abnormal_flag = serializers.ChoiceField(
        choices=AbnormalFlag.choices, required=False, allow_blank=True
    )
    notes = serializers.CharField(required=False, allow_blank=True)


class ResultCreateSerializer(ResultValuesSerializer):
    order_item_id = serializers.IntegerField()
    specimen_id = serializers.IntegerField(required=False, allow_null=True)

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        if not (attrs.get("result_value") or attrs.get("result_text")):
            raise serializers.ValidationError(
                {"result_value": "Either result_value or result_text is required."}
            )
        return attrs


# ===============================================================
# Orders
# ===============================================================

class LabOrderItemSerializer(serializers.ModelSerializer):
    result = LabResultSerializer(read_only=True)

    class Meta:
        model = LabOrderItem
        fields = (
            "id",
            "test",
            "panel",
            "test_code",
            "test_name",
            "section",
            "status",
            "price_snapshot",
            "result",
        )
        read_only_fields = fields


class SpecimenEventSerializer(serializers.ModelSerializer):
    performed_by = UserSlimSerializer(read_only=True)

    class Meta:
        model = SpecimenEvent
        fields = ("id", "event_type", "details", "performed_at", "performed_by")
        read_only_fields = fields


class SpecimenSerializer(serializers.ModelSerializer):
    order_number = serializers.CharField(source="order.order_number", read_only=True)
    allowed_next = serializers.SerializerMethodField()

    class Meta:
        model = Specimen
        fields = (
            "id",
            "order",
            "order_number",
            "order_item",
            "accession_number",
            "specimen_type",
            "container",
            "volume_ml",
            "appearance",
            "collection_notes",
            "status",
            "allowed_next",
            "collected_at",
            "received_at",
            "rejected_at",
            "rejected_reason",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields

    def get_allowed_next(self, obj):
        return allowed_next_states("specimen", obj.status)


class SpecimenDetailSerializer(SpecimenSerializer):
    events = SpecimenEventSerializer(many=True, read_only=True)

    class Meta(SpecimenSerializer.Meta):
        fields = SpecimenSerializer.Meta.fields + ("events",)
        read_only_fields = fields


class LabOrderSerializer(serializers.ModelSerializer):
    allowed_next = serializers.SerializerMethodField()

    class Meta:
        model = LabOrder
        fields = (
            "id",
            "order_number",
            "patient_ref",
            "ordering_provider_ref",
            "status",
            "allowed_next",
            "payment_status",
            "payment_reference",
            "priority",
            "subtotal",
            "total_amount",
            "notes",
            "placed_at",
            "paid_at",
            "cancelled_at",
            "cancel_reason",
            "updated_at",
        )
        read_only_fields = fields

    def get_allowed_next(self, obj):
        return allowed_next_states("order", obj.status)


class LabOrderDetailSerializer(LabOrderSerializer):
    items = LabOrderItemSerializer(many=True, read_only=True)
    specimens = SpecimenSerializer(many=True, read_only=True)

    class Meta(LabOrderSerializer.Meta):
        fields = LabOrderSerializer.Meta.fields + ("items", "specimens")
        read_only_fields = fields


class LabOrderTransitionSerializer(serializers.ModelSerializer):
    performed_by = UserSlimSerializer(read_only=True)

    class Meta:
        model = LabOrderTransition
        fields = ("id", "from_status", "to_status", "reason", "performed_by", "created_at")
        read_only_fields = fields


class OrderItemRequestSerializer(serializers.Serializer):
    test_id = serializers.IntegerField(required=False, allow_null=True)
    panel_id = serializers.IntegerField(required=False, allow_null=True)

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        if bool(attrs.get("test_id")) == bool(attrs.get("panel_id")):
            raise serializers.ValidationError(
                "Provide exactly one of test_id or panel_id."
            )
        return attrs


class OrderCreateSerializer(serializers.Serializer):
    patient_ref = serializers.CharField(max_length=100)
    ordering_provider_ref = serializers.CharField(
        max_length=100, required=False, allow_blank=True
    )
    priority = serializers.ChoiceField(
        choices=LabPriority.choices, required=False, default=LabPriority.ROUTINE
    )
    notes = serializers.CharField(required=False, allow_blank=True)
    items = OrderItemRequestSerializer(many=True)


class ConfirmPaymentSerializer(serializers.Serializer):
    payment_reference = serializers.CharField(max_length=100, required=False, allow_blank=True)
    amount = serializers.DecimalField(
        max_digits=12, decimal_places=2, required=False, allow_null=True, min_value=0
    )


class CancelOrderSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True)


class StatusChangeSerializer(serializers.Serializer):
    # Free text so unknown statuses are refused by the workflow table with
    # the allowed next states attached.
    status = serializers.CharField(max_length=20)
    reason = serializers.CharField(required=False, allow_blank=True)


class GenerateTokenSerializer(serializers.Serializer):
    expires_in_hours = serializers.IntegerField(
        required=False, min_value=1, max_value=24 * 30
    )
    max_views = serializers.IntegerField(required=False, min_value=1, max_value=1000)


class LabResultTokenSerializer(serializers.ModelSerializer):
    url = serializers.SerializerMethodField()

    class Meta:
        model = LabResultToken
        fields = (
            "id",
            "order",
            "token",
            "url",
            "expires_at",
            "max_views",
            "view_count",
            "is_active",
        )
        read_only_fields = fields

    def get_url(self, obj):
        from .services.tokens import result_url

        return result_url(obj)


# ===============================================================
# Specimens
# ===============================================================

class SpecimenAccessionSerializer(serializers.Serializer):
    order_id = serializers.IntegerField()
    specimen_type = serializers.ChoiceField(choices=SpecimenType.choices)
    order_item_id = serializers.IntegerField(required=False, allow_null=True)
    container = serializers.CharField(max_length=100, required=False, allow_blank=True)
    collection_notes = serializers.CharField(required=False, allow_blank=True)


class SpecimenCollectSerializer(serializers.Serializer):
    appearance = serializers.CharField(max_length=255, required=False, allow_blank=True)
    volume_ml = serializers.DecimalField(
        max_digits=8, decimal_places=2, required=False, allow_null=True, min_value=0
    )
    notes = serializers.CharField(required=False, allow_blank=True)


class SpecimenReceiveSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True)


class SpecimenRejectSerializer(serializers.Serializer):
    # Blank reasons are refused by the service with ReasonRequired.
    reason = serializers.CharField(required=False, allow_blank=True)


# ===============================================================
# Public result view
# ===============================================================

class PublicResultSerializer(serializers.ModelSerializer):
    test_code = serializers.CharField(source="order_item.test_code", read_only=True)
    test_name = serializers.CharField(source="order_item.test_name", read_only=True)
    section = serializers.CharField(source="order_item.section", read_only=True)

    class Meta:
        model = LabResult
        fields = (
            "test_code",
            "test_name",
            "section",
            "result_value",
            "result_text",
            "units",
            "reference_range",
            "abnormal_flag",
            "released_at",
        )
        read_only_fields = fields


class PublicOrderSerializer(serializers.ModelSerializer):
    results = serializers.SerializerMethodField()

    class Meta:
        model = LabOrder
        fields = (
            "order_number",
            "patient_ref",
            "status",
            "priority",
            "placed_at",
            "paid_at",
            "results",
        )
        read_only_fields = fields

    def get_results(self, obj):
        released = (
            LabResult.objects.filter(order_item__order=obj, released_at__isnull=False)
            .select_related("order_item")
            .order_by("order_item__id")
        )
        return PublicResultSerializer(released, many=True).data
