# labs_core/admin.py

from django.contrib import admin, messages
from django.utils.html import format_html

from .models import (
    AccessionCounter,
    AuditLog,
    LabOrder,
    LabOrderItem,
    LabOrderTransition,
    LabPanel,
    LabPanelItem,
    LabResult,
    LabResultToken,
    LabTest,
    Specimen,
    SpecimenEvent,
)
from .services.tokens import deactivate_token


class ReadOnlyAdminMixin:
    """Audit trails: visible in admin, never edited there."""

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


# =============================================================
# Catalog
# =============================================================

class LabPanelItemInline(admin.TabularInline):
    model = LabPanelItem
    extra = 0
    autocomplete_fields = ("test",)


@admin.register(LabTest)
class LabTestAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "section", "specimen_type", "price", "is_active")
    list_filter = ("section", "specimen_type", "is_active")
    search_fields = ("code", "name")


@admin.register(LabPanel)
class LabPanelAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "price", "is_active")
    search_fields = ("code", "name")
    inlines = (LabPanelItemInline,)


# =============================================================
# Orders
# =============================================================

class LabOrderItemInline(ReadOnlyAdminMixin, admin.TabularInline):
    model = LabOrderItem
    extra = 0
    fields = ("test_code", "test_name", "section", "status", "price_snapshot")
    readonly_fields = fields


class LabOrderTransitionInline(ReadOnlyAdminMixin, admin.TabularInline):
    model = LabOrderTransition
    extra = 0
    fields = ("from_status", "to_status", "reason", "performed_by", "created_at")
    readonly_fields = fields


@admin.register(LabOrder)
class LabOrderAdmin(admin.ModelAdmin):
    """
    Status, payment and totals are owned by the lifecycle services and
    shown read-only here.
    """

    list_display = (
        "order_number",
        "patient_ref",
        "status_badge",
        "payment_status",
        "priority",
        "total_amount",
        "placed_at",
    )
    list_filter = ("status", "payment_status", "priority")
    search_fields = ("order_number", "patient_ref")
    ordering = ("-placed_at",)
    readonly_fields = (
        "order_number",
        "status",
        "payment_status",
        "payment_reference",
        "subtotal",
        "total_amount",
        "placed_at",
        "paid_at",
        "cancelled_at",
        "cancel_reason",
    )
    inlines = (LabOrderItemInline, LabOrderTransitionInline)

    def has_add_permission(self, request):
        return False

    def status_badge(self, obj):
        colour = {
            "released": "#2e7d32",
            "cancelled": "#c62828",
            "verified": "#1565c0",
        }.get(obj.status, "#555")
        return format_html(
            '<span style="color:{};font-weight:bold;">{}</span>',
            colour,
            obj.get_status_display(),
        )

    status_badge.short_description = "Status"


# =============================================================
# Specimens
# =============================================================

class SpecimenEventInline(ReadOnlyAdminMixin, admin.TabularInline):
    model = SpecimenEvent
    extra = 0
    fields = ("event_type", "details", "performed_at", "performed_by")
    readonly_fields = fields


@admin.register(Specimen)
class SpecimenAdmin(admin.ModelAdmin):
    list_display = ("accession_number", "order", "specimen_type", "status", "collected_at")
    list_filter = ("status", "specimen_type")
    search_fields = ("accession_number", "order__order_number")
    readonly_fields = (
        "accession_number",
        "status",
        "collected_at",
        "collected_by",
        "received_at",
        "received_by",
        "rejected_at",
        "rejected_by",
        "rejected_reason",
    )
    inlines = (SpecimenEventInline,)

    def has_add_permission(self, request):
        return False


# =============================================================
# Results / tokens
# =============================================================

@admin.register(LabResult)
class LabResultAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("order_item", "result_value", "abnormal_flag", "verified_at", "released_at")
    list_filter = ("abnormal_flag",)
    search_fields = ("order_item__test_code", "order_item__order__order_number")


@admin.register(LabResultToken)
class LabResultTokenAdmin(admin.ModelAdmin):
    list_display = ("order", "expires_at", "view_count", "max_views", "is_active")
    list_filter = ("is_active",)
    readonly_fields = ("order", "token", "expires_at", "max_views", "view_count", "last_viewed_at")
    actions = ("deactivate_selected_tokens",)

    def has_add_permission(self, request):
        return False

    def deactivate_selected_tokens(self, request, queryset):
        deactivated = 0
        for token in queryset.filter(is_active=True):
            deactivate_token(token.token)
            deactivated += 1

        if deactivated:
            self.message_user(request, f"Deactivated {deactivated} result link(s).", level=messages.SUCCESS)
        else:
            self.message_user(request, "No active result links selected.", level=messages.INFO)

    deactivate_selected_tokens.short_description = "Deactivate selected result links"


# =============================================================
# Audit trails (READ-ONLY)
# =============================================================

@admin.register(LabOrderTransition)
class LabOrderTransitionAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("order", "from_status", "to_status", "performed_by", "created_at")
    list_filter = ("from_status", "to_status")
    search_fields = ("order__order_number", "performed_by__username")
    ordering = ("-created_at",)


@admin.register(SpecimenEvent)
class SpecimenEventAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("specimen", "event_type", "performed_by", "performed_at")
    list_filter = ("event_type",)
    search_fields = ("specimen__accession_number",)


@admin.register(AuditLog)
class AuditLogAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("created_at", "user", "action")
    search_fields = ("action", "user__username")
    ordering = ("-created_at",)


@admin.register(AccessionCounter)
class AccessionCounterAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("prefix", "day", "last_value")
