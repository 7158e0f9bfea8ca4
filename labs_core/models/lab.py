# labs_core/models/lab.py

from django.conf import settings
from django.core.exceptions import PermissionDenied
from django.db import models

from labs_core.models.catalog import LabPanel, LabSection, LabTest, SpecimenType
from labs_core.models.core import TimeStampedModel
from labs_core.workflows.guards import AppendOnlyMixin, WorkflowWriteGuardMixin


# ============================================================
# Status enumerations
# ============================================================
class LabOrderStatus(models.TextChoices):
    PENDING_PAYMENT = "pending_payment", "Pending payment"
    PAID = "paid", "Paid"
    COLLECTING = "collecting", "Collecting"
    COLLECTED = "collected", "Collected"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    VERIFIED = "verified", "Verified"
    RELEASED = "released", "Released"
    CANCELLED = "cancelled", "Cancelled"


class PaymentStatus(models.TextChoices):
    UNPAID = "unpaid", "Unpaid"
    PAID = "paid", "Paid"
    PARTIAL = "partial", "Partial"
    REFUNDED = "refunded", "Refunded"


class LabPriority(models.TextChoices):
    ROUTINE = "routine", "Routine"
    URGENT = "urgent", "Urgent"
    STAT = "stat", "STAT"


class OrderItemStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    VERIFIED = "verified", "Verified"


class SpecimenStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    COLLECTED = "collected", "Collected"
    RECEIVED = "received", "Received"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    REJECTED = "rejected", "Rejected"


class SpecimenEventType(models.TextChoices):
    ACCESSIONED = "accessioned", "Accessioned"
    COLLECTED = "collected", "Collected"
    RECEIVED = "received", "Received"
    PROCESSING = "processing", "Processing"
    REJECTED = "rejected", "Rejected"


class AbnormalFlag(models.TextChoices):
    NORMAL = "N", "Normal"
    LOW = "L", "Low"
    HIGH = "H", "High"
    CRITICAL_LOW = "LL", "Critical low"
    CRITICAL_HIGH = "HH", "Critical high"
    ABNORMAL = "A", "Abnormal"


# ============================================================
# Lab Order
# ============================================================
class LabOrder(WorkflowWriteGuardMixin, TimeStampedModel):
    """
    A laboratory order for one patient.

    `status` is cascaded from items, specimens and results by
    labs_core.services and is never written directly.
    """

    WORKFLOW_FIELD = "status"

    order_number = models.CharField(max_length=30, unique=True)
    patient_ref = models.CharField(max_length=100, db_index=True)
    ordering_provider_ref = models.CharField(max_length=100, blank=True)

    status = models.CharField(
        max_length=20,
        choices=LabOrderStatus.choices,
        default=LabOrderStatus.PENDING_PAYMENT,
        db_index=True,
        editable=False,
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.UNPAID,
        db_index=True,
    )
    payment_reference = models.CharField(max_length=100, blank=True)
    priority = models.CharField(
        max_length=10, choices=LabPriority.choices, default=LabPriority.ROUTINE
    )

    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    notes = models.TextField(blank=True)

    placed_at = models.DateTimeField(db_index=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancel_reason = models.TextField(blank=True)

    class Meta:
        ordering = ["-placed_at", "-id"]
        indexes = [
            models.Index(fields=["status", "placed_at"], name="laborder_status_placed_idx"),
        ]

    def __str__(self):
        return f"{self.order_number} ({self.status})"


class LabOrderItem(models.Model):
    """One test on an order. price_snapshot is frozen at insert."""

    order = models.ForeignKey(LabOrder, on_delete=models.CASCADE, related_name="items")
    test = models.ForeignKey(
        LabTest, on_delete=models.PROTECT, null=True, blank=True, related_name="order_items"
    )
    panel = models.ForeignKey(
        LabPanel, on_delete=models.PROTECT, null=True, blank=True, related_name="order_items"
    )

    test_code = models.CharField(max_length=50)
    test_name = models.CharField(max_length=255)
    section = models.CharField(
        max_length=20, choices=LabSection.choices, default=LabSection.OTHER
    )
    status = models.CharField(
        max_length=20, choices=OrderItemStatus.choices, default=OrderItemStatus.PENDING
    )
    price_snapshot = models.DecimalField(max_digits=10, decimal_places=2, default=0)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["order", "test"], name="laborderitem_unique_test_per_order"
            ),
        ]

    def save(self, *args, **kwargs):
        if self.pk is not None:
            old = (
                LabOrderItem.objects.filter(pk=self.pk)
                .values_list("price_snapshot", flat=True)
                .first()
            )
            if old is not None and old != self.price_snapshot:
                raise PermissionDenied("price_snapshot is immutable after insert.")
        return super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.order.order_number}:{self.test_code}"


# ============================================================
# Specimen
# ============================================================
class Specimen(WorkflowWriteGuardMixin, TimeStampedModel):
    WORKFLOW_FIELD = "status"

    order = models.ForeignKey(LabOrder, on_delete=models.CASCADE, related_name="specimens")
    order_item = models.ForeignKey(
        LabOrderItem,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="specimens",
    )

    accession_number = models.CharField(max_length=30, unique=True)
    specimen_type = models.CharField(
        max_length=20, choices=SpecimenType.choices, default=SpecimenType.BLOOD
    )
    container = models.CharField(max_length=100, blank=True)
    volume_ml = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    appearance = models.CharField(max_length=255, blank=True)
    collection_notes = models.TextField(blank=True)

    status = models.CharField(
        max_length=20,
        choices=SpecimenStatus.choices,
        default=SpecimenStatus.PENDING,
        db_index=True,
        editable=False,
    )

    collected_at = models.DateTimeField(null=True, blank=True)
    collected_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    received_at = models.DateTimeField(null=True, blank=True)
    received_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    rejected_at = models.DateTimeField(null=True, blank=True)
    rejected_reason = models.TextField(blank=True)
    rejected_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["order", "status"], name="specimen_order_status_idx"),
        ]

    def __str__(self):
        return f"{self.accession_number} ({self.status})"


class SpecimenEvent(AppendOnlyMixin, models.Model):
    """
    Immutable audit trail for a specimen.
    """

    specimen = models.ForeignKey(Specimen, on_delete=models.CASCADE, related_name="events")
    event_type = models.CharField(max_length=20, choices=SpecimenEventType.choices)
    details = models.JSONField(default=dict, blank=True)
    performed_at = models.DateTimeField()
    performed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="specimen_events",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["performed_at", "id"]
        indexes = [
            models.Index(fields=["specimen", "event_type"], name="specimenevent_type_idx"),
        ]

    def __str__(self):
        return f"{self.specimen.accession_number}: {self.event_type}"


# ============================================================
# Result
# ============================================================
class LabResult(TimeStampedModel):
    order_item = models.OneToOneField(
        LabOrderItem, on_delete=models.PROTECT, related_name="result"
    )
    specimen = models.ForeignKey(
        Specimen, on_delete=models.SET_NULL, null=True, blank=True, related_name="results"
    )

    result_value = models.CharField(max_length=100, blank=True)
    result_text = models.TextField(blank=True)
    units = models.CharField(max_length=50, blank=True)
    reference_range = models.CharField(max_length=100, blank=True)
    abnormal_flag = models.CharField(
        max_length=2, choices=AbnormalFlag.choices, blank=True
    )
    notes = models.TextField(blank=True)

    entered_at = models.DateTimeField()
    entered_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    verified_at = models.DateTimeField(null=True, blank=True)
    verified_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    released_at = models.DateTimeField(null=True, blank=True)
    released_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    class Meta:
        ordering = ["-entered_at", "-id"]

    def save(self, *args, **kwargs):
        if self.pk is not None:
            released = (
                LabResult.objects.filter(pk=self.pk)
                .values_list("released_at", flat=True)
                .first()
            )
            if released is not None:
                raise PermissionDenied("Released results are immutable.")
        return super().save(*args, **kwargs)

    def __str__(self):
        return f"Result for {self.order_item}"


# ============================================================
# Public result access token
# ============================================================
class LabResultToken(models.Model):
    order = models.ForeignKey(LabOrder, on_delete=models.CASCADE, related_name="result_tokens")
    token = models.CharField(max_length=64, unique=True)
    expires_at = models.DateTimeField()
    max_views = models.PositiveIntegerField(default=10)
    view_count = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    last_viewed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.order.order_number} token (views {self.view_count}/{self.max_views})"


# ============================================================
# Order transition log
# ============================================================
class LabOrderTransition(AppendOnlyMixin, models.Model):
    """
    Immutable audit row per order status change.
    """

    order = models.ForeignKey(LabOrder, on_delete=models.CASCADE, related_name="transitions")
    from_status = models.CharField(max_length=20)
    to_status = models.CharField(max_length=20)
    reason = models.TextField(blank=True)

    performed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="lab_order_transitions",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"{self.order.order_number} {self.from_status} -> {self.to_status}"
