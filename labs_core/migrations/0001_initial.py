# labs_core/migrations/0001_initial.py

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


SECTION_CHOICES = [
    ("hematology", "Hematology"),
    ("chemistry", "Chemistry"),
    ("urinalysis", "Urinalysis"),
    ("serology", "Serology"),
    ("fecalysis", "Fecalysis"),
    ("microbiology", "Microbiology"),
    ("drug_testing", "Drug testing"),
    ("other", "Other"),
]

SPECIMEN_TYPE_CHOICES = [
    ("blood", "Blood"),
    ("urine", "Urine"),
    ("stool", "Stool"),
    ("swab", "Swab"),
    ("csf", "CSF"),
    ("tissue", "Tissue"),
    ("sputum", "Sputum"),
    ("other", "Other"),
]

ORDER_STATUS_CHOICES = [
    ("pending_payment", "Pending payment"),
    ("paid", "Paid"),
    ("collecting", "Collecting"),
    ("collected", "Collected"),
    ("processing", "Processing"),
    ("completed", "Completed"),
    ("verified", "Verified"),
    ("released", "Released"),
    ("cancelled", "Cancelled"),
]

SPECIMEN_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("collected", "Collected"),
    ("received", "Received"),
    ("processing", "Processing"),
    ("completed", "Completed"),
    ("rejected", "Rejected"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        # ------------------------------------------------------------
        # Core
        # ------------------------------------------------------------
        migrations.CreateModel(
            name="AuditLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("action", models.CharField(db_index=True, max_length=255)),
                ("details", models.JSONField(blank=True, default=dict)),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="lab_audit_logs",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [models.Index(fields=["action", "created_at"], name="audit_action_time_idx")],
            },
        ),
        migrations.CreateModel(
            name="AccessionCounter",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("prefix", models.CharField(max_length=10)),
                ("day", models.DateField()),
                ("last_value", models.PositiveIntegerField(default=0)),
            ],
            options={
                "unique_together": {("prefix", "day")},
            },
        ),
        # ------------------------------------------------------------
        # Catalog
        # ------------------------------------------------------------
        migrations.CreateModel(
            name="LabTest",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("code", models.CharField(max_length=50, unique=True)),
                ("name", models.CharField(max_length=255)),
                ("section", models.CharField(choices=SECTION_CHOICES, default="other", max_length=20)),
                ("specimen_type", models.CharField(choices=SPECIMEN_TYPE_CHOICES, default="blood", max_length=20)),
                ("price", models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ("requires_verification", models.BooleanField(default=True)),
                ("is_active", models.BooleanField(db_index=True, default=True)),
            ],
            options={
                "ordering": ["section", "name"],
            },
        ),
        migrations.CreateModel(
            name="LabPanel",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("code", models.CharField(max_length=50, unique=True)),
                ("name", models.CharField(max_length=255)),
                ("price", models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ("is_active", models.BooleanField(db_index=True, default=True)),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="LabPanelItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("sort_order", models.PositiveIntegerField(default=0)),
                (
                    "panel",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="panel_items",
                        to="labs_core.labpanel",
                    ),
                ),
                (
                    "test",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="panel_items",
                        to="labs_core.labtest",
                    ),
                ),
            ],
            options={
                "ordering": ["sort_order", "id"],
                "unique_together": {("panel", "test")},
            },
        ),
        migrations.AddField(
            model_name="labpanel",
            name="tests",
            field=models.ManyToManyField(
                blank=True,
                related_name="panels",
                through="labs_core.LabPanelItem",
                to="labs_core.labtest",
            ),
        ),
        # ------------------------------------------------------------
        # Orders
        # ------------------------------------------------------------
        migrations.CreateModel(
            name="LabOrder",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("order_number", models.CharField(max_length=30, unique=True)),
                ("patient_ref", models.CharField(db_index=True, max_length=100)),
                ("ordering_provider_ref", models.CharField(blank=True, max_length=100)),
                (
                    "status",
                    models.CharField(
                        choices=ORDER_STATUS_CHOICES,
                        db_index=True,
                        default="pending_payment",
                        editable=False,
                        max_length=20,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("unpaid", "Unpaid"),
                            ("paid", "Paid"),
                            ("partial", "Partial"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="unpaid",
                        max_length=20,
                    ),
                ),
                ("payment_reference", models.CharField(blank=True, max_length=100)),
                (
                    "priority",
                    models.CharField(
                        choices=[("routine", "Routine"), ("urgent", "Urgent"), ("stat", "STAT")],
                        default="routine",
                        max_length=10,
                    ),
                ),
                ("subtotal", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("total_amount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("notes", models.TextField(blank=True)),
                ("placed_at", models.DateTimeField(db_index=True)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancel_reason", models.TextField(blank=True)),
            ],
            options={
                "ordering": ["-placed_at", "-id"],
                "indexes": [models.Index(fields=["status", "placed_at"], name="laborder_status_placed_idx")],
            },
        ),
        migrations.CreateModel(
            name="LabOrderItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("test_code", models.CharField(max_length=50)),
                ("test_name", models.CharField(max_length=255)),
                ("section", models.CharField(choices=SECTION_CHOICES, default="other", max_length=20)),
                (
                    "status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("completed", "Completed"), ("verified", "Verified")],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("price_snapshot", models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="labs_core.laborder",
                    ),
                ),
                (
                    "panel",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="order_items",
                        to="labs_core.labpanel",
                    ),
                ),
                (
                    "test",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="order_items",
                        to="labs_core.labtest",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "id"],
                "constraints": [
                    models.UniqueConstraint(fields=("order", "test"), name="laborderitem_unique_test_per_order"),
                ],
            },
        ),
        migrations.CreateModel(
            name="LabOrderTransition",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("from_status", models.CharField(max_length=20)),
                ("to_status", models.CharField(max_length=20)),
                ("reason", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="transitions",
                        to="labs_core.laborder",
                    ),
                ),
                (
                    "performed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="lab_order_transitions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "id"],
            },
        ),
        migrations.CreateModel(
            name="LabResultToken",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("token", models.CharField(max_length=64, unique=True)),
                ("expires_at", models.DateTimeField()),
                ("max_views", models.PositiveIntegerField(default=10)),
                ("view_count", models.PositiveIntegerField(default=0)),
                ("is_active", models.BooleanField(default=True)),
                ("last_viewed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="result_tokens",
                        to="labs_core.laborder",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
            },
        ),
        # ------------------------------------------------------------
        # Specimens
        # ------------------------------------------------------------
        migrations.CreateModel(
            name="Specimen",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("accession_number", models.CharField(max_length=30, unique=True)),
                ("specimen_type", models.CharField(choices=SPECIMEN_TYPE_CHOICES, default="blood", max_length=20)),
                ("container", models.CharField(blank=True, max_length=100)),
                ("volume_ml", models.DecimalField(blank=True, decimal_places=2, max_digits=8, null=True)),
                ("appearance", models.CharField(blank=True, max_length=255)),
                ("collection_notes", models.TextField(blank=True)),
                (
                    "status",
                    models.CharField(
                        choices=SPECIMEN_STATUS_CHOICES,
                        db_index=True,
                        default="pending",
                        editable=False,
                        max_length=20,
                    ),
                ),
                ("collected_at", models.DateTimeField(blank=True, null=True)),
                ("received_at", models.DateTimeField(blank=True, null=True)),
                ("rejected_at", models.DateTimeField(blank=True, null=True)),
                ("rejected_reason", models.TextField(blank=True)),
                (
                    "collected_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="specimens",
                        to="labs_core.laborder",
                    ),
                ),
                (
                    "order_item",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="specimens",
                        to="labs_core.laborderitem",
                    ),
                ),
                (
                    "received_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "rejected_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [models.Index(fields=["order", "status"], name="specimen_order_status_idx")],
            },
        ),
        migrations.CreateModel(
            name="SpecimenEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "event_type",
                    models.CharField(
                        choices=[
                            ("accessioned", "Accessioned"),
                            ("collected", "Collected"),
                            ("received", "Received"),
                            ("processing", "Processing"),
                            ("rejected", "Rejected"),
                        ],
                        max_length=20,
                    ),
                ),
                ("details", models.JSONField(blank=True, default=dict)),
                ("performed_at", models.DateTimeField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "performed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="specimen_events",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "specimen",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="events",
                        to="labs_core.specimen",
                    ),
                ),
            ],
            options={
                "ordering": ["performed_at", "id"],
                "indexes": [models.Index(fields=["specimen", "event_type"], name="specimenevent_type_idx")],
            },
        ),
        # ------------------------------------------------------------
        # Results
        # ------------------------------------------------------------
        migrations.CreateModel(
            name="LabResult",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("result_value", models.CharField(blank=True, max_length=100)),
                ("result_text", models.TextField(blank=True)),
                ("units", models.CharField(blank=True, max_length=50)),
                ("reference_range", models.CharField(blank=True, max_length=100)),
                (
                    "abnormal_flag",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("N", "Normal"),
                            ("L", "Low"),
                            ("H", "High"),
                            ("LL", "Critical low"),
                            ("HH", "Critical high"),
                            ("A", "Abnormal"),
                        ],
                        max_length=2,
                    ),
                ),
                ("notes", models.TextField(blank=True)),
                ("entered_at", models.DateTimeField()),
                ("verified_at", models.DateTimeField(blank=True, null=True)),
                ("released_at", models.DateTimeField(blank=True, null=True)),
                (
                    "entered_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "order_item",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="result",
                        to="labs_core.laborderitem",
                    ),
                ),
                (
                    "released_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "specimen",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="results",
                        to="labs_core.specimen",
                    ),
                ),
                (
                    "verified_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-entered_at", "-id"],
            },
        ),
    ]
