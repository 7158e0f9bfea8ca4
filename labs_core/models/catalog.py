# labs_core/models/catalog.py

from django.db import models

from labs_core.models.core import TimeStampedModel


class LabSection(models.TextChoices):
    HEMATOLOGY = "hematology", "Hematology"
    CHEMISTRY = "chemistry", "Chemistry"
    URINALYSIS = "urinalysis", "Urinalysis"
    SEROLOGY = "serology", "Serology"
    FECALYSIS = "fecalysis", "Fecalysis"
    MICROBIOLOGY = "microbiology", "Microbiology"
    DRUG_TESTING = "drug_testing", "Drug testing"
    OTHER = "other", "Other"


class SpecimenType(models.TextChoices):
    BLOOD = "blood", "Blood"
    URINE = "urine", "Urine"
    STOOL = "stool", "Stool"
    SWAB = "swab", "Swab"
    CSF = "csf", "CSF"
    TISSUE = "tissue", "Tissue"
    SPUTUM = "sputum", "Sputum"
    OTHER = "other", "Other"


# ============================================================
# Test catalog
# ============================================================
class LabTest(TimeStampedModel):
    """A single orderable laboratory test."""

    code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=255)
    section = models.CharField(
        max_length=20, choices=LabSection.choices, default=LabSection.OTHER
    )
    specimen_type = models.CharField(
        max_length=20, choices=SpecimenType.choices, default=SpecimenType.BLOOD
    )
    price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    requires_verification = models.BooleanField(default=True)
    is_active = models.BooleanField(default=True, db_index=True)

    class Meta:
        ordering = ["section", "name"]

    def __str__(self):
        return f"{self.code} - {self.name}"


class LabPanel(TimeStampedModel):
    """A named bundle of tests orderable as one unit."""

    code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=255)
    price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    is_active = models.BooleanField(default=True, db_index=True)
    tests = models.ManyToManyField(
        LabTest, through="LabPanelItem", related_name="panels", blank=True
    )

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return f"{self.code} - {self.name}"


class LabPanelItem(models.Model):
    panel = models.ForeignKey(
        LabPanel, on_delete=models.CASCADE, related_name="panel_items"
    )
    test = models.ForeignKey(
        LabTest, on_delete=models.PROTECT, related_name="panel_items"
    )
    sort_order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["sort_order", "id"]
        unique_together = ("panel", "test")

    def __str__(self):
        return f"{self.panel.code}:{self.test.code}"
