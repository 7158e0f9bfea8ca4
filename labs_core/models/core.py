# labs_core/models/core.py

from django.conf import settings
from django.db import models


# ============================================================
# Base
# ============================================================
class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


# ============================================================
# Audit Log
# ============================================================
class AuditLog(TimeStampedModel):
    """Track actions for compliance and traceability."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="lab_audit_logs",
    )
    action = models.CharField(max_length=255, db_index=True)
    details = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["action", "created_at"], name="audit_action_time_idx"),
        ]

    def __str__(self):
        who = self.user.get_username() if self.user else "system"
        return f"{self.created_at} - {who} - {self.action}"


# ============================================================
# Number sequences
# ============================================================
class AccessionCounter(models.Model):
    """
    Per-day counter backing order numbers and specimen accession numbers.

    Rows are incremented under select_for_update, see
    labs_core.services.sequences.
    """

    prefix = models.CharField(max_length=10)
    day = models.DateField()
    last_value = models.PositiveIntegerField(default=0)

    class Meta:
        unique_together = ("prefix", "day")

    def __str__(self):
        return f"{self.prefix}-{self.day:%Y%m%d}: {self.last_value}"
