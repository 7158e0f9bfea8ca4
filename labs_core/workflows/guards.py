# labs_core/workflows/guards.py

from django.core.exceptions import PermissionDenied
from django.db import models


class WorkflowWriteGuardMixin(models.Model):
    """
    Prevent direct modification of workflow-controlled fields outside the lifecycle services.

    Guards LabOrder.status and Specimen.status. Orders move only through
    labs_core.workflows.transition_service.apply_order_status (called by
    labs_core.services.orders and the cascades), specimens only through
    labs_core.services.specimens. Both write with a queryset UPDATE.
    A .save() that changes WORKFLOW_FIELD raises PermissionDenied.

    Escape hatch:
      - pass _workflow_bypass=True to save(), OR
      - set instance._workflow_bypass = True
    Use sparingly (tests, data fixes, admin repair scripts).
    """

    WORKFLOW_FIELD = "status"
    WORKFLOW_BYPASS_KWARG = "_workflow_bypass"

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        bypass = bool(
            kwargs.pop(self.WORKFLOW_BYPASS_KWARG, False)
            or getattr(self, "_workflow_bypass", False)
        )

        if not bypass and self.pk is not None and self.WORKFLOW_FIELD:
            old = (
                self.__class__.objects.filter(pk=self.pk)
                .values_list(self.WORKFLOW_FIELD, flat=True)
                .first()
            )
            new = getattr(self, self.WORKFLOW_FIELD, None)

            if old is not None and old != new:
                raise PermissionDenied(
                    f"Direct modification of '{self.WORKFLOW_FIELD}' is forbidden. "
                    "Use the lab lifecycle services."
                )

        return super().save(*args, **kwargs)


class AppendOnlyMixin(models.Model):
    """
    Rows are written once and never edited or deleted (audit trails).
    """

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if self.pk is not None and self.__class__.objects.filter(pk=self.pk).exists():
            raise PermissionDenied(
                f"{self.__class__.__name__} records are append-only."
            )
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise PermissionDenied(
            f"{self.__class__.__name__} records are append-only."
        )
