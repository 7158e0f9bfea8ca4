# labs_core/signals.py
from __future__ import annotations

from threading import local

from django.conf import settings
from django.core.mail import send_mail
from django.db.models.signals import post_save
from django.dispatch import receiver

from labs_core.models import AuditLog, LabOrderTransition, LabResult, SpecimenEvent


# ===============================================================
# Thread-local user storage
# ===============================================================
_state = local()


def set_current_user(user):
    _state.user = user


def get_current_user():
    return getattr(_state, "user", None)


def _actor(explicit=None):
    """Explicit performer wins; otherwise the request user, if any."""
    if explicit is not None:
        return explicit
    user = get_current_user()
    if user is not None and getattr(user, "is_authenticated", False):
        return user
    return None


def _safe_username(user) -> str:
    if not user:
        return "system"
    return user.get_username()


# ===============================================================
# ORDER TRANSITIONS
# ===============================================================
@receiver(post_save, sender=LabOrderTransition)
def audit_order_transition(sender, instance: LabOrderTransition, created: bool, **kwargs):
    """
    Audit every order status change and, when configured, notify on release.

    Runs inside the lifecycle service's transaction.
    """
    if not created:
        return

    order = instance.order
    AuditLog.objects.create(
        user=_actor(instance.performed_by),
        action=(
            f"ORDER {order.order_number}: "
            f"{instance.from_status} -> {instance.to_status}"
        ),
        details={
            "order_id": order.pk,
            "order_number": order.order_number,
            "from": instance.from_status,
            "to": instance.to_status,
            "reason": instance.reason,
        },
    )

    if instance.to_status != "released":
        return
    if not getattr(settings, "LAB_RELEASE_EMAIL_NOTIFICATIONS", False):
        return
    recipients = getattr(settings, "LAB_RELEASE_NOTIFY_EMAILS", None)
    if not recipients:
        return

    send_mail(
        subject=f"[Clinic LIMS] Results released for {order.order_number}",
        message="\n".join(
            [
                "Lab results have been released.",
                "",
                f"Order: {order.order_number}",
                f"Patient: {order.patient_ref}",
                f"By: {_safe_username(instance.performed_by)}",
                f"At: {instance.created_at}",
            ]
        ),
        from_email=getattr(settings, "DEFAULT_FROM_EMAIL", None),
        recipient_list=list(recipients),
        fail_silently=True,
    )


# ===============================================================
# SPECIMEN EVENTS
# ===============================================================
@receiver(post_save, sender=SpecimenEvent)
def audit_specimen_event(sender, instance: SpecimenEvent, created: bool, **kwargs):
    if not created:
        return

    AuditLog.objects.create(
        user=_actor(instance.performed_by),
        action=f"SPECIMEN {instance.specimen.accession_number}: {instance.event_type}",
        details={
            "specimen_id": instance.specimen_id,
            "event": instance.event_type,
            **(instance.details or {}),
        },
    )


# ===============================================================
# RESULTS
# ===============================================================
@receiver(post_save, sender=LabResult)
def audit_result(sender, instance: LabResult, created: bool, **kwargs):
    update_fields = kwargs.get("update_fields") or ()

    if created:
        action, actor = "RESULT ENTERED", instance.entered_by
    elif "released_at" in update_fields:
        action, actor = "RESULT RELEASED", instance.released_by
    elif "verified_at" in update_fields:
        action, actor = "RESULT VERIFIED", instance.verified_by
    else:
        action, actor = "RESULT UPDATED", None

    AuditLog.objects.create(
        user=_actor(actor),
        action=f"{action} {instance.order_item.test_code}",
        details={
            "result_id": instance.pk,
            "order_item_id": instance.order_item_id,
            "order_id": instance.order_item.order_id,
        },
    )
