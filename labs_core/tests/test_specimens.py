# labs_core/tests/test_specimens.py

import pytest
from django.core.exceptions import PermissionDenied

from labs_core.models import LabOrder, Specimen, SpecimenEvent
from labs_core.services import orders as order_service
from labs_core.services import specimens as specimen_service
from labs_core.workflows.errors import (
    InvalidState,
    NotFound,
    NotModifiable,
    OrderCancelled,
    ReasonRequired,
)


@pytest.mark.django_db
def test_accession_requires_payment(order_factory, three_tests):
    order = order_factory(tests=three_tests)
    with pytest.raises(NotModifiable):
        specimen_service.accession_specimen(order_id=order.pk, specimen_type="blood")
    assert Specimen.objects.count() == 0


@pytest.mark.django_db
def test_accession_on_cancelled_order_is_refused(paid_order_factory, three_tests):
    order = paid_order_factory(tests=three_tests)
    order_service.cancel_order(order_id=order.pk)
    with pytest.raises(OrderCancelled):
        specimen_service.accession_specimen(order_id=order.pk, specimen_type="blood")


@pytest.mark.django_db
def test_first_accession_moves_order_to_collecting(paid_order_factory, three_tests, user_technician):
    order = paid_order_factory(tests=three_tests)

    specimen = specimen_service.accession_specimen(
        order_id=order.pk,
        specimen_type="blood",
        container="EDTA tube",
        performed_by=user_technician,
    )

    assert specimen.status == "pending"
    assert specimen.accession_number.startswith("ACC-")
    assert list(specimen.events.values_list("event_type", flat=True)) == ["accessioned"]

    order.refresh_from_db()
    assert order.status == "collecting"


@pytest.mark.django_db
def test_accession_with_foreign_item_is_not_found(paid_order_factory, order_factory, three_tests):
    order = paid_order_factory(tests=three_tests)
    other = order_factory(tests=three_tests)
    with pytest.raises(NotFound):
        specimen_service.accession_specimen(
            order_id=order.pk,
            specimen_type="blood",
            order_item_id=other.items.first().pk,
        )


@pytest.mark.django_db
def test_order_collected_only_when_every_live_specimen_collected(paid_order_factory, three_tests):
    order = paid_order_factory(tests=three_tests)
    blood = specimen_service.accession_specimen(order_id=order.pk, specimen_type="blood")
    urine = specimen_service.accession_specimen(order_id=order.pk, specimen_type="urine")

    specimen_service.collect_specimen(specimen_id=blood.pk, appearance="Clear", volume_ml="3.0")
    order.refresh_from_db()
    assert order.status == "collecting"

    specimen_service.collect_specimen(specimen_id=urine.pk)
    order.refresh_from_db()
    assert order.status == "collected"


@pytest.mark.django_db
def test_rejected_specimen_holds_order_in_collecting(paid_order_factory, three_tests, user_technician):
    order = paid_order_factory(tests=three_tests)
    bad = specimen_service.accession_specimen(order_id=order.pk, specimen_type="blood")
    good = specimen_service.accession_specimen(order_id=order.pk, specimen_type="urine")
    specimen_service.reject_specimen(specimen_id=bad.pk, reason="Hemolyzed")

    specimen_service.collect_specimen(specimen_id=good.pk)

    order.refresh_from_db()
    assert order.status == "collecting"

    # Operator moves the order on by hand once the rejection is dealt with
    order_service.set_status(order_id=order.pk, new_status="collected", performed_by=user_technician)
    order.refresh_from_db()
    assert order.status == "collected"


@pytest.mark.django_db
def test_collect_records_metadata_and_event(paid_order_factory, three_tests, user_technician):
    order = paid_order_factory(tests=three_tests)
    specimen = specimen_service.accession_specimen(order_id=order.pk, specimen_type="blood")

    specimen_service.collect_specimen(
        specimen_id=specimen.pk,
        appearance="Dark red",
        volume_ml="4.50",
        notes="Left arm",
        performed_by=user_technician,
    )

    specimen.refresh_from_db()
    assert specimen.status == "collected"
    assert specimen.appearance == "Dark red"
    assert str(specimen.volume_ml) == "4.50"
    assert specimen.collection_notes == "Left arm"
    assert specimen.collected_by == user_technician
    event = specimen.events.get(event_type="collected")
    assert event.details["appearance"] == "Dark red"


@pytest.mark.django_db
def test_collect_twice_is_invalid_state(paid_order_factory, three_tests):
    order = paid_order_factory(tests=three_tests)
    specimen = specimen_service.accession_specimen(order_id=order.pk, specimen_type="blood")
    specimen_service.collect_specimen(specimen_id=specimen.pk)

    with pytest.raises(InvalidState):
        specimen_service.collect_specimen(specimen_id=specimen.pk)


@pytest.mark.django_db
def test_receive_only_from_collected(paid_order_factory, three_tests):
    order = paid_order_factory(tests=three_tests)
    specimen = specimen_service.accession_specimen(order_id=order.pk, specimen_type="blood")

    with pytest.raises(InvalidState):
        specimen_service.receive_specimen(specimen_id=specimen.pk)

    specimen_service.collect_specimen(specimen_id=specimen.pk)
    received = specimen_service.receive_specimen(specimen_id=specimen.pk, notes="Cold chain ok")

    assert received.status == "received"
    assert received.received_at is not None


@pytest.mark.django_db
def test_reject_requires_reason(paid_order_factory, three_tests):
    order = paid_order_factory(tests=three_tests)
    specimen = specimen_service.accession_specimen(order_id=order.pk, specimen_type="blood")

    with pytest.raises(ReasonRequired):
        specimen_service.reject_specimen(specimen_id=specimen.pk, reason="   ")

    specimen.refresh_from_db()
    assert specimen.status == "pending"


@pytest.mark.django_db
def test_rejected_specimen_is_terminal(paid_order_factory, three_tests):
    order = paid_order_factory(tests=three_tests)
    specimen = specimen_service.accession_specimen(order_id=order.pk, specimen_type="blood")
    specimen_service.reject_specimen(specimen_id=specimen.pk, reason="Clotted")

    with pytest.raises(InvalidState):
        specimen_service.reject_specimen(specimen_id=specimen.pk, reason="Again")
    with pytest.raises(InvalidState):
        specimen_service.collect_specimen(specimen_id=specimen.pk)


@pytest.mark.django_db
def test_reject_does_not_touch_order_status(collected_order_factory, three_tests):
    order = collected_order_factory(tests=three_tests)
    specimen = order.specimens.get()

    specimen_service.reject_specimen(specimen_id=specimen.pk, reason="Label mismatch")

    assert LabOrder.objects.get(pk=order.pk).status == "collected"


@pytest.mark.django_db
def test_specimen_events_are_append_only(paid_order_factory, three_tests):
    order = paid_order_factory(tests=three_tests)
    specimen = specimen_service.accession_specimen(order_id=order.pk, specimen_type="blood")
    event = SpecimenEvent.objects.get(specimen=specimen)

    event.details = {"tampered": True}
    with pytest.raises(PermissionDenied):
        event.save()
    with pytest.raises(PermissionDenied):
        event.delete()


@pytest.mark.django_db
def test_missing_specimen_is_not_found():
    with pytest.raises(NotFound):
        specimen_service.collect_specimen(specimen_id=987654)
