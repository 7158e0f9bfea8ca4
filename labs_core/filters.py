# labs_core/filters.py
import django_filters as df

from .models import LabOrder, LabOrderStatus, LabPriority, PaymentStatus, Specimen


class LabOrderFilter(df.FilterSet):
    status = df.MultipleChoiceFilter(choices=LabOrderStatus.choices)
    payment_status = df.ChoiceFilter(choices=PaymentStatus.choices)
    priority = df.ChoiceFilter(choices=LabPriority.choices)
    patient_ref = df.CharFilter(field_name="patient_ref", lookup_expr="iexact")
    order_number = df.CharFilter(field_name="order_number", lookup_expr="icontains")
    placed_at = df.DateFromToRangeFilter()

    class Meta:
        model = LabOrder
        fields = ["status", "payment_status", "priority", "patient_ref", "order_number", "placed_at"]


class SpecimenFilter(df.FilterSet):
    order = df.NumberFilter(field_name="order_id")
    accession_number = df.CharFilter(field_name="accession_number", lookup_expr="icontains")

    class Meta:
        model = Specimen
        fields = ["order", "status", "specimen_type", "accession_number"]
