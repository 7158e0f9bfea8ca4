from labs_core.models.core import AccessionCounter, AuditLog, TimeStampedModel
from labs_core.models.catalog import (
    LabPanel,
    LabPanelItem,
    LabSection,
    LabTest,
    SpecimenType,
)
from labs_core.models.lab import (
    AbnormalFlag,
    LabOrder,
    LabOrderItem,
    LabOrderStatus,
    LabOrderTransition,
    LabPriority,
    LabResult,
    LabResultToken,
    OrderItemStatus,
    PaymentStatus,
    Specimen,
    SpecimenEvent,
    SpecimenEventType,
    SpecimenStatus,
)

__all__ = [
    "AbnormalFlag",
    "AccessionCounter",
    "AuditLog",
    "LabOrder",
    "LabOrderItem",
    "LabOrderStatus",
    "LabOrderTransition",
    "LabPanel",
    "LabPanelItem",
    "LabPriority",
    "LabResult",
    "LabResultToken",
    "LabSection",
    "LabTest",
    "OrderItemStatus",
    "PaymentStatus",
    "Specimen",
    "SpecimenEvent",
    "SpecimenEventType",
    "SpecimenStatus",
    "SpecimenType",
    "TimeStampedModel",
]
