# labs_core/workflows/errors.py

"""
Structured lifecycle errors.

Every lifecycle service raises one of these before issuing any write.
The API layer renders them through labs_core.exceptions.api_exception_handler.

This module MUST remain free of Django, serializers, or persistence logic.
"""

from typing import Any, Dict, List, Optional


class LabWorkflowError(Exception):
    """
    Base class for lab lifecycle failures.

    `code` is the stable error kind clients switch on, `extra` is merged
    into the error payload (for example the allowed next states).
    """

    code = "LabWorkflowError"
    status_code = 409
    default_message = "Lab workflow operation rejected."

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra: Dict[str, Any] = extra
        super().__init__(self.message)

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        payload.update(self.extra)
        return payload


class NotFound(LabWorkflowError):
    code = "NotFound"
    status_code = 404
    default_message = "Not found."


class InvalidTransition(LabWorkflowError):
    code = "InvalidTransition"
    default_message = "Status transition not permitted."

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        current: str = "",
        target: str = "",
        allowed: Optional[List[str]] = None,
    ):
        super().__init__(
            message,
            current=current,
            target=target,
            allowed=list(allowed or []),
        )

    @property
    def allowed(self) -> List[str]:
        return self.extra["allowed"]


class NotModifiable(LabWorkflowError):
    code = "NotModifiable"
    default_message = "The record is in a status that forbids this change."


class InvalidState(LabWorkflowError):
    code = "InvalidState"
    default_message = "The specimen is not in a valid state for this action."


class AlreadyPaid(LabWorkflowError):
    code = "AlreadyPaid"
    default_message = "Order payment has already been confirmed."


class AlreadyCancelled(LabWorkflowError):
    code = "AlreadyCancelled"
    default_message = "Order is already cancelled."


class AlreadyVerified(LabWorkflowError):
    code = "AlreadyVerified"
    default_message = "Result is already verified."


class AlreadyReleased(LabWorkflowError):
    code = "AlreadyReleased"
    default_message = "Results have already been released."


class OrderCancelled(LabWorkflowError):
    code = "OrderCancelled"
    default_message = "The order is cancelled."


class ReleasedImmutable(LabWorkflowError):
    code = "ReleasedImmutable"
    default_message = "Cannot cancel a released order."


class RequiresManualCancellation(LabWorkflowError):
    code = "RequiresManualCancellation"
    default_message = "Order has lab work in progress. Please contact lab management."


class DuplicateResult(LabWorkflowError):
    code = "DuplicateResult"
    default_message = "Result already exists for this item. Use update instead."


class DuplicateTest(LabWorkflowError):
    code = "DuplicateTest"
    default_message = "Test is already in this order."


class ResultExists(LabWorkflowError):
    code = "ResultExists"
    default_message = "Cannot remove an item that has results."


class ResultReleased(LabWorkflowError):
    code = "ResultReleased"
    default_message = "Cannot update a released result."


class LastItemProtected(LabWorkflowError):
    code = "LastItemProtected"
    default_message = "Cannot remove the last item. Cancel the order instead."


class NothingToAdd(LabWorkflowError):
    code = "NothingToAdd"
    status_code = 400
    default_message = "Nothing to add to the order."


class ReasonRequired(LabWorkflowError):
    code = "ReasonRequired"
    status_code = 400
    default_message = "A rejection reason is required."


class NotFullyVerified(LabWorkflowError):
    code = "NotFullyVerified"
    default_message = "Not all results have been verified."

    def __init__(self, message: Optional[str] = None, *, unverified_count: int = 0):
        super().__init__(message, unverified_count=unverified_count)

    @property
    def unverified_count(self) -> int:
        return self.extra["unverified_count"]


class TokenInactive(LabWorkflowError):
    code = "TokenInactive"
    status_code = 403
    default_message = "This access link has been deactivated."


class TokenExpired(LabWorkflowError):
    code = "TokenExpired"
    status_code = 410
    default_message = "This access link has expired."


class ConcurrentUpdate(LabWorkflowError):
    code = "ConcurrentUpdate"
    default_message = "The record changed concurrently; reload and retry."
