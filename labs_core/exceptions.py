# labs_core/exceptions.py
import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from labs_core.workflows.errors import LabWorkflowError

logger = logging.getLogger(__name__)


def api_exception_handler(exc, context):
    """
    Render every API error as {"error": {"code", "message", ...}}.

    Lifecycle errors carry their own status and payload. DRF errors keep
    their status; field-level validation errors go under "details".
    Anything else propagates so Django returns a 500.
    """
    if isinstance(exc, LabWorkflowError):
        view = context.get("view")
        logger.debug(
            "%s rejected by %s: %s",
            exc.code,
            view.__class__.__name__ if view else "unknown view",
            exc.message,
        )
        return Response({"error": exc.as_dict()}, status=exc.status_code)

    resp = drf_exception_handler(exc, context)
    if resp is None:
        return None

    code = getattr(exc, "default_code", "api_error")
    if isinstance(resp.data, dict) and set(resp.data) == {"detail"}:
        error = {"code": code, "message": str(resp.data["detail"])}
    elif isinstance(resp.data, (dict, list)):
        error = {"code": code, "message": "Validation failed", "details": resp.data}
    else:
        error = {"code": code, "message": str(resp.data)}

    resp.data = {"error": error}
    return resp
