# labs_core/views_workflows.py
from django.shortcuts import get_object_or_404
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import LabOrder
from .workflows import allowed_next_states, is_terminal, workflow_definition


class WorkflowDefinitionView(APIView):
    """
    Returns full workflow definition for a given kind ("order" or "specimen").
    """

    permission_classes = [IsAuthenticated]

    def get(self, request, kind: str):
        try:
            data = workflow_definition(kind)
        except ValueError as e:
            raise ValidationError(str(e))
        return Response(data)


class WorkflowNextStatesView(APIView):
    """
    Returns allowed next states given current state.
    """

    permission_classes = [IsAuthenticated]

    def get(self, request, kind: str):
        current = request.query_params.get("current")
        if not current:
            raise ValidationError("current query parameter is required.")

        try:
            next_states = allowed_next_states(kind, current)
        except ValueError as e:
            raise ValidationError(str(e))

        return Response(
            {
                "kind": kind,
                "current": current,
                "allowed_next": next_states,
                "terminal": len(next_states) == 0,
            }
        )


class OrderAllowedView(APIView):
    """
    GET /labs/orders/<pk>/allowed/
    """

    permission_classes = [IsAuthenticated]

    def get(self, request, pk: int):
        order = get_object_or_404(LabOrder, pk=pk)
        return Response(
            {
                "order_id": order.pk,
                "current": order.status,
                "allowed": allowed_next_states("order", order.status),
                "terminal": is_terminal("order", order.status),
            }
        )
