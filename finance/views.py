from rest_framework import mixins, viewsets
from rest_framework.permissions import IsAuthenticated

from common.mixins import AuditedMutationMixin, BranchScopedQuerysetMixin
from common.permissions import RoleCapabilityPermission
from finance.models import Expense
from finance.serializers import ExpenseSerializer


class ExpenseViewSet(
    AuditedMutationMixin,
    BranchScopedQuerysetMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    """Operating expenses. Entries are recorded or removed, never edited."""

    queryset = Expense.objects.all().order_by("-date")
    serializer_class = ExpenseSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "expenses.view",
        "retrieve": "expenses.view",
        "create": "expenses.manage",
        "destroy": "expenses.delete",
    }
    audit_entity = "expense"
