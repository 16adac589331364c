import logging

from django.db import DatabaseError, connections
from django.utils.dateparse import parse_datetime
from rest_framework import viewsets
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenObtainPairView

from common.mixins import AuditedMutationMixin, scoped_queryset_for_user
from common.permissions import RoleCapabilityPermission, user_has_capability
from core.models import AuditLog, Branch
from core.serializers import (
    AuditLogSerializer,
    BranchSerializer,
    CurrentUserSerializer,
    EmailOrUsernameTokenObtainPairSerializer,
)

logger = logging.getLogger(__name__)

AUDIT_LOG_FILTERS = ("actor_id", "action", "entity")


class EmailOrUsernameTokenObtainPairView(TokenObtainPairView):
    serializer_class = EmailOrUsernameTokenObtainPairSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"


class CurrentUserView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(CurrentUserSerializer(request.user).data)


class BranchViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    """Stores. Admins manage every branch; other roles only see their own."""

    queryset = Branch.objects.all().order_by("name")
    serializer_class = BranchSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "branch.read",
        "retrieve": "branch.read",
        "create": "admin.records.manage",
        "update": "admin.records.manage",
        "partial_update": "admin.records.manage",
        "destroy": "admin.records.manage",
    }
    audit_entity = "branch"

    def get_queryset(self):
        user = self.request.user
        if user_has_capability(user, "admin.records.manage"):
            return super().get_queryset()
        return scoped_queryset_for_user(super().get_queryset(), user, field="id")

    def save_new(self, serializer):
        return serializer.save()

    def audit_branch(self, instance):
        # The audit row cannot point at a branch that is being deleted.
        return None if self.action == "destroy" else instance


class AuditLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = AuditLog.objects.select_related("actor", "branch").order_by("-created_at")
    serializer_class = AuditLogSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "admin.records.manage", "retrieve": "admin.records.manage"}

    def get_queryset(self):
        params = self.request.query_params
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user)

        start_date = parse_datetime(params.get("start_date", ""))
        end_date = parse_datetime(params.get("end_date", ""))
        if start_date:
            qs = qs.filter(created_at__gte=start_date)
        if end_date:
            qs = qs.filter(created_at__lte=end_date)

        lookups = {name: params[name] for name in AUDIT_LOG_FILTERS if params.get(name)}
        return qs.filter(**lookups)


@api_view(["GET"])
@permission_classes([AllowAny])
def healthz(request):
    return Response({"status": "ok", "request_id": getattr(request, "request_id", None)})


@api_view(["GET"])
@permission_classes([AllowAny])
def readyz(request):
    try:
        with connections["default"].cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except DatabaseError as exc:
        logger.exception("readiness_check_failed")
        return Response(
            {"status": "error", "request_id": getattr(request, "request_id", None), "detail": str(exc)},
            status=503,
        )

    return Response({"status": "ready", "request_id": getattr(request, "request_id", None)})
