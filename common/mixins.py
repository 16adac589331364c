from django.db import transaction
from rest_framework.exceptions import ValidationError

from common.audit import create_audit_log_from_request
from core.models import Branch


def scoped_queryset_for_user(queryset, user, field="branch_id"):
    if not user.is_authenticated:
        return queryset.none()

    if user.is_superuser:
        return queryset

    if getattr(user, "branch_id", None):
        return queryset.filter(**{field: user.branch_id})

    return queryset.none()


def branch_ids_for_user(user):
    if not user.is_authenticated:
        return []
    if user.is_superuser:
        return list(Branch.objects.values_list("id", flat=True))
    if getattr(user, "branch_id", None):
        return [user.branch_id]
    return []


class BranchScopedQuerysetMixin:
    """Limit the viewset queryset to the caller's branch (superusers see every branch)."""

    branch_field = "branch_id"

    def get_queryset(self):
        return scoped_queryset_for_user(super().get_queryset(), self.request.user, field=self.branch_field)


class AuditedMutationMixin:
    """Stamp new records with the caller's branch and write an audit row per mutation."""

    audit_entity = None

    def audit_branch(self, instance):
        return instance.branch

    def save_new(self, serializer):
        user = self.request.user
        if not getattr(user, "branch_id", None):
            raise ValidationError("Authenticated user must belong to a branch to create records.")
        return serializer.save(branch_id=user.branch_id)

    def _audit(self, *, action, instance_id, branch, before_snapshot=None, after_snapshot=None):
        create_audit_log_from_request(
            self.request,
            action=f"{self.audit_entity}.{action}",
            entity=self.audit_entity,
            entity_id=instance_id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
            branch=branch,
        )

    def perform_create(self, serializer):
        instance = self.save_new(serializer)
        self._audit(
            action="create",
            instance_id=instance.id,
            branch=self.audit_branch(instance),
            after_snapshot=self.get_serializer(instance).data,
        )

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        self._audit(
            action="update",
            instance_id=instance.id,
            branch=self.audit_branch(instance),
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(instance).data,
        )

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        instance_id, branch = instance.id, self.audit_branch(instance)
        with transaction.atomic():
            instance.delete()
            self._audit(action="delete", instance_id=instance_id, branch=branch, before_snapshot=before_snapshot)
