from django.db.models import Count, Q
from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.mixins import AuditedMutationMixin, BranchScopedQuerysetMixin, branch_ids_for_user
from common.permissions import RoleCapabilityPermission
from inventory.models import Barcode, Category, Product, Supplier
from inventory.serializers import (
    BarcodeLookupSerializer,
    CategorySerializer,
    ProductSerializer,
    SupplierDetailSerializer,
    SupplierSerializer,
)
from inventory.services import current_stock_total, lifetime_stock_total, search_products

CATALOG_PERMISSIONS = {
    "list": "catalog.view",
    "retrieve": "catalog.view",
    "create": "catalog.manage",
    "update": "catalog.manage",
    "partial_update": "catalog.manage",
    "destroy": "catalog.manage",
}


class CategoryViewSet(AuditedMutationMixin, BranchScopedQuerysetMixin, viewsets.ModelViewSet):
    queryset = Category.objects.annotate(product_count=Count("products")).order_by("-created_at")
    serializer_class = CategorySerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = CATALOG_PERMISSIONS
    audit_entity = "category"


class SupplierViewSet(AuditedMutationMixin, BranchScopedQuerysetMixin, viewsets.ModelViewSet):
    queryset = Supplier.objects.annotate(product_count=Count("products")).order_by("name")
    serializer_class = SupplierSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = CATALOG_PERMISSIONS
    audit_entity = "supplier"

    def get_serializer_class(self):
        if self.action == "retrieve":
            return SupplierDetailSerializer
        return super().get_serializer_class()

    def get_queryset(self):
        queryset = super().get_queryset()
        if self.action == "retrieve":
            queryset = queryset.prefetch_related("products")
        search = self.request.query_params.get("search")
        if search:
            queryset = queryset.filter(Q(name__icontains=search) | Q(tax_id__icontains=search) | Q(email__icontains=search))
        return queryset


class ProductViewSet(AuditedMutationMixin, BranchScopedQuerysetMixin, viewsets.ModelViewSet):
    queryset = Product.objects.select_related("supplier").prefetch_related("barcodes", "categories").order_by("name")
    serializer_class = ProductSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {**CATALOG_PERMISSIONS, "count": "catalog.view", "stock_totals": "catalog.view"}
    audit_entity = "product"

    def get_queryset(self):
        queryset = super().get_queryset()
        if self.action == "list":
            queryset = search_products(
                queryset,
                term=self.request.query_params.get("search"),
                category_id=self.request.query_params.get("category"),
            )
        return queryset

    @action(detail=False, methods=["get"], url_path="count")
    def count(self, request):
        return Response({"count": self.get_queryset().count()})

    @action(detail=False, methods=["get"], url_path="stock-totals")
    def stock_totals(self, request):
        branch_ids = branch_ids_for_user(request.user)
        return Response(
            {
                "lifetime_stock": lifetime_stock_total(branch_ids),
                "current_stock": current_stock_total(branch_ids),
            }
        )


class BarcodeViewSet(BranchScopedQuerysetMixin, viewsets.ReadOnlyModelViewSet):
    """Active (unsold) barcode units; `?code=` resolves a scanned code."""

    queryset = Barcode.objects.select_related("product").order_by("-created_at")
    serializer_class = BarcodeLookupSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "catalog.view", "retrieve": "catalog.view"}
    branch_field = "product__branch_id"

    def get_queryset(self):
        queryset = super().get_queryset()
        code = self.request.query_params.get("code")
        search = self.request.query_params.get("search")
        if code:
            queryset = queryset.filter(code=code)
        elif search:
            queryset = queryset.filter(code__contains=search)
        return queryset
