from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.mixins import (
    AuditedMutationMixin,
    BranchScopedQuerysetMixin,
    branch_ids_for_user,
    scoped_queryset_for_user,
)
from common.pagination import CheckoutResultsSetPagination
from common.permissions import RoleCapabilityPermission
from inventory.models import Product
from inventory.services import search_products
from sales.models import Client, Sale, SoldBarcodeLog
from sales.serializers import (
    ActiveClientSerializer,
    CatalogProductSerializer,
    ClientDetailSerializer,
    ClientSerializer,
    SaleCreateSerializer,
    SaleListSerializer,
    SaleSerializer,
    SaleStatusSerializer,
    SoldBarcodeLogSerializer,
)
from sales.services import register_sale, sold_units_total, update_sale_status


class ClientViewSet(AuditedMutationMixin, BranchScopedQuerysetMixin, viewsets.ModelViewSet):
    queryset = Client.objects.all().order_by("-created_at")
    serializer_class = ClientSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "clients.view",
        "retrieve": "clients.view",
        "active": "clients.view",
        "create": "clients.manage",
        "update": "clients.manage",
        "partial_update": "clients.manage",
        "destroy": "clients.delete",
    }
    audit_entity = "client"

    def get_serializer_class(self):
        if self.action == "retrieve":
            return ClientDetailSerializer
        if self.action == "active":
            return ActiveClientSerializer
        return super().get_serializer_class()

    @action(detail=False, methods=["get"], url_path="active")
    def active(self, request):
        queryset = self.get_queryset().filter(status=Client.Status.ACTIVE).order_by("name")
        return Response(self.get_serializer(queryset, many=True).data)


class SaleViewSet(
    AuditedMutationMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    BranchScopedQuerysetMixin,
    viewsets.GenericViewSet,
):
    queryset = Sale.objects.select_related("client", "user").order_by("-date")
    serializer_class = SaleSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "sales.view",
        "retrieve": "sales.view",
        "create": "sales.register",
        "change_status": "sales.status.update",
        "catalog": "sales.register",
        "sold_units": "sales.view",
    }
    audit_entity = "sale"

    def get_queryset(self):
        queryset = super().get_queryset()
        if self.action == "retrieve":
            queryset = queryset.prefetch_related("items__product", "sold_barcodes")
        if self.action == "list":
            status_filter = self.request.query_params.get("status")
            client_id = self.request.query_params.get("client")
            if status_filter:
                queryset = queryset.filter(status=status_filter)
            if client_id:
                queryset = queryset.filter(client_id=client_id)
        return queryset

    def get_serializer_class(self):
        if self.action == "list":
            return SaleListSerializer
        if self.action == "create":
            return SaleCreateSerializer
        if self.action == "change_status":
            return SaleStatusSerializer
        return super().get_serializer_class()

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        sale = register_sale(
            branch=request.user.branch,
            user=request.user,
            client=data["client"],
            status=data["status"],
            total=data["total"],
            payment_method=data["payment_method"],
            items=serializer.sale_lines(),
        )

        sale = self.get_queryset().prefetch_related("items__product", "sold_barcodes").get(id=sale.id)
        payload = SaleSerializer(sale, context=self.get_serializer_context()).data
        self._audit(action="create", instance_id=sale.id, branch=sale.branch, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="status")
    def change_status(self, request, pk=None):
        sale = self.get_object()
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        previous_status = sale.status
        update_sale_status(sale, serializer.validated_data["status"])
        self._audit(
            action="status.update",
            instance_id=sale.id,
            branch=sale.branch,
            before_snapshot={"status": previous_status},
            after_snapshot={"status": sale.status},
        )
        return Response(SaleListSerializer(sale, context=self.get_serializer_context()).data)

    @action(detail=False, methods=["get"], url_path="catalog")
    def catalog(self, request):
        queryset = scoped_queryset_for_user(
            Product.objects.prefetch_related("barcodes").order_by("name"),
            request.user,
        )
        queryset = search_products(queryset, term=request.query_params.get("search"))

        paginator = CheckoutResultsSetPagination()
        page = paginator.paginate_queryset(queryset, request, view=self)
        return paginator.get_paginated_response(CatalogProductSerializer(page, many=True).data)

    @action(detail=False, methods=["get"], url_path="sold-units")
    def sold_units(self, request):
        return Response({"sold_units": sold_units_total(branch_ids_for_user(request.user))})


class SoldBarcodeLogViewSet(BranchScopedQuerysetMixin, viewsets.ReadOnlyModelViewSet):
    queryset = SoldBarcodeLog.objects.all().order_by("-sold_at")
    serializer_class = SoldBarcodeLogSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "sales.view", "retrieve": "sales.view"}
    branch_field = "sale__branch_id"

    def get_queryset(self):
        queryset = super().get_queryset()
        search = self.request.query_params.get("search")
        if search:
            queryset = queryset.filter(barcode__icontains=search)
        return queryset
