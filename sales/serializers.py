from decimal import Decimal

from django.db.models import Max, Sum
from rest_framework import serializers

from inventory.models import Product
from inventory.serializers import BarcodeSerializer
from sales.models import Client, Sale, SaleItem, SoldBarcodeLog
from sales.services import SaleLine


def _request_branch_id(serializer):
    request = serializer.context.get("request")
    user = getattr(request, "user", None)
    return getattr(user, "branch_id", None)


class ClientSerializer(serializers.ModelSerializer):
    class Meta:
        model = Client
        fields = ["id", "branch", "name", "phone", "address", "status", "created_at", "updated_at"]
        read_only_fields = ["id", "branch", "created_at", "updated_at"]


class ActiveClientSerializer(serializers.ModelSerializer):
    class Meta:
        model = Client
        fields = ["id", "name"]
        read_only_fields = fields


class ClientDetailSerializer(ClientSerializer):
    last_purchase_at = serializers.SerializerMethodField()
    total_spent = serializers.SerializerMethodField()

    class Meta(ClientSerializer.Meta):
        fields = ClientSerializer.Meta.fields + ["last_purchase_at", "total_spent"]

    def _sales_summary(self, obj):
        summary = getattr(obj, "_sales_summary", None)
        if summary is None:
            summary = obj.sales.aggregate(last_purchase_at=Max("date"), total_spent=Sum("total"))
            obj._sales_summary = summary
        return summary

    def get_last_purchase_at(self, obj):
        value = self._sales_summary(obj)["last_purchase_at"]
        return value.isoformat() if value else None

    def get_total_spent(self, obj):
        total = self._sales_summary(obj)["total_spent"] or Decimal("0")
        return str(total.quantize(Decimal("0.01")))


class SaleItemSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)

    class Meta:
        model = SaleItem
        fields = ["id", "product", "product_name", "quantity", "unit_price", "recorded_barcode"]
        read_only_fields = fields


class SoldBarcodeLogSerializer(serializers.ModelSerializer):
    class Meta:
        model = SoldBarcodeLog
        fields = ["id", "barcode", "product_name", "sale", "sold_at"]
        read_only_fields = fields


class SaleSerializer(serializers.ModelSerializer):
    client_name = serializers.CharField(source="client.name", read_only=True)
    user_name = serializers.CharField(source="user.username", read_only=True)
    items = SaleItemSerializer(many=True, read_only=True)
    sold_barcodes = SoldBarcodeLogSerializer(many=True, read_only=True)

    class Meta:
        model = Sale
        fields = [
            "id",
            "branch",
            "user",
            "user_name",
            "client",
            "client_name",
            "status",
            "total",
            "payment_method",
            "date",
            "items",
            "sold_barcodes",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class SaleListSerializer(SaleSerializer):
    class Meta(SaleSerializer.Meta):
        fields = [name for name in SaleSerializer.Meta.fields if name not in {"items", "sold_barcodes"}]
        read_only_fields = fields


class SaleItemInputSerializer(serializers.Serializer):
    product = serializers.PrimaryKeyRelatedField(queryset=Product.objects.all())
    quantity = serializers.IntegerField(min_value=1)
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.00"))
    # A stale barcode id is tolerated; the line is then recorded without one.
    barcode = serializers.UUIDField(required=False, allow_null=True)


class SaleCreateSerializer(serializers.Serializer):
    client = serializers.PrimaryKeyRelatedField(queryset=Client.objects.all())
    status = serializers.ChoiceField(
        choices=[Sale.Status.PENDING, Sale.Status.COMPLETED],
        default=Sale.Status.COMPLETED,
    )
    total = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.00"))
    payment_method = serializers.CharField(max_length=64)
    items = SaleItemInputSerializer(many=True, allow_empty=False)

    def validate(self, attrs):
        branch_id = _request_branch_id(self)
        if not branch_id:
            raise serializers.ValidationError("Authenticated user must belong to a branch to register sales.")
        if attrs["client"].branch_id != branch_id:
            raise serializers.ValidationError({"client": "Client must belong to your branch."})
        foreign = [index for index, item in enumerate(attrs["items"]) if item["product"].branch_id != branch_id]
        if foreign:
            raise serializers.ValidationError(
                {"items": {index: {"product": "Product must belong to your branch."} for index in foreign}}
            )
        return attrs

    def sale_lines(self):
        return [
            SaleLine(
                product_id=item["product"].id,
                quantity=item["quantity"],
                unit_price=item["unit_price"],
                barcode_id=item.get("barcode"),
            )
            for item in self.validated_data["items"]
        ]


class SaleStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Sale.Status.choices)


class CatalogProductSerializer(serializers.ModelSerializer):
    barcodes = BarcodeSerializer(many=True, read_only=True)

    class Meta:
        model = Product
        fields = ["id", "name", "sku", "sell_price", "stock", "unit", "image_url", "barcodes"]
        read_only_fields = fields
