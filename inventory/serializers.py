from rest_framework import serializers

from inventory.models import Barcode, Category, Product, Supplier
from inventory.services import create_product, normalize_barcodes, update_product


def _request_branch_id(serializer):
    request = serializer.context.get("request")
    user = getattr(request, "user", None)
    return getattr(user, "branch_id", None)


class CategorySerializer(serializers.ModelSerializer):
    product_count = serializers.SerializerMethodField()

    class Meta:
        model = Category
        fields = ["id", "branch", "name", "color", "product_count", "created_at", "updated_at"]
        read_only_fields = ["id", "branch", "created_at", "updated_at"]

    def get_product_count(self, obj):
        count = getattr(obj, "product_count", None)
        if count is None:
            count = obj.products.count()
        return count


class ProductSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = Product
        fields = ["id", "name", "sku", "sell_price", "cost_price", "stock", "lifetime_stock", "unit"]
        read_only_fields = fields


class SupplierSerializer(serializers.ModelSerializer):
    product_count = serializers.SerializerMethodField()

    class Meta:
        model = Supplier
        fields = [
            "id",
            "branch",
            "name",
            "tax_id",
            "email",
            "phone",
            "description",
            "street",
            "number",
            "complement",
            "district",
            "city",
            "state",
            "postal_code",
            "product_count",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "branch", "created_at", "updated_at"]

    def get_product_count(self, obj):
        count = getattr(obj, "product_count", None)
        if count is None:
            count = obj.products.count()
        return count


class SupplierDetailSerializer(SupplierSerializer):
    products = ProductSummarySerializer(many=True, read_only=True)

    class Meta(SupplierSerializer.Meta):
        fields = SupplierSerializer.Meta.fields + ["products"]


class BarcodeSerializer(serializers.ModelSerializer):
    class Meta:
        model = Barcode
        fields = ["id", "code", "created_at"]
        read_only_fields = fields


class BarcodeLookupSerializer(serializers.ModelSerializer):
    product = ProductSummarySerializer(read_only=True)

    class Meta:
        model = Barcode
        fields = ["id", "code", "product", "created_at"]
        read_only_fields = fields


class ProductSerializer(serializers.ModelSerializer):
    supplier_name = serializers.CharField(source="supplier.name", read_only=True)
    categories = serializers.PrimaryKeyRelatedField(queryset=Category.objects.all(), many=True, required=False)
    barcodes = BarcodeSerializer(many=True, read_only=True)
    barcode_codes = serializers.ListField(
        child=serializers.CharField(max_length=128, allow_blank=True),
        write_only=True,
        required=False,
    )

    class Meta:
        model = Product
        fields = [
            "id",
            "branch",
            "supplier",
            "supplier_name",
            "categories",
            "name",
            "description",
            "sku",
            "sell_price",
            "cost_price",
            "stock",
            "lifetime_stock",
            "unit",
            "weight",
            "image_url",
            "barcodes",
            "barcode_codes",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "branch", "lifetime_stock", "created_at", "updated_at"]

    def validate_barcode_codes(self, value):
        codes = normalize_barcodes(value)
        duplicates = sorted({code for code in codes if codes.count(code) > 1})
        if duplicates:
            raise serializers.ValidationError(f"Duplicate barcodes in submission: {', '.join(duplicates)}.")

        branch_id = _request_branch_id(self)
        taken = Barcode.objects.filter(code__in=codes)
        if branch_id:
            taken = taken.filter(product__branch_id=branch_id)
        if self.instance is not None:
            taken = taken.exclude(product=self.instance)
        taken_codes = sorted(taken.values_list("code", flat=True))
        if taken_codes:
            raise serializers.ValidationError(f"Barcodes already assigned to another product: {', '.join(taken_codes)}.")
        return codes

    def validate(self, attrs):
        branch_id = _request_branch_id(self)
        if branch_id:
            supplier = attrs.get("supplier")
            if supplier is not None and supplier.branch_id != branch_id:
                raise serializers.ValidationError({"supplier": "Supplier must belong to your branch."})
            for category in attrs.get("categories") or []:
                if category.branch_id != branch_id:
                    raise serializers.ValidationError({"categories": "Categories must belong to your branch."})
        return attrs

    def create(self, validated_data):
        barcodes = validated_data.pop("barcode_codes", [])
        categories = validated_data.pop("categories", [])
        return create_product(barcodes=barcodes, categories=categories, **validated_data)

    def update(self, instance, validated_data):
        barcodes = validated_data.pop("barcode_codes", None)
        categories = validated_data.pop("categories", None)
        return update_product(instance, barcodes=barcodes, categories=categories, **validated_data)
