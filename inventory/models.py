import uuid

from django.db import models

from core.models import Branch


class Category(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    branch = models.ForeignKey(Branch, on_delete=models.PROTECT)
    name = models.CharField(max_length=255)
    color = models.CharField(max_length=32, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "categories"
        indexes = [
            models.Index(fields=["branch", "created_at"], name="category_branch_created_idx"),
        ]

    def __str__(self):
        return self.name


class Supplier(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    branch = models.ForeignKey(Branch, on_delete=models.PROTECT)
    name = models.CharField(max_length=255)
    tax_id = models.CharField(max_length=32, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    phone = models.CharField(max_length=64, blank=True, default="")
    description = models.TextField(blank=True, default="")
    street = models.CharField(max_length=255, blank=True, default="")
    number = models.CharField(max_length=32, blank=True, default="")
    complement = models.CharField(max_length=255, blank=True, default="")
    district = models.CharField(max_length=128, blank=True, default="")
    city = models.CharField(max_length=128, blank=True, default="")
    state = models.CharField(max_length=64, blank=True, default="")
    postal_code = models.CharField(max_length=16, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["branch", "name"], name="supplier_branch_name_idx"),
            models.Index(fields=["branch", "created_at"], name="supplier_branch_created_idx"),
        ]

    def __str__(self):
        return self.name


class Product(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    branch = models.ForeignKey(Branch, on_delete=models.PROTECT)
    supplier = models.ForeignKey(Supplier, on_delete=models.PROTECT, related_name="products")
    categories = models.ManyToManyField(Category, blank=True, related_name="products")
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    sku = models.CharField(max_length=64, blank=True, default="")
    sell_price = models.DecimalField(max_digits=12, decimal_places=2)
    cost_price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    # Current sellable units; sales decrement it without a floor.
    stock = models.IntegerField(default=0)
    # Units ever received. Set at creation, never decremented.
    lifetime_stock = models.IntegerField(default=0)
    unit = models.CharField(max_length=32, blank=True, default="")
    weight = models.DecimalField(max_digits=10, decimal_places=3, null=True, blank=True)
    image_url = models.URLField(max_length=500, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["branch", "name"], name="product_branch_name_idx"),
            models.Index(fields=["branch", "sku"], name="product_branch_sku_idx"),
            models.Index(fields=["branch", "created_at"], name="product_branch_created_idx"),
        ]

    def __str__(self):
        return self.name


class Barcode(models.Model):
    """One physical unit of a product. The row is deleted when the unit is sold."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="barcodes")
    code = models.CharField(max_length=128)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["code"], name="barcode_code_idx"),
            models.Index(fields=["product", "created_at"], name="barcode_product_created_idx"),
        ]

    def __str__(self):
        return self.code
