import uuid

from django.db import models
from django.utils import timezone

from core.models import Branch, User
from inventory.models import Product


class Client(models.Model):
    class Status(models.TextChoices):
        ACTIVE = "ACTIVE", "Active"
        INACTIVE = "INACTIVE", "Inactive"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    branch = models.ForeignKey(Branch, on_delete=models.PROTECT)
    name = models.CharField(max_length=255)
    phone = models.CharField(max_length=64, blank=True, default="")
    address = models.CharField(max_length=500, blank=True, default="")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ACTIVE)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["branch", "created_at"], name="client_branch_created_idx"),
            models.Index(fields=["branch", "status", "name"], name="client_branch_status_idx"),
        ]

    def __str__(self):
        return self.name


class Sale(models.Model):
    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        COMPLETED = "COMPLETED", "Completed"
        CANCELED = "CANCELED", "Canceled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    branch = models.ForeignKey(Branch, on_delete=models.PROTECT)
    user = models.ForeignKey(User, on_delete=models.PROTECT)
    client = models.ForeignKey(Client, on_delete=models.PROTECT, related_name="sales")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    # Caller-supplied; not recomputed from the lines.
    total = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(max_length=64)
    date = models.DateTimeField(default=timezone.now)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["branch", "date"], name="sale_branch_date_idx"),
            models.Index(fields=["status", "date"], name="sale_status_date_idx"),
            models.Index(fields=["client", "date"], name="sale_client_date_idx"),
        ]


class SaleItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    sale = models.ForeignKey(Sale, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="sale_items")
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    recorded_barcode = models.CharField(max_length=128, null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["sale"], name="saleitem_sale_idx"),
            models.Index(fields=["product"], name="saleitem_product_idx"),
        ]


class SoldBarcodeLog(models.Model):
    """Permanent record of a consumed barcode unit.

    Holds plain-text copies of the code and product name rather than foreign
    keys to the barcode or product, so the row survives both being changed or
    removed.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    barcode = models.CharField(max_length=128)
    product_name = models.CharField(max_length=255)
    sale = models.ForeignKey(Sale, on_delete=models.PROTECT, related_name="sold_barcodes")
    sold_at = models.DateTimeField(default=timezone.now)

    class Meta:
        indexes = [
            models.Index(fields=["barcode"], name="soldbarcode_code_idx"),
            models.Index(fields=["sold_at"], name="soldbarcode_sold_at_idx"),
        ]
