from decimal import Decimal, ROUND_HALF_UP

from django.db import transaction
from django.db.models import F, Q, Sum

from inventory.models import Barcode, Product

PERCENT_QUANT = Decimal("0.01")


def normalize_barcodes(codes):
    """Trim submitted codes and drop the blank ones, preserving order."""
    return [code.strip() for code in codes or [] if code and code.strip()]


def _replace_barcodes(product, codes):
    Barcode.objects.filter(product=product).delete()
    Barcode.objects.bulk_create([Barcode(product=product, code=code) for code in normalize_barcodes(codes)])


@transaction.atomic
def create_product(*, barcodes=None, categories=None, **fields):
    stock = fields.get("stock", 0)
    product = Product.objects.create(lifetime_stock=stock, **fields)
    if categories:
        product.categories.set(categories)
    _replace_barcodes(product, barcodes)
    return product


@transaction.atomic
def update_product(product, *, barcodes=None, categories=None, **fields):
    """Overwrite product fields; barcodes and categories are replaced when given.

    `lifetime_stock` is never touched here, even when `stock` changes.
    """
    fields.pop("lifetime_stock", None)
    for name, value in fields.items():
        setattr(product, name, value)
    product.save()

    if categories is not None:
        product.categories.set(categories)
    if barcodes is not None:
        _replace_barcodes(product, barcodes)
    return product


def find_barcode_with_product(barcode_id, *, branch_id, product_id):
    """Resolve a barcode unit only when it belongs to `product_id` in `branch_id`."""
    return (
        Barcode.objects.select_related("product")
        .filter(id=barcode_id, product_id=product_id, product__branch_id=branch_id)
        .first()
    )



def decrement_stock(product_id, quantity):
    """Subtract `quantity` from the product's stock in a single UPDATE.

    No floor is applied, so stock may become negative. Returns the number of
    rows updated (0 when the product does not exist).
    """
    return Product.objects.filter(id=product_id).update(stock=F("stock") - quantity)


def delete_barcode(barcode_id):
    deleted, _ = Barcode.objects.filter(id=barcode_id).delete()
    return deleted


def search_products(queryset, term=None, category_id=None):
    if category_id:
        queryset = queryset.filter(categories__id=category_id)
    if term:
        queryset = queryset.filter(
            Q(name__icontains=term) | Q(sku__icontains=term) | Q(barcodes__code__contains=term)
        )
    return queryset.distinct()


def lifetime_stock_total(branch_ids):
    total = Product.objects.filter(branch_id__in=branch_ids).aggregate(total=Sum("lifetime_stock"))["total"]
    return total or 0


def current_stock_total(branch_ids):
    total = Product.objects.filter(branch_id__in=branch_ids).aggregate(total=Sum("stock"))["total"]
    return total or 0


def sell_through_percentage(sold_units, lifetime_units):
    if not lifetime_units:
        return Decimal("0.00")
    pct = Decimal(sold_units) / Decimal(lifetime_units) * Decimal("100")
    return pct.quantize(PERCENT_QUANT, rounding=ROUND_HALF_UP)
