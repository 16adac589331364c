import logging
from dataclasses import dataclass
from decimal import Decimal

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from common.exceptions import DomainError
from inventory.services import decrement_stock, delete_barcode, find_barcode_with_product
from sales.models import Sale, SaleItem, SoldBarcodeLog

logger = logging.getLogger(__name__)


@dataclass
class SaleLine:
    product_id: object
    quantity: int
    unit_price: Decimal
    barcode_id: object | None = None


class SaleRegistrationError(DomainError):
    code = "validation_error"
    message = "Sale could not be registered."


def register_sale(*, branch, user, client, status, total, payment_method, items):
    """Persist a sale with its lines, decrement stock and consume barcode units.

    Everything happens in one transaction: a failure on any line rolls back the
    header, earlier lines, their stock decrements and barcode consumption.
    A barcode id that no longer resolves, or that belongs to another product
    or branch, is skipped and the line is recorded without a barcode.
    Stock is not checked before decrementing.
    """
    consumed = 0
    with transaction.atomic():
        sale = Sale.objects.create(
            branch=branch,
            user=user,
            client=client,
            status=status,
            total=total,
            payment_method=payment_method,
            date=timezone.now(),
        )

        for index, line in enumerate(items):
            barcode = None
            if line.barcode_id:
                barcode = find_barcode_with_product(
                    line.barcode_id, branch_id=branch.id, product_id=line.product_id
                )
                if barcode is None:
                    logger.warning(
                        "sale_barcode_missing",
                        extra={"sale_id": sale.id, "barcode_id": line.barcode_id, "product_id": line.product_id},
                    )

            SaleItem.objects.create(
                sale=sale,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                recorded_barcode=barcode.code if barcode else None,
            )

            if decrement_stock(line.product_id, line.quantity) == 0:
                raise SaleRegistrationError(
                    "product_not_found",
                    {"items": {index: {"product": f"Product {line.product_id} does not exist."}}},
                )

            if barcode is not None:
                SoldBarcodeLog.objects.create(
                    barcode=barcode.code,
                    product_name=barcode.product.name,
                    sale=sale,
                    sold_at=timezone.now(),
                )
                delete_barcode(barcode.id)
                consumed += 1

    logger.info(
        "sale_registered",
        extra={
            "sale_id": sale.id,
            "branch_id": branch.id,
            "line_count": len(items),
            "consumed_barcodes": consumed,
        },
    )
    return sale


def update_sale_status(sale, status):
    """Move a sale to any other status. Stock and barcodes are left alone."""
    previous_status = sale.status
    sale.status = status
    sale.save(update_fields=["status", "updated_at"])
    logger.info(
        "sale_status_updated",
        extra={"sale_id": sale.id, "previous_status": previous_status, "status": status},
    )
    return sale


def sold_units_total(branch_ids):
    total = SaleItem.objects.filter(sale__branch_id__in=branch_ids).aggregate(total=Sum("quantity"))["total"]
    return total or 0
