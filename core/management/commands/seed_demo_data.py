from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from core.models import Branch
from finance.models import Expense
from inventory.models import Barcode, Category, Product, Supplier
from inventory.services import create_product
from sales.models import Client, Sale
from sales.services import SaleLine, register_sale


class Command(BaseCommand):
    help = "Seed demo catalog, client, expense and sale data for local development."

    def handle(self, *args, **options):
        User = get_user_model()

        branch, _ = Branch.objects.get_or_create(
            code="MAIN",
            defaults={"name": "Main Store", "timezone": "UTC", "is_active": True},
        )

        admin_user, admin_created = User.objects.get_or_create(
            username="admin",
            defaults={
                "email": "admin@example.com",
                "role": User.Role.ADMIN,
                "branch": branch,
                "is_staff": True,
                "is_superuser": True,
                "is_active": True,
            },
        )
        if admin_created:
            admin_user.set_password("admin1234")
            admin_user.save(update_fields=["password"])

        supervisor_user, supervisor_created = User.objects.get_or_create(
            username="supervisor",
            defaults={
                "email": "supervisor@example.com",
                "role": User.Role.SUPERVISOR,
                "branch": branch,
                "is_active": True,
            },
        )
        if supervisor_created:
            supervisor_user.set_password("supervisor1234")
            supervisor_user.save(update_fields=["password"])

        cashier_user, cashier_created = User.objects.get_or_create(
            username="cashier",
            defaults={
                "email": "cashier@example.com",
                "role": User.Role.CASHIER,
                "branch": branch,
                "is_active": True,
            },
        )
        if cashier_created:
            cashier_user.set_password("cashier1234")
            cashier_user.save(update_fields=["password"])

        shirts, _ = Category.objects.get_or_create(branch=branch, name="Shirts", defaults={"color": "#1e88e5"})
        pants, _ = Category.objects.get_or_create(branch=branch, name="Pants", defaults={"color": "#43a047"})

        supplier, _ = Supplier.objects.get_or_create(
            branch=branch,
            name="Local Textiles",
            defaults={"tax_id": "12.345.678/0001-90", "email": "sales@textiles.example.com", "city": "Springfield"},
        )

        shirt = Product.objects.filter(branch=branch, sku="SHIRT-BLUE-M").first()
        if shirt is None:
            shirt = create_product(
                branch=branch,
                supplier=supplier,
                name="Blue Shirt M",
                sku="SHIRT-BLUE-M",
                sell_price=Decimal("59.90"),
                cost_price=Decimal("25.00"),
                stock=3,
                unit="piece",
                categories=[shirts],
                barcodes=["7890000000011", "7890000000012", "7890000000013"],
            )

        jeans = Product.objects.filter(branch=branch, sku="JEANS-32").first()
        if jeans is None:
            jeans = create_product(
                branch=branch,
                supplier=supplier,
                name="Jeans 32",
                sku="JEANS-32",
                sell_price=Decimal("129.90"),
                cost_price=Decimal("60.00"),
                stock=5,
                unit="piece",
                categories=[pants],
            )

        client, _ = Client.objects.get_or_create(
            branch=branch,
            name="Walk-in Customer",
            defaults={"phone": "+100000000", "address": "Main Street 1"},
        )

        Expense.objects.get_or_create(
            branch=branch,
            name="Shopping bags",
            defaults={"description": "Pack of 500", "value": Decimal("45.00")},
        )

        if not Sale.objects.filter(branch=branch).exists():
            barcode = Barcode.objects.filter(product=shirt).order_by("code").first()
            register_sale(
                branch=branch,
                user=cashier_user,
                client=client,
                status=Sale.Status.COMPLETED,
                total=Decimal("189.80"),
                payment_method="cash",
                items=[
                    SaleLine(shirt.id, 1, shirt.sell_price, barcode.id if barcode else None),
                    SaleLine(jeans.id, 1, jeans.sell_price),
                ],
            )

        self.stdout.write(self.style.SUCCESS("Demo data seeded successfully."))
        self.stdout.write("Credentials: admin/admin1234, supervisor/supervisor1234, cashier/cashier1234")
        self.stdout.write(f"Branch: {branch.code}")
