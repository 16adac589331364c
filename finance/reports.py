from datetime import datetime, time, timedelta
from decimal import Decimal

from django.conf import settings
from django.db.models import Count, Sum
from django.db.models.functions import Coalesce, TruncDate
from django.utils import timezone
from rest_framework.response import Response

from common.reports import BaseReportView
from finance.models import Expense
from inventory.models import Barcode, Product, Supplier
from inventory.services import lifetime_stock_total, sell_through_percentage
from sales.models import Client, Sale, SaleItem
from sales.reports import ZERO, line_cost_expr
from sales.serializers import SaleListSerializer
from sales.services import sold_units_total

HISTORY_LIMITS = {
    "sales": 50,
    "expenses": 50,
    "clients": 20,
    "suppliers": 20,
    "products": 30,
    "barcodes": 30,
}


def _per_day(queryset, date_field, value_expr, tz):
    rows = (
        queryset.annotate(day=TruncDate(date_field, tzinfo=tz))
        .values("day")
        .annotate(amount=Coalesce(Sum(value_expr), ZERO))
        .values_list("day", "amount")
    )
    return dict(rows)


class DashboardReportView(BaseReportView):
    """Rolling window of completed sales ending today in the branch timezone."""

    def get(self, request):
        branch_ids = self._branch_ids(request)
        tz_name = self._tz_name(request, branch_ids)
        tz = self._parse_timezone(tz_name)

        window = settings.DASHBOARD_WINDOW_DAYS
        today = timezone.now().astimezone(tz).date()
        days = [today - timedelta(days=offset) for offset in range(window - 1, -1, -1)]
        start = datetime.combine(days[0], time.min).replace(tzinfo=tz)

        def run():
            sales = Sale.objects.filter(branch_id__in=branch_ids, status=Sale.Status.COMPLETED, date__gte=start)
            revenue = _per_day(sales, "date", "total", tz)
            cost = _per_day(SaleItem.objects.filter(sale__in=sales), "sale__date", line_cost_expr(), tz)

            series = [
                {"day": day.isoformat(), "revenue": revenue.get(day, ZERO), "cost": cost.get(day, ZERO)}
                for day in days
            ]
            revenue_total = sum((row["revenue"] for row in series), ZERO)
            cost_total = sum((row["cost"] for row in series), ZERO)
            sold_units = sold_units_total(branch_ids)
            recent = sales.select_related("client", "user").order_by("-date")[:5]

            return {
                "timezone": tz_name,
                "series": series,
                "revenue_total": revenue_total,
                "cost_total": cost_total,
                "profit": revenue_total - cost_total,
                "new_clients": Client.objects.filter(branch_id__in=branch_ids, created_at__gte=start).count(),
                "sold_units": sold_units,
                "sell_through_percentage": sell_through_percentage(sold_units, lifetime_stock_total(branch_ids)),
                "recent_sales": list(SaleListSerializer(recent, many=True).data),
            }

        return Response(self._cached(request, "dashboard", branch_ids, run))


class FinancialReportView(BaseReportView):
    """Revenue against product cost and operating expenses.

    Completed sales contribute revenue and the cost of the units sold at the
    products' current cost price; expenses contribute cost only.
    """

    def get(self, request):
        branch_ids = self._branch_ids(request)
        tz_name = self._tz_name(request, branch_ids)
        tz = self._parse_timezone(tz_name)
        start, end = self._date_range(request, tz)

        def run():
            sales = Sale.objects.filter(branch_id__in=branch_ids, status=Sale.Status.COMPLETED)
            expenses = Expense.objects.filter(branch_id__in=branch_ids)
            if start and end:
                sales = sales.filter(date__gte=start, date__lte=end)
                expenses = expenses.filter(date__gte=start, date__lte=end)
            items = SaleItem.objects.filter(sale__in=sales)

            revenue = sales.aggregate(total=Coalesce(Sum("total"), ZERO))["total"]
            product_cost = items.aggregate(total=Coalesce(Sum(line_cost_expr()), ZERO))["total"]
            operating_expenses = expenses.aggregate(total=Coalesce(Sum("value"), ZERO))["total"]
            total_cost = product_cost + operating_expenses
            net_profit = revenue - total_cost
            margin_pct = ZERO if revenue == 0 else round(net_profit / revenue * Decimal("100"), 2)

            revenue_by_day = _per_day(sales, "date", "total", tz)
            cost_by_day = _per_day(items, "sale__date", line_cost_expr(), tz)
            expenses_by_day = _per_day(expenses, "date", "value", tz)
            series = []
            for day in sorted(set(revenue_by_day) | set(cost_by_day) | set(expenses_by_day)):
                day_revenue = revenue_by_day.get(day, ZERO)
                day_cost = cost_by_day.get(day, ZERO) + expenses_by_day.get(day, ZERO)
                series.append(
                    {
                        "day": day.isoformat(),
                        "revenue": day_revenue,
                        "cost": day_cost,
                        "profit": day_revenue - day_cost,
                    }
                )

            return {
                "timezone": tz_name,
                "revenue": revenue,
                "product_cost": product_cost,
                "operating_expenses": operating_expenses,
                "total_cost": total_cost,
                "net_profit": net_profit,
                "margin_pct": margin_pct,
                "sale_count": sales.count(),
                "series": series,
            }

        return Response(self._cached(request, "financial", branch_ids, run))


class HistoryReportView(BaseReportView):
    def get(self, request):
        branch_ids = self._branch_ids(request)

        def run():
            events = []

            sales = (
                Sale.objects.filter(branch_id__in=branch_ids)
                .select_related("client")
                .annotate(item_count=Count("items"))
                .order_by("-date")[: HISTORY_LIMITS["sales"]]
            )
            for sale in sales:
                events.append(
                    {
                        "id": str(sale.id),
                        "type": "SALE",
                        "date": sale.date,
                        "title": f"Sale to {sale.client.name}",
                        "subtitle": f"{sale.item_count} items | Status: {sale.status}",
                        "amount": sale.total,
                        "status": sale.status,
                        "payment_method": sale.payment_method,
                    }
                )

            expenses = (
                Expense.objects.filter(branch_id__in=branch_ids).order_by("-date")[: HISTORY_LIMITS["expenses"]]
            )
            for expense in expenses:
                events.append(
                    {
                        "id": str(expense.id),
                        "type": "EXPENSE",
                        "date": expense.date,
                        "title": expense.name,
                        "subtitle": expense.description or "No description",
                        "amount": expense.value,
                    }
                )

            clients = (
                Client.objects.filter(branch_id__in=branch_ids).order_by("-created_at")[: HISTORY_LIMITS["clients"]]
            )
            for client in clients:
                events.append(
                    {
                        "id": str(client.id),
                        "type": "NEW_CLIENT",
                        "date": client.created_at,
                        "title": "New client registered",
                        "subtitle": f"{client.name} - {client.phone or 'no phone'}",
                        "amount": None,
                    }
                )

            suppliers = (
                Supplier.objects.filter(branch_id__in=branch_ids).order_by("-created_at")[: HISTORY_LIMITS["suppliers"]]
            )
            for supplier in suppliers:
                events.append(
                    {
                        "id": str(supplier.id),
                        "type": "NEW_SUPPLIER",
                        "date": supplier.created_at,
                        "title": "New supplier registered",
                        "subtitle": f"{supplier.name} - {supplier.tax_id or 'no tax id'}",
                        "amount": None,
                    }
                )

            products = (
                Product.objects.filter(branch_id__in=branch_ids)
                .select_related("supplier")
                .order_by("-created_at")[: HISTORY_LIMITS["products"]]
            )
            for product in products:
                events.append(
                    {
                        "id": str(product.id),
                        "type": "NEW_PRODUCT",
                        "date": product.created_at,
                        "title": "Product added to stock",
                        "subtitle": f"{product.name} (SKU: {product.sku or 'N/A'}) - Supplier: {product.supplier.name}",
                        "amount": None,
                    }
                )

            barcodes = (
                Barcode.objects.filter(product__branch_id__in=branch_ids)
                .select_related("product")
                .order_by("-created_at")[: HISTORY_LIMITS["barcodes"]]
            )
            for barcode in barcodes:
                events.append(
                    {
                        "id": str(barcode.id),
                        "type": "NEW_BARCODE",
                        "date": barcode.created_at,
                        "title": "Barcode registered",
                        "subtitle": f"Code: {barcode.code} -> Item: {barcode.product.name}",
                        "amount": None,
                    }
                )

            events.sort(key=lambda event: event["date"], reverse=True)
            return [{**event, "date": event["date"].isoformat()} for event in events]

        return Response({"results": self._cached(request, "history", branch_ids, run)})
