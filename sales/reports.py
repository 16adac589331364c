from decimal import Decimal

from django.db.models import Count, DecimalField, ExpressionWrapper, F, Sum
from django.db.models.functions import Coalesce, TruncDate
from rest_framework.response import Response

from common.reports import BaseReportView
from inventory.services import current_stock_total, lifetime_stock_total, sell_through_percentage
from sales.models import Sale, SaleItem
from sales.services import sold_units_total

ZERO = Decimal("0.00")
MONEY = DecimalField(max_digits=16, decimal_places=2)


def line_revenue_expr():
    return ExpressionWrapper(F("quantity") * F("unit_price"), output_field=MONEY)


def line_cost_expr():
    return ExpressionWrapper(F("quantity") * F("product__cost_price"), output_field=MONEY)


class DailySalesReportView(BaseReportView):
    def get(self, request):
        branch_ids = self._branch_ids(request)
        tz_name = self._tz_name(request, branch_ids)
        tz = self._parse_timezone(tz_name)
        start, end = self._date_range(request, tz)

        def run():
            qs = Sale.objects.exclude(status=Sale.Status.CANCELED).filter(branch_id__in=branch_ids)
            if start and end:
                qs = qs.filter(date__gte=start, date__lte=end)
            rows = list(
                qs.annotate(day=TruncDate("date", tzinfo=tz))
                .values("day")
                .annotate(sale_count=Count("id"), revenue=Coalesce(Sum("total"), ZERO))
                .order_by("day")
            )
            return [{**row, "day": row["day"].isoformat()} for row in rows]

        rows = self._cached(request, "daily-sales", branch_ids, run)
        return Response({"timezone": tz_name, "results": rows})


class TopProductsReportView(BaseReportView):
    def get(self, request):
        branch_ids = self._branch_ids(request)
        tz = self._parse_timezone(self._tz_name(request, branch_ids))
        start, end = self._date_range(request, tz)
        limit = self._parse_limit(request)

        def run():
            qs = SaleItem.objects.exclude(sale__status=Sale.Status.CANCELED).filter(sale__branch_id__in=branch_ids)
            if start and end:
                qs = qs.filter(sale__date__gte=start, sale__date__lte=end)
            return list(
                qs.values("product_id", "product__sku", "product__name")
                .annotate(
                    quantity=Sum("quantity"),
                    revenue=Coalesce(Sum(line_revenue_expr()), ZERO),
                    cost=Coalesce(Sum(line_cost_expr()), ZERO),
                )
                .annotate(gross_margin=ExpressionWrapper(F("revenue") - F("cost"), output_field=MONEY))
                .order_by("-quantity", "product__name")[:limit]
            )

        rows = self._cached(request, "top-products", branch_ids, run)
        return Response({"results": rows})


class TopClientsReportView(BaseReportView):
    def get(self, request):
        branch_ids = self._branch_ids(request)
        tz = self._parse_timezone(self._tz_name(request, branch_ids))
        start, end = self._date_range(request, tz)
        limit = self._parse_limit(request)

        def run():
            qs = Sale.objects.exclude(status=Sale.Status.CANCELED).filter(branch_id__in=branch_ids)
            if start and end:
                qs = qs.filter(date__gte=start, date__lte=end)
            return list(
                qs.values("client_id", "client__name")
                .annotate(sale_count=Count("id"), total_spent=Coalesce(Sum("total"), ZERO))
                .order_by("-total_spent")[:limit]
            )

        rows = self._cached(request, "top-clients", branch_ids, run)
        return Response({"results": rows})


class PaymentMethodSplitReportView(BaseReportView):
    def get(self, request):
        branch_ids = self._branch_ids(request)
        tz = self._parse_timezone(self._tz_name(request, branch_ids))
        start, end = self._date_range(request, tz)

        def run():
            qs = Sale.objects.exclude(status=Sale.Status.CANCELED).filter(branch_id__in=branch_ids)
            if start and end:
                qs = qs.filter(date__gte=start, date__lte=end)
            rows = list(
                qs.values("payment_method")
                .annotate(sale_count=Count("id"), amount=Coalesce(Sum("total"), ZERO))
                .order_by("-amount")
            )
            total = sum((row["amount"] for row in rows), ZERO)
            formatted = []
            for row in rows:
                pct = ZERO if total == 0 else (row["amount"] / total * Decimal("100"))
                formatted.append({**row, "percentage": round(pct, 2)})
            return formatted

        rows = self._cached(request, "payment-methods", branch_ids, run)
        return Response({"results": rows})


class SellThroughReportView(BaseReportView):
    """Share of all units ever received that have been sold, any sale status."""

    def get(self, request):
        branch_ids = self._branch_ids(request)

        def run():
            sold = sold_units_total(branch_ids)
            lifetime = lifetime_stock_total(branch_ids)
            return {
                "sold_units": sold,
                "lifetime_stock": lifetime,
                "current_stock": current_stock_total(branch_ids),
                "percentage": sell_through_percentage(sold, lifetime),
            }

        return Response(self._cached(request, "sell-through", branch_ids, run))
