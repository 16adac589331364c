from django.urls import path
from rest_framework.routers import DefaultRouter

from sales.reports import (
    DailySalesReportView,
    PaymentMethodSplitReportView,
    SellThroughReportView,
    TopClientsReportView,
    TopProductsReportView,
)
from sales.views import ClientViewSet, SaleViewSet, SoldBarcodeLogViewSet

router = DefaultRouter()
router.register(r"clients", ClientViewSet, basename="client")
router.register(r"sales", SaleViewSet, basename="sale")
router.register(r"sold-barcodes", SoldBarcodeLogViewSet, basename="sold-barcode")

urlpatterns = router.urls + [
    path("reports/daily-sales/", DailySalesReportView.as_view(), name="report-daily-sales"),
    path("reports/top-products/", TopProductsReportView.as_view(), name="report-top-products"),
    path("reports/top-clients/", TopClientsReportView.as_view(), name="report-top-clients"),
    path("reports/payment-methods/", PaymentMethodSplitReportView.as_view(), name="report-payment-methods"),
    path("reports/sell-through/", SellThroughReportView.as_view(), name="report-sell-through"),
]
