from django.urls import path
from rest_framework.routers import DefaultRouter

from finance.reports import DashboardReportView, FinancialReportView, HistoryReportView
from finance.views import ExpenseViewSet

router = DefaultRouter()
router.register(r"expenses", ExpenseViewSet, basename="expense")

urlpatterns = router.urls + [
    path("reports/dashboard/", DashboardReportView.as_view(), name="report-dashboard"),
    path("reports/financial/", FinancialReportView.as_view(), name="report-financial"),
    path("reports/history/", HistoryReportView.as_view(), name="report-history"),
]
