from rest_framework.routers import DefaultRouter

from inventory.views import BarcodeViewSet, CategoryViewSet, ProductViewSet, SupplierViewSet

router = DefaultRouter()
router.register(r"categories", CategoryViewSet, basename="category")
router.register(r"suppliers", SupplierViewSet, basename="supplier")
router.register(r"products", ProductViewSet, basename="product")
router.register(r"barcodes", BarcodeViewSet, basename="barcode")

urlpatterns = router.urls
