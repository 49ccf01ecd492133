from rest_framework.routers import DefaultRouter

from sales.views import InvoiceViewSet, SaleTransactionViewSet

router = DefaultRouter()
router.register(r"sales", SaleTransactionViewSet, basename="sale")
router.register(r"invoices", InvoiceViewSet, basename="invoice")

urlpatterns = router.urls
