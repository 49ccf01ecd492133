from rest_framework.routers import DefaultRouter

from inventory.views import CategoryViewSet, InventoryItemViewSet, ShapeViewSet

router = DefaultRouter()
router.register(r"categories", CategoryViewSet, basename="category")
router.register(r"inventory", InventoryItemViewSet, basename="inventory")
router.register(r"shapes", ShapeViewSet, basename="shape")

urlpatterns = router.urls
