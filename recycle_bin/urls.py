from rest_framework.routers import DefaultRouter

from recycle_bin.views import RecycleBinEntryViewSet

router = DefaultRouter()
router.register(r"recycle-bin", RecycleBinEntryViewSet, basename="recycle-bin")

urlpatterns = router.urls
