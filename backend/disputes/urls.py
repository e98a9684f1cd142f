from django.urls import include, path
from rest_framework.routers import SimpleRouter

from .api import DisputeViewSet

app_name = "disputes"

router = SimpleRouter()
router.register("", DisputeViewSet, basename="dispute")

urlpatterns = [
    path("", include(router.urls)),
]
