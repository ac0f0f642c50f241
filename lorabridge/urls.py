"""
URL configuration for the lorabridge service.

Only operational endpoints are served here; provisioning requests reach the
agent through the provisioning layer.
"""

from django.urls import path
from ninja import NinjaAPI

from apps.api.routes.ops import router as ops_router

api = NinjaAPI(
    title="LoRaWAN Bridge Ops API",
    version="1.0.0",
    docs_url="/docs/",
)
api.add_router("", ops_router)

urlpatterns = [
    path("", api.urls),
]
