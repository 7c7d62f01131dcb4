"""Jan Seva project: main URL configuration."""

from django.contrib import admin
from django.http import JsonResponse
from django.urls import include, path, re_path
from django.views.generic.base import RedirectView
from drf_yasg import openapi
from drf_yasg.views import get_schema_view
from rest_framework import permissions

schema_view = get_schema_view(
    openapi.Info(
        title="Jan Seva API",
        default_version="v1",
        description="Token booking and queue management for government offices",
    ),
    public=True,
    permission_classes=(permissions.AllowAny,),
)


def health(request):
    """Minimal health-check endpoint used by load-balancers / uptime checks."""
    return JsonResponse({"status": "ok"})


urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/v1/tokens/", include("apps.tokenapp.urls")),
    re_path(
        r"^api/docs/swagger\.json$",
        schema_view.without_ui(cache_timeout=0),
        name="schema-swagger-json",
    ),
    path(
        "api/docs/ui/",
        schema_view.with_ui("swagger", cache_timeout=0),
        name="schema-swagger-ui",
    ),
    path("api/redoc/", schema_view.with_ui("redoc", cache_timeout=0), name="schema-redoc"),
    path("health/", health, name="health_check"),
    path("", RedirectView.as_view(url="/api/docs/ui/", permanent=False), name="home"),
]
