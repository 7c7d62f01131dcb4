from django.apps import AppConfig


class TokenAppConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.tokenapp"
    verbose_name = "Service Tokens"
