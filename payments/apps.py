from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"

    def ready(self):
        from .conf import GatewayConfig

        # Raises ImproperlyConfigured, so the process refuses to start.
        self.gateway = GatewayConfig.from_settings()
