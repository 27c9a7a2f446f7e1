"""Gateway configuration, built once at start-up from ``settings.RAZORPAY``."""

from dataclasses import dataclass

from django.apps import apps
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

# Fallback literals shipped in settings/base.py for local development.
INSECURE_DEFAULTS = frozenset({
    "rzp_test_localdev",
    "localdev-key-secret",
    "localdev-webhook-secret",
})


@dataclass(frozen=True)
class GatewayConfig:
    key_id: str
    key_secret: str
    webhook_secret: str
    base_url: str = "https://api.razorpay.com"
    currency: str = "INR"
    timeout: float = 30.0

    @classmethod
    def from_settings(cls, raw=None) -> "GatewayConfig":
        """Build the config, refusing missing or development secrets.

        Development defaults are only accepted when ``ALLOW_INSECURE_DEFAULTS``
        is true, so a production process never signs with a known secret.
        """
        if raw is None:
            raw = getattr(settings, "RAZORPAY", None) or {}
        allow_insecure = bool(raw.get("ALLOW_INSECURE_DEFAULTS", False))

        values = {}
        for name in ("KEY_ID", "KEY_SECRET", "WEBHOOK_SECRET"):
            value = str(raw.get(name) or "")
            if not value:
                raise ImproperlyConfigured(f"RAZORPAY['{name}'] is required")
            if value in INSECURE_DEFAULTS and not allow_insecure:
                raise ImproperlyConfigured(
                    f"RAZORPAY['{name}'] is a development default; set RAZORPAY_{name} in the environment"
                )
            values[name.lower()] = value

        return cls(
            base_url=str(raw.get("BASE_URL") or cls.base_url).rstrip("/"),
            currency=str(raw.get("CURRENCY") or cls.currency),
            timeout=float(raw.get("TIMEOUT") or cls.timeout),
            **values,
        )


def get_gateway_config() -> GatewayConfig:
    return apps.get_app_config("payments").gateway
