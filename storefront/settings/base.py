from pathlib import Path
import os

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent.parent
load_dotenv(BASE_DIR / ".env")


def _env_bool(name, default="false"):
    return os.getenv(name, default).lower() in ("1", "true", "yes")


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "django-insecure-storefront-dev-key")
DEBUG = _env_bool("DEBUG")

ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "127.0.0.1,localhost").split(",") if h.strip()]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "payments.apps.PaymentsConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "storefront.middleware.RateLimitMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "storefront.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "storefront.wsgi.application"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.getenv("SQLITE_PATH", str(BASE_DIR / "db.sqlite3")),
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
    }
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "Asia/Kolkata"
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# Razorpay. The fallback literals only exist for local development; see
# payments.conf.GatewayConfig for how they are refused outside DEBUG.
RAZORPAY = {
    "KEY_ID": os.getenv("RAZORPAY_KEY_ID", "rzp_test_localdev"),
    "KEY_SECRET": os.getenv("RAZORPAY_KEY_SECRET", "localdev-key-secret"),
    "WEBHOOK_SECRET": os.getenv("RAZORPAY_WEBHOOK_SECRET", "localdev-webhook-secret"),
    "BASE_URL": os.getenv("RAZORPAY_BASE_URL", "https://api.razorpay.com"),
    "CURRENCY": os.getenv("RAZORPAY_CURRENCY", "INR"),
    "TIMEOUT": float(os.getenv("RAZORPAY_TIMEOUT", "30")),
    "ALLOW_INSECURE_DEFAULTS": _env_bool("RAZORPAY_ALLOW_INSECURE_DEFAULTS", str(DEBUG)),
}

RATE_LIMIT = {
    "ENABLED": _env_bool("RATE_LIMIT_ENABLED", "true"),
    "BACKEND": os.getenv("RATE_LIMIT_BACKEND", "cache"),  # "memory" or "cache"
    "WINDOW_SECONDS": int(os.getenv("RATE_LIMIT_WINDOW_MS", "900000")) // 1000,
    "MAX_REQUESTS": int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "100")),
    "PATH_PREFIXES": ["/api/"],
    # reverse proxies in front of the app; 0 means X-Forwarded-For is ignored
    "TRUSTED_PROXIES": int(os.getenv("RATE_LIMIT_TRUSTED_PROXIES", "0")),
    # gateway callbacks are never throttled
    "EXEMPT_PATHS": ["/api/webhooks/razorpay"],
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "payments": {
            "handlers": ["console"],
            "level": os.getenv("PAYMENTS_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
        "storefront": {
            "handlers": ["console"],
            "level": os.getenv("PAYMENTS_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}
