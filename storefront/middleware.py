import logging

from django.conf import settings
from django.http import JsonResponse

from .ratelimit import build_store

logger = logging.getLogger(__name__)


def client_address(request, trusted_proxies: int = 0) -> str:
    """Address to throttle on.

    ``X-Forwarded-For`` is client-controlled, so it is only read when
    ``trusted_proxies`` reverse proxies sit in front of us; the address is
    then the hop each of those proxies appended before the nearest one.
    """
    remote = request.META.get("REMOTE_ADDR") or "unknown"
    if trusted_proxies <= 0:
        return remote
    hops = [h.strip() for h in request.META.get("HTTP_X_FORWARDED_FOR", "").split(",") if h.strip()]
    if len(hops) < trusted_proxies:
        return remote
    return hops[-trusted_proxies]


class RateLimitMiddleware:
    """Throttle API requests per client address using a CounterStore."""

    def __init__(self, get_response, store=None):
        self.get_response = get_response
        conf = getattr(settings, "RATE_LIMIT", {}) or {}
        self.enabled = bool(conf.get("ENABLED", True))
        self.window = int(conf.get("WINDOW_SECONDS", 900))
        self.max_requests = int(conf.get("MAX_REQUESTS", 100))
        self.prefixes = tuple(conf.get("PATH_PREFIXES", ["/api/"]))
        self.exempt = tuple(conf.get("EXEMPT_PATHS", []))
        self.trusted_proxies = int(conf.get("TRUSTED_PROXIES", 0))
        self.store = store or build_store(conf.get("BACKEND", "memory"))

    def _applies(self, path):
        return path.startswith(self.prefixes) and not path.startswith(self.exempt)

    def __call__(self, request):
        if not (self.enabled and self._applies(request.path)):
            return self.get_response(request)

        addr = client_address(request, self.trusted_proxies)
        count = self.store.incr(addr, self.window)
        remaining = max(self.max_requests - count, 0)
        if count > self.max_requests:
            logger.warning("Rate limit exceeded for %s on %s", addr, request.path)
            resp = JsonResponse(
                {"success": False, "error": "Too many requests, please try again later"},
                status=429,
            )
        else:
            resp = self.get_response(request)
        resp["X-RateLimit-Remaining"] = str(remaining)
        return resp
