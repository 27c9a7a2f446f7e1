from django.core.cache import cache
from django.http import HttpResponse
from django.test import RequestFactory, SimpleTestCase, TestCase, override_settings

from storefront.middleware import RateLimitMiddleware, client_address
from storefront.ratelimit import CacheCounterStore, InMemoryCounterStore, build_store


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class InMemoryCounterStoreTests(SimpleTestCase):
    def test_counts_per_key_and_expires(self):
        clock = FakeClock()
        store = InMemoryCounterStore(clock=clock)
        self.assertEqual(store.incr("a", 60), 1)
        self.assertEqual(store.incr("a", 60), 2)
        self.assertEqual(store.incr("b", 60), 1)

        clock.now += 61
        self.assertEqual(store.incr("a", 60), 1)
        self.assertEqual(len(store), 1)  # "b" purged


class CacheCounterStoreTests(SimpleTestCase):
    def setUp(self):
        cache.clear()

    def test_counts_in_django_cache(self):
        store = CacheCounterStore(prefix="test-rl")
        self.assertEqual(store.incr("1.2.3.4", 60), 1)
        self.assertEqual(store.incr("1.2.3.4", 60), 2)
        self.assertEqual(store.incr("5.6.7.8", 60), 1)
        self.assertEqual(cache.get("test-rl:1.2.3.4"), 2)

    def test_build_store(self):
        self.assertIsInstance(build_store("memory"), InMemoryCounterStore)
        self.assertIsInstance(build_store("cache"), CacheCounterStore)
        with self.assertRaises(ValueError):
            build_store("redis")


LIMITED = {
    "ENABLED": True,
    "BACKEND": "memory",
    "WINDOW_SECONDS": 60,
    "MAX_REQUESTS": 2,
    "PATH_PREFIXES": ["/api/"],
    "EXEMPT_PATHS": ["/api/webhooks/razorpay"],
}


@override_settings(RATE_LIMIT=LIMITED)
class RateLimitMiddlewareTests(TestCase):
    def test_third_request_is_throttled(self):
        url = "/api/orders/by-user?userId=u1"
        first = self.client.get(url)
        second = self.client.get(url)
        third = self.client.get(url)
        self.assertEqual([first.status_code, second.status_code, third.status_code], [200, 200, 429])
        self.assertEqual(first["X-RateLimit-Remaining"], "1")
        self.assertEqual(third["X-RateLimit-Remaining"], "0")
        self.assertFalse(third.json()["success"])

    def test_webhook_is_exempt(self):
        for _ in range(3):
            resp = self.client.post("/api/webhooks/razorpay", data="{}", content_type="application/json")
            self.assertEqual(resp.status_code, 400)

    def test_rotating_forwarded_header_is_still_throttled(self):
        mw = RateLimitMiddleware(lambda request: HttpResponse("ok"), store=InMemoryCounterStore())
        rf = RequestFactory()
        codes = [
            mw(rf.get("/api/checkout", REMOTE_ADDR="6.6.6.6", HTTP_X_FORWARDED_FOR=f"1.1.1.{i}")).status_code
            for i in range(5)
        ]
        self.assertEqual(codes, [200, 200, 429, 429, 429])
        self.assertEqual(len(mw.store), 1)

    @override_settings(RATE_LIMIT={**LIMITED, "TRUSTED_PROXIES": 1})
    def test_behind_trusted_proxy_uses_hop_it_appended(self):
        mw = RateLimitMiddleware(lambda request: HttpResponse("ok"), store=InMemoryCounterStore())
        rf = RequestFactory()
        # the client spoofs a leading hop; the proxy appends the real address
        codes = [
            mw(rf.get("/api/checkout", REMOTE_ADDR="10.0.0.254",
                      HTTP_X_FORWARDED_FOR=f"1.1.1.{i}, 6.6.6.6")).status_code
            for i in range(3)
        ]
        self.assertEqual(codes, [200, 200, 429])
        other = rf.get("/api/checkout", REMOTE_ADDR="10.0.0.254", HTTP_X_FORWARDED_FOR="7.7.7.7")
        self.assertEqual(mw(other).status_code, 200)

    def test_client_address(self):
        rf = RequestFactory()
        spoofed = rf.get("/", REMOTE_ADDR="6.6.6.6", HTTP_X_FORWARDED_FOR="10.0.0.1, 10.0.0.2")
        self.assertEqual(client_address(spoofed), "6.6.6.6")
        self.assertEqual(client_address(spoofed, trusted_proxies=1), "10.0.0.2")
        self.assertEqual(client_address(spoofed, trusted_proxies=2), "10.0.0.1")
        self.assertEqual(client_address(spoofed, trusted_proxies=3), "6.6.6.6")
        self.assertEqual(client_address(rf.get("/")), "127.0.0.1")
