import hashlib
import hmac
import json
from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.core.exceptions import ImproperlyConfigured
from django.core.management import call_command
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from django.utils import timezone

from . import services
from .conf import GatewayConfig
from .exceptions import NotFoundError, PersistenceError
from .integrations import razorpay
from .integrations.razorpay import RazorpayError
from .models import Order
from .utils import payment_signature_message, verify_signature

KEY_SECRET = "fixture-key-secret"


def hex_hmac(secret: str, message: str) -> str:
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def make_order(**kwargs):
    defaults = {
        "order_number": "RUD0000000001",
        "gateway_order_id": "order_abc",
        "user_id": "9999999999",
        "subtotal": Decimal("100.00"),
        "total": Decimal("100.00"),
    }
    defaults.update(kwargs)
    return Order.objects.create(**defaults)


def _flip(ch: str) -> str:
    return "0" if ch != "0" else "1"


class VerifySignatureTests(SimpleTestCase):
    def setUp(self):
        self.message = payment_signature_message("order_abc", "pay_123")
        self.signature = hex_hmac(KEY_SECRET, "order_abc|pay_123")

    def test_message_joins_ids_with_pipe(self):
        self.assertEqual(self.message, "order_abc|pay_123")

    def test_matching_signature_verifies(self):
        self.assertTrue(verify_signature(self.message, self.signature, KEY_SECRET))

    def test_any_changed_signature_character_fails(self):
        for i in range(len(self.signature)):
            tampered = self.signature[:i] + _flip(self.signature[i]) + self.signature[i + 1:]
            self.assertFalse(verify_signature(self.message, tampered, KEY_SECRET), i)

    def test_any_changed_id_character_fails(self):
        for order_id, payment_id in [("order_abd", "pay_123"), ("order_abc", "pay_124"),
                                     ("Order_abc", "pay_123"), ("order_abc", "pay_12")]:
            msg = payment_signature_message(order_id, payment_id)
            self.assertFalse(verify_signature(msg, self.signature, KEY_SECRET))

    def test_uppercase_hex_is_rejected(self):
        self.assertFalse(verify_signature(self.message, self.signature.upper(), KEY_SECRET))

    def test_wrong_secret_fails(self):
        self.assertFalse(verify_signature(self.message, self.signature, "other-secret"))

    def test_empty_signature_or_secret_fails(self):
        self.assertFalse(verify_signature(self.message, "", KEY_SECRET))
        self.assertFalse(verify_signature(self.message, self.signature, ""))

    def test_non_ascii_signature_fails_without_error(self):
        self.assertFalse(verify_signature(self.message, "é" * 64, KEY_SECRET))

    def test_raw_body_bytes(self):
        body = b'{"event": "payment.captured"}'
        sig = hmac.new(b"whsec", body, hashlib.sha256).hexdigest()
        self.assertTrue(verify_signature(body, sig, "whsec"))
        self.assertFalse(verify_signature(body + b" ", sig, "whsec"))


class GatewayConfigTests(SimpleTestCase):
    def _raw(self, **overrides):
        raw = {
            "KEY_ID": "rzp_live_abc",
            "KEY_SECRET": "real-secret",
            "WEBHOOK_SECRET": "real-webhook-secret",
            "BASE_URL": "https://api.razorpay.com/",
            "ALLOW_INSECURE_DEFAULTS": False,
        }
        raw.update(overrides)
        return raw

    def test_builds_from_mapping(self):
        config = GatewayConfig.from_settings(self._raw())
        self.assertEqual(config.key_secret, "real-secret")
        self.assertEqual(config.base_url, "https://api.razorpay.com")
        self.assertEqual(config.currency, "INR")

    def test_development_default_refused(self):
        with self.assertRaises(ImproperlyConfigured):
            GatewayConfig.from_settings(self._raw(WEBHOOK_SECRET="localdev-webhook-secret"))

    def test_development_default_allowed_when_opted_in(self):
        config = GatewayConfig.from_settings(
            self._raw(KEY_SECRET="localdev-key-secret", ALLOW_INSECURE_DEFAULTS=True)
        )
        self.assertEqual(config.key_secret, "localdev-key-secret")

    def test_missing_secret_refused(self):
        with self.assertRaises(ImproperlyConfigured):
            GatewayConfig.from_settings(self._raw(KEY_SECRET=""))

    def test_test_settings_loaded_at_startup(self):
        from .conf import get_gateway_config
        self.assertEqual(get_gateway_config().key_secret, KEY_SECRET)


class TransitionTests(TestCase):
    def setUp(self):
        self.order = make_order()

    def test_pending_to_paid_records_payment(self):
        order, changed = services.mark_paid(self.order, "pay_123", "sig")
        self.assertTrue(changed)
        self.assertEqual(order.payment_status, Order.PAID)
        self.assertEqual(order.gateway_payment_id, "pay_123")
        self.assertIsNotNone(order.paid_at)

    def test_mark_paid_twice_is_a_noop(self):
        services.mark_paid(self.order, "pay_123")
        order, changed = services.mark_paid(self.order, "pay_123")
        self.assertFalse(changed)
        self.assertEqual(order.payment_status, Order.PAID)

    def test_failed_cannot_override_paid(self):
        services.mark_paid(self.order, "pay_123")
        order, changed = services.mark_failed(self.order, gateway_payment_id="pay_999")
        self.assertFalse(changed)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PAID)
        self.assertEqual(self.order.gateway_payment_id, "pay_123")

    def test_paid_cannot_override_failed(self):
        services.mark_failed(self.order, "user abort")
        order, changed = services.mark_paid(self.order, "pay_123")
        self.assertFalse(changed)
        self.assertEqual(order.payment_status, Order.FAILED)
        self.assertEqual(order.gateway_payment_id, "")

    def test_payment_id_is_never_overwritten(self):
        order = make_order(order_number="RUD0000000002", gateway_order_id="order_x",
                           gateway_payment_id="pay_first")
        order, _ = services.mark_paid(order, "pay_second")
        self.assertEqual(order.gateway_payment_id, "pay_first")

    def test_stale_instance_loses_race(self):
        stale = Order.objects.get(pk=self.order.pk)
        services.mark_paid(self.order, "pay_123")
        order, changed = services.mark_failed(stale, "late cancel")
        self.assertFalse(changed)
        self.assertEqual(order.payment_status, Order.PAID)
        self.assertEqual(order.cancellation_reason, "")

    def test_transition_table(self):
        self.assertTrue(services.can_transition(Order.PENDING, Order.PAID))
        self.assertTrue(services.can_transition(Order.PENDING, Order.FAILED))
        self.assertFalse(services.can_transition(Order.PAID, Order.FAILED))
        self.assertFalse(services.can_transition(Order.FAILED, Order.PAID))
        self.assertFalse(services.can_transition(Order.PAID, Order.PENDING))

    def test_lookup_by_gateway_id(self):
        self.assertEqual(services.get_order_by_gateway_id("order_abc").pk, self.order.pk)
        with self.assertRaises(NotFoundError):
            services.get_order_by_gateway_id("order_missing")

    def test_database_error_becomes_persistence_error(self):
        with patch.object(Order.objects, "get", side_effect=DatabaseError("down")):
            with self.assertRaises(PersistenceError):
                services.get_order_by_gateway_id("order_abc")


class JsonPostMixin:
    def post_json(self, url, payload):
        data = payload if isinstance(payload, str) else json.dumps(payload)
        return self.client.post(url, data=data, content_type="application/json")


class VerifyPaymentViewTests(JsonPostMixin, TestCase):
    def setUp(self):
        self.order = make_order()
        self.url = reverse("payments:verify")

    def _payload(self, signed_payment_id="pay_123"):
        return {
            "razorpayOrderId": "order_abc",
            "razorpayPaymentId": "pay_123",
            "razorpaySignature": hex_hmac(KEY_SECRET, f"order_abc|{signed_payment_id}"),
        }

    def test_valid_signature_marks_paid(self):
        resp = self.post_json(self.url, self._payload())
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["order"]["paymentStatus"], "paid")
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PAID)
        self.assertEqual(self.order.gateway_payment_id, "pay_123")

    def test_signature_over_wrong_payment_id_is_rejected(self):
        resp = self.post_json(self.url, self._payload(signed_payment_id="pay_999"))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"success": False, "error": "Invalid signature"})
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PENDING)
        self.assertEqual(self.order.gateway_payment_id, "")

    def test_missing_fields(self):
        payload = self._payload()
        del payload["razorpaySignature"]
        resp = self.post_json(self.url, payload)
        self.assertEqual(resp.status_code, 400)
        self.assertIn("razorpaySignature", resp.json()["error"])

    def test_unknown_order(self):
        payload = {
            "razorpayOrderId": "order_missing",
            "razorpayPaymentId": "pay_1",
            "razorpaySignature": hex_hmac(KEY_SECRET, "order_missing|pay_1"),
        }
        resp = self.post_json(self.url, payload)
        self.assertEqual(resp.status_code, 404)

    def test_repeat_verification_is_idempotent(self):
        self.post_json(self.url, self._payload())
        resp = self.post_json(self.url, self._payload())
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["message"], "Payment already verified")

    def test_cancelled_order_is_not_flipped_to_paid(self):
        services.mark_failed(self.order, "user abort")
        resp = self.post_json(self.url, self._payload())
        self.assertEqual(resp.status_code, 409)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.FAILED)

    def test_invalid_json(self):
        resp = self.post_json(self.url, "not json")
        self.assertEqual(resp.status_code, 400)

    def test_get_not_allowed(self):
        resp = self.client.get(self.url)
        self.assertEqual(resp.status_code, 405)
        self.assertEqual(resp.json(), {"success": False, "error": "Method not allowed"})
        self.assertEqual(resp["Allow"], "POST")

    def test_database_down_on_lookup_returns_json_500(self):
        with patch.object(Order.objects, "get", side_effect=DatabaseError("down")):
            with self.assertLogs("payments.views", level="ERROR"):
                resp = self.post_json(self.url, self._payload())
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json(), {"success": False, "error": "Order storage unavailable"})

    def test_database_down_on_update_returns_json_500(self):
        with patch.object(Order.objects, "filter", side_effect=DatabaseError("down")):
            with self.assertLogs("payments.views", level="ERROR"):
                resp = self.post_json(self.url, self._payload())
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json()["error"], "Order storage unavailable")
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PENDING)

    def test_unexpected_failure_returns_json_500(self):
        with patch("payments.views.services.mark_paid", side_effect=RuntimeError("boom")):
            with self.assertLogs("payments.views", level="ERROR"):
                resp = self.post_json(self.url, self._payload())
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json()["success"], False)
        self.assertNotIn("boom", resp.content.decode())


class CancelPaymentViewTests(JsonPostMixin, TestCase):
    def setUp(self):
        self.order = make_order()
        self.url = reverse("payments:cancel")

    def test_cancel_then_cancel_again(self):
        resp = self.post_json(self.url, {"razorpayOrderId": "order_abc", "reason": "user abort"})
        self.assertEqual(resp.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.FAILED)
        self.assertEqual(self.order.cancellation_reason, "user abort")
        updated_at = self.order.updated_at

        resp = self.post_json(self.url, {"razorpayOrderId": "order_abc", "reason": "second"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["message"], "Payment status already updated")
        self.assertEqual(resp.json()["order"]["paymentStatus"], "failed")
        self.order.refresh_from_db()
        self.assertEqual(self.order.cancellation_reason, "user abort")
        self.assertEqual(self.order.updated_at, updated_at)

    def test_default_reason(self):
        self.post_json(self.url, {"razorpayOrderId": "order_abc"})
        self.order.refresh_from_db()
        self.assertEqual(self.order.cancellation_reason, "Payment cancelled by user")

    def test_paid_order_is_left_alone(self):
        services.mark_paid(self.order, "pay_123")
        resp = self.post_json(self.url, {"razorpayOrderId": "order_abc"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["order"]["paymentStatus"], "paid")
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PAID)

    def test_missing_id(self):
        self.assertEqual(self.post_json(self.url, {"reason": "x"}).status_code, 400)

    def test_unknown_order(self):
        resp = self.post_json(self.url, {"razorpayOrderId": "order_missing"})
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["error"], "Order not found")

    def test_database_down_returns_json_500(self):
        with patch.object(Order.objects, "get", side_effect=DatabaseError("down")):
            with self.assertLogs("payments.views", level="ERROR"):
                resp = self.post_json(self.url, {"razorpayOrderId": "order_abc"})
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json(), {"success": False, "error": "Order storage unavailable"})


GATEWAY_ORDER = {"id": "order_new1", "amount": 25000, "currency": "INR"}


class CheckoutViewTests(JsonPostMixin, TestCase):
    url = "/api/checkout"

    def _payload(self, **overrides):
        payload = {
            "items": [{"variantId": "v1", "name": "Rudraksha Mala", "quantity": 2, "price": 100}],
            "customerInfo": {"name": "Asha", "phone": "9876543210", "city": "Gorakhpur"},
            "shippingCost": 50,
            "total": 250,
        }
        payload.update(overrides)
        return payload

    @patch("payments.views.create_order", return_value=GATEWAY_ORDER)
    def test_creates_pending_order(self, create):
        resp = self.post_json(self.url, self._payload())
        self.assertEqual(resp.status_code, 200)
        data = resp.json()["data"]
        self.assertEqual(data["orderId"], "order_new1")
        self.assertEqual(data["keyId"], "rzp_test_fixture")

        order = Order.objects.get(gateway_order_id="order_new1")
        self.assertEqual(order.payment_status, Order.PENDING)
        self.assertEqual(order.total, Decimal("250.00"))
        self.assertEqual(order.user_id, "9876543210")
        self.assertEqual(order.items[0]["totalPrice"], "200.00")
        self.assertEqual(data["orderNumber"], order.order_number)
        self.assertEqual(create.call_args.kwargs["amount"], Decimal("250.00"))

    @patch("payments.views.create_order", return_value=GATEWAY_ORDER)
    def test_rejects_bad_carts(self, create):
        for payload in [
            self._payload(items=[]),
            self._payload(items=[{"name": "x", "quantity": 0, "price": 10}]),
            self._payload(items=[{"name": "x", "quantity": 1, "price": "abc"}]),
            self._payload(items=[{"name": "x", "quantity": 1, "price": 10, "discount": 20}]),
            self._payload(total=999),
            self._payload(customerInfo={}),
            self._payload(customerInfo={"name": "Asha"}),
        ]:
            self.assertEqual(self.post_json(self.url, payload).status_code, 400, payload)
        create.assert_not_called()
        self.assertFalse(Order.objects.exists())

    @patch("payments.views.create_order", return_value=GATEWAY_ORDER)
    def test_quantity_must_be_a_whole_number(self, create):
        for qty in [2.7, 2.0, True, "2.5", "-1", None, 1001]:
            payload = self._payload(items=[{"name": "x", "quantity": qty, "price": 100}], total=None)
            resp = self.post_json(self.url, payload)
            self.assertEqual(resp.status_code, 400, qty)
            self.assertIn("quantity", resp.json()["error"])
        create.assert_not_called()

    @patch("payments.views.create_order", return_value=GATEWAY_ORDER)
    def test_numeric_string_quantity_accepted(self, create):
        payload = self._payload(items=[{"name": "x", "quantity": "2", "price": 100}])
        self.assertEqual(self.post_json(self.url, payload).status_code, 200)
        self.assertEqual(Order.objects.get().items[0]["quantity"], 2)

    @patch("payments.views.create_order", return_value=GATEWAY_ORDER)
    def test_amounts_beyond_storage_are_rejected_before_gateway(self, create):
        for payload in [
            self._payload(items=[{"name": "x", "quantity": 1, "price": "10000000000"}], total=None),
            self._payload(items=[{"name": "x", "quantity": 1000, "price": "9999999999"}], total=None),
            self._payload(items=[{"name": "x", "quantity": 1, "price": "9999999999.99"}],
                          shippingCost=1, total=None),
            self._payload(shippingCost="1e30", total=None),
        ]:
            resp = self.post_json(self.url, payload)
            self.assertEqual(resp.status_code, 400, payload)
            self.assertIn("too large", resp.json()["error"])
        create.assert_not_called()
        self.assertFalse(Order.objects.exists())

    @patch("payments.views.create_order", side_effect=RazorpayError("down", status_code=503))
    def test_gateway_failure(self, create):
        with self.assertLogs("payments.views", level="ERROR"):
            resp = self.post_json(self.url, self._payload())
        self.assertEqual(resp.status_code, 502)
        self.assertFalse(Order.objects.exists())


class RetryOrderViewTests(JsonPostMixin, TestCase):
    url = "/api/payment/retry-order"

    def setUp(self):
        self.order = make_order(items=[{"name": "Mala", "quantity": 1}])

    @patch("payments.views.create_order", return_value={"id": "order_retry1", "amount": 10000, "currency": "INR"})
    def test_failed_order_gets_new_pending_order(self, create):
        services.mark_failed(self.order, "user abort")
        resp = self.post_json(self.url, {"orderId": self.order.order_number})
        self.assertEqual(resp.status_code, 200)

        retry = Order.objects.get(gateway_order_id="order_retry1")
        self.assertEqual(retry.retry_of_id, self.order.pk)
        self.assertEqual(retry.payment_status, Order.PENDING)
        self.assertEqual(retry.items, self.order.items)
        self.assertEqual(create.call_args.kwargs["notes"]["original_order_number"], self.order.order_number)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.FAILED)

    @patch("payments.views.create_order")
    def test_only_failed_orders(self, create):
        resp = self.post_json(self.url, {"orderId": self.order.order_number})
        self.assertEqual(resp.status_code, 400)
        create.assert_not_called()

    @patch("payments.views.create_order", return_value={"id": "order_retry1", "amount": 10000, "currency": "INR"})
    def test_no_retry_after_a_retry_was_paid(self, create):
        services.mark_failed(self.order, "user abort")
        self.post_json(self.url, {"orderId": self.order.order_number})
        services.mark_paid(Order.objects.get(gateway_order_id="order_retry1"), "pay_r1")

        resp = self.post_json(self.url, {"orderId": self.order.order_number})
        self.assertEqual(resp.status_code, 400)
        self.assertIn("already been paid", resp.json()["error"])
        self.assertEqual(create.call_count, 1)
        self.assertEqual(self.order.retries.count(), 1)

    @patch("payments.views.create_order", return_value={"id": "order_retry1", "amount": 10000, "currency": "INR"})
    def test_pending_retry_is_reused(self, create):
        services.mark_failed(self.order, "user abort")
        first = self.post_json(self.url, {"orderId": self.order.order_number}).json()["data"]
        second = self.post_json(self.url, {"orderId": self.order.order_number}).json()["data"]
        self.assertEqual(create.call_count, 1)
        self.assertEqual(second["orderId"], "order_retry1")
        self.assertEqual(second["orderNumber"], first["orderNumber"])
        self.assertEqual(second["amount"], 10000)

    @patch("payments.views.create_order")
    def test_retrying_a_failed_retry_links_to_first_order(self, create):
        create.side_effect = [
            {"id": "order_retry1", "amount": 10000, "currency": "INR"},
            {"id": "order_retry2", "amount": 10000, "currency": "INR"},
        ]
        services.mark_failed(self.order, "user abort")
        self.post_json(self.url, {"orderId": self.order.order_number})
        first_retry = Order.objects.get(gateway_order_id="order_retry1")
        services.mark_failed(first_retry, "user abort")

        resp = self.post_json(self.url, {"orderId": first_retry.order_number})
        self.assertEqual(resp.status_code, 200)
        second_retry = Order.objects.get(gateway_order_id="order_retry2")
        self.assertEqual(second_retry.retry_of_id, self.order.pk)

        services.mark_paid(second_retry, "pay_r2")
        resp = self.post_json(self.url, {"orderId": first_retry.order_number})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(create.call_count, 2)

    def test_unknown_and_missing(self):
        self.assertEqual(self.post_json(self.url, {"orderId": "NOPE"}).status_code, 404)
        self.assertEqual(self.post_json(self.url, {}).status_code, 400)


class OrdersByUserViewTests(TestCase):
    url = "/api/orders/by-user"

    def setUp(self):
        for i in range(12):
            make_order(order_number=f"RUD{i:010d}", gateway_order_id=f"order_{i}", user_id="u1")
        make_order(order_number="RUDOTHER", gateway_order_id="order_other", user_id="u2")

    def test_paginates(self):
        first = self.client.get(self.url, {"userId": "u1"}).json()
        self.assertEqual(len(first["orders"]), 10)
        self.assertTrue(first["hasNext"])
        self.assertEqual(first["count"], 12)

        second = self.client.get(self.url, {"userId": "u1", "page": "2"}).json()
        self.assertEqual(len(second["orders"]), 2)
        self.assertFalse(second["hasNext"])
        self.assertTrue(second["hasPrev"])

    def test_requires_user(self):
        self.assertEqual(self.client.get(self.url).status_code, 400)


class FakeResponse:
    def __init__(self, status_code, data):
        self.status_code = status_code
        self._data = data
        self.text = json.dumps(data)

    def json(self):
        return self._data


class RazorpayClientTests(SimpleTestCase):
    config = GatewayConfig(key_id="rzp_test_k", key_secret="s", webhook_secret="w",
                           base_url="https://api.razorpay.test")

    def test_amount_in_paise(self):
        self.assertEqual(razorpay.amount_in_paise(Decimal("250.50")), 25050)
        self.assertEqual(razorpay.amount_in_paise("0.005"), 1)
        with self.assertRaises(RazorpayError):
            razorpay.amount_in_paise("abc")

    def test_create_order_posts_with_basic_auth(self):
        with patch("payments.integrations.razorpay.requests.request",
                   return_value=FakeResponse(200, {"id": "order_1"})) as req:
            data = razorpay.create_order(self.config, amount=Decimal("10.00"), receipt="receipt_1")
        self.assertEqual(data["id"], "order_1")
        method, url = req.call_args.args
        self.assertEqual((method, url), ("POST", "https://api.razorpay.test/v1/orders"))
        self.assertEqual(req.call_args.kwargs["json"]["amount"], 1000)
        self.assertEqual(req.call_args.kwargs["json"]["payment_capture"], 1)
        self.assertEqual(req.call_args.kwargs["auth"].username, "rzp_test_k")

    def test_error_status_raises(self):
        with patch("payments.integrations.razorpay.requests.request",
                   return_value=FakeResponse(401, {"error": {"code": "BAD_REQUEST_ERROR"}})):
            with self.assertLogs("payments.integrations.razorpay", level="ERROR"):
                with self.assertRaises(RazorpayError) as cm:
                    razorpay.fetch_order_payments(self.config, "order_1")
        self.assertEqual(cm.exception.status_code, 401)


class ReconcilePendingOrdersTests(TestCase):
    command = "payments.management.commands.reconcile_pending_orders.fetch_order_payments"

    def setUp(self):
        self.old = make_order()
        Order.objects.filter(pk=self.old.pk).update(created_at=timezone.now() - timedelta(hours=1))
        self.recent = make_order(order_number="RUD0000000009", gateway_order_id="order_recent")

    def _run(self):
        out = StringIO()
        call_command("reconcile_pending_orders", "--sleep", "0", stdout=out)
        return out.getvalue()

    def test_captured_payment_marks_paid(self):
        payments = [{"id": "pay_f", "status": "failed"}, {"id": "pay_c", "status": "captured"}]
        with patch(self.command, return_value=payments) as fetch:
            output = self._run()
        fetch.assert_called_once()
        self.assertIn("marked 1 paid", output)
        self.old.refresh_from_db()
        self.recent.refresh_from_db()
        self.assertEqual(self.old.payment_status, Order.PAID)
        self.assertEqual(self.old.gateway_payment_id, "pay_c")
        self.assertEqual(self.recent.payment_status, Order.PENDING)

    def test_captured_payment_on_failed_order_is_reported(self):
        services.mark_failed(self.recent, "user abort")
        Order.objects.filter(pk=self.old.pk).delete()
        payments = [{"id": "pay_f", "status": "failed"}, {"id": "pay_c", "status": "captured"}]
        with patch(self.command, return_value=payments) as fetch:
            with self.assertLogs("payments.management.commands.reconcile_pending_orders", level="WARNING"):
                output = self._run()
        fetch.assert_called_once_with(fetch.call_args.args[0], "order_recent")
        self.assertIn("No pending orders to reconcile.", output)
        self.assertIn("REFUND NEEDED RUD0000000009: payment pay_c", output)
        self.recent.refresh_from_db()
        self.assertEqual(self.recent.payment_status, Order.FAILED)

    def test_failed_order_without_capture_is_not_flagged(self):
        services.mark_failed(self.recent, "user abort")
        with patch(self.command, return_value=[{"id": "pay_f", "status": "failed"}]) as fetch:
            output = self._run()
        self.assertEqual(fetch.call_count, 2)
        self.assertIn("Checked 1 failed orders, 0 need a refund.", output)
        self.assertNotIn("REFUND NEEDED", output)

    def test_failed_pass_can_be_skipped(self):
        services.mark_failed(self.recent, "user abort")
        with patch(self.command, return_value=[]) as fetch:
            out = StringIO()
            call_command("reconcile_pending_orders", "--sleep", "0", "--failed-within-hours", "0", stdout=out)
        fetch.assert_called_once()
        self.assertNotIn("failed orders", out.getvalue())

    def test_gateway_error_leaves_order_pending(self):
        with patch(self.command, side_effect=RazorpayError("down")):
            output = self._run()
        self.assertIn("down", output)
        self.old.refresh_from_db()
        self.assertEqual(self.old.payment_status, Order.PENDING)
