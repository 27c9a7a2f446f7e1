import hashlib
import hmac
import json
from unittest.mock import patch

from django.db import DatabaseError
from django.test import TestCase
from django.urls import reverse

from . import services
from .models import Order

WEBHOOK_SECRET = "fixture-webhook-secret"


def _envelope(event, status="captured", order_id="order_abc", payment_id="pay_123"):
    return {
        "entity": "event",
        "event": event,
        "payload": {
            "payment": {
                "entity": {"id": payment_id, "order_id": order_id, "status": status, "amount": 10000},
            },
        },
    }


class RazorpayWebhookTests(TestCase):
    def setUp(self):
        self.order = Order.objects.create(
            order_number="RUD0000000001",
            gateway_order_id="order_abc",
            subtotal=100,
            total=100,
        )

    def _post(self, payload, secret=WEBHOOK_SECRET, signature=None):
        body = payload if isinstance(payload, str) else json.dumps(payload)
        if signature is None:
            signature = hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()
        return self.client.post(
            reverse("razorpay_webhook"),
            data=body,
            content_type="application/json",
            HTTP_X_RAZORPAY_SIGNATURE=signature,
        )

    def _status(self):
        self.order.refresh_from_db()
        return self.order.payment_status

    def test_authorized_and_captured_marks_paid(self):
        resp = self._post(_envelope("payment.authorized"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "ok"})
        self.assertEqual(self._status(), Order.PAID)
        self.assertEqual(self.order.gateway_payment_id, "pay_123")

    def test_duplicate_delivery_is_harmless(self):
        self._post(_envelope("payment.authorized"))
        paid_at = Order.objects.get(pk=self.order.pk).paid_at
        resp = self._post(_envelope("payment.authorized"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self._status(), Order.PAID)
        self.assertEqual(self.order.paid_at, paid_at)

    def test_authorized_but_not_captured_stays_pending(self):
        resp = self._post(_envelope("payment.authorized", status="authorized"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self._status(), Order.PENDING)

    def test_captured_event(self):
        self._post(_envelope("payment.captured"))
        self.assertEqual(self._status(), Order.PAID)

    def test_order_paid_event_uses_order_entity(self):
        payload = {
            "event": "order.paid",
            "payload": {
                "order": {"entity": {"id": "order_abc", "status": "paid"}},
                "payment": {"entity": {"id": "pay_777", "status": "captured"}},
            },
        }
        self._post(payload)
        self.assertEqual(self._status(), Order.PAID)
        self.assertEqual(self.order.gateway_payment_id, "pay_777")

    def test_failed_event_marks_pending_order_failed(self):
        self._post(_envelope("payment.failed", status="failed"))
        self.assertEqual(self._status(), Order.FAILED)
        self.assertEqual(self.order.cancellation_reason, "")

    def test_failed_event_cannot_downgrade_paid(self):
        services.mark_paid(self.order, "pay_123")
        resp = self._post(_envelope("payment.failed", status="failed", payment_id="pay_456"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self._status(), Order.PAID)
        self.assertEqual(self.order.gateway_payment_id, "pay_123")

    def test_invalid_signature_rejected(self):
        with self.assertLogs("payments.webhook", level="WARNING"):
            resp = self._post(_envelope("payment.captured"), secret="wrong-secret")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self._status(), Order.PENDING)

    def test_missing_signature_rejected(self):
        resp = self._post(_envelope("payment.captured"), signature="")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self._status(), Order.PENDING)

    def test_signature_must_cover_raw_body(self):
        envelope = _envelope("payment.captured")
        compact = json.dumps(envelope, separators=(",", ":"))
        sig = hmac.new(WEBHOOK_SECRET.encode(), compact.encode(), hashlib.sha256).hexdigest()
        resp = self._post(json.dumps(envelope, indent=2), signature=sig)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self._status(), Order.PENDING)

    def test_unhandled_event_acknowledged(self):
        resp = self._post({"event": "refund.created", "payload": {}})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self._status(), Order.PENDING)

    def test_unknown_order_acknowledged(self):
        resp = self._post(_envelope("payment.captured", order_id="order_missing"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self._status(), Order.PENDING)

    def test_invalid_json_with_valid_signature(self):
        resp = self._post("{not json")
        self.assertEqual(resp.status_code, 400)

    def test_database_down_on_lookup_returns_500(self):
        with patch.object(Order.objects, "get", side_effect=DatabaseError("down")):
            with self.assertLogs("payments.views", level="ERROR"):
                resp = self._post(_envelope("payment.captured"))
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json(), {"success": False, "error": "Order storage unavailable"})

    def test_database_down_on_update_returns_500(self):
        with patch.object(Order.objects, "filter", side_effect=DatabaseError("down")):
            with self.assertLogs("payments.views", level="ERROR"):
                resp = self._post(_envelope("payment.captured"))
        self.assertEqual(resp.status_code, 500)
        self.assertFalse(resp.json()["success"])
        self.assertEqual(self._status(), Order.PENDING)

    def test_get_not_allowed(self):
        resp = self.client.get(reverse("razorpay_webhook"))
        self.assertEqual(resp.status_code, 405)
        self.assertEqual(resp["Allow"], "POST")
        self.assertEqual(resp.json(), {"success": False, "error": "Method not allowed"})
