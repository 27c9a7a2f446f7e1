import json
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt

from . import services
from .conf import get_gateway_config
from .exceptions import AuthenticityError, NotFoundError, ValidationError
from .utils import verify_signature
from .views import json_errors, require_methods

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Razorpay-Signature"


def _entity(envelope: dict, name: str) -> dict:
    entity = ((envelope.get("payload") or {}).get(name) or {}).get("entity")
    return entity if isinstance(entity, dict) else {}


def _on_payment_captured(order, payment, signature):
    return services.mark_paid(order, str(payment.get("id") or ""), signature)


def _on_payment_authorized(order, payment, signature):
    # auto-capture reports authorized first; only a captured payment settles
    if str(payment.get("status") or "").lower() != "captured":
        return order, False
    return services.mark_paid(order, str(payment.get("id") or ""), signature)


def _on_payment_failed(order, payment, signature):
    return services.mark_failed(order, gateway_payment_id=str(payment.get("id") or ""))


EVENT_HANDLERS = {
    "payment.captured": _on_payment_captured,
    "payment.authorized": _on_payment_authorized,
    "order.paid": _on_payment_captured,
    "payment.failed": _on_payment_failed,
}


def _ok():
    return JsonResponse({"status": "ok"})


@csrf_exempt
@require_methods("POST")
@json_errors
def razorpay_webhook(request):
    """Gateway event callback; delivery is at-least-once, so replays are no-ops.

    Every authentic request is acknowledged with 200 so the gateway stops
    retrying, including events we do not act on. Only signature failures and
    unparseable bodies are rejected; storage errors return 500 so the event
    gets redelivered.
    """
    config = get_gateway_config()
    signature = request.headers.get(SIGNATURE_HEADER, "")
    event_id = request.headers.get("X-Razorpay-Event-Id", "-")

    # signed over the raw body, not a re-serialised one
    if not verify_signature(request.body, signature, config.webhook_secret):
        logger.warning("Webhook signature rejected (event id %s)", event_id)
        raise AuthenticityError()

    try:
        envelope = json.loads(request.body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise ValidationError("Invalid JSON")
    if not isinstance(envelope, dict):
        raise ValidationError("Invalid JSON")

    event = str(envelope.get("event") or "")
    handler = EVENT_HANDLERS.get(event)
    if handler is None:
        logger.info("Ignoring webhook event %r (event id %s)", event, event_id)
        return _ok()

    payment = _entity(envelope, "payment")
    gw_order_id = payment.get("order_id") or _entity(envelope, "order").get("id")
    if not gw_order_id:
        logger.info("Webhook %s carries no order id (event id %s)", event, event_id)
        return _ok()

    try:
        order = services.get_order_by_gateway_id(str(gw_order_id))
    except NotFoundError:
        logger.info("Webhook %s for unknown gateway order %s", event, gw_order_id)
        return _ok()

    order, changed = handler(order, payment, signature)
    logger.info("Webhook %s for order %s: status=%s changed=%s",
                event, order.order_number, order.payment_status, changed)
    return _ok()
