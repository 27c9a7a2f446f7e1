import json
import logging
from decimal import Decimal, InvalidOperation
from functools import wraps

from django.db import DatabaseError
from django.http import JsonResponse
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt

from . import services
from .conf import get_gateway_config
from .exceptions import (
    AuthenticityError,
    GatewayError,
    NotFoundError,
    PaymentError,
    PersistenceError,
    StateConflictError,
    ValidationError,
)
from .integrations.razorpay import RazorpayError, amount_in_paise, create_order
from .models import Order
from .utils import generate_order_number, payment_signature_message, verify_signature

logger = logging.getLogger(__name__)

PAGE_SIZE = 10
MAX_QUANTITY = 1000
MAX_AMOUNT = Decimal("9999999999.99")


def error_response(exc: PaymentError) -> JsonResponse:
    return JsonResponse({"success": False, "error": exc.message}, status=exc.status_code)


def json_errors(view):
    """Convert anything a view raises into a JSON envelope; no tracebacks leak."""
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except PaymentError as e:
            if e.status_code >= 500:
                logger.error("%s failed: %s", view.__name__, e.message)
            return error_response(e)
        except RazorpayError as e:
            logger.error("%s: gateway call failed (status=%s)", view.__name__, e.status_code)
            return error_response(GatewayError())
        except DatabaseError:
            logger.exception("%s: database error", view.__name__)
            return error_response(PersistenceError())
        except Exception:
            logger.exception("%s crashed", view.__name__)
            return JsonResponse({"success": False, "error": "Internal server error"}, status=500)
    return wrapper


def require_methods(*methods):
    """Like django's require_http_methods, but answers 405 in the JSON envelope."""
    def decorator(view):
        @wraps(view)
        def wrapper(request, *args, **kwargs):
            if request.method not in methods:
                resp = JsonResponse({"success": False, "error": "Method not allowed"}, status=405)
                resp["Allow"] = ", ".join(methods)
                return resp
            return view(request, *args, **kwargs)
        return wrapper
    return decorator


def _json_body(request) -> dict:
    try:
        body = json.loads(request.body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise ValidationError("Invalid JSON body")
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body")
    return body


def _bounded(amount: Decimal, label: str) -> Decimal:
    # Order decimal columns hold at most 12 digits
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{label[0].upper()}{label[1:]} is too large")
    return amount


def _decimal(value, label: str) -> Decimal:
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"Invalid {label}")
    if not d.is_finite() or d < 0:
        raise ValidationError(f"Invalid {label}")
    return _bounded(d, label).quantize(Decimal("0.01"))


def _quantity(value, pos: int) -> int:
    # whole numbers only: no floats, no booleans
    if isinstance(value, int) and not isinstance(value, bool):
        qty = value
    elif isinstance(value, str) and value.strip().isdigit():
        qty = int(value)
    else:
        raise ValidationError(f"Invalid quantity at position {pos}")
    if not 1 <= qty <= MAX_QUANTITY:
        raise ValidationError(f"Invalid quantity at position {pos}")
    return qty


def _clean_items(raw) -> tuple[list, Decimal]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("Cart is empty")
    items, subtotal = [], Decimal("0.00")
    for pos, it in enumerate(raw, start=1):
        if not isinstance(it, dict):
            raise ValidationError(f"Invalid item at position {pos}")
        qty = _quantity(it.get("quantity"), pos)
        price = _decimal(it.get("price"), f"price at position {pos}")
        discount = _decimal(it.get("discount") or 0, f"discount at position {pos}")
        line_total = _bounded(price * qty - discount, f"total at position {pos}")
        if line_total < 0:
            raise ValidationError(f"Discount exceeds price at position {pos}")
        items.append({
            "productId": it.get("productId"),
            "variantId": it.get("variantId"),
            "name": str(it.get("name") or ""),
            "quantity": qty,
            "price": str(price),
            "discount": str(discount),
            "totalPrice": str(line_total),
        })
        subtotal += line_total
    return items, _bounded(subtotal, "subtotal")


def _unique_order_number() -> str:
    # regenerate on the rare collision, same as the gateway order id path
    number = generate_order_number()
    attempts = 0
    while Order.objects.filter(order_number=number).exists() and attempts < 5:
        number = generate_order_number()
        attempts += 1
    return number


def _open_gateway_order(config, *, order_number, total, currency, notes) -> dict:
    receipt = f"receipt_{int(timezone.now().timestamp() * 1000)}"
    gw = create_order(config, amount=total, receipt=receipt, currency=currency,
                      notes={"order_number": order_number, **notes})
    logger.info("Gateway order %s opened for %s", gw["id"], order_number)
    return gw


def _checkout_payload(config, order: Order, gw: dict) -> dict:
    return {
        "orderId": gw["id"],
        "amount": gw.get("amount"),
        "currency": gw.get("currency", order.currency),
        "keyId": config.key_id,
        "dbOrderId": order.pk,
        "orderNumber": order.order_number,
        "subtotal": str(order.subtotal),
        "shippingCost": str(order.shipping_cost),
        "total": str(order.total),
    }


@csrf_exempt
@require_methods("POST")
@json_errors
def checkout_view(request):
    """Create a gateway order for the submitted cart and persist it as pending."""
    config = get_gateway_config()
    body = _json_body(request)

    items, subtotal = _clean_items(body.get("items"))
    customer = body.get("customerInfo") or body.get("shippingAddress")
    if not isinstance(customer, dict) or not customer:
        raise ValidationError("Missing customer details")
    missing = [k for k in ("name", "phone") if not customer.get(k)]
    if missing:
        raise ValidationError(f"Missing customer fields: {', '.join(missing)}")

    shipping = _decimal(body.get("shippingCost") or 0, "shipping cost")
    total = _bounded(subtotal + shipping, "total")
    if body.get("total") is not None and _decimal(body["total"], "total") != total:
        raise ValidationError("Total does not match cart")
    currency = str(body.get("currency") or config.currency)

    order_number = _unique_order_number()
    gw = _open_gateway_order(config, order_number=order_number, total=total, currency=currency,
                             notes={"customer_name": str(customer.get("name", ""))})
    order = Order.objects.create(
        order_number=order_number,
        user_id=str(body.get("userId") or customer.get("phone") or "guest"),
        gateway_order_id=gw["id"],
        customer_info=customer,
        items=items,
        subtotal=subtotal,
        shipping_cost=shipping,
        total=total,
        currency=currency,
    )
    logger.info("Order %s created (gateway %s, total %s %s)", order.order_number,
                order.gateway_order_id, order.total, order.currency)
    return JsonResponse({"success": True, "data": _checkout_payload(config, order, gw)})


@csrf_exempt
@require_methods("POST")
@json_errors
def verify_payment_view(request):
    config = get_gateway_config()
    body = _json_body(request)
    required = ["razorpayOrderId", "razorpayPaymentId", "razorpaySignature"]
    missing = [k for k in required if not body.get(k)]
    if missing:
        raise ValidationError(f"Missing payment details: {', '.join(missing)}")

    gw_order_id = str(body["razorpayOrderId"])
    gw_payment_id = str(body["razorpayPaymentId"])
    signature = str(body["razorpaySignature"])

    message = payment_signature_message(gw_order_id, gw_payment_id)
    if not verify_signature(message, signature, config.key_secret):
        logger.warning("Rejected payment signature for gateway order %s", gw_order_id)
        raise AuthenticityError()

    order = services.get_order_by_gateway_id(gw_order_id)
    order, changed = services.mark_paid(order, gw_payment_id, signature)
    if not order.is_paid:
        raise StateConflictError(f"Order payment status is {order.payment_status}")

    message = "Payment verified successfully" if changed else "Payment already verified"
    return JsonResponse({"success": True, "message": message, "order": order.summary()})


@csrf_exempt
@require_methods("POST")
@json_errors
def cancel_payment_view(request):
    body = _json_body(request)
    gw_order_id = body.get("razorpayOrderId")
    if not gw_order_id:
        raise ValidationError("Missing Razorpay order ID")

    order = services.get_order_by_gateway_id(str(gw_order_id))
    if order.payment_status != Order.PENDING:
        # already settled, treat as success
        return JsonResponse({
            "success": True,
            "message": "Payment status already updated",
            "order": order.summary(),
        })

    reason = str(body.get("reason") or "Payment cancelled by user")
    order, changed = services.mark_failed(order, reason)
    message = "Payment cancelled successfully" if changed else "Payment status already updated"
    return JsonResponse({"success": True, "message": message, "order": order.summary()})


@csrf_exempt
@require_methods("POST")
@json_errors
def retry_order_view(request):
    """Open a fresh gateway order for a failed one.

    The failed order is left as is; the retry is a new pending order linked
    through ``retry_of`` to the first order of the chain. While a retry is
    pending it is handed back instead of opening another gateway order, and
    once one is paid no further retries are allowed.
    """
    config = get_gateway_config()
    body = _json_body(request)
    order_number = body.get("orderId")
    if not order_number:
        raise ValidationError("Order ID is required")

    try:
        original = Order.objects.get(order_number=str(order_number))
    except Order.DoesNotExist:
        raise NotFoundError()
    if original.payment_status != Order.FAILED:
        raise ValidationError("Can only retry failed payments")

    # retries always hang off the first order, so one check covers the chain
    root = original.retry_of or original
    live = list(root.retries.filter(payment_status__in=[Order.PENDING, Order.PAID])
                .order_by("-created_at"))
    if any(o.is_paid for o in live):
        raise ValidationError("Order has already been paid through a retry")
    if live:
        pending = live[0]
        logger.info("Reusing pending retry %s for %s", pending.order_number, original.order_number)
        gw = {"id": pending.gateway_order_id, "amount": amount_in_paise(pending.total),
              "currency": pending.currency}
        return JsonResponse({"success": True, "data": _checkout_payload(config, pending, gw)})

    new_number = _unique_order_number()
    gw = _open_gateway_order(config, order_number=new_number, total=original.total,
                             currency=original.currency,
                             notes={"is_retry": "true", "original_order_number": root.order_number})
    order = Order.objects.create(
        order_number=new_number,
        user_id=original.user_id,
        gateway_order_id=gw["id"],
        customer_info=original.customer_info,
        items=original.items,
        subtotal=original.subtotal,
        shipping_cost=original.shipping_cost,
        total=original.total,
        currency=original.currency,
        retry_of=root,
    )
    logger.info("Order %s created as retry of %s", order.order_number, original.order_number)
    return JsonResponse({"success": True, "data": _checkout_payload(config, order, gw)})


@require_methods("GET")
@json_errors
def orders_by_user_view(request):
    user_id = request.GET.get("userId", "")
    if not user_id:
        raise ValidationError("userId is required")

    try:
        page = int(request.GET.get("page", "1"))
    except ValueError:
        page = 1
    page = max(page, 1)
    start = (page - 1) * PAGE_SIZE
    end = start + PAGE_SIZE

    qs = Order.objects.filter(user_id=user_id).order_by("-created_at")
    total = qs.count()
    orders = [o.summary() for o in qs[start:end]]
    return JsonResponse({
        "success": True,
        "orders": orders,
        "page": page,
        "hasNext": end < total,
        "hasPrev": start > 0,
        "count": total,
    })
