import logging

from django.db import DatabaseError, transaction
from django.utils import timezone

from .exceptions import NotFoundError, PersistenceError
from .models import Order

logger = logging.getLogger(__name__)

PENDING, PAID, FAILED = Order.PENDING, Order.PAID, Order.FAILED

# Every payment_status change goes through transition(); anything not
# listed here is a no-op.
ALLOWED_TRANSITIONS = {
    PENDING: frozenset({PAID, FAILED}),
    PAID: frozenset(),
    FAILED: frozenset(),
}


def get_order_by_gateway_id(gateway_order_id: str) -> Order:
    try:
        return Order.objects.get(gateway_order_id=gateway_order_id)
    except Order.DoesNotExist:
        raise NotFoundError()
    except DatabaseError as e:
        raise PersistenceError() from e


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, ())


def transition(order: Order, target: str, **fields) -> tuple[Order, bool]:
    """Move ``order`` to ``target`` if the table allows it.

    Returns ``(order, changed)``. The write is a single conditional UPDATE on
    the status read here, so a concurrent writer that got there first wins
    and this call reports ``changed=False`` with the fresh row.
    """
    current = order.payment_status
    if current == target:
        return order, False
    if not can_transition(current, target):
        logger.warning(
            "Ignoring %s -> %s for order %s", current, target, order.order_number
        )
        return order, False

    now = timezone.now()
    values = {"payment_status": target, "updated_at": now, **fields}
    if target == PAID:
        values.setdefault("paid_at", now)
    try:
        with transaction.atomic():
            updated = Order.objects.filter(pk=order.pk, payment_status=current).update(**values)
        order.refresh_from_db()
    except DatabaseError as e:
        raise PersistenceError() from e

    if updated:
        logger.info("Order %s: %s -> %s", order.order_number, current, target)
    else:
        logger.info(
            "Order %s already moved to %s by another writer",
            order.order_number, order.payment_status,
        )
    return order, bool(updated)


def _payment_id_fields(order: Order, gateway_payment_id: str) -> dict:
    # set once, never overwritten
    if gateway_payment_id and not order.gateway_payment_id:
        return {"gateway_payment_id": gateway_payment_id}
    return {}


def mark_paid(order: Order, gateway_payment_id: str, signature: str = "") -> tuple[Order, bool]:
    fields = _payment_id_fields(order, gateway_payment_id)
    if signature:
        fields["gateway_signature"] = signature[:128]
    return transition(order, PAID, **fields)


def mark_failed(order: Order, reason: str = "", gateway_payment_id: str = "") -> tuple[Order, bool]:
    fields = _payment_id_fields(order, gateway_payment_id)
    if reason:
        fields["cancellation_reason"] = reason[:255]
    return transition(order, FAILED, **fields)
