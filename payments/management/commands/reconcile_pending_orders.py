import logging
import time
from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from payments import services
from payments.conf import get_gateway_config
from payments.integrations.razorpay import RazorpayError, fetch_order_payments
from payments.models import Order

logger = logging.getLogger(__name__)


def _captured(payments):
    return next((p for p in payments if str(p.get("status", "")).lower() == "captured"), None)


class Command(BaseCommand):
    help = ("Poll Razorpay for pending orders and mark paid those with a captured payment; "
            "report recently failed orders that were captured anyway")

    def add_arguments(self, parser):
        parser.add_argument("--max", type=int, default=50)
        parser.add_argument("--sleep", type=float, default=0.5)
        parser.add_argument("--older-than-minutes", type=int, default=5)
        parser.add_argument("--failed-within-hours", type=int, default=48,
                            help="Check orders that failed within the last N hours (0=skip)")

    def _fetch(self, config, order):
        try:
            return fetch_order_payments(config, order.gateway_order_id)
        except RazorpayError as e:
            self.stdout.write(self.style.WARNING(f"{order.order_number}: {e}"))
            return None

    def handle(self, *args, **opts):
        self.config = get_gateway_config()
        self.sleep = opts["sleep"]
        self._reconcile_pending(opts)
        if opts["failed_within_hours"] > 0:
            self._report_captured_failures(opts)

    def _pause(self):
        if self.sleep:
            time.sleep(self.sleep)

    def _reconcile_pending(self, opts):
        cutoff = timezone.now() - timedelta(minutes=opts["older_than_minutes"])
        orders = list(Order.objects.filter(payment_status=Order.PENDING, created_at__lt=cutoff)
                      .order_by("created_at")[:opts["max"]])
        if not orders:
            self.stdout.write(self.style.SUCCESS("No pending orders to reconcile."))
            return

        updated = 0
        for o in orders:
            payments = self._fetch(self.config, o)
            if payments is None:
                continue
            captured = _captured(payments)
            if captured is None:
                self.stdout.write(f"{o.order_number}: no captured payment ({len(payments)} attempts)")
            else:
                o, changed = services.mark_paid(o, str(captured.get("id") or ""))
                if changed:
                    updated += 1
                self.stdout.write(self.style.SUCCESS(f"Updated {o.order_number} -> {o.payment_status}"))
            self._pause()

        self.stdout.write(self.style.SUCCESS(f"Checked {len(orders)}, marked {updated} paid."))

    def _report_captured_failures(self, opts):
        # failed is terminal, so these are only reported for a refund
        cutoff = timezone.now() - timedelta(hours=opts["failed_within_hours"])
        orders = list(Order.objects.filter(payment_status=Order.FAILED, updated_at__gte=cutoff)
                      .order_by("updated_at")[:opts["max"]])
        flagged = 0
        for o in orders:
            payments = self._fetch(self.config, o)
            if payments is None:
                continue
            captured = _captured(payments)
            if captured is not None:
                flagged += 1
                logger.warning("Order %s is failed but payment %s was captured; refund needed",
                               o.order_number, captured.get("id"))
                self.stdout.write(self.style.ERROR(
                    f"REFUND NEEDED {o.order_number}: payment {captured.get('id')} captured on a failed order"
                ))
            self._pause()

        self.stdout.write(f"Checked {len(orders)} failed orders, {flagged} need a refund.")
