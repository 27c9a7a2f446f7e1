from django.db import models


class Order(models.Model):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    PAYMENT_STATUS_CHOICES = [
        (PENDING, "Pending"),
        (PAID, "Paid"),
        (FAILED, "Failed"),
    ]

    order_number = models.CharField(max_length=20, unique=True, editable=False)  # local id
    user_id = models.CharField(max_length=64, blank=True, default="", db_index=True)

    gateway_order_id = models.CharField(max_length=64, unique=True)
    gateway_payment_id = models.CharField(max_length=64, blank=True, default="", db_index=True)
    gateway_signature = models.CharField(max_length=128, blank=True, default="")

    payment_status = models.CharField(
        max_length=12, choices=PAYMENT_STATUS_CHOICES, default=PENDING, db_index=True
    )
    cancellation_reason = models.CharField(max_length=255, blank=True, default="")

    customer_info = models.JSONField(default=dict, blank=True)
    items = models.JSONField(default=list, blank=True)
    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    shipping_cost = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=8, default="INR")

    retry_of = models.ForeignKey(
        "self", null=True, blank=True, on_delete=models.SET_NULL, related_name="retries"
    )
    paid_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    @property
    def is_paid(self) -> bool:
        return self.payment_status == self.PAID

    def summary(self) -> dict:
        return {
            "id": self.pk,
            "orderNumber": self.order_number,
            "razorpayOrderId": self.gateway_order_id,
            "razorpayPaymentId": self.gateway_payment_id or None,
            "paymentStatus": self.payment_status,
            "cancellationReason": self.cancellation_reason or None,
            "total": str(self.total),
            "currency": self.currency,
        }

    def __str__(self):
        return f"{self.order_number} ({self.payment_status})"
