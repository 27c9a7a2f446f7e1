from django.contrib import admin
from django.urls import include, path

from payments import views as payment_views
from payments import webhook

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/checkout", payment_views.checkout_view, name="checkout"),
    path("api/payment/", include("payments.urls")),
    path("api/orders/by-user", payment_views.orders_by_user_view, name="orders_by_user"),
    path("api/webhooks/razorpay", webhook.razorpay_webhook, name="razorpay_webhook"),
]

handler404 = "storefront.views.error_404_view"
handler500 = "storefront.views.error_500_view"
