from django.urls import path
from . import views
app_name = "payments"
urlpatterns = [
    path("verify", views.verify_payment_view, name="verify"),
    path("cancel", views.cancel_payment_view, name="cancel"),
    path("retry-order", views.retry_order_view, name="retry_order"),
]
