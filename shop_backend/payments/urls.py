# payments/urls.py

from django.urls import path

from payments.views import PaymentMethodsView, PaymentVerifyView, PaymentWebhookView

app_name = "payments"

urlpatterns = [
    path("methods/", PaymentMethodsView.as_view(), name="payment-methods"),
    path("verify/", PaymentVerifyView.as_view(), name="payment-verify"),
    path("webhook/", PaymentWebhookView.as_view(), name="payment-webhook"),
]
