"""
URL routing for payment endpoints.
"""
from django.urls import path
from . import views

app_name = 'payments'

urlpatterns = [
    path('razorpay/create-order/', views.CreatePaymentIntentView.as_view(), name='create-intent'),
    path('razorpay/verify/', views.VerifyPaymentView.as_view(), name='verify'),
    path('razorpay/webhook/', views.RazorpayWebhookView.as_view(), name='webhook'),
]
