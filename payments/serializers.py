"""
Serializers for payment requests.
"""
from rest_framework import serializers


class CreatePaymentIntentSerializer(serializers.Serializer):
    """Request body: {"order_number": "ORD-1001"}"""
    order_number = serializers.CharField(max_length=32)


class VerifyPaymentSerializer(serializers.Serializer):
    """
    Client verification call sent after the checkout widget completes.

    Request format:
    {
        "gatewayOrderId": "order_N5xyz",
        "gatewayPaymentId": "pay_N5abc",
        "signature": "<hex hmac>",
        "receipt": "ORD-1001"
    }
    """
    gatewayOrderId = serializers.CharField(max_length=64)
    gatewayPaymentId = serializers.CharField(max_length=64)
    signature = serializers.CharField(max_length=256)
    receipt = serializers.CharField(max_length=32, required=False, allow_blank=True)
