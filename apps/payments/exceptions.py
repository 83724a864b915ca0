from rest_framework import status

from apps.utils.exceptions import BusinessLogicException


class InvalidSignature(BusinessLogicException):
    code = "invalid_signature"
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message="Invalid webhook signature."):
        super().__init__(message)


class PaymentGatewayError(BusinessLogicException):
    code = "payment_gateway_error"
    status_code = status.HTTP_502_BAD_GATEWAY
