from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
import logging

logger = logging.getLogger(__name__)


class BusinessLogicException(Exception):
    """
    Raised when a domain rule is violated (e.g. 'Stock not available').

    Subclasses pin their own ``code`` and ``status_code``; ``extra`` is merged
    into the error body so clients know which product/limit was hit.
    """
    code = "business_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message, code=None, **extra):
        self.message = message
        if code:
            self.code = code
        self.extra = extra
        super().__init__(message)

    def as_dict(self):
        return {"error": self.message, "code": self.code, **self.extra}


def custom_exception_handler(exc, context):
    # Call REST framework's default exception handler first
    response = exception_handler(exc, context)

    if isinstance(exc, BusinessLogicException):
        return Response(exc.as_dict(), status=exc.status_code)

    # If response is None, it's an unhandled server error (500)
    if response is None:
        logger.error(f"Unhandled Exception: {exc}", exc_info=True)
        return Response(
            {"error": "Internal Server Error", "code": "server_error"},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    return response
