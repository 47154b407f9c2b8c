from typing import Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class UpstreamError(ServiceError):
    """The fee backend answered with a non-2xx response."""

    def __init__(self, message: str, status_code: int, path: Optional[str] = None) -> None:
        super().__init__(message, status_code)
        self.path = path
        self.raw = message


class UpstreamUnavailable(ServiceError):
    """The fee backend could not be reached (connect error, timeout)."""

    def __init__(self, message: str = "Fee service is unreachable") -> None:
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE)


class CheckoutCancelled(ServiceError):
    """User closed the hosted checkout. Not surfaced as an error."""

    def __init__(self, message: str = "cancelled") -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class CheckoutFailed(ServiceError):
    """Hosted checkout reported a failure other than cancellation."""

    def __init__(self, message: str = "Payment failed") -> None:
        super().__init__(message, status.HTTP_402_PAYMENT_REQUIRED)
