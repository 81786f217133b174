"""
Error taxonomy for the payments core.

Validation failures are raised at the point closest to the bad input and
translated into HTTP responses by the routes. Storage and other unexpected
errors are not wrapped here; they propagate.
"""

from typing import Optional


class PaymentError(Exception):
    """Base class for all expected payment failures."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        super().__init__(self.message)


class AmountError(PaymentError):
    """Amount or currency input was rejected."""


class SettingsError(PaymentError):
    """Payment settings input broke a consistency rule. Nothing was written."""


class CheckoutError(PaymentError):
    """Checkout session could not be created or read."""

    def __init__(self, message: str, not_found: bool = False, code: Optional[str] = None) -> None:
        super().__init__(message, code)
        self.not_found = not_found


class WebhookError(PaymentError):
    """Webhook signature was missing or did not verify."""

