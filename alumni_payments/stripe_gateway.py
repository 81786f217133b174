import logging
from typing import Any, Optional

import stripe

from alumni_payments.config import Settings

logger = logging.getLogger(__name__)


class StripeGateway:
    """
    Configured handle to the Stripe API.

    The key is passed on every request instead of being set on the global
    ``stripe`` module, so several gateways (and fakes in tests) can coexist.
    """

    def __init__(self, api_key: str, webhook_secret: Optional[str] = None, currency: str = "jpy"):
        if not api_key:
            raise RuntimeError("STRIPE_SECRET_KEY is not configured")
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    def create_checkout_session(self, **params: Any):
        return stripe.checkout.Session.create(api_key=self.api_key, **params)

    def retrieve_checkout_session(self, session_id: str):
        return stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)

    def construct_event(self, payload, signature: str, secret: str):
        # Constant-time HMAC check plus timestamp tolerance, done by the SDK
        return stripe.Webhook.construct_event(payload, signature, secret)


def create_stripe_gateway(settings: Settings) -> StripeGateway:
    gateway = StripeGateway(
        api_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        currency=settings.payment_currency,
    )
    logger.info("Stripe gateway configured (currency=%s)", settings.payment_currency)
    return gateway
