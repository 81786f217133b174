import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from alumni_payments.errors import AmountError, CheckoutError
from alumni_payments.models import Payment, PaymentStatus, PaymentType, Tenant
from alumni_payments.stripe_gateway import StripeGateway
from alumni_payments.validation import format_amount_for_stripe, validate_payment_amount

logger = logging.getLogger(__name__)

PROVIDER_ERROR = "provider_error"

PRODUCT_NAME_SUFFIXES = {
    PaymentType.ANNUAL_FEE: "Annual fee",
    PaymentType.DONATION: "Donation",
    PaymentType.EVENT_FEE: "Event fee",
}


@dataclass
class CheckoutParams:
    tenant_id: str
    type: str
    amount: int
    success_url: str
    cancel_url: str
    description: Optional[str] = None
    is_anonymous: bool = False
    event_id: Optional[str] = None
    customer_email: Optional[str] = None


@dataclass
class CheckoutSessionResult:
    session_id: str
    url: str


def product_name(payment_type: PaymentType, tenant_name: str) -> str:
    return f"{tenant_name} - {PRODUCT_NAME_SUFFIXES.get(payment_type, 'Payment')}"


def parse_payment_type(value) -> PaymentType:
    try:
        return PaymentType(value)
    except ValueError:
        raise CheckoutError(f"Invalid payment type: {value}")


class CheckoutSessionFactory:
    def __init__(self, db: Session, gateway: StripeGateway):
        self.db = db
        self.gateway = gateway

    def create_checkout_session(self, params: CheckoutParams) -> CheckoutSessionResult:
        """
        Create a hosted Stripe Checkout session and record a PENDING payment.

        The Stripe session is created first so that a provider failure never
        leaves a local row behind. If the local insert fails afterwards the
        session exists without a row; webhook handling skips such sessions.
        """
        if not params.tenant_id:
            raise CheckoutError("tenantId is required")
        if not params.success_url:
            raise CheckoutError("successUrl is required")
        if not params.cancel_url:
            raise CheckoutError("cancelUrl is required")

        payment_type = parse_payment_type(params.type)

        try:
            validate_payment_amount(params.amount)
        except AmountError as exc:
            raise CheckoutError(exc.message)

        tenant = self.db.get(Tenant, params.tenant_id)
        if tenant is None:
            raise CheckoutError("Tenant not found", not_found=True)

        currency = self.gateway.currency
        product_data = {"name": product_name(payment_type, tenant.name)}
        if params.description:
            product_data["description"] = params.description

        session_params = dict(
            mode="payment",
            payment_method_types=["card"],
            currency=currency,
            line_items=[
                {
                    "price_data": {
                        "currency": currency,
                        "unit_amount": format_amount_for_stripe(int(params.amount), currency),
                        "product_data": product_data,
                    },
                    "quantity": 1,
                }
            ],
            success_url=f"{params.success_url}?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=params.cancel_url,
            metadata={
                "tenantId": params.tenant_id,
                "type": payment_type.value,
                "eventId": params.event_id or "",
                "isAnonymous": str(bool(params.is_anonymous)).lower(),
            },
        )
        if params.customer_email:
            session_params["customer_email"] = params.customer_email

        try:
            session = self.gateway.create_checkout_session(**session_params)
        except Exception as exc:
            logger.error("Stripe checkout session creation failed for tenant %s: %s", params.tenant_id, exc)
            raise CheckoutError("Failed to create checkout session", code=PROVIDER_ERROR) from exc

        payment = Payment(
            tenant_id=params.tenant_id,
            external_session_id=session.id,
            type=payment_type,
            amount=int(params.amount),
            currency=currency,
            status=PaymentStatus.PENDING,
            is_anonymous=bool(params.is_anonymous),
            description=params.description,
            event_id=params.event_id or None,
            extra_metadata={},
        )
        try:
            self.db.add(payment)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.error(
                "Checkout session %s was created but the payment row could not be saved",
                session.id,
            )
            raise

        logger.info(
            "Created checkout session %s for tenant %s (%s, %s %s)",
            session.id,
            params.tenant_id,
            payment_type.value,
            params.amount,
            currency,
        )
        return CheckoutSessionResult(session_id=session.id, url=session.url)

    def get_checkout_session(self, session_id: str):
        if not session_id:
            raise CheckoutError("sessionId is required")
        return self.gateway.retrieve_checkout_session(session_id)
