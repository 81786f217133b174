"""
Stripe webhook verification and payment state reconciliation.

Payment status only moves forward through ALLOWED_TRANSITIONS. Each update is
a conditional UPDATE on the current status, so redelivered or concurrent
events can neither regress a payment nor touch its amount, type or tenant.
A delivery that finds no payment, or whose transition is not allowed from the
current status, is a skip: it is acknowledged and nothing is written.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import stripe
from sqlalchemy.orm import Session

from alumni_payments.errors import WebhookError
from alumni_payments.models import Payment, PaymentStatus, utcnow
from alumni_payments.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.PROCESSING, PaymentStatus.COMPLETED, PaymentStatus.EXPIRED},
    PaymentStatus.PROCESSING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED},
    PaymentStatus.PARTIALLY_REFUNDED: {PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.EXPIRED: set(),
    PaymentStatus.REFUNDED: set(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[PaymentStatus(current)]


def source_statuses(target: PaymentStatus):
    return [status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets]


@dataclass
class WebhookResult:
    handled: bool
    skipped: bool = False
    event_type: Optional[str] = None


def construct_webhook_event(gateway: StripeGateway, raw_body, signature: Optional[str], secret: Optional[str]):
    """
    Verify the Stripe-Signature header and parse the event.

    The verified event is returned as plain nested dicts, so handlers do not
    depend on how a given SDK release models ``StripeObject``.

    :raises WebhookError: when the header or secret is missing, or the
        signature (or payload) does not verify
    """
    if not signature:
        raise WebhookError("Missing signature header")
    if not secret:
        raise WebhookError("Webhook secret not configured")

    try:
        event = gateway.construct_event(raw_body, signature, secret)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        raise WebhookError(f"Invalid webhook signature: {exc}") from exc
    return event.to_dict()


def _reference_id(value) -> Optional[str]:
    # Expandable fields are either an id string or the expanded object
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    return value.get("id")


def _field(obj: Optional[Mapping[str, Any]], name: str):
    if obj is None:
        return None
    return obj.get(name)


class WebhookReconciler:
    def __init__(self, db: Session):
        self.db = db
        self.handlers = {
            "checkout.session.completed": self._handle_checkout_session_completed,
            "checkout.session.async_payment_succeeded": self._handle_async_payment_succeeded,
            "checkout.session.async_payment_failed": self._handle_async_payment_failed,
            "checkout.session.expired": self._handle_checkout_session_expired,
            "charge.refunded": self._handle_charge_refunded,
            "payment_intent.payment_failed": self._handle_payment_intent_failed,
        }

    def handle_webhook_event(self, event) -> WebhookResult:
        event_type = event["type"]
        handler = self.handlers.get(event_type)
        if handler is None:
            logger.debug("Ignoring unhandled webhook event type %s", event_type)
            return WebhookResult(handled=False, event_type=event_type)

        data_object = event["data"]["object"]
        return handler(event_type, data_object)

    # Lookups

    def _by_session_id(self, session_id: Optional[str]) -> Optional[Payment]:
        if not session_id:
            return None
        return self.db.query(Payment).filter_by(external_session_id=session_id).first()

    def _by_payment_reference(self, reference_id: Optional[str]) -> Optional[Payment]:
        if not reference_id:
            return None
        return self.db.query(Payment).filter_by(external_payment_reference_id=reference_id).first()

    def _skip(self, event_type: str, reason: str, reference: Optional[str]) -> WebhookResult:
        logger.info("Skipping %s for %s: %s", event_type, reference, reason)
        return WebhookResult(handled=True, skipped=True, event_type=event_type)

    def _transition(self, payment: Payment, target: PaymentStatus, values: Dict[str, Any]) -> bool:
        """
        Move ``payment`` to ``target`` if its stored status still allows it.

        Returns False when another delivery changed the status first.
        """
        changes = {Payment.status: target}
        changes.update({getattr(Payment, name): value for name, value in values.items()})
        updated = (
            self.db.query(Payment)
            .filter(Payment.id == payment.id, Payment.status.in_(source_statuses(target)))
            .update(changes, synchronize_session=False)
        )
        self.db.commit()
        self.db.expire(payment)
        if updated:
            logger.info("Payment %s -> %s", payment.id, target.value)
        return bool(updated)

    def _apply(self, event_type: str, payment: Payment, target: PaymentStatus, values: Dict[str, Any]) -> WebhookResult:
        if not can_transition(payment.status, target):
            return self._skip(event_type, f"{PaymentStatus(payment.status).value} -> {target.value} not allowed", payment.id)
        if not self._transition(payment, target, values):
            return self._skip(event_type, "status changed concurrently", payment.id)
        return WebhookResult(handled=True, event_type=event_type)

    # Handlers

    def _completed_values(self, session) -> Dict[str, Any]:
        customer = _field(session, "customer_details")
        return {
            "completed_at": utcnow(),
            "external_payment_reference_id": _reference_id(_field(session, "payment_intent")),
            "payer_email": _field(customer, "email") or None,
            "payer_name": _field(customer, "name") or None,
        }

    def _handle_checkout_session_completed(self, event_type: str, session) -> WebhookResult:
        session_id = session["id"]
        payment = self._by_session_id(session_id)
        if payment is None:
            return self._skip(event_type, "no payment for session", session_id)

        if payment.status == PaymentStatus.COMPLETED and payment.completed_at is not None:
            return self._skip(event_type, "already completed", session_id)

        if _field(session, "payment_status") == "paid":
            return self._apply(event_type, payment, PaymentStatus.COMPLETED, self._completed_values(session))

        # Delayed payment methods: paid later via async_payment_succeeded
        customer = _field(session, "customer_details")
        return self._apply(
            event_type,
            payment,
            PaymentStatus.PROCESSING,
            {
                "external_payment_reference_id": _reference_id(_field(session, "payment_intent")),
                "payer_email": _field(customer, "email") or None,
                "payer_name": _field(customer, "name") or None,
            },
        )

    def _handle_async_payment_succeeded(self, event_type: str, session) -> WebhookResult:
        session_id = session["id"]
        payment = self._by_session_id(session_id)
        if payment is None:
            return self._skip(event_type, "no payment for session", session_id)
        if payment.status == PaymentStatus.COMPLETED:
            return self._skip(event_type, "already completed", session_id)
        return self._apply(event_type, payment, PaymentStatus.COMPLETED, self._completed_values(session))

    def _handle_async_payment_failed(self, event_type: str, session) -> WebhookResult:
        session_id = session["id"]
        payment = self._by_session_id(session_id)
        if payment is None:
            return self._skip(event_type, "no payment for session", session_id)
        metadata = dict(payment.extra_metadata or {})
        metadata.update({"failureReason": "Delayed payment failed", "failureCode": None})
        return self._apply(event_type, payment, PaymentStatus.FAILED, {"extra_metadata": metadata})

    def _handle_checkout_session_expired(self, event_type: str, session) -> WebhookResult:
        session_id = session["id"]
        payment = self._by_session_id(session_id)
        if payment is None:
            return self._skip(event_type, "no payment for session", session_id)
        return self._apply(event_type, payment, PaymentStatus.EXPIRED, {})

    def _handle_charge_refunded(self, event_type: str, charge) -> WebhookResult:
        reference_id = _reference_id(_field(charge, "payment_intent"))
        payment = self._by_payment_reference(reference_id)
        if payment is None:
            return self._skip(event_type, "no payment for payment intent", reference_id)

        amount = _field(charge, "amount") or 0
        amount_refunded = _field(charge, "amount_refunded") or 0
        fully_refunded = _field(charge, "refunded") is True or (amount > 0 and amount_refunded >= amount)
        target = PaymentStatus.REFUNDED if fully_refunded else PaymentStatus.PARTIALLY_REFUNDED
        return self._apply(event_type, payment, target, {"refunded_at": utcnow()})

    def _handle_payment_intent_failed(self, event_type: str, payment_intent) -> WebhookResult:
        reference_id = payment_intent["id"]
        payment = self._by_payment_reference(reference_id)
        if payment is None:
            return self._skip(event_type, "no payment for payment intent", reference_id)

        last_error = _field(payment_intent, "last_payment_error")
        metadata = dict(payment.extra_metadata or {})
        metadata.update(
            {
                "failureReason": _field(last_error, "message") or None,
                "failureCode": _field(last_error, "code") or None,
            }
        )
        return self._apply(event_type, payment, PaymentStatus.FAILED, {"extra_metadata": metadata})
