"""
Stripe implementation of the payment gateway. Set STRIPE_SECRET_KEY and STRIPE_WEBHOOK_SECRET in .env.
"""
import logging

import stripe

from app.config import settings
from app.core.errors import PaymentGatewayError
from app.services.payments.base import ChargeResult, RefundResult

logger = logging.getLogger(__name__)

# Errors after which Stripe has not charged and will not charge for this request.
_DEFINITIVE_ERRORS = (
    stripe.CardError,
    stripe.InvalidRequestError,
    stripe.AuthenticationError,
    stripe.PermissionError,
)


class StripeGateway:
    def __init__(self, api_key: str | None = None, webhook_secret: str | None = None):
        self.api_key = (api_key if api_key is not None else settings.stripe_secret_key).strip()
        self.webhook_secret = (webhook_secret if webhook_secret is not None else settings.stripe_webhook_secret).strip()

    def _require_key(self) -> None:
        if not self.api_key:
            raise PaymentGatewayError("STRIPE_SECRET_KEY is not set", definitive=True)

    def charge(
        self,
        payment_method: str,
        amount_cents: int,
        *,
        currency: str,
        metadata: dict | None = None,
    ) -> ChargeResult:
        self._require_key()
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=currency,
                payment_method=payment_method,
                confirm=True,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                metadata={k: str(v) for k, v in (metadata or {}).items()},
                api_key=self.api_key,
            )
        except _DEFINITIVE_ERRORS as e:
            logger.warning("Stripe declined charge of %s %s: %s", amount_cents, currency, e)
            raise PaymentGatewayError(getattr(e, "user_message", None) or str(e), definitive=True) from e
        except stripe.StripeError as e:
            # Connection drops and API errors may have charged; the webhook decides.
            logger.warning("Stripe charge outcome unknown: %s", e)
            raise PaymentGatewayError(str(e), definitive=False) from e
        logger.info("Stripe PaymentIntent %s created (status=%s)", intent.id, intent.status)
        return ChargeResult(intent_id=intent.id, succeeded=intent.status == "succeeded", status=intent.status)

    def refund(self, intent_id: str, amount_cents: int | None = None) -> RefundResult:
        self._require_key()
        params = {"payment_intent": intent_id, "reason": "requested_by_customer", "api_key": self.api_key}
        if amount_cents is not None:
            params["amount"] = amount_cents
        try:
            refund = stripe.Refund.create(**params)
        except stripe.StripeError as e:
            logger.warning("Stripe refund failed for %s: %s", intent_id, e)
            raise PaymentGatewayError(str(e), definitive=isinstance(e, _DEFINITIVE_ERRORS)) from e
        logger.info("Stripe refund %s for %s (%s cents)", refund.id, intent_id, amount_cents)
        return RefundResult(refund_id=refund.id, status=refund.status or "")

    def parse_event(self, payload: bytes, signature: str) -> tuple[str, str, str | None]:
        """
        Verify a webhook payload and return (event_type, payment_intent_id, booking_number).
        booking_number comes from the intent metadata set in charge(). Raises ValueError on a
        bad payload or signature.
        """
        if not self.webhook_secret:
            raise ValueError("STRIPE_WEBHOOK_SECRET is not set")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise ValueError(f"Invalid signature: {e}") from e
        obj = event["data"]["object"]
        metadata = obj.get("metadata") or {}
        return event["type"], obj.get("id") or "", metadata.get("booking_number")
