"""
Stripe hosted checkout and webhook verification.

Routes depend on `get_payment_gateway`; tests override it with a fake that has the
same two methods.
"""
import json
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional

import stripe

from config import FRONTEND_URL, STRIPE_CURRENCY, STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from logger import get_logger

logger = get_logger("payments")

CHECKOUT_COMPLETED = "checkout.session.completed"
CHECKOUT_EXPIRED = "checkout.session.expired"
CHECKOUT_PAYMENT_FAILED = "checkout.session.async_payment_failed"


class PaymentError(Exception):
    """The provider refused or failed a request."""


class WebhookVerificationError(Exception):
    """Webhook payload could not be authenticated."""


@dataclass
class CheckoutSession:
    id: str
    url: str


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


class StripeGateway:
    def __init__(
        self,
        api_key: str = STRIPE_SECRET_KEY,
        webhook_secret: str = STRIPE_WEBHOOK_SECRET,
        currency: str = STRIPE_CURRENCY,
        frontend_url: str = FRONTEND_URL,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.frontend_url = frontend_url

    def line_item(self, name: str, unit_price: float, quantity: int, image: Optional[str] = None) -> Dict[str, Any]:
        return {
            "price_data": {
                "currency": self.currency,
                "product_data": {"name": name, "images": [image] if image else []},
                "unit_amount": to_minor_units(unit_price),
            },
            "quantity": quantity,
        }

    def create_checkout_session(
        self,
        line_items: List[Dict[str, Any]],
        customer_email: str,
        metadata: Dict[str, str],
    ) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                payment_method_types=["card"],
                line_items=line_items,
                mode="payment",
                success_url=f"{self.frontend_url}/order/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{self.frontend_url}/cart",
                customer_email=customer_email,
                metadata=metadata,
            )
        except stripe.StripeError as e:
            logger.error("Stripe session creation failed: %s", e)
            raise PaymentError(str(e)) from e
        return CheckoutSession(id=session.id, url=session.url)

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify the Stripe-Signature header against the raw body and return the decoded event."""
        if not self.webhook_secret:
            raise WebhookVerificationError("Webhook secret not configured")
        if not signature:
            raise WebhookVerificationError("Missing Stripe-Signature header")
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError:
            raise WebhookVerificationError("Invalid payload")
        try:
            stripe.WebhookSignature.verify_header(
                text, signature, self.webhook_secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError(str(e)) from e
        try:
            return json.loads(text)
        except ValueError:
            raise WebhookVerificationError("Invalid payload")


def shipping_from_session(session: Dict[str, Any]) -> Dict[str, Any]:
    # Newer API versions nest shipping under collected_information.
    details = session.get("shipping_details") or (session.get("collected_information") or {}).get("shipping_details") or {}
    return {"name": details.get("name"), "address": details.get("address")}


@lru_cache(maxsize=1)
def get_payment_gateway() -> StripeGateway:
    return StripeGateway()
