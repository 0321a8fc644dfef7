from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
import json
from typing import Optional

import stripe
import structlog

from .errors import GatewayError, NotFound, SignatureInvalid

log = structlog.get_logger(__name__)

COMPLETED = "completed"
IGNORED = "ignored"

# seconds a signed webhook stays valid, Stripe's own default
SIGNATURE_TOLERANCE = 300


@dataclass(frozen=True)
class PaymentEvent:
    kind: str  # COMPLETED | IGNORED
    type: str
    event_id: Optional[str]
    session_id: Optional[str]
    email: Optional[str]


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    paid: bool


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class PaymentAdapter(ABC):
    @abstractmethod
    async def create_checkout_session(self, email: str) -> str:
        """Returns the hosted payment page URL."""

    @abstractmethod
    async def retrieve_session(self, session_id: str) -> CheckoutSession:
        ...

    @abstractmethod
    def verify_and_parse_event(
        self, payload: bytes, signature: Optional[str]
    ) -> PaymentEvent:
        ...


def _session_email(obj) -> Optional[str]:
    details = obj.get("customer_details") or {}
    metadata = obj.get("metadata") or {}
    return (
        details.get("email")
        or obj.get("customer_email")
        or metadata.get("email")
    )


# ----------------------------
# Stripe implementation
# ----------------------------
class StripeGateway(PaymentAdapter):
    def __init__(self, *, secret_key: str, price_id: str,
                 webhook_secret: str, public_url: str):
        self.secret_key = secret_key
        self.price_id = price_id
        self.webhook_secret = webhook_secret
        self.public_url = public_url.rstrip("/")

    async def create_checkout_session(self, email: str) -> str:
        try:
            session = await stripe.checkout.Session.create_async(
                api_key=self.secret_key,
                mode="payment",
                line_items=[{"price": self.price_id, "quantity": 1}],
                customer_email=email,
                metadata={"email": email},
                success_url=(
                    f"{self.public_url}/success"
                    "?session_id={CHECKOUT_SESSION_ID}"
                ),
                cancel_url=f"{self.public_url}/?canceled=1",
            )
        except stripe.StripeError as e:
            log.error("checkout_create_failed", email=email, error=str(e))
            raise GatewayError(str(e)) from e
        log.info("checkout_created", session_id=session.id, email=email)
        return session.url

    async def retrieve_session(self, session_id: str) -> CheckoutSession:
        try:
            session = await stripe.checkout.Session.retrieve_async(
                session_id, api_key=self.secret_key
            )
        except stripe.InvalidRequestError as e:
            # unknown id
            raise NotFound("payment session not found") from e
        except stripe.StripeError as e:
            log.error("checkout_retrieve_failed", session_id=session_id,
                      error=str(e))
            raise GatewayError(str(e)) from e
        return CheckoutSession(
            id=session.id,
            paid=getattr(session, "payment_status", None) == "paid",
        )

    def verify_and_parse_event(
        self, payload: bytes, signature: Optional[str]
    ) -> PaymentEvent:
        """
        `payload` must be the request body exactly as received: the signature
        covers the raw bytes, so anything re-serialized will not verify.
        """
        if not self.webhook_secret:
            raise SignatureInvalid("webhook secret not configured")
        if not signature:
            raise SignatureInvalid("missing Stripe-Signature header")
        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body, signature, self.webhook_secret,
                tolerance=SIGNATURE_TOLERANCE,
            )
            event = json.loads(body)
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalid("invalid signature") from e
        except ValueError as e:
            # undecodable bytes or JSON
            raise SignatureInvalid("invalid payload") from e

        etype = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}
        kind = IGNORED
        if etype == "checkout.session.completed":
            if obj.get("payment_status") == "paid":
                kind = COMPLETED
        elif etype == "checkout.session.async_payment_succeeded":
            kind = COMPLETED

        return PaymentEvent(
            kind=kind,
            type=etype,
            event_id=event.get("id"),
            session_id=obj.get("id"),
            email=_session_email(obj),
        )
