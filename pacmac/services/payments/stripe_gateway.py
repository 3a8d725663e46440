"""Stripe payment integration.

Provides the payment intent operations the settlement core needs. Operates in
simulated mode when no secret key is configured outside production, and uses
the real Stripe SDK otherwise.

Requires: STRIPE_SECRET_KEY env var for live mode. Production refuses to start
without it.
"""

import asyncio
import uuid
from typing import Any

import stripe

from pacmac.core.exceptions import ExternalServiceError
from pacmac.core.logging import get_logger
from pacmac.services.payments.gateway import PAYMENT_SUCCEEDED, PaymentIntent

logger = get_logger(__name__)


class StripePaymentGateway:
    """Stripe payment intents with real SDK support."""

    def __init__(self, secret_key: str = "", allow_simulated: bool = True) -> None:
        if not secret_key and not allow_simulated:
            raise RuntimeError("STRIPE_SECRET_KEY is required, simulated payments are disabled")

        self.secret_key = secret_key
        self._simulated = not secret_key
        self._simulated_intents: dict[str, str] = {}

        if self._simulated:
            logger.warning("Stripe secret key not configured, payments are simulated")
        else:
            logger.info(
                "Stripe SDK initialized (mode=%s)",
                "test" if secret_key.startswith("sk_test_") else "live",
            )

    async def create_payment_intent(
        self,
        amount_minor_units: int,
        currency: str,
        metadata: dict[str, Any],
    ) -> PaymentIntent:
        """Create a Stripe PaymentIntent (or simulate one)."""
        # stripe metadata values must be strings
        metadata = {key: str(value) for key, value in metadata.items()}

        if self._simulated:
            intent_id = f"pi_sim_{uuid.uuid4().hex[:16]}"
            self._simulated_intents[intent_id] = PAYMENT_SUCCEEDED
            return PaymentIntent(
                intent_id=intent_id,
                client_secret=f"{intent_id}_secret_sim",
                status="requires_payment_method",
            )

        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                amount=amount_minor_units,
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            logger.exception("Stripe payment intent creation failed")
            raise ExternalServiceError("stripe", e.user_message or str(e)) from e

        return PaymentIntent(
            intent_id=intent.id,
            client_secret=intent.client_secret,
            status=intent.status,
        )

    async def get_payment_intent_status(self, intent_id: str) -> str:
        """Retrieve the current status of a PaymentIntent."""
        if self._simulated:
            status = self._simulated_intents.get(intent_id)
            if status is None:
                raise ExternalServiceError("stripe", f"Unknown payment intent {intent_id}")
            return status

        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.retrieve, intent_id, api_key=self.secret_key
            )
        except stripe.StripeError as e:
            logger.exception("Stripe payment intent lookup failed for %s", intent_id)
            raise ExternalServiceError("stripe", e.user_message or str(e)) from e

        return intent.status
