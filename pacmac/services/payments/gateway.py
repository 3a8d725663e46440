from dataclasses import dataclass
from typing import Any, Protocol

# processor statuses we act on
PAYMENT_SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class PaymentIntent:
    intent_id: str
    client_secret: str | None
    status: str


class PaymentGateway(Protocol):
    """What the settlement core needs from a payment processor."""

    async def create_payment_intent(
        self,
        amount_minor_units: int,
        currency: str,
        metadata: dict[str, Any],
    ) -> PaymentIntent: ...

    async def get_payment_intent_status(self, intent_id: str) -> str: ...
