"""
Payment gateway contract. Implementations raise PaymentGatewayError; definitive=True
means the money did not and will not move, so the caller may release capacity.
"""
from dataclasses import dataclass
from typing import Protocol

# Event types delivered to the webhook endpoint.
EVENT_PAYMENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_PAYMENT_FAILED = "payment_intent.payment_failed"


@dataclass
class ChargeResult:
    intent_id: str
    # True when the gateway captured synchronously; False means a webhook will follow.
    succeeded: bool = False
    status: str = ""


@dataclass
class RefundResult:
    refund_id: str
    status: str = ""


class PaymentGateway(Protocol):
    def charge(
        self,
        payment_method: str,
        amount_cents: int,
        *,
        currency: str,
        metadata: dict | None = None,
    ) -> ChargeResult:
        ...

    def refund(self, intent_id: str, amount_cents: int | None = None) -> RefundResult:
        ...
