from app.services.payments.base import ChargeResult, PaymentGateway, RefundResult
from app.services.payments.stripe_gateway import StripeGateway

__all__ = ["ChargeResult", "PaymentGateway", "RefundResult", "StripeGateway"]
