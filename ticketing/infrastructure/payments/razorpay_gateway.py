# ticketing/infrastructure/payments/razorpay_gateway.py

from dataclasses import dataclass
import logging
import os

from ticketing.domain.exceptions import PaymentVerificationError

logger = logging.getLogger(__name__)

PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "INR")


class PaymentGatewayError(Exception):
    """Raised when the gateway cannot be reached or is misconfigured."""


@dataclass(frozen=True)
class CheckoutSession:
    gateway_order_id: str
    amount: int
    currency: str
    key_id: str


class RazorpayGateway:
    """
    Payment collaborator. Capture and settlement stay with Razorpay;
    the engine only opens a checkout (a Razorpay order) and verifies
    the signature the checkout hands back.
    """

    def __init__(
        self,
        key_id: str | None = None,
        key_secret: str | None = None,
        currency: str = PAYMENT_CURRENCY,
    ):
        self.key_id = key_id or os.getenv("RAZORPAY_KEY_ID")
        self.key_secret = key_secret or os.getenv("RAZORPAY_KEY_SECRET")
        self.currency = currency

    def _client(self):
        if not self.key_id or not self.key_secret:
            raise PaymentGatewayError(
                "Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
            )
        import razorpay

        return razorpay.Client(auth=(self.key_id, self.key_secret))

    def create_checkout_session(self, order_id: str, amount: int) -> CheckoutSession:
        client = self._client()
        gateway_order = client.order.create(
            {
                "amount": amount,
                "currency": self.currency,
                "receipt": order_id,
            }
        )
        gateway_order_id = gateway_order.get("id")
        if not gateway_order_id:
            raise PaymentGatewayError("Razorpay did not return an order id")

        logger.info(
            "Opened checkout. order_id=%s gateway_order_id=%s amount=%s",
            order_id,
            gateway_order_id,
            amount,
        )
        return CheckoutSession(
            gateway_order_id=gateway_order_id,
            amount=amount,
            currency=self.currency,
            key_id=self.key_id,
        )

    def confirm_payment(self, gateway_order_id: str, payment_id: str, signature: str) -> None:
        from razorpay.errors import SignatureVerificationError

        client = self._client()
        try:
            client.utility.verify_payment_signature(
                {
                    "razorpay_order_id": gateway_order_id,
                    "razorpay_payment_id": payment_id,
                    "razorpay_signature": signature,
                }
            )
        except SignatureVerificationError as exc:
            raise PaymentVerificationError("Invalid payment signature") from exc
