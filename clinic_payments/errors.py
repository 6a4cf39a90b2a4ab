from typing import Optional


class PaymentError(Exception):
    """Expected outcome of a payment operation, reported to the caller as-is."""

    code = "payment_error"
    status_code = 400
    retryable = False
    default_message = "Payment could not be processed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(PaymentError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class Forbidden(PaymentError):
    code = "forbidden"
    status_code = 403
    default_message = "Not authorized"


class AlreadyPaid(PaymentError):
    code = "already_paid"
    status_code = 409
    default_message = "Payment already completed"


class InvalidAmount(PaymentError):
    code = "invalid_amount"
    default_message = "Invalid payment amount"


class VerificationFailed(PaymentError):
    # Subclasses share code and message so callers can't tell them apart.
    code = "verification_failed"
    default_message = "Payment verification failed"

    def __init__(self, reason: Optional[str] = None):
        super().__init__()
        self.reason = reason


class OrderMismatch(VerificationFailed):
    pass


class InvalidSignature(VerificationFailed):
    pass


class GatewayUnavailable(PaymentError):
    code = "gateway_unavailable"
    status_code = 503
    retryable = True
    default_message = "Payment gateway unavailable"


class MissingDeliveryInfo(PaymentError):
    code = "missing_delivery_info"
    default_message = "Address and phone are required to place an order"


class EmptyCart(PaymentError):
    code = "cart_empty"
    default_message = "Cart is empty"


class PaymentIncomplete(PaymentError):
    code = "payment_incomplete"
    status_code = 409
    default_message = "Payment must be completed before confirming appointment"
