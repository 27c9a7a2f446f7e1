class PaymentError(Exception):
    """Base for errors converted to a JSON envelope at the view boundary.

    ``message`` is safe to show to clients; nothing else from the error is.
    """

    status_code = 500
    default_message = "Payment processing failed"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(PaymentError):
    status_code = 400
    default_message = "Invalid request"


class AuthenticityError(PaymentError):
    status_code = 400
    default_message = "Invalid signature"


class NotFoundError(PaymentError):
    status_code = 404
    default_message = "Order not found"


class PersistenceError(PaymentError):
    status_code = 500
    default_message = "Order storage unavailable"


class GatewayError(PaymentError):
    status_code = 502
    default_message = "Payment gateway unavailable"


class StateConflictError(PaymentError):
    status_code = 409
    default_message = "Order is no longer pending"
