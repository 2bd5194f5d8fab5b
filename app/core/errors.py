"""Domain errors raised by the registration and payment pipeline.

Each error carries the HTTP status and machine code it is rendered with by
``app.core.exception_handlers.registration_error_handler``.
"""


class RegistrationError(Exception):
    status_code = 400
    code = "registration_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = str(self)


class RegistrationValidationError(RegistrationError):
    """Invalid registration request."""
    status_code = 400
    code = "validation_error"


class NotFound(RegistrationError):
    """Resource not found."""
    status_code = 404
    code = "not_found"


class NotBookable(RegistrationError):
    """Event not found or not published."""
    status_code = 404
    code = "not_bookable"


class AlreadyRegistered(RegistrationError):
    """Already registered for this event."""
    status_code = 409
    code = "already_registered"


class AlreadyPaid(RegistrationError):
    """A completed order already exists for this event."""
    status_code = 409
    code = "already_paid"


class InvalidTransition(RegistrationError):
    """Illegal order status transition."""
    status_code = 409
    code = "invalid_transition"


class OrderAlreadyCompleted(InvalidTransition):
    """Order is already completed."""


class GatewayError(RegistrationError):
    """Payment gateway request failed."""
    status_code = 502
    code = "gateway_error"


class SignatureInvalid(RegistrationError):
    """Invalid webhook signature."""
    status_code = 400
    code = "invalid_signature"
