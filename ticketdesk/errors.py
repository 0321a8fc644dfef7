"""
Error taxonomy. Every failure a request can end in maps to one of these,
carrying a machine readable `code` and the HTTP status it is rendered with.
"""


class ConfigError(RuntimeError):
    """Required configuration missing at process start."""


class TicketingError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, detail: str = "", *, code: str | None = None,
                 status_code: int | None = None):
        super().__init__(detail or self.code)
        self.detail = detail or self.code
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


class ValidationFailed(TicketingError):
    code = "VALIDATION_ERROR"
    status_code = 400


class Duplicate(TicketingError):
    code = "DUPLICATE"
    status_code = 409


class CapacityExceeded(TicketingError):
    code = "CAPACITY_EXCEEDED"
    status_code = 403


class SignatureInvalid(TicketingError):
    code = "SIGNATURE_INVALID"
    status_code = 400


class GatewayError(TicketingError):
    code = "GATEWAY_ERROR"
    status_code = 502


class NotFound(TicketingError):
    code = "NOT_FOUND"
    status_code = 404


class NotPaid(TicketingError):
    code = "NOT_PAID"
    status_code = 402


class IssuanceFailed(TicketingError):
    code = "ISSUANCE_FAILED"
    status_code = 500
