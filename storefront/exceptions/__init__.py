"""Custom exceptions for the storefront settlement core."""


class StorefrontError(Exception):
    """Base exception for all application errors."""
    code = 'internal_error'

    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['code'] = self.code
        rv['status'] = 'error'
        return rv


class BusinessLogicError(StorefrontError):
    """Exception raised for business logic violations."""
    code = 'business_error'

    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class ValidationError(BusinessLogicError):
    """Malformed or inconsistent request input. Never retried automatically."""
    code = 'validation_error'

    def __init__(self, errors, status_code=400):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__(self.errors[0] if self.errors else 'Requete invalide.', status_code,
                         {'errors': self.errors})


class NotFoundError(StorefrontError):
    """Exception raised when a resource is not found."""
    code = 'not_found'

    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class InvalidTransitionError(BusinessLogicError):
    """Raised when an order status change is not allowed by the state machine."""
    code = 'invalid_transition'

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Transition {current} -> {target} not allowed", status_code=409,
                         payload={'current': current, 'target': target})


class SettlementMismatchError(StorefrontError):
    """Provider-reported settlement disagrees with the locally computed price."""
    code = 'settlement_mismatch'

    def __init__(self, message, expected=None, actual=None):
        payload = {'expected': expected, 'actual': actual}
        super().__init__(message, 409, payload)
        self.expected = expected
        self.actual = actual


class PaymentProviderError(StorefrontError):
    """Timeout, 5xx or malformed response from a payment provider. Safe to retry."""
    code = 'provider_error'

    def __init__(self, message, provider=None):
        super().__init__(message, 502, {'provider': provider, 'retryable': True})
        self.provider = provider


class FulfillmentPreconditionError(BusinessLogicError):
    """A label cannot be requested; `field` names what is missing."""
    code = 'fulfillment_precondition'

    def __init__(self, message, field):
        self.field = field
        super().__init__(message, status_code=400, payload={'field': field})


class CarrierError(StorefrontError):
    """Carrier rejected a request; `detail` is the carrier's own message."""
    code = 'carrier_error'

    def __init__(self, detail, status_code=502):
        if not isinstance(status_code, int) or status_code < 400:
            status_code = 502
        super().__init__(detail, status_code, {'detail': detail})
        self.detail = detail
