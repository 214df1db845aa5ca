"""
Error taxonomy for fleet operations.

Each error carries a message and a status code so the HTTP layer can map it
without knowing which operation raised it.
"""


class FleetError(Exception):
    """Base error with status code."""
    status_code = 500
    kind = 'Internal error'

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'error': self.kind, 'message': self.message}


class ValidationError(FleetError):
    """Bad input shape or missing scope. Raised before any write."""
    status_code = 400
    kind = 'Validation error'


class AccessDeniedError(FleetError):
    """Record belongs to a company outside the caller's scope."""
    status_code = 403
    kind = 'Forbidden'


class NotFoundError(FleetError):
    status_code = 404
    kind = 'Not found'


class ConflictError(FleetError):
    """Exclusivity violation or duplicate unique key."""
    status_code = 409
    kind = 'Conflict'


class InsufficientDepositError(FleetError):
    """Driver deposit cannot cover the requested hold or deduction."""
    status_code = 422
    kind = 'Insufficient deposit'


class ChargeError(FleetError):
    """Technical failure while applying a billing charge."""
    kind = 'Charge failed'
