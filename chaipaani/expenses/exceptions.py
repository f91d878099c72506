"""
Business errors raised by the ledger services.

Every subclass is an expected outcome of a valid request and is reported to
the caller as a structured error. Storage failures (``DatabaseError`` and
friends) are deliberately not part of this hierarchy; they propagate as-is.
"""


class LedgerError(Exception):
    code = 'ledger_error'
    status = 400

    def __init__(self, message, **detail):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def as_dict(self):
        return {'error': self.code, 'message': self.message, **self.detail}


class AuthenticationRequired(LedgerError):
    code = 'authentication_required'
    status = 401


class AuthorizationDenied(LedgerError):
    code = 'not_authorized'
    status = 403


class NotFound(LedgerError):
    code = 'not_found'
    status = 404


class InvalidArgument(LedgerError):
    code = 'invalid_argument'
    status = 400


class ConflictingState(LedgerError):
    code = 'conflict'
    status = 409


class Expired(LedgerError):
    code = 'expired'
    status = 410
