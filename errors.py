"""
Error kinds raised by the settlement engine and return adjuster.

Every error carries a machine-readable ``kind`` and the HTTP status the API
layer answers with. Messages are meant to be shown to the user as-is.
"""


class LedgerError(Exception):
    kind = 'LedgerError'
    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'success': False, 'error': self.kind, 'message': self.message}


class ValidationError(LedgerError):
    kind = 'ValidationError'


class NotFoundError(LedgerError):
    kind = 'NotFoundError'
    status_code = 404


class InsufficientStockError(LedgerError):
    kind = 'InsufficientStockError'
    status_code = 409


class OverpaymentError(LedgerError):
    kind = 'OverpaymentError'
    status_code = 409


class MissingChequeDetailError(LedgerError):
    kind = 'MissingChequeDetailError'


class ExcessReturnError(LedgerError):
    kind = 'ExcessReturnError'
    status_code = 409


class AlreadyReversedError(LedgerError):
    kind = 'AlreadyReversedError'
    status_code = 409


class ChequeStateError(LedgerError):
    kind = 'ChequeStateError'
    status_code = 409


class BuyerInUseError(LedgerError):
    kind = 'BuyerInUseError'
    status_code = 409


class Unauthorized(LedgerError):
    kind = 'Unauthorized'
    status_code = 403
