"""Error kinds raised by the ledger, the mirror boundary and the sync layer.

Every error carries a ``kind`` and an HTTP-style ``status_code``; ``main.py``
maps them to ``{"success": false, "error": <message>}`` responses.
"""


class LedgerError(Exception):
    kind = 'internal'
    status_code = 500

    def __init__(self, message: str = 'Internal server error'):
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError):
    kind = 'validation'
    status_code = 400


class InvalidTriggerPrice(ValidationError):
    kind = 'invalid_trigger_price'


class InsufficientFunds(LedgerError):
    kind = 'insufficient_funds'
    status_code = 400

    def __init__(self, message: str = 'Insufficient funds'):
        super().__init__(message)


class InsufficientBalance(LedgerError):
    kind = 'insufficient_balance'
    status_code = 400

    def __init__(self, message: str = 'Insufficient balance'):
        super().__init__(message)


class Unauthorized(LedgerError):
    kind = 'unauthorized'
    status_code = 401

    def __init__(self, message: str = 'Unauthorized'):
        super().__init__(message)


class Forbidden(LedgerError):
    kind = 'forbidden'
    status_code = 403

    def __init__(self, message: str = 'Forbidden'):
        super().__init__(message)


class NotFound(LedgerError):
    kind = 'not_found'
    status_code = 404


class OrderNotFound(NotFound):
    def __init__(self, message: str = 'Order not found'):
        super().__init__(message)


class UserNotFound(NotFound):
    def __init__(self, message: str = 'User not found'):
        super().__init__(message)


class Conflict(LedgerError):
    kind = 'conflict'
    status_code = 409


class DuplicateOperation(Conflict):
    """The idempotency key was already applied. Callers treat this as success."""
    kind = 'duplicate'


class SyncFailure(LedgerError):
    kind = 'sync_failure'
    status_code = 502


class Internal(LedgerError):
    kind = 'internal'
    status_code = 500


class StaleBalance(Conflict):
    """The balance changed between read and write; re-read and retry."""
    kind = 'stale_balance'


class SyncBusy(SyncFailure):
    """Another sync of the same user and currency holds the lease."""
    kind = 'sync_busy'
    status_code = 409
