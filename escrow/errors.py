class EscrowError(Exception):
    """Base class for every failure raised by the escrow core.

    Each failure is terminal for the current call and leaves the store and
    the ledger exactly as they were before it.
    """


class InvalidAmount(EscrowError, ValueError):
    pass


class InvalidTimeRange(EscrowError, ValueError):
    pass


class InvalidAddress(EscrowError, ValueError):
    pass


class InsufficientBalance(EscrowError):
    pass


class NotFound(EscrowError, LookupError):
    pass


class RecipientMismatch(EscrowError):
    pass


class SenderMismatch(EscrowError):
    pass


class ExceedsClaimable(EscrowError):
    pass


class Unauthorized(EscrowError, PermissionError):
    pass


class TransferFailed(EscrowError):
    pass
