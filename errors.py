"""
Typed failures surfaced by the economy services.
Every business-rule failure is one of these; raw store errors never escape.
"""


class EconomyError(Exception):
    """Base class for all engine failures."""

    kind = "EconomyError"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class InvalidAmount(EconomyError):
    kind = "InvalidAmount"


class InvalidQuantity(EconomyError):
    kind = "InvalidQuantity"


class InvalidPrice(EconomyError):
    kind = "InvalidPrice"


class InsufficientFunds(EconomyError):
    kind = "InsufficientFunds"


class InsufficientHoldings(EconomyError):
    kind = "InsufficientHoldings"


class NotFound(EconomyError):
    kind = "NotFound"


class UnknownAccount(NotFound):
    kind = "UnknownAccount"


class NotOwner(EconomyError):
    kind = "NotOwner"


class ExceedsMaxAmount(EconomyError):
    kind = "ExceedsMaxAmount"


class AlreadyPaid(EconomyError):
    kind = "AlreadyPaid"


class NotARecipient(EconomyError):
    kind = "NotARecipient"


class InvalidTransition(EconomyError):
    kind = "InvalidTransition"


class FundClosed(InvalidTransition):
    """Raised for any invest/settle attempt once a fund has left RECRUITING for good."""
    kind = "FundClosed"


class EmptyRecipientSet(EconomyError):
    kind = "EmptyRecipientSet"


class PermissionDenied(EconomyError):
    kind = "PermissionDenied"


class ConcurrentModification(EconomyError):
    """An optimistic-concurrency check failed; the caller may retry."""
    kind = "ConcurrentModification"
    retryable = True


class Unavailable(EconomyError):
    """The backing store could not be reached; safe to retry."""
    kind = "Unavailable"
    retryable = True
