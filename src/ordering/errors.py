"""Domain exceptions that abort a Unit of Work.

Command handlers raise these to roll back every write made so far; the
service functions that dispatched the command catch them and hand the
caller a structured result carrying the same reason code.
"""


class OrderingError(Exception):
    """Base exception for rollback-signalling ordering errors."""

    def __init__(self, reason: str, message: str | None = None, details: dict | None = None):
        self.reason = reason
        self.message = message or reason
        self.details = details or {}
        super().__init__(self.message)


class TransitionAborted(OrderingError):
    """A status transition could not complete one of its side effects."""


class CheckoutRejected(OrderingError):
    """Checkout hit a state conflict (stock, discount) and must not commit."""
