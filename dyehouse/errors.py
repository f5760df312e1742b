"""Business-rule errors raised by the finishing-floor workflow."""

from __future__ import annotations


class FactoryError(Exception):
    """Base class for workflow errors."""


class ValidationError(FactoryError):
    """Input rejected synchronously; nothing was written."""

    kind = "validation"


class OverAllocation(ValidationError):
    """Requested quantity exceeds a lot line's pending balance."""

    kind = "over_allocation"


class MixedClientError(ValidationError):
    """Ticket items reference lot lines of different clients."""

    kind = "mixed_client"


class OverDelivery(ValidationError):
    """Delivery would push cumulative delivered above the ticket totals."""

    kind = "over_delivery"


class TicketCompleted(ValidationError):
    """Ticket is already completed and accepts no further deliveries."""

    kind = "ticket_completed"


class DecodeError(ValidationError):
    """Scanned barcode string is malformed."""

    kind = "decode"


class LineInUseError(ValidationError):
    """Lot line already has allocated quantities and cannot be removed."""

    kind = "line_in_use"


class DispatchError(FactoryError):
    """A scan could not be persisted."""

    kind = "dispatch"

    def __init__(self, message: str, reason: str = "") -> None:
        super().__init__(message)
        self.reason = reason


__all__ = [
    "FactoryError",
    "ValidationError",
    "OverAllocation",
    "MixedClientError",
    "OverDelivery",
    "TicketCompleted",
    "DecodeError",
    "LineInUseError",
    "DispatchError",
]
