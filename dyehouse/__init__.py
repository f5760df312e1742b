"""Production flow of a textile dyeing and finishing floor.

This package records raw lot receptions, groups partial lot quantities into
finishing tickets, logs process steps and partial deliveries against them,
and tracks machine occupancy from barcodes scanned at wall terminals.
"""

from .domain import (
    DispatchResult,
    LotLine,
    LotLineId,
    MachineActivity,
    MachineStatus,
    Ticket,
    TicketItem,
    TicketState,
)
from .errors import FactoryError, ValidationError
from .services import FactoryService
from .settings import Settings, load_settings
from .storage import FactoryDatabase

__all__ = [
    "DispatchResult",
    "LotLine",
    "LotLineId",
    "MachineActivity",
    "MachineStatus",
    "Ticket",
    "TicketItem",
    "TicketState",
    "FactoryError",
    "ValidationError",
    "FactoryService",
    "Settings",
    "load_settings",
    "FactoryDatabase",
]
