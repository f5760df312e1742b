"""Core data structures for the dyehouse finishing floor."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional, Union

# Operation class reserved for "select the machine this terminal works on".
MACHINE_SELECTION_CLASS = 1

WEIGHT_DECIMALS = 3


def quantize_weight(value: float) -> float:
    """Round a weight in kg to whole grams."""

    return round(float(value), WEIGHT_DECIMALS)


class TicketState(str, Enum):
    """Lifecycle of a finishing ticket."""

    OPEN = "open"
    COMPLETED = "completed"


class MachineActivity(str, Enum):
    """Display classification of a machine on the status panel."""

    FREE = "free"
    IN = "in"
    OUT = "out"
    NEUTRAL = "neutral"


@dataclass(frozen=True, slots=True)
class LotLineId:
    """Identity of a reception line."""

    section: int
    day: date
    line: int

    def __str__(self) -> str:
        return f"{self.section}/{self.day.isoformat()}/{self.line}"


@dataclass(slots=True)
class LotLine:
    """A reception record with requested and already allocated quantities."""

    id: LotLineId
    client_id: int
    client_name: str
    article_code: str
    article_description: str
    composition_id: int
    composition_description: str
    requested_rolls: int
    requested_weight: float
    delivered_rolls: int = 0
    delivered_weight: float = 0.0
    requisition: str = ""
    bleach: bool = False
    desize: bool = False
    dye: bool = False
    registered_by: str = ""
    registered_at: Optional[datetime] = None

    @property
    def pending_rolls(self) -> int:
        return self.requested_rolls - self.delivered_rolls

    @property
    def pending_weight(self) -> float:
        return quantize_weight(self.requested_weight - self.delivered_weight)


@dataclass(slots=True)
class PendingPage:
    """One page of lot lines that still have quantities to allocate."""

    items: List[LotLine]
    total: int
    page: int
    total_pages: int


@dataclass(slots=True)
class Client:
    id: int
    name: str


@dataclass(slots=True)
class Machine:
    """A finishing machine a wall terminal can be bound to."""

    id: int
    description: str
    section: int = 1
    display_order: int = 0
    active: bool = True


@dataclass(slots=True)
class OperationDefinition:
    """What a barcode operation class means on the shop floor."""

    operation_class: int
    description: str
    machine_selection: bool = False
    entry: bool = False
    exit: bool = False
    delivery: bool = False
    waste: bool = False


@dataclass(slots=True)
class ProcessDefinition:
    """A finishing process such as bleaching, desizing or dyeing."""

    id: int
    description: str
    display_order: int = 0
    uses_color: bool = False


@dataclass(slots=True)
class Color:
    id: int
    code: str
    fabric: str = ""


@dataclass(slots=True)
class DeliveryState:
    """Condition of goods at handover."""

    id: int
    description: str


@dataclass(slots=True)
class TicketItem:
    """Quantity requested from one lot line when creating a ticket."""

    line_id: LotLineId
    rolls: int
    weight: float


@dataclass(slots=True)
class Allocation:
    """Quantity moved from a lot line into a ticket."""

    section: int
    ticket: int
    line: int
    lot_line: LotLineId
    rolls: int
    weight: float


@dataclass(slots=True)
class Ticket:
    """Finishing order ("Ficha de Acabamento") header."""

    section: int
    number: int
    created_on: date
    total_rolls: int
    total_weight: float
    state: TicketState = TicketState.OPEN
    note: str = ""


@dataclass(slots=True)
class TicketCreated:
    number: int
    allocations: int


@dataclass(slots=True)
class TicketDetail:
    """Ticket header with derived delivery totals and client context."""

    ticket: Ticket
    delivered_rolls: int
    delivered_weight: float
    client_id: int
    client_name: str
    article_description: str
    composition_description: str
    requisition: str
    allocations: List[Allocation] = field(default_factory=list)

    @property
    def pending_rolls(self) -> int:
        return self.ticket.total_rolls - self.delivered_rolls

    @property
    def pending_weight(self) -> float:
        return quantize_weight(self.ticket.total_weight - self.delivered_weight)


@dataclass(slots=True)
class ProcessStep:
    """One finishing operation recorded against a ticket."""

    section: int
    ticket: int
    line: int
    recorded_at: datetime
    process_id: int
    process_description: str
    color_id: Optional[int]
    color_code: str
    rolls: int
    weight: float
    note: str = ""


@dataclass(slots=True)
class DeliveryEvent:
    """A partial handover of finished goods."""

    section: int
    ticket: int
    line: int
    delivered_at: datetime
    rolls: int
    weight: float
    state_id: int
    state_description: str
    note: str = ""


@dataclass(slots=True)
class DeliveryResult:
    line: int
    delivered_rolls: int
    delivered_weight: float
    total_rolls: int
    total_weight: float
    completed: bool


@dataclass(slots=True)
class MachineReading:
    """Append-only scan log entry."""

    sequence: int
    read_at: datetime
    terminal: str
    machine: int
    operation: int
    ticket: int
    step: int
    section: int


@dataclass(frozen=True, slots=True)
class MachineSelection:
    machine_id: int


@dataclass(frozen=True, slots=True)
class ProcessOperation:
    operation_class: int
    ticket_number: int
    process_step: int


ScanOperation = Union[MachineSelection, ProcessOperation]


@dataclass(slots=True)
class DispatchResult:
    """Outcome of persisting a decoded scan."""

    sequence_number: int
    message: str
    operation_description: str
    details: dict
    duplicate: bool = False


@dataclass(slots=True)
class MachineStatus:
    """One row of the machine status panel."""

    machine_id: int
    machine_description: str
    activity: MachineActivity
    read_at: Optional[datetime] = None
    operation_description: str = ""
    process_description: str = ""
    ticket_number: int = 0
    rolls: int = 0
    weight: float = 0.0
    client_name: str = ""
    article_description: str = ""


__all__ = [
    "MACHINE_SELECTION_CLASS",
    "quantize_weight",
    "TicketState",
    "MachineActivity",
    "LotLineId",
    "LotLine",
    "PendingPage",
    "Client",
    "Machine",
    "OperationDefinition",
    "ProcessDefinition",
    "Color",
    "DeliveryState",
    "TicketItem",
    "Allocation",
    "Ticket",
    "TicketCreated",
    "TicketDetail",
    "ProcessStep",
    "DeliveryEvent",
    "DeliveryResult",
    "MachineReading",
    "MachineSelection",
    "ProcessOperation",
    "ScanOperation",
    "DispatchResult",
    "MachineStatus",
]
