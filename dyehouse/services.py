"""Service layer that composes the finishing-floor workflow."""

from __future__ import annotations

from datetime import date
from typing import Iterable, List, Optional, Sequence, Tuple

from .barcode import BarcodeOperationRouter
from .deliveries import DeliveryLedger
from .domain import (
    Color,
    DeliveryEvent,
    DeliveryResult,
    DeliveryState,
    DispatchResult,
    LotLine,
    LotLineId,
    Machine,
    MachineStatus,
    OperationDefinition,
    PendingPage,
    ProcessDefinition,
    ProcessStep,
    Ticket,
    TicketCreated,
    TicketDetail,
    TicketItem,
)
from .ledger import LotLedger
from .machine_status import MachineStatusView
from .processes import ProcessLog
from .settings import Settings
from .storage import FactoryDatabase
from .tickets import TicketAggregator


class FactoryService:
    """Facade that exposes the finishing-floor use-cases to clients."""

    def __init__(self, database: FactoryDatabase, settings: Settings) -> None:
        self.database = database
        self.settings = settings
        self.ledger = LotLedger(database, settings)
        self.tickets = TicketAggregator(database, settings, self.ledger)
        self.processes = ProcessLog(database, settings)
        self.deliveries = DeliveryLedger(database, settings)
        self.router = BarcodeOperationRouter(database, settings)
        self.status_view = MachineStatusView(database, settings)

    # ------------------------------------------------------------------
    # Master data
    # ------------------------------------------------------------------
    def register_machine(
        self,
        machine_id: int,
        description: str,
        *,
        section: Optional[int] = None,
        display_order: int = 0,
        active: bool = True,
    ) -> Machine:
        machine = Machine(
            id=machine_id,
            description=description,
            section=self._section(section),
            display_order=display_order,
            active=active,
        )
        self.database.machines.add(machine)
        return machine

    def register_operation(
        self,
        operation_class: int,
        description: str,
        *,
        machine_selection: bool = False,
        entry: bool = False,
        exit: bool = False,
        delivery: bool = False,
        waste: bool = False,
    ) -> OperationDefinition:
        definition = OperationDefinition(
            operation_class=operation_class,
            description=description,
            machine_selection=machine_selection,
            entry=entry,
            exit=exit,
            delivery=delivery,
            waste=waste,
        )
        self.database.operations.upsert(definition)
        return definition

    def register_process(
        self,
        process_id: int,
        description: str,
        *,
        display_order: int = 0,
        uses_color: bool = False,
    ) -> ProcessDefinition:
        process = ProcessDefinition(
            id=process_id,
            description=description,
            display_order=display_order,
            uses_color=uses_color,
        )
        self.database.processes.add(process)
        return process

    def register_color(self, color_id: int, code: str, *, fabric: str = "") -> Color:
        color = Color(id=color_id, code=code, fabric=fabric)
        self.database.colors.add(color)
        return color

    def register_delivery_state(self, state_id: int, description: str) -> DeliveryState:
        state = DeliveryState(id=state_id, description=description)
        self.database.delivery_states.add(state)
        return state

    def machines(self) -> List[Machine]:
        return self.database.machines.list(order_by="section, display_order, id")

    def operations(self) -> List[OperationDefinition]:
        return self.database.operations.list()

    # ------------------------------------------------------------------
    # Reception
    # ------------------------------------------------------------------
    def receive_lot(self, section: Optional[int], day: date, **fields) -> LotLine:
        return self.ledger.receive(self._section(section), day, **fields)

    def pending_lots(
        self,
        *,
        section: Optional[int] = None,
        client_filter: Optional[int] = None,
        requisition_filter: Optional[str] = None,
        name_filter: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> PendingPage:
        return self.ledger.list_pending(
            section=section,
            client_filter=client_filter,
            requisition_filter=requisition_filter,
            name_filter=name_filter,
            page=page,
            limit=limit,
        )

    def get_lot(self, line_id: LotLineId) -> LotLine:
        return self.ledger.get(line_id)

    def delete_lot(self, line_id: LotLineId) -> None:
        self.ledger.delete(line_id)

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------
    def create_ticket(
        self,
        section: Optional[int],
        day: date,
        items: Sequence[TicketItem],
        *,
        note: str = "",
    ) -> TicketCreated:
        return self.tickets.create_ticket(self._section(section), day, items, note=note)

    def ticket_detail(self, section: Optional[int], number: int) -> TicketDetail:
        return self.tickets.get_ticket(self._section(section), number)

    def last_ticket(self, section: Optional[int] = None) -> Optional[Ticket]:
        return self.tickets.last_ticket(self._section(section))

    # ------------------------------------------------------------------
    # Process steps
    # ------------------------------------------------------------------
    def add_process_step(
        self,
        section: Optional[int],
        ticket: int,
        process_def_id: int,
        *,
        color_id: Optional[int] = None,
        rolls: int = 0,
        weight: float = 0.0,
        note: str = "",
    ) -> ProcessStep:
        return self.processes.add_step(
            self._section(section),
            ticket,
            process_def_id,
            color_id=color_id,
            rolls=rolls,
            weight=weight,
            note=note,
        )

    def remove_process_step(self, section: Optional[int], ticket: int, line: int) -> None:
        self.processes.remove_step(self._section(section), ticket, line)

    def process_steps(self, section: Optional[int], ticket: int) -> Iterable[ProcessStep]:
        return self.processes.list_steps(self._section(section), ticket)

    # ------------------------------------------------------------------
    # Deliveries
    # ------------------------------------------------------------------
    def register_delivery(
        self,
        section: Optional[int],
        ticket: int,
        rolls: int,
        weight: float,
        state_id: int,
        *,
        note: str = "",
    ) -> DeliveryResult:
        return self.deliveries.register_delivery(
            self._section(section), ticket, rolls, weight, state_id, note=note
        )

    def deliveries_for(self, section: Optional[int], ticket: int) -> List[DeliveryEvent]:
        return self.deliveries.list_deliveries(self._section(section), ticket)

    def delivered_totals(self, section: Optional[int], ticket: int) -> Tuple[int, float]:
        return self.deliveries.delivered_totals(self._section(section), ticket)

    # ------------------------------------------------------------------
    # Shop-floor scans
    # ------------------------------------------------------------------
    def scan(self, code: str, terminal_id: Optional[str] = None) -> DispatchResult:
        return self.router.scan(code, terminal_id)

    def machine_status(self, section: Optional[int] = None) -> List[MachineStatus]:
        return self.status_view.current_status(self._section(section))

    def _section(self, section: Optional[int]) -> int:
        return self.settings.default_section if section is None else section


__all__ = ["FactoryService"]
