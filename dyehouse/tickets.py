"""Finishing tickets aggregated from lot-line allocations."""

from __future__ import annotations

import logging
import math
import sqlite3
from datetime import date, datetime
from typing import List, Optional, Sequence

from .domain import (
    Allocation,
    LotLine,
    LotLineId,
    Ticket,
    TicketCreated,
    TicketDetail,
    TicketItem,
    TicketState,
    quantize_weight,
)
from .errors import MixedClientError, OverAllocation, ValidationError
from .ledger import LotLedger
from .repository import (
    RecordNotFoundError,
    RowDecodeError,
    RowReader,
    decode_all,
    decode_one,
)
from .settings import Settings
from .storage import FactoryDatabase

logger = logging.getLogger(__name__)

TICKET_COLUMNS = "section, number, created_on, total_rolls, total_weight, state, note"


def decode_ticket(row: RowReader) -> Ticket:
    state = row.text("state")
    try:
        ticket_state = TicketState(state)
    except ValueError as exc:
        raise RowDecodeError(f"ticket: unknown state {state!r}") from exc
    return Ticket(
        section=row.integer("section"),
        number=row.integer("number"),
        created_on=row.day("created_on"),
        total_rolls=row.integer("total_rolls"),
        total_weight=row.number("total_weight"),
        state=ticket_state,
        note=row.optional_text("note"),
    )


def decode_allocation(row: RowReader) -> Allocation:
    return Allocation(
        section=row.integer("section"),
        ticket=row.integer("ticket"),
        line=row.integer("line"),
        lot_line=LotLineId(
            section=row.integer("lot_section"),
            day=row.day("lot_day"),
            line=row.integer("lot_line"),
        ),
        rolls=row.integer("rolls"),
        weight=row.number("weight"),
    )


def load_ticket(connection: sqlite3.Connection, section: int, number: int) -> Ticket:
    """Fetch a ticket header or raise :class:`RecordNotFoundError`."""

    row = connection.execute(
        f"SELECT {TICKET_COLUMNS} FROM tickets WHERE section = ? AND number = ?",
        (section, number),
    ).fetchone()
    ticket = decode_one(row, "ticket", decode_ticket)
    if ticket is None:
        raise RecordNotFoundError(f"Ticket {section}/{number} not found")
    return ticket


class TicketAggregator:
    """Groups partial lot-line quantities of one client into a ticket."""

    def __init__(
        self, database: FactoryDatabase, settings: Settings, ledger: LotLedger
    ) -> None:
        self._database = database
        self._settings = settings
        self._ledger = ledger

    def create_ticket(
        self,
        section: int,
        day: date,
        items: Sequence[TicketItem],
        *,
        note: str = "",
    ) -> TicketCreated:
        """Create a ticket and its allocations as one all-or-nothing unit.

        Every item is checked against its lot line before the first write;
        any failure leaves tickets, allocations and lot lines untouched.
        """

        if not items:
            raise ValidationError("A ticket needs at least one lot line")
        seen = set()
        for item in items:
            if item.rolls < 0:
                raise ValidationError(f"Lot {item.line_id}: rolls cannot be negative")
            if not math.isfinite(item.weight) or quantize_weight(item.weight) <= 0:
                raise ValidationError(f"Lot {item.line_id}: weight must be positive")
            if item.line_id in seen:
                raise ValidationError(f"Lot {item.line_id} appears more than once")
            seen.add(item.line_id)

        total_rolls = sum(item.rolls for item in items)
        total_weight = quantize_weight(sum(quantize_weight(item.weight) for item in items))

        with self._database.unit_of_work() as con:
            lines = [self._ledger.get(item.line_id, connection=con) for item in items]
            self._check_single_client(lines)
            self._check_pending(items, lines)

            row = con.execute(
                "SELECT COALESCE(MAX(number), 0) + 1 AS next_number FROM tickets "
                "WHERE section = ?",
                (section,),
            ).fetchone()
            number = RowReader(row, "next ticket number").integer("next_number")
            con.execute(
                f"INSERT INTO tickets ({TICKET_COLUMNS}, registered_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    section,
                    number,
                    day.isoformat(),
                    total_rolls,
                    total_weight,
                    TicketState.OPEN.value,
                    note.strip(),
                    datetime.now().isoformat(timespec="seconds"),
                ),
            )
            for position, item in enumerate(items, start=1):
                weight = quantize_weight(item.weight)
                con.execute(
                    "INSERT INTO ticket_allocations (section, ticket, line, lot_section, "
                    "lot_day, lot_line, rolls, weight) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        section,
                        number,
                        position,
                        item.line_id.section,
                        item.line_id.day.isoformat(),
                        item.line_id.line,
                        item.rolls,
                        weight,
                    ),
                )
                self._ledger.allocate(con, item.line_id, item.rolls, weight)

        logger.info(
            "Created FA %s/%s with %s allocations: %s rolls / %s kg",
            section,
            number,
            len(items),
            total_rolls,
            total_weight,
        )
        return TicketCreated(number=number, allocations=len(items))

    @staticmethod
    def _check_single_client(lines: Sequence[LotLine]) -> None:
        clients = {line.client_id for line in lines}
        if len(clients) > 1:
            logger.warning("Rejected ticket mixing clients %s", sorted(clients))
            raise MixedClientError(
                "All lot lines of a ticket must belong to the same client "
                f"(got {', '.join(str(client) for client in sorted(clients))})"
            )

    @staticmethod
    def _check_pending(items: Sequence[TicketItem], lines: Sequence[LotLine]) -> None:
        for item, line in zip(items, lines):
            weight = quantize_weight(item.weight)
            if item.rolls > line.pending_rolls or weight > line.pending_weight:
                logger.warning("Rejected ticket: lot %s over-allocated", line.id)
                raise OverAllocation(
                    f"Lot {line.id}: requested {item.rolls} rolls / {weight} kg, "
                    f"pending {line.pending_rolls} rolls / {line.pending_weight} kg"
                )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_ticket(self, section: int, number: int) -> TicketDetail:
        with self._database.connect() as con:
            ticket = load_ticket(con, section, number)
            totals = con.execute(
                "SELECT COALESCE(SUM(rolls), 0) AS rolls, COALESCE(SUM(weight), 0.0) AS weight "
                "FROM delivery_events WHERE section = ? AND ticket = ?",
                (section, number),
            ).fetchone()
            allocations = self._load_allocations(con, section, number)
            first: Optional[LotLine] = None
            if allocations:
                first = self._ledger.get(allocations[0].lot_line, connection=con)
        reader = RowReader(totals, "delivered totals")
        return TicketDetail(
            ticket=ticket,
            delivered_rolls=reader.integer("rolls"),
            delivered_weight=quantize_weight(reader.number("weight")),
            client_id=first.client_id if first else 0,
            client_name=first.client_name if first else "",
            article_description=first.article_description if first else "",
            composition_description=first.composition_description if first else "",
            requisition=first.requisition if first else "",
            allocations=allocations,
        )

    def last_ticket(self, section: int) -> Optional[Ticket]:
        with self._database.connect() as con:
            row = con.execute(
                f"SELECT {TICKET_COLUMNS} FROM tickets WHERE section = ? "
                "ORDER BY number DESC LIMIT 1",
                (section,),
            ).fetchone()
        return decode_one(row, "last ticket", decode_ticket)

    def allocations(self, section: int, number: int) -> List[Allocation]:
        with self._database.connect() as con:
            load_ticket(con, section, number)
            return self._load_allocations(con, section, number)

    @staticmethod
    def _load_allocations(
        connection: sqlite3.Connection, section: int, number: int
    ) -> List[Allocation]:
        rows = connection.execute(
            "SELECT section, ticket, line, lot_section, lot_day, lot_line, rolls, weight "
            "FROM ticket_allocations WHERE section = ? AND ticket = ? ORDER BY line",
            (section, number),
        ).fetchall()
        return decode_all(rows, "ticket allocations", decode_allocation)


__all__ = [
    "TicketAggregator",
    "load_ticket",
    "decode_ticket",
    "decode_allocation",
]
