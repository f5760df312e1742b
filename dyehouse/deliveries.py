"""Partial deliveries of finished goods against tickets."""

from __future__ import annotations

import logging
import math
import sqlite3
from datetime import datetime
from typing import List, Tuple

from .domain import DeliveryEvent, DeliveryResult, DeliveryState, TicketState, quantize_weight
from .errors import OverDelivery, TicketCompleted, ValidationError
from .repository import RowReader, decode_all
from .settings import Settings
from .storage import FactoryDatabase
from .tickets import load_ticket

logger = logging.getLogger(__name__)


def decode_event(row: RowReader) -> DeliveryEvent:
    return DeliveryEvent(
        section=row.integer("section"),
        ticket=row.integer("ticket"),
        line=row.integer("line"),
        delivered_at=row.timestamp("delivered_at"),
        rolls=row.integer("rolls"),
        weight=row.number("weight"),
        state_id=row.integer("state_id"),
        state_description=row.text("state_description"),
        note=row.optional_text("note"),
    )


def _cumulative(
    connection: sqlite3.Connection, section: int, ticket: int
) -> Tuple[int, float]:
    row = connection.execute(
        "SELECT COALESCE(SUM(rolls), 0) AS rolls, COALESCE(SUM(weight), 0.0) AS weight "
        "FROM delivery_events WHERE section = ? AND ticket = ?",
        (section, ticket),
    ).fetchone()
    reader = RowReader(row, "delivered totals")
    return reader.integer("rolls"), quantize_weight(reader.number("weight"))


class DeliveryLedger:
    """Append-only delivery log; cumulative totals are summed from the events."""

    def __init__(self, database: FactoryDatabase, settings: Settings) -> None:
        self._database = database
        self._settings = settings

    def register_delivery(
        self,
        section: int,
        ticket: int,
        rolls: int,
        weight: float,
        state_id: int,
        *,
        note: str = "",
    ) -> DeliveryResult:
        if not math.isfinite(weight):
            raise ValidationError("Delivered weight must be a number")
        weight = quantize_weight(weight)
        if rolls < 0:
            raise ValidationError("Delivered rolls cannot be negative")
        if weight <= 0:
            raise ValidationError("Delivered weight must be positive")
        with self._database.unit_of_work() as con:
            header = load_ticket(con, section, ticket)
            if header.state is TicketState.COMPLETED:
                logger.warning("Rejected delivery on completed FA %s/%s", section, ticket)
                raise TicketCompleted(f"Ticket {section}/{ticket} is already completed")
            self._database.delivery_states.get(state_id, connection=con)

            delivered_rolls, delivered_weight = _cumulative(con, section, ticket)
            new_rolls = delivered_rolls + rolls
            new_weight = quantize_weight(delivered_weight + weight)
            if new_rolls > header.total_rolls or new_weight > header.total_weight:
                logger.warning(
                    "Rejected delivery of %s rolls / %s kg on FA %s/%s (delivered %s / %s of %s / %s)",
                    rolls,
                    weight,
                    section,
                    ticket,
                    delivered_rolls,
                    delivered_weight,
                    header.total_rolls,
                    header.total_weight,
                )
                raise OverDelivery(
                    f"Ticket {section}/{ticket}: delivering {rolls} rolls / {weight} kg "
                    f"exceeds the remaining {header.total_rolls - delivered_rolls} rolls / "
                    f"{quantize_weight(header.total_weight - delivered_weight)} kg"
                )

            row = con.execute(
                "SELECT COALESCE(MAX(line), 0) + 1 AS next_line FROM delivery_events "
                "WHERE section = ? AND ticket = ?",
                (section, ticket),
            ).fetchone()
            line = RowReader(row, "next delivery line").integer("next_line")
            con.execute(
                "INSERT INTO delivery_events (section, ticket, line, delivered_at, rolls, "
                "weight, state_id, note) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    section,
                    ticket,
                    line,
                    datetime.now().isoformat(timespec="seconds"),
                    rolls,
                    weight,
                    state_id,
                    note.strip(),
                ),
            )

            new_rolls, new_weight = _cumulative(con, section, ticket)
            # Weight closes the ticket; rolls are only capped.
            completed = new_weight >= header.total_weight
            if completed:
                con.execute(
                    "UPDATE tickets SET state = ? WHERE section = ? AND number = ?",
                    (TicketState.COMPLETED.value, section, ticket),
                )

        logger.info(
            "Delivery %s on FA %s/%s: %s rolls / %s kg (cumulative %s / %s)%s",
            line,
            section,
            ticket,
            rolls,
            weight,
            new_rolls,
            new_weight,
            ", completed" if completed else "",
        )
        return DeliveryResult(
            line=line,
            delivered_rolls=new_rolls,
            delivered_weight=new_weight,
            total_rolls=header.total_rolls,
            total_weight=header.total_weight,
            completed=completed,
        )

    def delivered_totals(self, section: int, ticket: int) -> Tuple[int, float]:
        with self._database.connect() as con:
            load_ticket(con, section, ticket)
            return _cumulative(con, section, ticket)

    def list_deliveries(self, section: int, ticket: int) -> List[DeliveryEvent]:
        with self._database.connect() as con:
            load_ticket(con, section, ticket)
            rows = con.execute(
                "SELECT de.section, de.ticket, de.line, de.delivered_at, de.rolls, de.weight, "
                "de.state_id, ds.description AS state_description, de.note "
                "FROM delivery_events de "
                "JOIN delivery_states ds ON ds.id = de.state_id "
                "WHERE de.section = ? AND de.ticket = ? ORDER BY de.line",
                (section, ticket),
            ).fetchall()
        return decode_all(rows, "delivery events", decode_event)

    def delivery_states(self) -> List[DeliveryState]:
        return self._database.delivery_states.list()


__all__ = ["DeliveryLedger", "decode_event"]
