"""Read projection of machine occupancy for the wall panels."""

from __future__ import annotations

from typing import List

from .domain import MachineActivity, MachineStatus, quantize_weight
from .repository import RowReader, decode_all
from .settings import Settings
from .storage import FactoryDatabase

# Latest reading per machine, joined with ticket, first lot line and step.
STATUS_QUERY = """
SELECT m.id AS machine_id, m.description AS machine_description,
       r.read_at, r.operation, COALESCE(r.ticket, 0) AS ticket,
       od.description AS operation_description, od.entry, od.exit,
       pd.description AS process_description,
       t.total_rolls, t.total_weight,
       l.client_name, l.article_description
FROM machines m
LEFT JOIN machine_readings r
       ON r.sequence = (SELECT MAX(sequence) FROM machine_readings WHERE machine = m.id)
LEFT JOIN operation_definitions od ON od.operation_class = r.operation
LEFT JOIN tickets t ON t.section = r.section AND t.number = r.ticket
LEFT JOIN ticket_allocations ta
       ON ta.section = t.section AND ta.ticket = t.number AND ta.line = 1
LEFT JOIN lot_lines l
       ON l.section = ta.lot_section AND l.day = ta.lot_day AND l.line = ta.lot_line
LEFT JOIN process_steps ps
       ON ps.section = r.section AND ps.ticket = r.ticket AND ps.line = r.step
LEFT JOIN process_definitions pd ON pd.id = ps.process_id
WHERE m.section = ? AND m.active = 1
ORDER BY m.display_order, m.id
"""


def classify(ticket: int, entry: bool, exit: bool) -> MachineActivity:
    if ticket == 0:
        return MachineActivity.FREE
    if entry:
        return MachineActivity.IN
    if exit:
        return MachineActivity.OUT
    return MachineActivity.NEUTRAL


def decode_status(row: RowReader) -> MachineStatus:
    ticket = row.integer("ticket")
    operation = row.optional_integer("operation")
    operation_description = row.optional_text("operation_description")
    if operation is not None and not operation_description:
        operation_description = f"Operação {operation}"
    return MachineStatus(
        machine_id=row.integer("machine_id"),
        machine_description=row.text("machine_description"),
        activity=classify(
            ticket,
            bool(row.optional_integer("entry")),
            bool(row.optional_integer("exit")),
        ),
        read_at=row.optional_timestamp("read_at"),
        operation_description=operation_description,
        process_description=row.optional_text("process_description"),
        ticket_number=ticket,
        rolls=row.optional_integer("total_rolls") or 0,
        weight=quantize_weight(row.optional_number("total_weight") or 0.0),
        client_name=row.optional_text("client_name"),
        article_description=row.optional_text("article_description"),
    )


class MachineStatusView:
    """Per-machine status recomputed from the reading log on every call."""

    def __init__(self, database: FactoryDatabase, settings: Settings) -> None:
        self._database = database
        self._settings = settings

    def current_status(self, section: int) -> List[MachineStatus]:
        with self._database.connect() as con:
            rows = con.execute(STATUS_QUERY, (section,)).fetchall()
        return decode_all(rows, "machine status", decode_status)


__all__ = ["MachineStatusView", "classify", "decode_status"]
