"""Finishing process steps recorded against tickets."""

from __future__ import annotations

import logging
import math
import sqlite3
from datetime import datetime
from typing import Iterator, List, Optional

from .domain import Color, ProcessDefinition, ProcessStep, quantize_weight
from .errors import ValidationError
from .repository import RecordNotFoundError, RowReader, decode_one
from .settings import Settings
from .storage import FactoryDatabase
from .tickets import load_ticket

logger = logging.getLogger(__name__)

STEP_SELECT = """
SELECT ps.section, ps.ticket, ps.line, ps.recorded_at, ps.process_id,
       pd.description AS process_description, ps.color_id,
       c.code AS color_code, ps.rolls, ps.weight, ps.note
FROM process_steps ps
JOIN process_definitions pd ON pd.id = ps.process_id
LEFT JOIN colors c ON c.id = ps.color_id
WHERE ps.section = ? AND ps.ticket = ?
"""

STEP_QUERY = STEP_SELECT + "ORDER BY ps.line"


def decode_step(row: RowReader) -> ProcessStep:
    return ProcessStep(
        section=row.integer("section"),
        ticket=row.integer("ticket"),
        line=row.integer("line"),
        recorded_at=row.timestamp("recorded_at"),
        process_id=row.integer("process_id"),
        process_description=row.text("process_description"),
        color_id=row.optional_integer("color_id"),
        color_code=row.optional_text("color_code"),
        rolls=row.integer("rolls"),
        weight=row.number("weight"),
        note=row.optional_text("note"),
    )


class StepSequence:
    """Re-iterable view over a ticket's steps.

    Nothing is read until iteration starts; each new iteration runs a fresh
    query and streams rows in line order.
    """

    def __init__(self, database: FactoryDatabase, section: int, ticket: int) -> None:
        self._database = database
        self.section = section
        self.ticket = ticket

    def __iter__(self) -> Iterator[ProcessStep]:
        with self._database.connect() as con:
            for row in con.execute(STEP_QUERY, (self.section, self.ticket)):
                yield decode_step(RowReader(row, "process steps"))


class ProcessLog:
    """Append/remove ordered process steps of a ticket."""

    def __init__(self, database: FactoryDatabase, settings: Settings) -> None:
        self._database = database
        self._settings = settings

    def add_step(
        self,
        section: int,
        ticket: int,
        process_def_id: int,
        *,
        color_id: Optional[int] = None,
        rolls: int = 0,
        weight: float = 0.0,
        note: str = "",
    ) -> ProcessStep:
        # Quantities are informative only; they are not reconciled with the ticket.
        if rolls < 0 or not math.isfinite(weight) or weight < 0:
            raise ValidationError("Process quantities cannot be negative")
        with self._database.unit_of_work() as con:
            load_ticket(con, section, ticket)
            definition = self._database.processes.get(process_def_id, connection=con)
            if color_id is None and definition.uses_color:
                raise ValidationError(f"Process {definition.description} needs a color")
            if color_id is not None:
                self._database.colors.get(color_id, connection=con)
            row = con.execute(
                "SELECT COALESCE(MAX(line), 0) + 1 AS next_line FROM process_steps "
                "WHERE section = ? AND ticket = ?",
                (section, ticket),
            ).fetchone()
            line = RowReader(row, "next process line").integer("next_line")
            con.execute(
                "INSERT INTO process_steps (section, ticket, line, recorded_at, process_id, "
                "color_id, rolls, weight, note) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    section,
                    ticket,
                    line,
                    datetime.now().isoformat(timespec="seconds"),
                    process_def_id,
                    color_id,
                    rolls,
                    quantize_weight(weight),
                    note.strip(),
                ),
            )
            step = self._find_step(con, section, ticket, line)
        logger.info(
            "Added process %s as line %s on FA %s/%s", process_def_id, line, section, ticket
        )
        return step

    def remove_step(self, section: int, ticket: int, line: int) -> None:
        with self._database.unit_of_work() as con:
            cursor = con.execute(
                "DELETE FROM process_steps WHERE section = ? AND ticket = ? AND line = ?",
                (section, ticket, line),
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError(
                    f"Process line {line} not found on ticket {section}/{ticket}"
                )
        logger.info("Removed process line %s from FA %s/%s", line, section, ticket)

    def list_steps(self, section: int, ticket: int) -> StepSequence:
        with self._database.connect() as con:
            load_ticket(con, section, ticket)
        return StepSequence(self._database, section, ticket)

    def get_step(self, section: int, ticket: int, line: int) -> Optional[ProcessStep]:
        with self._database.connect() as con:
            return self._find_step(con, section, ticket, line)

    @staticmethod
    def _find_step(
        con: sqlite3.Connection, section: int, ticket: int, line: int
    ) -> Optional[ProcessStep]:
        row = con.execute(
            STEP_SELECT + "AND ps.line = ?", (section, ticket, line)
        ).fetchone()
        return decode_one(row, "process step", decode_step)

    def process_definitions(self) -> List[ProcessDefinition]:
        return self._database.processes.list(order_by="display_order, description")

    def colors(self) -> List[Color]:
        return self._database.colors.list(order_by="code")


__all__ = ["ProcessLog", "StepSequence", "decode_step"]
