"""Decoding and dispatch of barcodes scanned at the wall terminals.

A scan is a dot separated string of positive integers::

    1.06         select machine 6 on this terminal
    2.25352.12   operation class 2 on ticket 25352, process line 12

Class 1 is reserved for machine selection and takes exactly one parameter;
every other class takes a ticket number and a process line.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Optional, Tuple

from .domain import (
    MACHINE_SELECTION_CLASS,
    DispatchResult,
    MachineSelection,
    OperationDefinition,
    ProcessOperation,
    ScanOperation,
)
from .errors import DecodeError, DispatchError
from .repository import RecordNotFoundError, RowReader
from .settings import Settings
from .storage import FactoryDatabase
from .tickets import load_ticket

logger = logging.getLogger(__name__)


def _positive(token: str, name: str, code: str) -> int:
    if not token or not (token.isascii() and token.isdigit()):
        raise DecodeError(f"Invalid barcode {code!r}: {name} must be a positive integer")
    value = int(token)
    if value <= 0:
        raise DecodeError(f"Invalid barcode {code!r}: {name} must be a positive integer")
    return value


def decode(code: str) -> ScanOperation:
    """Turn a scanned string into a typed operation or raise :class:`DecodeError`."""

    if not isinstance(code, str) or not code.strip():
        raise DecodeError("Empty barcode")
    text = code.strip()
    tokens = text.split(".")
    operation_class = _positive(tokens[0], "operation class", text)
    if operation_class == MACHINE_SELECTION_CLASS:
        if len(tokens) != 2:
            raise DecodeError(
                f"Invalid barcode {text!r}: machine selection takes exactly one machine number"
            )
        return MachineSelection(machine_id=_positive(tokens[1], "machine", text))
    if len(tokens) != 3:
        raise DecodeError(
            f"Invalid barcode {text!r}: operation {operation_class} needs a ticket and a process line"
        )
    return ProcessOperation(
        operation_class=operation_class,
        ticket_number=_positive(tokens[1], "ticket", text),
        process_step=_positive(tokens[2], "process line", text),
    )


class BarcodeOperationRouter:
    """Appends machine readings for decoded scans."""

    def __init__(self, database: FactoryDatabase, settings: Settings) -> None:
        self._database = database
        self._settings = settings

    decode = staticmethod(decode)

    def scan(self, code: str, terminal_id: Optional[str] = None) -> DispatchResult:
        return self.dispatch(decode(code), terminal_id)

    def dispatch(
        self, operation: ScanOperation, terminal_id: Optional[str] = None
    ) -> DispatchResult:
        terminal = (terminal_id or "").strip() or self._settings.default_terminal
        try:
            with self._database.unit_of_work() as con:
                if isinstance(operation, MachineSelection):
                    result = self._select_machine(con, operation, terminal)
                else:
                    result = self._register_operation(con, operation, terminal)
        except sqlite3.Error as exc:
            logger.exception("Could not store reading %r from %s", operation, terminal)
            raise DispatchError("Erro ao registar leitura", reason=str(exc)) from exc
        logger.info("Terminal %s: %s", terminal, result.message)
        return result

    # ------------------------------------------------------------------
    # Operation kinds
    # ------------------------------------------------------------------
    def _select_machine(
        self, con: sqlite3.Connection, operation: MachineSelection, terminal: str
    ) -> DispatchResult:
        machine = self._database.machines.find(operation.machine_id, connection=con)
        if machine is None:
            raise RecordNotFoundError(f"Machine {operation.machine_id} not found")
        sequence, duplicate = self._append(
            con,
            terminal=terminal,
            machine=machine.id,
            operation=MACHINE_SELECTION_CLASS,
            ticket=0,
            step=0,
            section=machine.section,
        )
        con.execute(
            "INSERT INTO terminals (terminal, machine, section) VALUES (?, ?, ?) "
            "ON CONFLICT(terminal) DO UPDATE SET machine = excluded.machine, "
            "section = excluded.section",
            (terminal, machine.id, machine.section),
        )
        description = self._describe(con, MACHINE_SELECTION_CLASS)
        return DispatchResult(
            sequence_number=sequence,
            message=f"{self._status_text(sequence, duplicate)} - {machine.description}",
            operation_description=description,
            details={"maquina": machine.id, "maquina_descricao": machine.description},
            duplicate=duplicate,
        )

    def _register_operation(
        self, con: sqlite3.Connection, operation: ProcessOperation, terminal: str
    ) -> DispatchResult:
        machine, section = self._terminal_binding(con, terminal)
        load_ticket(con, section, operation.ticket_number)
        if machine == 0:
            logger.warning(
                "Terminal %s has no machine selected; reading stored without machine",
                terminal,
            )
        sequence, duplicate = self._append(
            con,
            terminal=terminal,
            machine=machine,
            operation=operation.operation_class,
            ticket=operation.ticket_number,
            step=operation.process_step,
            section=section,
        )
        definition = self._database.operations.find(
            operation.operation_class, connection=con
        )
        description = self._describe(con, operation.operation_class, definition)
        details = {
            "fa_numero": operation.ticket_number,
            "processo": operation.process_step,
            "maquina": machine,
        }
        target = f"FA {operation.ticket_number} / {operation.process_step}"
        if definition is not None and (definition.entry or definition.exit):
            process = self._step_description(
                con, section, operation.ticket_number, operation.process_step
            )
            if process:
                details["processo_descricao"] = process
                target = process
        return DispatchResult(
            sequence_number=sequence,
            message=f"{self._status_text(sequence, duplicate)} - {description} {target}",
            operation_description=description,
            details=details,
            duplicate=duplicate,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _status_text(sequence: int, duplicate: bool) -> str:
        return f"Leitura repetida: {sequence}" if duplicate else f"Gravação OK: {sequence}"

    def _append(
        self,
        con: sqlite3.Connection,
        *,
        terminal: str,
        machine: int,
        operation: int,
        ticket: int,
        step: int,
        section: int,
    ) -> Tuple[int, bool]:
        now = datetime.now()
        key = (terminal, machine, operation, ticket, step)
        window = self._settings.scan_dedupe_seconds
        if window > 0:
            cutoff = (now - timedelta(seconds=window)).isoformat(timespec="milliseconds")
            row = con.execute(
                "SELECT sequence FROM machine_readings WHERE terminal = ? AND machine = ? "
                "AND operation = ? AND ticket = ? AND step = ? AND read_at >= ? "
                "ORDER BY sequence DESC LIMIT 1",
                (*key, cutoff),
            ).fetchone()
            if row is not None:
                sequence = RowReader(row, "recent reading").integer("sequence")
                logger.info("Ignoring repeated scan %s at %s (reading %s)", key, terminal, sequence)
                return sequence, True
        cursor = con.execute(
            "INSERT INTO machine_readings (read_at, terminal, machine, operation, ticket, "
            "step, section) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (now.isoformat(timespec="milliseconds"), *key, section),
        )
        return int(cursor.lastrowid), False

    def _terminal_binding(self, con: sqlite3.Connection, terminal: str) -> Tuple[int, int]:
        row = con.execute(
            "SELECT machine, section FROM terminals WHERE terminal = ?", (terminal,)
        ).fetchone()
        if row is None:
            return 0, self._settings.default_section
        reader = RowReader(row, "terminal binding")
        return reader.integer("machine"), reader.integer("section")

    def _describe(
        self,
        con: sqlite3.Connection,
        operation_class: int,
        definition: Optional[OperationDefinition] = None,
    ) -> str:
        if definition is None:
            definition = self._database.operations.find(operation_class, connection=con)
        return definition.description if definition else f"Operação {operation_class}"

    @staticmethod
    def _step_description(
        con: sqlite3.Connection, section: int, ticket: int, step: int
    ) -> str:
        row = con.execute(
            "SELECT pd.description FROM process_steps ps "
            "JOIN process_definitions pd ON pd.id = ps.process_id "
            "WHERE ps.section = ? AND ps.ticket = ? AND ps.line = ?",
            (section, ticket, step),
        ).fetchone()
        return "" if row is None else RowReader(row, "step description").text("description")


__all__ = ["BarcodeOperationRouter", "decode"]
