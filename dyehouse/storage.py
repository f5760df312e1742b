"""SQLite-backed persistence helpers for the finishing floor."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import fields
from pathlib import Path
from typing import Callable, Dict, Generic, Iterator, List, Optional, Type, TypeVar

from .domain import Color, DeliveryState, Machine, OperationDefinition, ProcessDefinition
from .repository import DuplicateRecordError, RecordNotFoundError, RowReader

T = TypeVar("T")

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS machines (
    id INTEGER PRIMARY KEY,
    description TEXT NOT NULL,
    section INTEGER NOT NULL DEFAULT 1,
    display_order INTEGER NOT NULL DEFAULT 0,
    active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS operation_definitions (
    operation_class INTEGER PRIMARY KEY,
    description TEXT NOT NULL,
    machine_selection INTEGER NOT NULL DEFAULT 0,
    entry INTEGER NOT NULL DEFAULT 0,
    exit INTEGER NOT NULL DEFAULT 0,
    delivery INTEGER NOT NULL DEFAULT 0,
    waste INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS process_definitions (
    id INTEGER PRIMARY KEY,
    description TEXT NOT NULL,
    display_order INTEGER NOT NULL DEFAULT 0,
    uses_color INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS colors (
    id INTEGER PRIMARY KEY,
    code TEXT NOT NULL,
    fabric TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS delivery_states (
    id INTEGER PRIMARY KEY,
    description TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS terminals (
    terminal TEXT PRIMARY KEY,
    machine INTEGER NOT NULL DEFAULT 0,
    section INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS lot_lines (
    section INTEGER NOT NULL,
    day TEXT NOT NULL,
    line INTEGER NOT NULL,
    client_id INTEGER NOT NULL,
    client_name TEXT NOT NULL,
    article_code TEXT NOT NULL,
    article_description TEXT NOT NULL,
    composition_id INTEGER NOT NULL DEFAULT 0,
    composition_description TEXT NOT NULL DEFAULT '',
    requested_rolls INTEGER NOT NULL,
    requested_weight REAL NOT NULL,
    delivered_rolls INTEGER NOT NULL DEFAULT 0,
    delivered_weight REAL NOT NULL DEFAULT 0,
    requisition TEXT NOT NULL DEFAULT '',
    bleach INTEGER NOT NULL DEFAULT 0,
    desize INTEGER NOT NULL DEFAULT 0,
    dye INTEGER NOT NULL DEFAULT 0,
    registered_by TEXT NOT NULL DEFAULT '',
    registered_at TEXT NOT NULL,
    PRIMARY KEY (section, day, line),
    CHECK (delivered_rolls >= 0 AND delivered_rolls <= requested_rolls),
    CHECK (delivered_weight >= 0 AND delivered_weight <= requested_weight + 0.0005)
);

CREATE TABLE IF NOT EXISTS tickets (
    section INTEGER NOT NULL,
    number INTEGER NOT NULL,
    created_on TEXT NOT NULL,
    total_rolls INTEGER NOT NULL,
    total_weight REAL NOT NULL,
    state TEXT NOT NULL DEFAULT 'open',
    note TEXT NOT NULL DEFAULT '',
    registered_at TEXT NOT NULL,
    PRIMARY KEY (section, number),
    CHECK (state IN ('open', 'completed'))
);

CREATE TABLE IF NOT EXISTS ticket_allocations (
    section INTEGER NOT NULL,
    ticket INTEGER NOT NULL,
    line INTEGER NOT NULL,
    lot_section INTEGER NOT NULL,
    lot_day TEXT NOT NULL,
    lot_line INTEGER NOT NULL,
    rolls INTEGER NOT NULL,
    weight REAL NOT NULL,
    PRIMARY KEY (section, ticket, line),
    FOREIGN KEY (section, ticket) REFERENCES tickets(section, number),
    FOREIGN KEY (lot_section, lot_day, lot_line) REFERENCES lot_lines(section, day, line)
);

CREATE TABLE IF NOT EXISTS process_steps (
    section INTEGER NOT NULL,
    ticket INTEGER NOT NULL,
    line INTEGER NOT NULL,
    recorded_at TEXT NOT NULL,
    process_id INTEGER NOT NULL,
    color_id INTEGER,
    rolls INTEGER NOT NULL DEFAULT 0,
    weight REAL NOT NULL DEFAULT 0,
    note TEXT NOT NULL DEFAULT '',
    PRIMARY KEY (section, ticket, line),
    FOREIGN KEY (section, ticket) REFERENCES tickets(section, number),
    FOREIGN KEY (process_id) REFERENCES process_definitions(id),
    FOREIGN KEY (color_id) REFERENCES colors(id)
);

CREATE TABLE IF NOT EXISTS delivery_events (
    section INTEGER NOT NULL,
    ticket INTEGER NOT NULL,
    line INTEGER NOT NULL,
    delivered_at TEXT NOT NULL,
    rolls INTEGER NOT NULL,
    weight REAL NOT NULL,
    state_id INTEGER NOT NULL,
    note TEXT NOT NULL DEFAULT '',
    PRIMARY KEY (section, ticket, line),
    FOREIGN KEY (section, ticket) REFERENCES tickets(section, number),
    FOREIGN KEY (state_id) REFERENCES delivery_states(id)
);

CREATE TABLE IF NOT EXISTS machine_readings (
    sequence INTEGER PRIMARY KEY AUTOINCREMENT,
    read_at TEXT NOT NULL,
    terminal TEXT NOT NULL,
    machine INTEGER NOT NULL DEFAULT 0,
    operation INTEGER NOT NULL,
    ticket INTEGER NOT NULL DEFAULT 0,
    step INTEGER NOT NULL DEFAULT 0,
    section INTEGER NOT NULL DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_machine_readings_machine
    ON machine_readings(machine, sequence);
CREATE INDEX IF NOT EXISTS idx_ticket_allocations_lot
    ON ticket_allocations(lot_section, lot_day, lot_line);
"""


def _reader_for(annotation: object) -> Callable[[RowReader, str], object]:
    if annotation in (bool, "bool"):
        return RowReader.flag
    if annotation in (int, "int"):
        return RowReader.integer
    if annotation in (float, "float"):
        return RowReader.number
    return RowReader.optional_text


class ReferenceTable(Generic[T]):
    """Lookup table whose columns mirror the fields of a flat dataclass."""

    def __init__(
        self, database: "FactoryDatabase", table: str, model: Type[T], key: str
    ) -> None:
        self._database = database
        self._table = table
        self._model = model
        self._key = key
        self._columns = [item.name for item in fields(model)]  # type: ignore[arg-type]
        self._readers: Dict[str, Callable[[RowReader, str], object]] = {
            item.name: _reader_for(item.type) for item in fields(model)  # type: ignore[arg-type]
        }
        self._query = f"{table} lookup"

    def _decode(self, row: sqlite3.Row) -> T:
        reader = RowReader(row, self._query)
        values = {name: read(reader, name) for name, read in self._readers.items()}
        return self._model(**values)

    def _values(self, item: T) -> List[object]:
        return [getattr(item, column) for column in self._columns]

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, int):
            return False
        with self._database.connect() as con:
            cursor = con.execute(
                f"SELECT 1 FROM {self._table} WHERE {self._key} = ? LIMIT 1",  # nosec - static names
                (key,),
            )
            return cursor.fetchone() is not None

    def __len__(self) -> int:
        with self._database.connect() as con:
            value = con.execute(f"SELECT COUNT(1) FROM {self._table}").fetchone()
        return int(value[0]) if value else 0

    def add(self, item: T) -> T:
        placeholders = ", ".join("?" for _ in self._columns)
        try:
            with self._database.unit_of_work() as con:
                con.execute(
                    f"INSERT INTO {self._table} ({', '.join(self._columns)}) "
                    f"VALUES ({placeholders})",
                    self._values(item),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateRecordError(
                f"{self._table} record {getattr(item, self._key)!r} already exists"
            ) from exc
        return item

    def upsert(self, item: T) -> T:
        placeholders = ", ".join("?" for _ in self._columns)
        updates = ", ".join(
            f"{column} = excluded.{column}"
            for column in self._columns
            if column != self._key
        )
        with self._database.unit_of_work() as con:
            con.execute(
                f"INSERT INTO {self._table} ({', '.join(self._columns)}) "
                f"VALUES ({placeholders}) "
                f"ON CONFLICT({self._key}) DO UPDATE SET {updates}",
                self._values(item),
            )
        return item

    def get(self, key: int, *, connection: Optional[sqlite3.Connection] = None) -> T:
        item = self.find(key, connection=connection)
        if item is None:
            raise RecordNotFoundError(f"{self._table} record {key!r} not found")
        return item

    def find(
        self, key: int, *, connection: Optional[sqlite3.Connection] = None
    ) -> Optional[T]:
        query = (
            f"SELECT {', '.join(self._columns)} FROM {self._table} "
            f"WHERE {self._key} = ?"
        )
        if connection is not None:
            row = connection.execute(query, (key,)).fetchone()
        else:
            with self._database.connect() as con:
                row = con.execute(query, (key,)).fetchone()
        return None if row is None else self._decode(row)

    def list(self, order_by: Optional[str] = None) -> List[T]:
        order = order_by or self._key
        with self._database.connect() as con:
            rows = con.execute(
                f"SELECT {', '.join(self._columns)} FROM {self._table} ORDER BY {order}"
            ).fetchall()
        return [self._decode(row) for row in rows]


class FactoryDatabase:
    """Connection handle bundling the schema and reference tables.

    Each call to :meth:`connect` or :meth:`unit_of_work` opens its own
    connection, so one handle can be shared by request threads.
    """

    def __init__(self, path: Path, *, busy_timeout: float = 20.0) -> None:
        self.path = Path(path)
        self.busy_timeout = busy_timeout
        if str(self.path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self.machines = ReferenceTable[Machine](self, "machines", Machine, "id")
        self.operations = ReferenceTable[OperationDefinition](
            self, "operation_definitions", OperationDefinition, "operation_class"
        )
        self.processes = ReferenceTable[ProcessDefinition](
            self, "process_definitions", ProcessDefinition, "id"
        )
        self.colors = ReferenceTable[Color](self, "colors", Color, "id")
        self.delivery_states = ReferenceTable[DeliveryState](
            self, "delivery_states", DeliveryState, "id"
        )

    def _open(self) -> sqlite3.Connection:
        con = sqlite3.connect(
            self.path,
            timeout=self.busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA foreign_keys=ON;")
        return con

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Connection for reads; every statement runs in autocommit mode."""

        con = self._open()
        try:
            yield con
        finally:
            con.close()

    @contextmanager
    def unit_of_work(self) -> Iterator[sqlite3.Connection]:
        """One write transaction around a read-check-write sequence.

        ``BEGIN IMMEDIATE`` takes the write lock before the first read, so two
        sessions allocating the same lot line or delivering against the same
        ticket run one after the other.
        """

        con = self._open()
        try:
            con.execute("BEGIN IMMEDIATE")
            try:
                yield con
            except BaseException:
                if con.in_transaction:
                    con.execute("ROLLBACK")
                raise
            con.execute("COMMIT")
        finally:
            con.close()

    def ensure_schema(self) -> None:
        con = self._open()
        try:
            con.execute("PRAGMA journal_mode=WAL;")
            con.executescript(SCHEMA)
        finally:
            con.close()
        logger.info("Schema ready at %s", self.path)

    def ping(self) -> bool:
        with self.connect() as con:
            return con.execute("SELECT 1").fetchone() is not None


__all__ = ["ReferenceTable", "FactoryDatabase", "SCHEMA"]
