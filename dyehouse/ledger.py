"""Reception lines (lots) and their pending balances."""

from __future__ import annotations

import logging
import math
import sqlite3
from datetime import date, datetime
from typing import List, Optional

from .domain import Client, LotLine, LotLineId, PendingPage, quantize_weight
from .errors import LineInUseError, OverAllocation, ValidationError
from .repository import RecordNotFoundError, RowReader, decode_all, decode_one
from .settings import Settings
from .storage import FactoryDatabase

logger = logging.getLogger(__name__)

LOT_COLUMNS = (
    "section, day, line, client_id, client_name, article_code, article_description, "
    "composition_id, composition_description, requested_rolls, requested_weight, "
    "delivered_rolls, delivered_weight, requisition, bleach, desize, dye, "
    "registered_by, registered_at"
)

# A line is pending while either quantity has something left to allocate.
PENDING_CLAUSE = (
    "(delivered_rolls < requested_rolls OR delivered_weight < requested_weight - 0.0005)"
)


def decode_lot_line(row: RowReader) -> LotLine:
    return LotLine(
        id=LotLineId(
            section=row.integer("section"),
            day=row.day("day"),
            line=row.integer("line"),
        ),
        client_id=row.integer("client_id"),
        client_name=row.text("client_name"),
        article_code=row.text("article_code"),
        article_description=row.text("article_description"),
        composition_id=row.integer("composition_id"),
        composition_description=row.optional_text("composition_description"),
        requested_rolls=row.integer("requested_rolls"),
        requested_weight=row.number("requested_weight"),
        delivered_rolls=row.integer("delivered_rolls"),
        delivered_weight=row.number("delivered_weight"),
        requisition=row.optional_text("requisition"),
        bleach=row.flag("bleach"),
        desize=row.flag("desize"),
        dye=row.flag("dye"),
        registered_by=row.optional_text("registered_by"),
        registered_at=row.timestamp("registered_at"),
    )


class LotLedger:
    """Owns reception lines; allocation into tickets is the only mutator."""

    def __init__(self, database: FactoryDatabase, settings: Settings) -> None:
        self._database = database
        self._settings = settings

    # ------------------------------------------------------------------
    # Reception
    # ------------------------------------------------------------------
    def receive(
        self,
        section: int,
        day: date,
        *,
        client_id: int,
        client_name: str,
        article_code: str,
        article_description: str,
        requested_rolls: int,
        requested_weight: float,
        composition_id: int = 0,
        composition_description: str = "",
        requisition: str = "",
        bleach: bool = False,
        desize: bool = False,
        dye: bool = False,
        registered_by: str = "SYSTEM",
    ) -> LotLine:
        if client_id <= 0 or not client_name.strip():
            raise ValidationError("Client is required")
        if not article_code.strip() or not article_description.strip():
            raise ValidationError("Article is required")
        if requested_rolls < 0:
            raise ValidationError("Requested rolls cannot be negative")
        if not math.isfinite(requested_weight):
            raise ValidationError("Requested weight must be a number")
        weight = quantize_weight(requested_weight)
        if weight <= 0:
            raise ValidationError("Requested weight must be positive")
        with self._database.unit_of_work() as con:
            row = con.execute(
                "SELECT COALESCE(MAX(line), 0) + 1 AS next_line FROM lot_lines "
                "WHERE section = ? AND day = ?",
                (section, day.isoformat()),
            ).fetchone()
            next_line = RowReader(row, "next lot line").integer("next_line")
            con.execute(
                f"INSERT INTO lot_lines ({LOT_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, 0, ?, ?, ?, ?, ?, ?)",
                (
                    section,
                    day.isoformat(),
                    next_line,
                    client_id,
                    client_name.strip(),
                    article_code.strip(),
                    article_description.strip(),
                    composition_id,
                    composition_description.strip(),
                    requested_rolls,
                    weight,
                    requisition.strip(),
                    bleach,
                    desize,
                    dye,
                    registered_by,
                    datetime.now().isoformat(timespec="seconds"),
                ),
            )
            line = self.get(LotLineId(section, day, next_line), connection=con)
        logger.info(
            "Received lot %s for client %s: %s rolls / %s kg",
            line.id,
            client_id,
            requested_rolls,
            weight,
        )
        return line

    def get(
        self, line_id: LotLineId, *, connection: Optional[sqlite3.Connection] = None
    ) -> LotLine:
        query = (
            f"SELECT {LOT_COLUMNS} FROM lot_lines "
            "WHERE section = ? AND day = ? AND line = ?"
        )
        params = (line_id.section, line_id.day.isoformat(), line_id.line)
        if connection is not None:
            row = connection.execute(query, params).fetchone()
        else:
            with self._database.connect() as con:
                row = con.execute(query, params).fetchone()
        line = decode_one(row, "lot line", decode_lot_line)
        if line is None:
            raise RecordNotFoundError(f"Lot line {line_id} not found")
        return line

    def list_pending(
        self,
        *,
        section: Optional[int] = None,
        client_filter: Optional[int] = None,
        requisition_filter: Optional[str] = None,
        name_filter: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> PendingPage:
        """Lines with quantities still to allocate, most recent first."""

        page = max(page, 1)
        limit = limit or self._settings.page_size
        clauses = [PENDING_CLAUSE]
        params: List[object] = []
        if section is not None:
            clauses.append("section = ?")
            params.append(section)
        if client_filter:
            clauses.append("client_id = ?")
            params.append(client_filter)
        if name_filter:
            clauses.append("instr(upper(client_name), upper(?)) > 0")
            params.append(name_filter.strip())
        if requisition_filter:
            clauses.append("instr(upper(requisition), upper(?)) > 0")
            params.append(requisition_filter.strip())
        where = " AND ".join(clauses)
        with self._database.connect() as con:
            count_row = con.execute(
                f"SELECT COUNT(*) AS total FROM lot_lines WHERE {where}", params
            ).fetchone()
            total = RowReader(count_row, "pending count").integer("total")
            rows = con.execute(
                f"SELECT {LOT_COLUMNS} FROM lot_lines WHERE {where} "
                "ORDER BY day DESC, line DESC LIMIT ? OFFSET ?",
                [*params, limit, (page - 1) * limit],
            ).fetchall()
        return PendingPage(
            items=decode_all(rows, "pending lot lines", decode_lot_line),
            total=total,
            page=page,
            total_pages=math.ceil(total / limit) if total else 0,
        )

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------
    def allocate(
        self,
        connection: sqlite3.Connection,
        line_id: LotLineId,
        rolls: int,
        weight: float,
    ) -> LotLine:
        """Move quantity out of a line's pending balance.

        Runs inside the caller's unit of work; the caller owns commit and
        rollback.
        """

        line = self.get(line_id, connection=connection)
        weight = quantize_weight(weight)
        if rolls < 0 or weight < 0:
            raise ValidationError("Allocated quantities cannot be negative")
        if rolls > line.pending_rolls or weight > line.pending_weight:
            logger.warning(
                "Rejected allocation of %s rolls / %s kg from lot %s (pending %s / %s)",
                rolls,
                weight,
                line_id,
                line.pending_rolls,
                line.pending_weight,
            )
            raise OverAllocation(
                f"Lot {line_id}: requested {rolls} rolls / {weight} kg, "
                f"pending {line.pending_rolls} rolls / {line.pending_weight} kg"
            )
        connection.execute(
            "UPDATE lot_lines SET delivered_rolls = ?, delivered_weight = ? "
            "WHERE section = ? AND day = ? AND line = ?",
            (
                line.delivered_rolls + rolls,
                quantize_weight(line.delivered_weight + weight),
                line_id.section,
                line_id.day.isoformat(),
                line_id.line,
            ),
        )
        line.delivered_rolls += rolls
        line.delivered_weight = quantize_weight(line.delivered_weight + weight)
        return line

    def delete(self, line_id: LotLineId) -> None:
        with self._database.unit_of_work() as con:
            line = self.get(line_id, connection=con)
            allocated = con.execute(
                "SELECT COUNT(*) AS n FROM ticket_allocations "
                "WHERE lot_section = ? AND lot_day = ? AND lot_line = ?",
                (line_id.section, line_id.day.isoformat(), line_id.line),
            ).fetchone()
            if (
                line.delivered_rolls > 0
                or line.delivered_weight > 0
                or RowReader(allocated, "allocation count").integer("n") > 0
            ):
                raise LineInUseError(f"Lot {line_id} already has allocated quantities")
            con.execute(
                "DELETE FROM lot_lines WHERE section = ? AND day = ? AND line = ?",
                (line_id.section, line_id.day.isoformat(), line_id.line),
            )
        logger.info("Deleted lot %s", line_id)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def lookup_clients(self) -> List[Client]:
        with self._database.connect() as con:
            rows = con.execute(
                "SELECT client_id, MAX(client_name) AS client_name FROM lot_lines "
                "GROUP BY client_id ORDER BY client_name"
            ).fetchall()
        return decode_all(
            rows,
            "client lookup",
            lambda row: Client(id=row.integer("client_id"), name=row.text("client_name")),
        )

    def lookup_articles(self) -> List[tuple]:
        with self._database.connect() as con:
            rows = con.execute(
                "SELECT article_code, MAX(article_description) AS description "
                "FROM lot_lines GROUP BY article_code ORDER BY description"
            ).fetchall()
        return decode_all(
            rows,
            "article lookup",
            lambda row: (row.text("article_code"), row.text("description")),
        )

    def lookup_compositions(self) -> List[tuple]:
        with self._database.connect() as con:
            rows = con.execute(
                "SELECT composition_id, MAX(composition_description) AS description "
                "FROM lot_lines GROUP BY composition_id ORDER BY description"
            ).fetchall()
        return decode_all(
            rows,
            "composition lookup",
            lambda row: (row.integer("composition_id"), row.optional_text("description")),
        )


__all__ = ["LotLedger", "decode_lot_line", "LOT_COLUMNS"]
