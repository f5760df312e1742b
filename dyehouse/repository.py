"""Repository errors and typed decoding of SQLite result rows."""

from __future__ import annotations

import sqlite3
from datetime import date, datetime
from typing import Any, Callable, Iterable, List, Optional, TypeVar

T = TypeVar("T")


class RepositoryError(RuntimeError):
    """Base exception for repository errors."""


class DuplicateRecordError(RepositoryError):
    """Raised when attempting to insert a record that already exists."""


class RecordNotFoundError(RepositoryError):
    """Raised when a requested record is missing."""


class RowDecodeError(RepositoryError):
    """Raised when a result row lacks a column or holds a value of the wrong shape."""


class RowReader:
    """Typed accessors over a single ``sqlite3.Row``.

    Every accessor fails with :class:`RowDecodeError` instead of handing back
    ``None`` or a value of an unexpected type.
    """

    __slots__ = ("_row", "_query")

    def __init__(self, row: sqlite3.Row, query: str) -> None:
        self._row = row
        self._query = query

    def _raw(self, column: str) -> Any:
        try:
            return self._row[column]
        except (IndexError, KeyError) as exc:
            raise RowDecodeError(
                f"{self._query}: column {column!r} missing from result"
            ) from exc

    def _fail(self, column: str, expected: str, value: Any) -> RowDecodeError:
        return RowDecodeError(
            f"{self._query}: column {column!r} expected {expected}, got {value!r}"
        )

    def integer(self, column: str) -> int:
        value = self._raw(column)
        if isinstance(value, bool) or not isinstance(value, int):
            raise self._fail(column, "integer", value)
        return value

    def optional_integer(self, column: str) -> Optional[int]:
        if self._raw(column) is None:
            return None
        return self.integer(column)

    def number(self, column: str) -> float:
        value = self._raw(column)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise self._fail(column, "number", value)
        return float(value)

    def optional_number(self, column: str) -> Optional[float]:
        if self._raw(column) is None:
            return None
        return self.number(column)

    def text(self, column: str) -> str:
        value = self._raw(column)
        if not isinstance(value, str):
            raise self._fail(column, "text", value)
        return value.strip()

    def optional_text(self, column: str) -> str:
        if self._raw(column) is None:
            return ""
        return self.text(column)

    def flag(self, column: str) -> bool:
        value = self.integer(column)
        if value not in (0, 1):
            raise self._fail(column, "0/1 flag", value)
        return bool(value)

    def day(self, column: str) -> date:
        value = self.text(column)
        try:
            return date.fromisoformat(value)
        except ValueError as exc:
            raise self._fail(column, "ISO date", value) from exc

    def timestamp(self, column: str) -> datetime:
        value = self.text(column)
        try:
            return datetime.fromisoformat(value)
        except ValueError as exc:
            raise self._fail(column, "ISO timestamp", value) from exc

    def optional_timestamp(self, column: str) -> Optional[datetime]:
        if self._raw(column) is None:
            return None
        return self.timestamp(column)


def decode_one(
    row: Optional[sqlite3.Row], query: str, decoder: Callable[[RowReader], T]
) -> Optional[T]:
    if row is None:
        return None
    return decoder(RowReader(row, query))


def decode_all(
    rows: Iterable[sqlite3.Row], query: str, decoder: Callable[[RowReader], T]
) -> List[T]:
    return [decoder(RowReader(row, query)) for row in rows]


__all__ = [
    "RepositoryError",
    "DuplicateRecordError",
    "RecordNotFoundError",
    "RowDecodeError",
    "RowReader",
    "decode_one",
    "decode_all",
]
