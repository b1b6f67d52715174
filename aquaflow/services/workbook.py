"""Tabular backends for the remote store.

A workbook is a set of named sheets; a sheet is an ordered list of rows of
weakly typed cells (str, int, float, bool, datetime or ""). Row 1 is the
header row. Indices are 1-based, as in a spreadsheet.

``MemoryWorkbook`` keeps everything in process memory (tests, local dev).
``SqlWorkbook`` persists each row as a ``SheetRow`` through SQLAlchemy.
Both support ``batch()``: every write inside the block is applied together
or not at all.
"""
import copy
import json
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from aquaflow.models.sheet_row import SheetRow

Cell = Any


class MemorySheet:
    def __init__(self, name: str, rows: list[list[Cell]] | None = None):
        self.name = name
        self._rows: list[list[Cell]] = rows if rows is not None else []

    def last_row(self) -> int:
        return len(self._rows)

    def last_column(self) -> int:
        return max((len(r) for r in self._rows), default=0)

    def get_row(self, index: int) -> list[Cell]:
        return list(self._rows[index - 1])

    def get_rows(self) -> list[list[Cell]]:
        return [list(r) for r in self._rows]

    def set_row(self, index: int, cells: list[Cell]) -> None:
        while len(self._rows) < index:
            self._rows.append([])
        self._rows[index - 1] = list(cells)

    def append_row(self, cells: list[Cell]) -> int:
        self._rows.append(list(cells))
        return len(self._rows)


class MemoryWorkbook:
    def __init__(self):
        self._sheets: dict[str, MemorySheet] = {}

    def sheet(self, name: str) -> MemorySheet:
        if name not in self._sheets:
            self._sheets[name] = MemorySheet(name)
        return self._sheets[name]

    @contextmanager
    def batch(self) -> Iterator["MemoryWorkbook"]:
        snapshot = {name: copy.deepcopy(s.get_rows()) for name, s in self._sheets.items()}
        try:
            yield self
        except Exception:
            self._sheets = {name: MemorySheet(name, rows) for name, rows in snapshot.items()}
            raise


def _encode_cell(value: Cell):
    if isinstance(value, datetime):
        return {"$datetime": value.isoformat()}
    return value


def _decode_cell(value):
    if isinstance(value, dict) and "$datetime" in value:
        return datetime.fromisoformat(value["$datetime"])
    return value


def encode_cells(cells: list[Cell]) -> str:
    return json.dumps([_encode_cell(c) for c in cells], ensure_ascii=False)


def decode_cells(raw: str | None) -> list[Cell]:
    return [_decode_cell(c) for c in json.loads(raw or "[]")]


class SqlSheet:
    def __init__(self, workbook: "SqlWorkbook", name: str):
        self._wb = workbook
        self.name = name

    def last_row(self) -> int:
        with self._wb.session() as db:
            n = db.execute(
                select(func.max(SheetRow.row_index)).where(SheetRow.sheet == self.name)
            ).scalar()
            return int(n or 0)

    def last_column(self) -> int:
        return max((len(r) for r in self.get_rows()), default=0)

    def _find(self, db: Session, index: int) -> SheetRow | None:
        return db.execute(
            select(SheetRow).where(SheetRow.sheet == self.name, SheetRow.row_index == index)
        ).scalar_one_or_none()

    def get_row(self, index: int) -> list[Cell]:
        with self._wb.session() as db:
            row = self._find(db, index)
            return decode_cells(row.cells_json) if row else []

    def get_rows(self) -> list[list[Cell]]:
        with self._wb.session() as db:
            rows = db.execute(
                select(SheetRow).where(SheetRow.sheet == self.name).order_by(SheetRow.row_index.asc())
            ).scalars().all()
            return [decode_cells(r.cells_json) for r in rows]

    def set_row(self, index: int, cells: list[Cell]) -> None:
        with self._wb.session() as db:
            row = self._find(db, index)
            if row is None:
                db.add(SheetRow(sheet=self.name, row_index=index, cells_json=encode_cells(cells)))
            else:
                row.cells_json = encode_cells(cells)
            db.flush()

    def append_row(self, cells: list[Cell]) -> int:
        index = self.last_row() + 1
        self.set_row(index, cells)
        return index


class SqlWorkbook:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._local = threading.local()

    def sheet(self, name: str) -> SqlSheet:
        return SqlSheet(self, name)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Current batch session, or a short-lived one that commits on exit."""
        db = getattr(self._local, "db", None)
        if db is not None:
            yield db
            return
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @contextmanager
    def batch(self) -> Iterator["SqlWorkbook"]:
        db = self._session_factory()
        self._local.db = db
        try:
            yield self
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            self._local.db = None
            db.close()
