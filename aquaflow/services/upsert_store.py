"""Server side of the store: insert-or-update rows keyed by id.

Every write (row upsert or settings merge) runs under one process-wide lock
with a bounded wait, so two requests can never both scan for an id, miss
it and append two rows. Reads take no lock.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone

from aquaflow.core.config import settings
from aquaflow.core.errors import LockTimeout, MalformedRecord, UnknownRecordKind
from aquaflow.schemas.entities import parse_timestamp
from aquaflow.services.settings_service import merge_settings, read_settings
from aquaflow.services.sheet_schema import TABLES, TableSchema, row_to_record, sheet_headers

logger = logging.getLogger(__name__)

RECORD_KINDS = ("user", "booking", "settings")


def _coerce_key(value) -> str:
    # Sheets hand back 17 as 17.0 and may pad text with spaces.
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if value is None:
        return ""
    return str(value).strip()


def _cell_for(schema: TableSchema, header: str, value):
    if header in schema.timestamp_fields and value not in (None, ""):
        return parse_timestamp(value) or ""
    if value is None:
        return ""
    return value


def _transport_value(value):
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    return value


class RemoteUpsertStore:
    def __init__(self, workbook, lock_timeout: float | None = None, lock=None):
        self.workbook = workbook
        self.lock_timeout = settings.STORE_LOCK_TIMEOUT_SECONDS if lock_timeout is None else lock_timeout
        self._lock = lock or threading.Lock()

    @contextmanager
    def _write_lock(self):
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise LockTimeout(f"could not acquire the store write lock within {self.lock_timeout}s")
        try:
            yield
        finally:
            self._lock.release()

    def save(self, kind: str, payload) -> str:
        """Entry point for a mutation envelope. Returns the success message."""
        if kind not in RECORD_KINDS:
            raise UnknownRecordKind(f"Invalid dataType: {kind}")
        if not isinstance(payload, dict) or not payload:
            raise MalformedRecord("Missing 'dataType' or 'payload' in request.")
        if kind == "settings":
            self.merge_settings(payload)
        else:
            self.upsert(kind, payload)
        return f"{kind} data saved successfully."

    def upsert(self, kind: str, record: dict) -> int:
        """Overwrite the row holding ``record['id']`` or append a new one. Returns the row index."""
        schema = TABLES.get(kind)
        if schema is None:
            raise UnknownRecordKind(f"Invalid dataType: {kind}")
        record_id = _coerce_key(record.get(schema.key))
        if not record_id:
            raise MalformedRecord(f"Payload must have an '{schema.key}' property to save data.")

        with self._write_lock(), self.workbook.batch():
            sheet = self.workbook.sheet(schema.sheet)
            headers = sheet_headers(sheet, schema)
            if schema.key not in headers:
                raise MalformedRecord(f"Sheet {schema.sheet} is missing '{schema.key}' header.")
            key_col = headers.index(schema.key)

            target = -1
            for index, row in enumerate(sheet.get_rows()[1:], start=2):
                if key_col < len(row) and _coerce_key(row[key_col]) == record_id:
                    target = index
                    break

            cells = [_cell_for(schema, h, record.get(h)) for h in headers]
            if target != -1:
                sheet.set_row(target, cells)
                logger.info("%s %s updated at row %d", kind, record_id, target)
            else:
                target = sheet.append_row(cells)
                logger.info("%s %s appended at row %d", kind, record_id, target)
            return target

    def merge_settings(self, payload: dict) -> list[str]:
        with self._write_lock(), self.workbook.batch():
            return merge_settings(self.workbook, payload)

    def read_all(self, kind: str) -> list[dict]:
        schema = TABLES.get(kind)
        if schema is None:
            raise UnknownRecordKind(f"Invalid dataType: {kind}")
        rows = self.workbook.sheet(schema.sheet).get_rows()
        if len(rows) < 2:
            return []
        headers = [str(h).strip() for h in rows[0]]
        return [
            {k: _transport_value(v) for k, v in row_to_record(headers, row).items()}
            for row in rows[1:]
        ]

    def read_settings(self) -> dict:
        return {k: _transport_value(v) for k, v in read_settings(self.workbook).items()}

    def fetch_all(self) -> dict:
        return {
            "users": self.read_all("user"),
            "bookings": self.read_all("booking"),
            "settings": self.read_settings(),
        }
