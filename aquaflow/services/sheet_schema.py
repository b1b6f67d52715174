"""Explicit column layout of the three store tables."""
from dataclasses import dataclass, field

from aquaflow.services.workbook import Cell


@dataclass(frozen=True)
class TableSchema:
    sheet: str
    headers: tuple[str, ...]
    key: str = "id"
    timestamp_fields: frozenset[str] = field(default_factory=frozenset)


USERS = TableSchema(
    sheet="Users",
    headers=("id", "fullName", "mobile", "email", "password", "type"),
)

BOOKINGS = TableSchema(
    sheet="Bookings",
    headers=(
        "id", "userId", "gallonCount", "newGallonPurchaseCount", "gallonType",
        "pickupAddress", "pickupDate", "timeSlot", "notes", "status", "deliveryOption",
        "createdAt", "completedAt", "price", "paymentMethod", "items",
    ),
    timestamp_fields=frozenset({"createdAt", "completedAt", "pickupDate"}),
)

SETTINGS = TableSchema(sheet="Settings", headers=("key", "value"), key="key")

TABLES = {"user": USERS, "booking": BOOKINGS}


def sheet_headers(sheet, schema: TableSchema) -> list[str]:
    """Return the header row, writing the canonical one into an empty sheet first.

    Writing a row into a sheet with zero columns would otherwise give a row
    whose width matches nothing.
    """
    if sheet.last_column() == 0:
        sheet.set_row(1, list(schema.headers))
    return [str(h).strip() for h in sheet.get_row(1)]


def row_to_record(headers: list[str], row: list[Cell]) -> dict:
    return {h: (row[i] if i < len(row) else "") for i, h in enumerate(headers) if h}
