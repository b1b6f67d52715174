"""Typed records shared by the sync client, the pricing engine and the store.

All models are frozen: a status change or a catalog edit produces a new
object. Field names are snake_case in Python and camelCase on the wire.
``from_record`` accepts the weakly typed dicts that come back from a bulk
read (numbers as strings, "TRUE" for booleans, ISO timestamps, legacy
bookings without a cart) and ``to_record`` produces the row payload that is
sent to the store.
"""
import json
import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from aquaflow.core.config import settings


class UserRole(str, Enum):
    CUSTOMER = "CUSTOMER"
    ADMIN = "ADMIN"
    RIDER = "RIDER"


class BookingStatus(str, Enum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    PICKED_UP = "Picked Up"
    REFILLED = "Refilled"
    OUT_FOR_DELIVERY = "Out for Delivery"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class PaymentMethod(str, Enum):
    CASH_ON_DELIVERY = "Cash on Delivery"
    CASH = "Cash"
    GCASH = "GCash"


_TRUE = {"true", "1", "yes", "y", "on"}
_DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")


def parse_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None or value == "":
        return default
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in _TRUE


def parse_number(value: Any, default: float = 0) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return value
    try:
        text = str(value).strip()
        return float(text) if text else default
    except (TypeError, ValueError):
        return default


def parse_count(value: Any) -> int:
    return max(int(parse_number(value, 0)), 0)


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        try:
            dt = datetime.fromisoformat(str(value).strip())
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_pickup_date(value: Any) -> str:
    """The sheet turns "2025-03-01" into a timestamp; keep only the date part."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()[:10]
    text = str(value or "").strip()
    m = _DATE_PREFIX.match(text)
    return m.group(0) if m else text


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class User(_Record):
    id: str
    full_name: str = Field("", alias="fullName")
    mobile: str = ""
    email: str = ""
    password: str = ""  # passlib hash; legacy rows may hold clear text
    role: UserRole = Field(UserRole.CUSTOMER, alias="type")

    @classmethod
    def from_record(cls, raw: dict) -> "User":
        role = _text(raw.get("type")).upper() or UserRole.CUSTOMER.value
        return cls(
            id=_text(raw.get("id")),
            full_name=_text(raw.get("fullName")),
            mobile=_text(raw.get("mobile")),
            email=_text(raw.get("email")),
            password=_text(raw.get("password")),
            role=UserRole(role),
        )

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class GallonType(_Record):
    name: str
    price: float = Field(0, ge=0)


class LineItem(_Record):
    name: str
    refill: int = Field(0, ge=0)
    new: int = Field(0, ge=0)

    @property
    def quantity(self) -> int:
        return self.refill + self.new


class Booking(_Record):
    id: str
    user_id: str = Field(alias="userId")
    items: tuple[LineItem, ...] = ()
    pickup_address: str = Field(alias="pickupAddress")
    pickup_date: str = Field(alias="pickupDate")
    time_slot: str = Field(alias="timeSlot")
    delivery_option: bool = Field(True, alias="deliveryOption")
    notes: str = ""
    payment_method: PaymentMethod = Field(PaymentMethod.CASH_ON_DELIVERY, alias="paymentMethod")
    status: BookingStatus = BookingStatus.PENDING
    created_at: datetime = Field(alias="createdAt")
    completed_at: datetime | None = Field(None, alias="completedAt")
    price: float = 0

    @model_validator(mode="after")
    def _completion_stamp(self) -> "Booking":
        if self.status == BookingStatus.COMPLETED and self.completed_at is None:
            raise ValueError("a Completed booking must carry completedAt")
        if self.status != BookingStatus.COMPLETED and self.completed_at is not None:
            raise ValueError(f"completedAt is only valid for Completed bookings, not {self.status.value}")
        return self

    # Summary columns kept for rows written before carts existed.
    @property
    def gallon_count(self) -> int:
        return sum(i.refill for i in self.items)

    @property
    def new_gallon_purchase_count(self) -> int:
        return sum(i.new for i in self.items)

    @property
    def gallon_type(self) -> str:
        if len(self.items) == 1:
            return self.items[0].name
        return "Multiple" if self.items else "N/A"

    @property
    def is_terminal(self) -> bool:
        return self.status in (BookingStatus.COMPLETED, BookingStatus.CANCELLED)

    @classmethod
    def from_record(cls, raw: dict) -> "Booking":
        created_at = parse_timestamp(raw.get("createdAt"))
        if created_at is None:
            raise ValueError("booking row has no createdAt")
        return cls(
            id=_text(raw.get("id")),
            user_id=_text(raw.get("userId")),
            items=_cart_from_record(raw),
            pickup_address=_text(raw.get("pickupAddress")),
            pickup_date=parse_pickup_date(raw.get("pickupDate")),
            time_slot=_text(raw.get("timeSlot")),
            delivery_option=parse_bool(raw.get("deliveryOption"), default=True),
            notes=_text(raw.get("notes")),
            payment_method=PaymentMethod(_text(raw.get("paymentMethod")) or PaymentMethod.CASH_ON_DELIVERY.value),
            status=BookingStatus(_text(raw.get("status")) or BookingStatus.PENDING.value),
            created_at=created_at,
            completed_at=parse_timestamp(raw.get("completedAt")),
            price=parse_number(raw.get("price")),
        )

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "gallonCount": self.gallon_count,
            "newGallonPurchaseCount": self.new_gallon_purchase_count,
            "gallonType": self.gallon_type,
            "pickupAddress": self.pickup_address,
            "pickupDate": self.pickup_date,
            "timeSlot": self.time_slot,
            "notes": self.notes,
            "status": self.status.value,
            "deliveryOption": self.delivery_option,
            "createdAt": self.created_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "price": self.price,
            "paymentMethod": self.payment_method.value,
            "items": json.dumps([i.model_dump() for i in self.items]),
        }


def _cart_from_record(raw: dict) -> tuple[LineItem, ...]:
    items = raw.get("items")
    if isinstance(items, str):
        items = json.loads(items) if items.strip() else None
    if items:
        if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
            raise ValueError("items must be a list of {name, refill, new} objects")
        return tuple(
            LineItem(name=_text(i.get("name")), refill=parse_count(i.get("refill")), new=parse_count(i.get("new")))
            for i in items
        )
    # Legacy row: one gallon type with summary counts.
    refill = parse_count(raw.get("gallonCount"))
    new = parse_count(raw.get("newGallonPurchaseCount"))
    if refill == 0 and new == 0:
        return ()
    return (LineItem(name=_text(raw.get("gallonType")) or "N/A", refill=refill, new=new),)


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(v.strip() for v in value.split(",") if v.strip())


def _setting_list(value: Any, default_csv: str) -> list:
    # A cell holding plain text instead of a JSON list is comma-separated.
    if isinstance(value, str):
        value = list(_split_csv(value))
    if not isinstance(value, (list, tuple)) or not value:
        return list(_split_csv(default_csv))
    return list(value)


class ServiceConfig(_Record):
    """Versioned snapshot of the admin-editable catalog.

    Passed explicitly to the pricing engine so a quote can always be traced
    back to the catalog version it was computed against.
    """

    version: int = 0
    gallon_types: tuple[GallonType, ...] = Field(default_factory=tuple, alias="gallonTypes")
    time_slots: tuple[str, ...] = Field(default_factory=tuple, alias="timeSlots")
    gallon_price: float = Field(settings.DEFAULT_GALLON_PRICE, ge=0, alias="gallonPrice")
    new_gallon_price: float = Field(settings.DEFAULT_NEW_GALLON_PRICE, ge=0, alias="newGallonPrice")

    @classmethod
    def defaults(cls) -> "ServiceConfig":
        return cls.from_settings({})

    @classmethod
    def from_settings(cls, raw: dict) -> "ServiceConfig":
        gallon_price = parse_number(raw.get("gallonPrice"), 0) or settings.DEFAULT_GALLON_PRICE
        new_gallon_price = parse_number(raw.get("newGallonPrice"), 0) or settings.DEFAULT_NEW_GALLON_PRICE

        raw_types = _setting_list(raw.get("gallonTypes"), settings.DEFAULT_GALLON_TYPES)
        types = []
        for t in raw_types:
            # Older catalogs are a list of names priced at the global refill price.
            if isinstance(t, dict):
                types.append(GallonType(name=_text(t.get("name")), price=parse_number(t.get("price"), gallon_price)))
            else:
                types.append(GallonType(name=_text(t), price=gallon_price))

        slots = _setting_list(raw.get("timeSlots"), settings.DEFAULT_TIME_SLOTS)
        return cls(
            version=int(parse_number(raw.get("configVersion"), 0)),
            gallon_types=tuple(types),
            time_slots=tuple(_text(s) for s in slots),
            gallon_price=gallon_price,
            new_gallon_price=new_gallon_price,
        )

    def to_settings(self) -> dict:
        return {
            "gallonTypes": [t.model_dump() for t in self.gallon_types],
            "timeSlots": list(self.time_slots),
            "gallonPrice": self.gallon_price,
            "newGallonPrice": self.new_gallon_price,
            "configVersion": self.version,
        }

    def catalog_price(self, name: str) -> float | None:
        for t in self.gallon_types:
            if t.name == name:
                return t.price
        return None

    def revise(self, **changes) -> "ServiceConfig":
        return self.model_copy(update={**changes, "version": self.version + 1})
