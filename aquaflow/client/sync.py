"""Client-side mirror of the store with optimistic writes.

Every mutation follows the same steps: validate locally, apply to the
in-memory mirror, then hand the full record to a worker thread that sends
it to the remote store. The caller gets a ``PendingWrite`` back and
chooses whether to wait on it (registration) or let it run (status
changes). A failed write is never retried and never rolled back: it is
logged, kept in ``unconfirmed`` and reported through the ``PendingWrite``.
``refresh()`` is the only way back in sync with the store.
"""
import logging
import random
import string
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from aquaflow.core.config import settings
from aquaflow.core.errors import (
    DuplicateUser,
    LockTimeout,
    MalformedRecord,
    PermissionDenied,
    RemoteError,
    RemoteUnreachable,
    UnknownGallonType,
)
from aquaflow.core.security import hash_password, make_reset_code, verify_password
from aquaflow.schemas.entities import (
    Booking,
    BookingStatus,
    GallonType,
    LineItem,
    PaymentMethod,
    ServiceConfig,
    User,
    UserRole,
    utcnow,
)
from aquaflow.services.booking_state import ACTIVE, allowed_transitions, apply_transition
from aquaflow.services.notifications import SimulatedNotifier
from aquaflow.services.pricing import price_order

logger = logging.getLogger(__name__)

_B36 = string.digits + string.ascii_lowercase


def _base36(n: int) -> str:
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = _B36[r] + out
    return out or "0"


def make_id(prefix: str) -> str:
    return prefix + _base36(int(time.time() * 1000)) + "".join(random.choices(_B36, k=3))


@dataclass(frozen=True)
class PersistResult:
    ok: bool
    kind: str
    record_id: str
    message: str = ""
    error: Exception | None = None


class PendingWrite:
    """Handle on one in-flight write; ``record`` is what was applied locally."""

    def __init__(self, future: Future, kind: str, record_id: str, record: Any):
        self._future = future
        self.kind = kind
        self.record_id = record_id
        self.record = record

    def result(self, timeout: float | None = None) -> PersistResult:
        return self._future.result(timeout=timeout)

    def done(self) -> bool:
        return self._future.done()

    @property
    def confirmed(self) -> bool | None:
        """None while in flight, then whether the store accepted the write."""
        if not self._future.done():
            return None
        return self._future.result().ok

    def add_done_callback(self, fn: Callable[[PersistResult], None]) -> None:
        self._future.add_done_callback(lambda f: fn(f.result()))


@dataclass
class BookingDraft:
    items: list[LineItem]
    pickup_address: str
    pickup_date: str
    time_slot: str
    delivery_option: bool = True
    notes: str = ""
    payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY


@dataclass
class _ResetCode:
    code: str
    requested_at: datetime = field(default_factory=utcnow)


class SyncClient:
    def __init__(self, transport, config: ServiceConfig | None = None, notifier: SimulatedNotifier | None = None,
                 executor: ThreadPoolExecutor | None = None):
        self.transport = transport
        self.config = config or ServiceConfig.defaults()
        self.notifier = notifier or SimulatedNotifier()
        self.users: list[User] = []
        self.bookings: list[Booking] = []
        self.unconfirmed: dict[tuple[str, str], PersistResult] = {}
        self._unconfirmed_lock = threading.Lock()
        # Never persisted: lives only until consumed or replaced by a newer request.
        self._reset_codes: dict[str, _ResetCode] = {}
        self._executor = executor or ThreadPoolExecutor(
            max_workers=settings.PERSIST_WORKERS, thread_name_prefix="aquaflow-persist"
        )

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # -------------------------
    # Pull
    # -------------------------
    def refresh(self) -> None:
        """Replace the mirror with a bulk read. On failure the old mirror stays."""
        data = self.transport.fetch_all()

        users = _load_rows("user", data.get("users"), User.from_record)
        bookings = _load_rows("booking", data.get("bookings"), Booking.from_record)
        bookings.sort(key=lambda b: b.created_at, reverse=True)

        raw_settings = data.get("settings")
        if not raw_settings or not isinstance(raw_settings, dict):
            logger.warning("bulk read has no settings, using defaults")
            config = ServiceConfig.defaults()
        else:
            try:
                config = ServiceConfig.from_settings(raw_settings)
            except ValueError as e:
                logger.warning("settings rejected, keeping catalog v%d: %s", self.config.version, e)
                config = self.config

        self.users, self.bookings, self.config = users, bookings, config
        with self._unconfirmed_lock:
            self.unconfirmed.clear()
        logger.info("mirror refreshed users=%d bookings=%d config_version=%d",
                    len(users), len(bookings), config.version)

    # -------------------------
    # Push
    # -------------------------
    def _send(self, kind: str, record_id: str, payload: dict) -> PersistResult:
        try:
            message = self.transport.send(kind, payload)
        except (RemoteUnreachable, LockTimeout, RemoteError) as e:
            logger.warning("%s %s not saved: %s", kind, record_id, e)
            return self._unconfirmed(kind, record_id, e)
        except Exception as e:
            # Callers read failures from the result, never from the future.
            logger.exception("%s %s not saved: unexpected transport error", kind, record_id)
            return self._unconfirmed(kind, record_id, e)
        with self._unconfirmed_lock:
            self.unconfirmed.pop((kind, record_id), None)
        return PersistResult(ok=True, kind=kind, record_id=record_id, message=message)

    def _unconfirmed(self, kind: str, record_id: str, error: Exception) -> PersistResult:
        result = PersistResult(ok=False, kind=kind, record_id=record_id, message=str(error), error=error)
        with self._unconfirmed_lock:
            self.unconfirmed[(kind, record_id)] = result
        return result

    def _persist(self, kind: str, record_id: str, payload: dict, record: Any) -> PendingWrite:
        future = self._executor.submit(self._send, kind, record_id, payload)
        return PendingWrite(future, kind, record_id, record)

    # -------------------------
    # Users
    # -------------------------
    def find_user(self, user_id: str) -> User | None:
        return next((u for u in self.users if u.id == user_id), None)

    def _user_by_email(self, email: str) -> User | None:
        key = email.strip().lower()
        return next((u for u in self.users if u.email and u.email.lower() == key), None)

    def register_user(self, full_name: str, mobile: str, email: str, password: str,
                      role: UserRole = UserRole.CUSTOMER) -> PendingWrite:
        full_name, mobile, email = full_name.strip(), mobile.strip(), email.strip()
        if not full_name or not mobile or not password.strip():
            raise MalformedRecord("full name, mobile and password are required")
        if email and self._user_by_email(email):
            raise DuplicateUser(f"email {email} is already registered")
        if any(u.mobile == mobile for u in self.users):
            raise DuplicateUser(f"mobile {mobile} is already registered")

        user = User(id=make_id("U"), full_name=full_name, mobile=mobile, email=email,
                    password=hash_password(password.strip()), role=role)
        self.users.append(user)
        return self._persist("user", user.id, user.to_record(), user)

    def login(self, identifier: str, password: str) -> User | None:
        name = identifier.strip().lower()
        secret = password.strip()
        if name == settings.ADMIN_USERNAME.lower() and secret == settings.ADMIN_PASSWORD:
            return User(id="admin-user", full_name="Administrator", email="admin@aquaflow.local",
                        mobile="0000000000", role=UserRole.ADMIN)
        for u in self.users:
            if (u.email and u.email.lower() == name) or u.mobile == name:
                return u if verify_password(secret, u.password) else None
        return None

    def request_password_reset(self, email: str) -> str | None:
        user = self._user_by_email(email)
        if user is None:
            return None
        code = make_reset_code()
        self._reset_codes[user.email.lower()] = _ResetCode(code=code)
        self.notifier.send_reset_code(user.email, code)
        return code

    def reset_password(self, email: str, code: str, new_password: str) -> PendingWrite | None:
        key = email.strip().lower()
        pending = self._reset_codes.get(key)
        if pending is None or pending.code != code.strip():
            return None
        if utcnow() - pending.requested_at > timedelta(minutes=settings.RESET_CODE_TTL_MINUTES):
            del self._reset_codes[key]
            logger.info("reset code for %s expired", key)
            return None
        if not new_password.strip():
            raise MalformedRecord("new password is required")
        user = self._user_by_email(key)
        if user is None:
            return None
        del self._reset_codes[key]
        updated = user.model_copy(update={"password": hash_password(new_password.strip())})
        self._replace_user(updated)
        return self._persist("user", updated.id, updated.to_record(), updated)

    def update_user_role(self, actor: User, user_id: str, role: UserRole) -> PendingWrite:
        _require_admin(actor)
        user = self.find_user(user_id)
        if user is None:
            raise KeyError(f"user {user_id} not found")
        updated = user.model_copy(update={"role": UserRole(role)})
        self._replace_user(updated)
        return self._persist("user", updated.id, updated.to_record(), updated)

    def _replace_user(self, user: User) -> None:
        self.users = [user if u.id == user.id else u for u in self.users]

    # -------------------------
    # Bookings
    # -------------------------
    def find_booking(self, booking_id: str) -> Booking | None:
        return next((b for b in self.bookings if b.id == booking_id), None)

    def bookings_for(self, user: User) -> list[Booking]:
        own = [b for b in self.bookings if b.user_id == user.id]
        return sorted(own, key=lambda b: b.created_at, reverse=True)

    def bookings_in(self, *statuses: BookingStatus) -> list[Booking]:
        wanted = {BookingStatus(s) for s in statuses}
        return [b for b in self.bookings if b.status in wanted]

    def rider_queue(self) -> list[Booking]:
        return self.bookings_in(*ACTIVE)

    def create_booking(self, actor: User, draft: BookingDraft) -> PendingWrite:
        if actor is None:
            raise PermissionDenied("log in to place a booking")
        if not draft.pickup_address.strip():
            raise MalformedRecord("pickup address is required")
        if not draft.pickup_date.strip():
            raise MalformedRecord("pickup date is required")
        if self.config.time_slots and draft.time_slot not in self.config.time_slots:
            raise MalformedRecord(f"time slot {draft.time_slot!r} is not offered")

        items, q = price_order(draft.items, self.config)
        booking = Booking(
            id=make_id("B"),
            user_id=actor.id,
            items=items,
            pickup_address=draft.pickup_address.strip(),
            pickup_date=draft.pickup_date.strip(),
            time_slot=draft.time_slot,
            delivery_option=draft.delivery_option,
            notes=draft.notes.strip(),
            payment_method=PaymentMethod(draft.payment_method),
            status=BookingStatus.PENDING,
            created_at=utcnow(),
            price=q.total,
        )
        self.bookings.insert(0, booking)
        logger.info("booking %s priced %.2f against catalog v%d", booking.id, booking.price, q.config_version)
        return self._persist("booking", booking.id, booking.to_record(), booking)

    def allowed_transitions(self, actor: User, booking_id: str) -> list[BookingStatus]:
        booking = self.find_booking(booking_id)
        if booking is None:
            raise KeyError(f"booking {booking_id} not found")
        return allowed_transitions(booking, actor.role)

    def change_status(self, actor: User, booking_id: str, status: BookingStatus | str) -> PendingWrite:
        booking = self.find_booking(booking_id)
        if booking is None:
            raise KeyError(f"booking {booking_id} not found")
        updated = apply_transition(booking, status, actor.role)
        self.bookings = [updated if b.id == booking_id else b for b in self.bookings]
        logger.info("booking %s %s -> %s by %s", booking_id, booking.status.value, updated.status.value, actor.id)
        return self._persist("booking", updated.id, updated.to_record(), updated)

    # -------------------------
    # Settings
    # -------------------------
    def _edit_config(self, actor: User, **changes) -> PendingWrite:
        _require_admin(actor)
        self.config = self.config.revise(**changes)
        full = self.config.to_settings()
        touched = {_SETTING_KEYS[k] for k in changes}
        payload = {k: full[k] for k in touched}
        payload["configVersion"] = self.config.version
        return self._persist("settings", "settings", payload, self.config)

    def add_gallon_type(self, actor: User, name: str, price: float | None = None) -> PendingWrite | None:
        name = name.strip()
        if not name:
            raise ValueError("gallon type name is required")
        if self.config.catalog_price(name) is not None:
            return None
        price = self.config.gallon_price if price is None else price
        _check_price(price)
        types = self.config.gallon_types + (GallonType(name=name, price=price),)
        return self._edit_config(actor, gallon_types=types)

    def remove_gallon_type(self, actor: User, name: str) -> PendingWrite | None:
        if self.config.catalog_price(name) is None:
            return None
        types = tuple(t for t in self.config.gallon_types if t.name != name)
        return self._edit_config(actor, gallon_types=types)

    def set_gallon_type_price(self, actor: User, name: str, price: float) -> PendingWrite:
        if self.config.catalog_price(name) is None:
            raise UnknownGallonType([name])
        _check_price(price)
        types = tuple(GallonType(name=t.name, price=price) if t.name == name else t for t in self.config.gallon_types)
        return self._edit_config(actor, gallon_types=types)

    def add_time_slot(self, actor: User, slot: str) -> PendingWrite | None:
        slot = slot.strip()
        if not slot:
            raise ValueError("time slot is required")
        if slot in self.config.time_slots:
            return None
        return self._edit_config(actor, time_slots=self.config.time_slots + (slot,))

    def remove_time_slot(self, actor: User, slot: str) -> PendingWrite | None:
        if slot not in self.config.time_slots:
            return None
        return self._edit_config(actor, time_slots=tuple(s for s in self.config.time_slots if s != slot))

    def set_gallon_price(self, actor: User, price: float) -> PendingWrite:
        _check_price(price)
        return self._edit_config(actor, gallon_price=price)

    def set_new_gallon_price(self, actor: User, price: float) -> PendingWrite:
        _check_price(price)
        return self._edit_config(actor, new_gallon_price=price)


def _load_rows(kind: str, rows, loader) -> list:
    out = []
    for raw in rows or []:
        if not isinstance(raw, dict):
            logger.warning("skipping %s row that is not an object: %r", kind, raw)
            continue
        try:
            out.append(loader(raw))
        except ValueError as e:
            logger.warning("skipping %s row id=%r: %s", kind, raw.get("id"), e)
    return out


_SETTING_KEYS = {
    "gallon_types": "gallonTypes",
    "time_slots": "timeSlots",
    "gallon_price": "gallonPrice",
    "new_gallon_price": "newGallonPrice",
}


def _require_admin(actor: User) -> None:
    if actor is None or actor.role != UserRole.ADMIN:
        raise PermissionDenied("admin role required")


def _check_price(price: float) -> None:
    if price < 0:
        raise ValueError("price must be >= 0")
