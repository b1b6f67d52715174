from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from aquaflow.core.errors import (
    DuplicateUser,
    EmptyOrder,
    InvalidTransition,
    LockTimeout,
    MalformedRecord,
    PermissionDenied,
    RemoteError,
    RemoteUnreachable,
    UnknownGallonType,
)
from aquaflow.client.sync import BookingDraft, make_id
from aquaflow.core.config import settings
from aquaflow.schemas.entities import BookingStatus as S, LineItem, PaymentMethod, UserRole, utcnow
from conftest import make_booking


def _draft(**overrides):
    fields = dict(
        items=[LineItem(name="Slim", refill=2, new=1)],
        pickup_address="12 Mabini St",
        pickup_date="2025-03-01",
        time_slot="9am–12pm",
        delivery_option=False,
    )
    fields.update(overrides)
    return BookingDraft(**fields)


def _register(sync, email="ana@example.com", mobile="09170000001", password="s3cret"):
    pending = sync.register_user("Ana Cruz", mobile, email, password)
    assert pending.result(timeout=5).ok
    return pending.record


def test_make_id_has_prefix_and_is_unique():
    ids = {make_id("B") for _ in range(50)}
    assert len(ids) == 50
    assert all(i.startswith("B") for i in ids)


def test_register_persists_a_hashed_password(sync, store):
    user = _register(sync)

    rows = store.read_all("user")
    assert [r["id"] for r in rows] == [user.id]
    assert rows[0]["password"] != "s3cret"
    assert rows[0]["type"] == "CUSTOMER"


def test_login_by_email_or_mobile(sync):
    user = _register(sync)
    assert sync.login("ANA@example.com", "s3cret") == user
    assert sync.login("09170000001", "s3cret") == user
    assert sync.login("ana@example.com", "wrong") is None
    assert sync.login("nobody@example.com", "s3cret") is None


def test_builtin_admin_login(sync):
    admin = sync.login("admin", "admin")
    assert admin.role == UserRole.ADMIN
    assert admin.id == "admin-user"


def test_legacy_clear_text_password_still_logs_in(sync, store):
    store.save("user", {"id": "U7", "fullName": "Old", "mobile": 9171234567, "email": "old@example.com",
                        "password": "plain", "type": "customer"})
    sync.refresh()
    user = sync.login("9171234567", "plain")
    assert user.id == "U7"
    assert user.role == UserRole.CUSTOMER


def test_duplicate_registration_is_rejected(sync, transport):
    _register(sync)
    sent = len(transport.sent)
    with pytest.raises(DuplicateUser):
        sync.register_user("Other", "0999", "Ana@Example.com", "pw")
    with pytest.raises(DuplicateUser):
        sync.register_user("Other", "09170000001", "other@example.com", "pw")
    with pytest.raises(MalformedRecord):
        sync.register_user(" ", "0999", "x@example.com", "pw")
    assert len(transport.sent) == sent


def test_booking_is_priced_and_persisted(sync, store, customer):
    pending = sync.create_booking(customer, _draft())
    booking = pending.record

    assert sync.bookings[0] == booking
    assert booking.status == S.PENDING
    assert booking.price == 200
    assert booking.completed_at is None
    assert pending.result(timeout=5).ok
    assert pending.confirmed is True

    row = store.read_all("booking")[0]
    assert row["id"] == booking.id
    assert row["gallonCount"] == 2
    assert row["newGallonPurchaseCount"] == 1
    assert row["gallonType"] == "Slim"


@pytest.mark.parametrize("overrides,error", [
    ({"items": [LineItem(name="Slim")]}, EmptyOrder),
    ({"items": [LineItem(name="Jumbo", refill=1)]}, UnknownGallonType),
    ({"pickup_address": "  "}, MalformedRecord),
    ({"pickup_date": ""}, MalformedRecord),
    ({"time_slot": "midnight"}, MalformedRecord),
])
def test_invalid_booking_is_rejected_before_anything_is_sent(sync, transport, customer, overrides, error):
    with pytest.raises(error):
        sync.create_booking(customer, _draft(**overrides))
    assert sync.bookings == []
    assert transport.sent == []


def test_booking_price_survives_catalog_edits(sync, customer, admin):
    booking = sync.create_booking(customer, _draft()).record
    sync.set_gallon_type_price(admin, "Slim", 40).result(timeout=5)
    sync.set_new_gallon_price(admin, 175).result(timeout=5)

    sync.refresh()
    assert sync.find_booking(booking.id).price == 200
    assert sync.config.catalog_price("Slim") == 40
    assert sync.create_booking(customer, _draft()).record.price == 80 + 175


def test_status_walk_is_persisted(sync, store, customer, rider):
    booking = sync.create_booking(customer, _draft(delivery_option=False)).record
    assert sync.allowed_transitions(rider, booking.id) == [S.ACCEPTED, S.CANCELLED]

    for status in (S.ACCEPTED, S.PICKED_UP, S.REFILLED):
        sync.change_status(rider, booking.id, status)
    assert sync.allowed_transitions(rider, booking.id) == [S.COMPLETED]
    last = sync.change_status(rider, booking.id, S.COMPLETED)
    assert last.result(timeout=5).ok

    rows = store.read_all("booking")
    assert len(rows) == 1
    assert rows[0]["status"] == "Completed"
    assert rows[0]["completedAt"].endswith("Z")

    sync.refresh()
    done = sync.find_booking(booking.id)
    assert done.status == S.COMPLETED
    assert done.completed_at is not None


def test_invalid_transition_changes_nothing(sync, transport, customer, rider):
    booking = sync.create_booking(customer, _draft()).record
    sync.change_status(rider, booking.id, S.ACCEPTED).result(timeout=5)
    sent = len(transport.sent)

    with pytest.raises(InvalidTransition):
        sync.change_status(rider, booking.id, S.COMPLETED)
    with pytest.raises(InvalidTransition):
        sync.change_status(customer, booking.id, S.PICKED_UP)
    assert sync.find_booking(booking.id).status == S.ACCEPTED
    assert len(transport.sent) == sent


def test_unknown_booking(sync, rider):
    with pytest.raises(KeyError):
        sync.change_status(rider, "B-missing", S.ACCEPTED)


def test_failed_write_is_reported_not_rolled_back(sync, transport, customer, rider):
    created = sync.create_booking(customer, _draft())
    assert created.result(timeout=5).ok
    booking = created.record
    transport.fail_with = RemoteUnreachable("network down")

    pending = sync.change_status(rider, booking.id, S.ACCEPTED)
    result = pending.result(timeout=5)
    assert not result.ok
    assert isinstance(result.error, RemoteUnreachable)
    assert pending.confirmed is False
    assert sync.find_booking(booking.id).status == S.ACCEPTED
    assert ("booking", booking.id) in sync.unconfirmed


def test_busy_store_is_reported_as_failed_write(sync, transport, customer):
    transport.fail_with = LockTimeout("busy")
    result = sync.create_booking(customer, _draft()).result(timeout=5)
    assert not result.ok
    assert "busy" in result.message


def test_done_callback_receives_the_result(sync, customer):
    seen = []
    pending = sync.create_booking(customer, _draft())
    pending.add_done_callback(seen.append)
    pending.result(timeout=5)
    sync.close()
    assert [r.ok for r in seen] == [True]


def test_refresh_failure_keeps_the_mirror(sync, transport, customer):
    booking = sync.create_booking(customer, _draft()).record
    transport.fail_with = RemoteUnreachable("offline")
    with pytest.raises(RemoteUnreachable):
        sync.refresh()
    assert sync.find_booking(booking.id) == booking


def test_refresh_replaces_mirror_and_clears_unconfirmed(sync, transport, customer, rider):
    booking = sync.create_booking(customer, _draft()).record
    pending = sync.create_booking(customer, _draft())
    pending.result(timeout=5)
    transport.fail_with = RemoteUnreachable("offline")
    sync.change_status(rider, booking.id, S.ACCEPTED).result(timeout=5)
    assert sync.unconfirmed

    transport.fail_with = None
    sync.refresh()
    assert sync.unconfirmed == {}
    assert sync.find_booking(booking.id).status == S.PENDING
    assert [b.id for b in sync.bookings] == [pending.record.id, booking.id]


def test_refresh_reads_legacy_rows_and_skips_broken_ones(sync, store):
    store.save("booking", {
        "id": 41, "userId": "U1", "gallonCount": "3", "newGallonPurchaseCount": "", "gallonType": "Round",
        "pickupAddress": "7 Rizal Ave", "pickupDate": "2024-11-02T16:00:00.000Z", "timeSlot": "1pm–5pm",
        "status": "Pending", "deliveryOption": "FALSE", "createdAt": "2024-11-01T09:00:00Z", "price": "90",
    })
    store.save("booking", {"id": "B-bad", "status": "Completed", "createdAt": "2024-11-01T09:00:00Z"})
    store.save("booking", {"id": "B-nodate", "status": "Pending"})

    sync.refresh()
    assert [b.id for b in sync.bookings] == ["41"]
    legacy = sync.bookings[0]
    assert legacy.items == (LineItem(name="Round", refill=3),)
    assert legacy.delivery_option is False
    assert legacy.pickup_date == "2024-11-02"
    assert legacy.price == 90
    assert legacy.payment_method == PaymentMethod.CASH_ON_DELIVERY


def test_refresh_without_settings_uses_defaults(sync):
    sync.refresh()
    assert sync.config.version == 0
    assert sync.config.time_slots == ("9am–12pm", "1pm–5pm")


def test_queries(sync, customer, rider):
    mine = sync.create_booking(customer, _draft()).record
    other = rider.model_copy(update={"role": UserRole.CUSTOMER})
    theirs = sync.create_booking(other, _draft()).record
    sync.change_status(rider, theirs.id, S.ACCEPTED)

    assert sync.bookings_for(customer) == [mine]
    assert [b.id for b in sync.bookings_in(S.PENDING)] == [mine.id]
    assert [b.id for b in sync.rider_queue()] == [theirs.id]


def test_password_reset_code_flow(sync, transport):
    _register(sync)
    code = sync.request_password_reset("ana@example.com")
    assert code in sync.notifier.outbox[-1].body
    assert [kind for kind, _ in transport.sent] == ["user"]

    assert sync.reset_password("ana@example.com", "nope", "new") is None
    assert sync.reset_password("ana@example.com", code, "n3w-pass").result(timeout=5).ok
    assert sync.reset_password("ana@example.com", code, "again") is None

    assert sync.login("ana@example.com", "n3w-pass") is not None
    assert sync.login("ana@example.com", "s3cret") is None
    assert sync.request_password_reset("nobody@example.com") is None


def test_only_admins_edit_settings(sync, transport, customer, rider):
    for actor in (customer, rider, None):
        with pytest.raises(PermissionDenied):
            sync.set_gallon_price(actor, 30)
    assert transport.sent == []


def test_settings_edit_sends_only_touched_keys(sync, transport, store, admin):
    sync.add_gallon_type(admin, "Jumbo", 60).result(timeout=5)

    kind, payload = transport.sent[-1]
    assert kind == "settings"
    assert set(payload) == {"gallonTypes", "configVersion"}
    assert payload["configVersion"] == 4
    assert {"name": "Jumbo", "price": 60} in payload["gallonTypes"]
    assert set(store.read_settings()) == {"gallonTypes", "configVersion"}


def test_catalog_edits(sync, admin):
    assert sync.add_gallon_type(admin, "Slim") is None
    sync.add_gallon_type(admin, "Jumbo")
    assert sync.config.catalog_price("Jumbo") == 25

    sync.remove_gallon_type(admin, "Round")
    assert sync.config.catalog_price("Round") is None
    assert sync.remove_gallon_type(admin, "Round") is None

    with pytest.raises(UnknownGallonType):
        sync.set_gallon_type_price(admin, "Round", 10)
    with pytest.raises(ValueError):
        sync.set_new_gallon_price(admin, -1)

    sync.add_time_slot(admin, "6pm–8pm")
    assert sync.add_time_slot(admin, "6pm–8pm") is None
    sync.remove_time_slot(admin, "9am–12pm")
    assert sync.config.time_slots == ("1pm–5pm", "6pm–8pm")
    assert sync.config.version == 3 + 4


def test_settings_round_trip_through_the_store(sync, admin):
    sync.set_gallon_price(admin, 30).result(timeout=5)
    sync.add_time_slot(admin, "6pm–8pm").result(timeout=5)
    expected = sync.config

    sync.refresh()
    assert sync.config.version == expected.version
    assert sync.config.time_slots == expected.time_slots
    assert sync.config.gallon_price == 30


def test_role_update_is_admin_only(sync, admin, customer):
    user = _register(sync)
    with pytest.raises(PermissionDenied):
        sync.update_user_role(customer, user.id, UserRole.RIDER)
    sync.update_user_role(admin, user.id, UserRole.RIDER).result(timeout=5)

    sync.refresh()
    assert sync.find_user(user.id).role == UserRole.RIDER


def test_refresh_skips_a_booking_with_a_malformed_cart(sync, store, customer):
    good = sync.create_booking(customer, _draft())
    assert good.result(timeout=5).ok
    bad = make_booking(id="B-cart").to_record()
    bad["items"] = '["Slim"]'
    store.save("booking", bad)

    sync.refresh()
    assert [b.id for b in sync.bookings] == [good.record.id]


def test_refresh_keeps_the_catalog_when_settings_are_invalid(sync, store, customer):
    _register(sync)
    store.merge_settings({"gallonTypes": [{"name": "Slim", "price": -5}], "configVersion": 9})

    sync.refresh()
    assert sync.config.version == 3
    assert sync.config.catalog_price("Slim") == 25
    assert len(sync.users) == 1


def test_refresh_reads_plain_text_time_slots(sync, store):
    store.merge_settings({"timeSlots": "9am-12pm, 2pm-6pm"})
    sync.refresh()
    assert sync.config.time_slots == ("9am-12pm", "2pm-6pm")


def test_unexpected_transport_error_is_a_failed_write(sync, transport, customer):
    transport.fail_with = OSError("disk full")
    seen = []
    pending = sync.create_booking(customer, _draft())
    pending.add_done_callback(seen.append)

    result = pending.result(timeout=5)
    assert not result.ok
    assert isinstance(result.error, OSError)
    assert pending.confirmed is False
    assert ("booking", pending.record.id) in sync.unconfirmed
    sync.close()
    assert [r.ok for r in seen] == [False]


def test_store_failure_reaches_the_client_as_remote_error(sync, store, customer, monkeypatch):
    def locked(kind, payload):
        raise OperationalError("INSERT INTO sheet_rows", {}, Exception("database is locked"))

    monkeypatch.setattr(store, "save", locked)
    result = sync.create_booking(customer, _draft()).result(timeout=5)
    assert not result.ok
    assert isinstance(result.error, RemoteError)
    assert "database is locked" in result.message


def test_expired_reset_code_is_refused(sync, monkeypatch):
    _register(sync)
    code = sync.request_password_reset("ana@example.com")
    later = utcnow() + timedelta(minutes=settings.RESET_CODE_TTL_MINUTES + 1)
    monkeypatch.setattr("aquaflow.client.sync.utcnow", lambda: later)

    assert sync.reset_password("ana@example.com", code, "n3w-pass") is None
    monkeypatch.undo()
    assert sync.reset_password("ana@example.com", code, "n3w-pass") is None
    assert sync.login("ana@example.com", "s3cret") is not None
