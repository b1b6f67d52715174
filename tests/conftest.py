from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from aquaflow.client.sync import SyncClient
from aquaflow.client.transport import InProcessTransport
from aquaflow.db.session import Base
from aquaflow.schemas.entities import (
    Booking,
    BookingStatus,
    GallonType,
    LineItem,
    ServiceConfig,
    User,
    UserRole,
)
from aquaflow.services.upsert_store import RemoteUpsertStore
from aquaflow.services.workbook import MemoryWorkbook, SqlWorkbook


class RecordingTransport(InProcessTransport):
    """In-process transport that remembers what it sent and can be told to fail."""

    def __init__(self, store):
        super().__init__(store)
        self.sent: list[tuple[str, dict]] = []
        self.fail_with: Exception | None = None

    def send(self, kind, payload):
        self.sent.append((kind, payload))
        if self.fail_with is not None:
            raise self.fail_with
        return super().send(kind, payload)

    def fetch_all(self):
        if self.fail_with is not None:
            raise self.fail_with
        return super().fetch_all()


@pytest.fixture
def memory_workbook():
    return MemoryWorkbook()


@pytest.fixture
def sql_workbook(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'store.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    yield SqlWorkbook(sessionmaker(bind=engine, autoflush=False))
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def workbook(request):
    return request.getfixturevalue(f"{request.param}_workbook")


@pytest.fixture
def store(memory_workbook):
    return RemoteUpsertStore(memory_workbook, lock_timeout=0.5)


@pytest.fixture
def catalog():
    return ServiceConfig(
        version=3,
        gallon_types=(GallonType(name="Slim", price=25), GallonType(name="Round", price=30)),
        time_slots=("9am–12pm", "1pm–5pm"),
        gallon_price=25,
        new_gallon_price=150,
    )


@pytest.fixture
def transport(store):
    return RecordingTransport(store)


@pytest.fixture
def sync(transport, catalog):
    client = SyncClient(transport, config=catalog, executor=ThreadPoolExecutor(max_workers=1))
    yield client
    client.close()


@pytest.fixture
def admin():
    return User(id="admin-user", full_name="Administrator", role=UserRole.ADMIN)


@pytest.fixture
def rider():
    return User(id="R1", full_name="Mike Ross", mobile="09991234567", role=UserRole.RIDER)


@pytest.fixture
def customer():
    return User(id="U1", full_name="Ana Cruz", mobile="09170000001", email="ana@example.com",
                role=UserRole.CUSTOMER)


def make_booking(status=BookingStatus.PENDING, delivery=True, **overrides) -> Booking:
    fields = dict(
        id="B1",
        user_id="U1",
        items=(LineItem(name="Slim", refill=2, new=1),),
        pickup_address="12 Mabini St",
        pickup_date="2025-03-01",
        time_slot="9am–12pm",
        delivery_option=delivery,
        status=status,
        created_at=datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc),
        completed_at=datetime(2025, 3, 1, 15, 0, tzinfo=timezone.utc) if status == BookingStatus.COMPLETED else None,
        price=200,
    )
    fields.update(overrides)
    return Booking(**fields)
