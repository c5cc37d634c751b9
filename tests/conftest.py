from datetime import datetime, timedelta
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from dispatch.database import Base, get_db
from dispatch.events import EventBus
from dispatch.main import app
from dispatch.models import DriverLocation, Order, OrderStatus, Store, User, UserRole
from dispatch.utils.security import create_access_token

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def client(db, bus):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.state.event_bus = bus
    yield TestClient(app)
    app.dependency_overrides.clear()


def token_for(user):
    return create_access_token({"sub": user.id})


@pytest.fixture
def auth():
    """Bearer headers for a user"""
    def _headers(user):
        return {"Authorization": f"Bearer {token_for(user)}"}
    return _headers


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role=UserRole.CUSTOMER, name=None, is_active=True, created_at=None):
        counter["n"] += 1
        user = User(
            name=name or f"{role.value.lower()}-{counter['n']}",
            email=f"user{counter['n']}@example.com",
            role=role,
            is_active=is_active,
            created_at=created_at or datetime.utcnow() + timedelta(seconds=counter["n"]),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_store(db):
    def _make(vendor, name="Corner Kitchen"):
        store = Store(vendor_id=vendor.id, name=name, city="Springfield", latitude=40.0, longitude=-74.0)
        db.add(store)
        db.commit()
        db.refresh(store)
        return store

    return _make


@pytest.fixture
def make_order(db):
    def _make(store, customer, status=OrderStatus.READY, driver=None, created_at=None):
        order = Order(
            customer_id=customer.id,
            vendor_id=store.vendor_id,
            store_id=store.id,
            driver_id=driver.id if driver else None,
            status=status,
            delivery_address={"line1": "1 Main St"},
            total=25,
            created_at=created_at or datetime.utcnow(),
        )
        db.add(order)
        db.commit()
        db.refresh(order)
        return order

    return _make


@pytest.fixture
def make_location(db):
    def _make(driver, minutes_ago=1, is_active=True, status="online", latitude=40.0, longitude=-74.0, updated_at=None):
        location = DriverLocation(
            driver_id=driver.id,
            latitude=latitude,
            longitude=longitude,
            is_active=is_active,
            status=status,
            updated_at=updated_at or datetime.utcnow() - timedelta(minutes=minutes_ago),
        )
        db.add(location)
        db.commit()
        db.refresh(location)
        return location

    return _make


@pytest.fixture
def shop(make_user, make_store):
    """A vendor with one store and a customer who orders from it"""
    vendor = make_user(UserRole.VENDOR)
    customer = make_user(UserRole.CUSTOMER)
    store = make_store(vendor)
    return vendor, customer, store


class Recorder:
    """Collects payloads emitted for the given events"""

    def __init__(self, bus, *events):
        self.events = []
        for event in events:
            bus.on(event, self._listener(event))

    def _listener(self, event):
        def listener(payload):
            self.events.append((event, payload))
        return listener

    def names(self):
        return [str(getattr(event, "value", event)) for event, _ in self.events]


@pytest.fixture
def record(bus):
    def _record(*events):
        return Recorder(bus, *events)
    return _record


@pytest.fixture
def token():
    """Raw bearer token, for ?token= on streaming endpoints"""
    return token_for
