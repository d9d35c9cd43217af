"""
Pytest configuration file for backend testing.
"""
import os
import sys
from pathlib import Path

# Add the backend directory to Python path so imports work correctly
backend_dir = Path(__file__).parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# Settings are read once at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ORDER_DELETE_SECRET", "test-delete-secret")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from core.database import Base, get_db

# Import all models to register them with SQLAlchemy
from modules.daybook.models import daybook_models  # noqa: F401
from modules.menu.models import menu_models  # noqa: F401
from modules.orders.models import order_models  # noqa: F401
from modules.payments.models import payment_models  # noqa: F401
from modules.settings.models import settings_models  # noqa: F401
from modules.tables.models import table_models  # noqa: F401

from modules.menu.services.menu_price_service import seed_menu_items
from modules.realtime.services.broadcast_channel import broadcast_channel

TEST_MENU = [
    {"id": 1, "name": "Chicken Momo", "category": "Momo", "price": "180"},
    {"id": 2, "name": "Veg Chowmein", "category": "Noodles", "price": "150"},
    {"id": 3, "name": "Masala Tea", "category": "Drinks", "price": "40"},
    {"id": 4, "name": "Buff Sekuwa", "category": "Grill", "price": "350", "is_available": False},
]


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so several sessions can run side by side."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        seed_menu_items(session, TEST_MENU)
    finally:
        session.close()
    return TestingSessionLocal


@pytest.fixture
def db_session(session_factory):
    """Create a fresh database session for each test."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def reset_broadcast_channel():
    broadcast_channel.reset()
    yield
    broadcast_channel.reset()


class EventRecorder:
    def __init__(self, subscription):
        self.subscription = subscription

    def drain(self):
        """All events queued so far, in delivery order."""
        received = []
        while not self.subscription.queue.empty():
            event = self.subscription.queue.get_nowait()
            if event is not None:
                received.append(event)
        return received

    def types(self):
        return [event.type.value for event in self.drain()]


@pytest.fixture
def events():
    """Staff subscription that records every published event."""
    subscription = broadcast_channel.subscribe()
    yield EventRecorder(subscription)
    broadcast_channel.unsubscribe(subscription)


@pytest.fixture
def client(session_factory):
    """Create a test client with database dependency override."""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    from app.main import app

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def place_order(db_session):
    """Submit an order through the service layer (two Chicken Momo by default)."""
    from modules.orders.enums.order_enums import OrderType
    from modules.orders.schemas.order_schemas import CustomerInfo, OrderCreate, OrderItemCreate
    from modules.orders.services.order_service import create_order

    async def _place(table_id="5", items=None, order_type=OrderType.DINE_IN, **customer):
        customer.setdefault("name", "Sita Sharma")
        customer.setdefault("phone", "9800000001")
        if order_type == OrderType.DELIVERY:
            customer.setdefault("delivery_address", "Lakeside, Pokhara")
            table_id = None
        data = OrderCreate(
            order_type=order_type,
            table_id=table_id,
            customer=CustomerInfo(**customer),
            items=items or [OrderItemCreate(menu_item_id=1, quantity=2)],
        )
        return await create_order(db_session, data)

    return _place


@pytest.fixture
def advance_order(db_session):
    """Walk an order through the given statuses."""
    from modules.orders.services.order_service import update_order_status

    async def _advance(order_id, *statuses):
        order = None
        for status in statuses:
            order = await update_order_status(db_session, order_id, status)
        return order

    return _advance
