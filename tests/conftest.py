"""
Pytest fixtures: an in-memory SQLite database per test, seed data for two
business units trading stock, and an HTTP client bound to the app.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from fulfillment.database import Base, get_db
from fulfillment.models import (
    BusinessUnit,
    InventoryBalance,
    StockRequest,
    StockRequestItem,
    User,
    Warehouse,
)
from fulfillment.services import DeliveryNoteService, PickListService
from fulfillment.services.policy import FulfillmentPolicy


@dataclass
class Seed:
    """Ids of the records every test starts from."""
    requesting_bu_id: uuid.UUID
    fulfilling_bu_id: uuid.UUID
    requesting_warehouse_id: uuid.UUID
    fulfilling_warehouse_id: uuid.UUID
    receiver_id: uuid.UUID
    dispatcher_id: uuid.UUID
    picker_id: uuid.UUID
    second_picker_id: uuid.UUID
    inactive_user_id: uuid.UUID
    orphan_user_id: uuid.UUID
    sr_id: uuid.UUID
    sr_item_id: uuid.UUID
    item_id: uuid.UUID
    uom_id: uuid.UUID
    extra: Dict[str, uuid.UUID] = field(default_factory=dict)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def policy():
    return FulfillmentPolicy(
        require_driver_signature=True,
        enforce_bu_segregation_on_receive=True,
        enforce_picker_assignment=False,
        deduct_active_allocations=True,
    )


async def add_stock_request(
    db: AsyncSession,
    code: str,
    requesting_warehouse_id: uuid.UUID,
    fulfilling_warehouse_id: uuid.UUID,
    item_id: uuid.UUID,
    uom_id: uuid.UUID,
    requested: int,
    status: str = "approved",
    priority: int = 5,
) -> StockRequestItem:
    """Create a one-line stock request and return its item."""
    sr = StockRequest(
        request_code=code,
        status=status,
        priority=priority,
        requesting_warehouse_id=requesting_warehouse_id,
        fulfilling_warehouse_id=fulfilling_warehouse_id,
        request_date=date.today(),
        required_date=date.today() + timedelta(days=7),
    )
    db.add(sr)
    await db.flush()
    sr_item = StockRequestItem(
        stock_request_id=sr.id,
        item_id=item_id,
        uom_id=uom_id,
        requested_quantity=Decimal(requested),
        received_quantity=Decimal("0"),
    )
    db.add(sr_item)
    await db.flush()
    return sr_item


async def set_available(db: AsyncSession, warehouse_id: uuid.UUID, item_id: uuid.UUID, available: int) -> None:
    db.add(
        InventoryBalance(
            warehouse_id=warehouse_id,
            item_id=item_id,
            on_hand_quantity=Decimal(available),
            reserved_quantity=Decimal("0"),
            available_quantity=Decimal(available),
        )
    )
    await db.flush()


@pytest.fixture
async def seed(db) -> Seed:
    """
    North BU requests 100 units of one item from the South BU warehouse,
    which has 60 available.
    """
    north = BusinessUnit(code="NORTH", name="North Region")
    south = BusinessUnit(code="SOUTH", name="South Region")
    db.add_all([north, south])
    await db.flush()

    requesting = Warehouse(code="WH-N01", name="North Store", city="Delhi", business_unit_id=north.id)
    fulfilling = Warehouse(code="WH-S01", name="South Hub", city="Chennai", business_unit_id=south.id)
    db.add_all([requesting, fulfilling])
    await db.flush()

    receiver = User(email="receiver@north.test", first_name="Riya", business_unit_id=north.id)
    dispatcher = User(email="dispatch@south.test", first_name="Dev", business_unit_id=south.id)
    picker = User(email="picker1@south.test", first_name="Pat", business_unit_id=south.id)
    second_picker = User(email="picker2@south.test", first_name="Sam", business_unit_id=south.id)
    inactive = User(email="former@south.test", first_name="Old", business_unit_id=south.id, is_active=False)
    orphan = User(email="contractor@example.test", first_name="Kim", business_unit_id=None)
    db.add_all([receiver, dispatcher, picker, second_picker, inactive, orphan])
    await db.flush()

    item_id, uom_id = uuid.uuid4(), uuid.uuid4()
    sr_item = await add_stock_request(
        db, "SR-0001", requesting.id, fulfilling.id, item_id, uom_id, requested=100
    )
    await set_available(db, fulfilling.id, item_id, 60)
    await db.commit()

    return Seed(
        requesting_bu_id=north.id,
        fulfilling_bu_id=south.id,
        requesting_warehouse_id=requesting.id,
        fulfilling_warehouse_id=fulfilling.id,
        receiver_id=receiver.id,
        dispatcher_id=dispatcher.id,
        picker_id=picker.id,
        second_picker_id=second_picker.id,
        inactive_user_id=inactive.id,
        orphan_user_id=orphan.id,
        sr_id=sr_item.stock_request_id,
        sr_item_id=sr_item.id,
        item_id=item_id,
        uom_id=uom_id,
    )


@pytest.fixture
async def client(session_factory):
    """HTTP client whose requests run against the test database."""
    from fulfillment.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


class Flow:
    """Drives a delivery note to a given status through the services."""

    def __init__(self, db: AsyncSession, seed: Seed, policy: FulfillmentPolicy):
        self.db = db
        self.seed = seed
        self.dn_service = DeliveryNoteService(db, policy=policy)
        self.pl_service = PickListService(db, policy=policy)

    async def draft(self, quantity: int = 60):
        return await self.dn_service.create_delivery_note(
            requesting_warehouse_id=self.seed.requesting_warehouse_id,
            fulfilling_warehouse_id=self.seed.fulfilling_warehouse_id,
            lines=[{"sr_item_id": self.seed.sr_item_id, "allocated_qty": Decimal(quantity)}],
            created_by=self.seed.dispatcher_id,
        )

    async def confirmed(self, quantity: int = 60):
        dn = await self.draft(quantity)
        return await self.dn_service.confirm(dn.id, user_id=self.seed.dispatcher_id)

    async def queued(self, quantity: int = 60):
        dn = await self.confirmed(quantity)
        return await self.dn_service.queue_picking(
            dn.id, picker_ids=[self.seed.picker_id], user_id=self.seed.dispatcher_id
        )

    async def dispatch_ready(self, quantity: int = 60, picked: int = 60):
        dn = await self.queued(quantity)
        dn_id, dn_item_id = dn.id, dn.items[0].id
        pick_list_id = (await self.dn_service.get_active_pick_list(dn_id)).id
        await self.pl_service.start_picking(pick_list_id, user_id=self.seed.picker_id)
        await self.pl_service.complete_pick_list(
            pick_list_id,
            lines=[{"dn_item_id": dn_item_id, "picked_qty": Decimal(picked)}],
            user_id=self.seed.picker_id,
        )
        return await self.dn_service.get_delivery_note(dn_id)

    async def dispatched(self, quantity: int = 60, picked: int = 60):
        dn_id = (await self.dispatch_ready(quantity, picked)).id
        return await self.dn_service.dispatch(
            dn_id,
            driver_signature="R. Kumar",
            driver_name="Ravi Kumar",
            user_id=self.seed.dispatcher_id,
        )


@pytest.fixture
def flow(db, seed, policy) -> Flow:
    return Flow(db, seed, policy)
