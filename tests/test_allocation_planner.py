import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from fulfillment.core.exceptions import ValidationError
from fulfillment.models import DeliveryNote, InventoryBalance, Warehouse
from fulfillment.services import AllocationPlanner, InventoryBalanceOracle
from fulfillment.services.inventory_oracle import InventoryAvailabilityOracle

from tests.conftest import add_stock_request, set_available


class UnavailableOracle(InventoryAvailabilityOracle):
    """Inventory service that is down for one warehouse."""

    def __init__(self, db, down_warehouse_id):
        self.inner = InventoryBalanceOracle(db)
        self.down_warehouse_id = down_warehouse_id

    async def get_available(self, warehouse_id, item_id):
        if warehouse_id == self.down_warehouse_id:
            raise ConnectionError("inventory service unreachable")
        return await self.inner.get_available(warehouse_id, item_id)

    async def get_available_batch(self, warehouse_id, item_ids):
        if warehouse_id == self.down_warehouse_id:
            raise ConnectionError("inventory service unreachable")
        return await self.inner.get_available_batch(warehouse_id, item_ids)


@pytest.fixture
def planner(db, policy):
    return AllocationPlanner(db, policy=policy)


@pytest.fixture
async def second_hub(db, seed):
    """Another South warehouse supplying a second item to the North store."""
    hub = Warehouse(code="WH-S02", name="South Annex", city="Madurai", business_unit_id=seed.fulfilling_bu_id)
    db.add(hub)
    await db.flush()
    item_id = uuid.uuid4()
    sr_item = await add_stock_request(
        db, "SR-0100", seed.requesting_warehouse_id, hub.id, item_id, seed.uom_id, requested=30, priority=1,
    )
    await set_available(db, hub.id, item_id, 25)
    await db.commit()
    return hub, sr_item


async def count_delivery_notes(db) -> int:
    return (await db.execute(select(func.count(DeliveryNote.id)))).scalar()


async def test_plan_caps_by_availability(planner, seed):
    plan = await planner.build_plan(seed.requesting_bu_id)

    assert plan.inventory_loaded
    [line] = plan.lines
    assert line.sr_item_id == seed.sr_item_id
    assert line.request_code == "SR-0001"
    assert line.requested_qty == Decimal("100")
    assert line.allocatable_qty == Decimal("100")
    assert line.available_qty == Decimal("60")
    assert line.max_allowed_qty == Decimal("60")
    assert line.proposed_qty == Decimal("60")


async def test_plan_only_covers_requests_of_the_business_unit(planner, seed):
    plan = await planner.build_plan(seed.fulfilling_bu_id)
    assert plan.lines == []
    assert plan.inventory_loaded


async def test_plan_deducts_open_delivery_notes(planner, flow, seed):
    await flow.draft(25)

    plan = await planner.build_plan(seed.requesting_bu_id)
    [line] = plan.lines
    assert line.already_allocated_qty == Decimal("25")
    assert line.allocatable_qty == Decimal("75")
    assert line.max_allowed_qty == Decimal("60")


async def test_fully_allocated_items_are_left_out(planner, flow, db, seed):
    await set_available_quantity(db, seed.fulfilling_warehouse_id, seed.item_id, 200)
    await flow.draft(100)

    plan = await planner.build_plan(seed.requesting_bu_id)
    assert plan.lines == []


async def test_plan_orders_by_priority(planner, seed, second_hub):
    plan = await planner.build_plan(seed.requesting_bu_id)
    assert [line.request_code for line in plan.lines] == ["SR-0100", "SR-0001"]


async def test_failed_availability_marks_plan_stale(db, seed, policy, second_hub):
    hub, hub_item = second_hub
    hub_id, hub_sr_item_id = hub.id, hub_item.id
    planner = AllocationPlanner(db, oracle=UnavailableOracle(db, hub_id), policy=policy)

    plan = await planner.build_plan(seed.requesting_bu_id)
    assert not plan.inventory_loaded
    assert plan.failed_warehouse_ids == [hub_id]

    stale = plan.get_line(hub_sr_item_id)
    assert stale.available_qty is None
    assert stale.max_allowed_qty is None
    assert stale.proposed_qty == Decimal("0")
    # Lines of healthy warehouses still carry their availability
    assert plan.get_line(seed.sr_item_id).available_qty == Decimal("60")

    with pytest.raises(ValidationError) as exc_info:
        await planner.submit_plan(plan, [{"sr_item_id": seed.sr_item_id, "quantity": "10"}])
    assert exc_info.value.details["failed_warehouse_ids"] == [str(hub_id)]
    assert await count_delivery_notes(db) == 0


async def test_submit_creates_one_note_per_warehouse_pair(planner, db, seed, second_hub):
    hub, hub_item = second_hub
    plan = await planner.build_plan(seed.requesting_bu_id)

    notes = await planner.submit_plan(
        plan,
        [
            {"sr_item_id": seed.sr_item_id, "quantity": Decimal("60")},
            {"sr_item_id": hub_item.id, "quantity": Decimal("20")},
        ],
        actor_id=seed.dispatcher_id,
        notes="Weekly replenishment",
    )

    assert len(notes) == 2
    by_source = {dn.fulfilling_warehouse_id: dn for dn in notes}
    assert by_source[seed.fulfilling_warehouse_id].items[0].allocated_qty == Decimal("60")
    assert by_source[hub.id].items[0].allocated_qty == Decimal("20")
    for dn in notes:
        assert dn.status == "draft"
        assert dn.notes == "Weekly replenishment"
        assert dn.created_by == seed.dispatcher_id


async def test_submit_rejects_quantity_above_max_allowed(planner, db, seed):
    plan = await planner.build_plan(seed.requesting_bu_id)

    with pytest.raises(ValidationError) as exc_info:
        await planner.submit_plan(plan, [{"sr_item_id": seed.sr_item_id, "quantity": Decimal("61")}])
    assert Decimal(exc_info.value.details["max_allowed_qty"]) == Decimal("60")
    assert await count_delivery_notes(db) == 0


@pytest.mark.parametrize("case", ["empty", "unknown", "zero", "duplicate"])
async def test_submit_rejects_bad_selections(planner, db, seed, case):
    selections = {
        "empty": [],
        "unknown": [{"sr_item_id": uuid.uuid4(), "quantity": "5"}],
        "zero": [{"sr_item_id": seed.sr_item_id, "quantity": "0"}],
        "duplicate": [
            {"sr_item_id": seed.sr_item_id, "quantity": "5"},
            {"sr_item_id": seed.sr_item_id, "quantity": "5"},
        ],
    }[case]
    plan = await planner.build_plan(seed.requesting_bu_id)

    with pytest.raises(ValidationError):
        await planner.submit_plan(plan, selections)
    assert await count_delivery_notes(db) == 0


async def test_submit_with_stale_plan_is_all_or_nothing(planner, db, seed, second_hub):
    hub, hub_item = second_hub
    plan = await planner.build_plan(seed.requesting_bu_id)

    # Stock at the annex drops after the plan was built
    await set_available_quantity(db, hub.id, hub_item.item_id, 5)

    with pytest.raises(ValidationError):
        await planner.submit_plan(
            plan,
            [
                {"sr_item_id": seed.sr_item_id, "quantity": Decimal("60")},
                {"sr_item_id": hub_item.id, "quantity": Decimal("20")},
            ],
        )
    assert await count_delivery_notes(db) == 0


async def test_submit_counts_shared_stock_across_notes(planner, db, seed):
    # A second North store draws the same item from the same South hub
    outlet = Warehouse(code="WH-N02", name="North Outlet", city="Noida", business_unit_id=seed.requesting_bu_id)
    db.add(outlet)
    await db.flush()
    outlet_id = outlet.id
    outlet_item = await add_stock_request(
        db, "SR-0002", outlet_id, seed.fulfilling_warehouse_id, seed.item_id, seed.uom_id, requested=100
    )
    outlet_sr_item_id = outlet_item.id
    await db.commit()

    plan = await planner.build_plan(seed.requesting_bu_id)
    assert plan.get_line(seed.sr_item_id).max_allowed_qty == Decimal("60")
    assert plan.get_line(outlet_sr_item_id).max_allowed_qty == Decimal("60")

    with pytest.raises(ValidationError) as exc_info:
        await planner.submit_plan(
            plan,
            [
                {"sr_item_id": seed.sr_item_id, "quantity": Decimal("60")},
                {"sr_item_id": outlet_sr_item_id, "quantity": Decimal("60")},
            ],
        )
    assert Decimal(exc_info.value.details["allocated_qty"]) == Decimal("120")
    assert Decimal(exc_info.value.details["pending_qty"]) == Decimal("60")
    assert await count_delivery_notes(db) == 0

    notes = await planner.submit_plan(
        plan,
        [
            {"sr_item_id": seed.sr_item_id, "quantity": Decimal("30")},
            {"sr_item_id": outlet_sr_item_id, "quantity": Decimal("30")},
        ],
    )
    assert len(notes) == 2
    assert {dn.requesting_warehouse_id for dn in notes} == {seed.requesting_warehouse_id, outlet_id}
    assert sum(dn.items[0].allocated_qty for dn in notes) == Decimal("60")


async def test_submit_selections_rebuilds_plan(planner, flow, db, seed):
    plan = await planner.build_plan(seed.requesting_bu_id)
    assert plan.get_line(seed.sr_item_id).allocatable_qty == Decimal("100")

    # 50 allocated elsewhere since; a stale plan would still allow 60
    await set_available_quantity(db, seed.fulfilling_warehouse_id, seed.item_id, 200)
    await flow.draft(50)

    with pytest.raises(ValidationError):
        await planner.submit_selections(
            seed.requesting_bu_id, [{"sr_item_id": seed.sr_item_id, "quantity": Decimal("60")}]
        )
    notes = await planner.submit_selections(
        seed.requesting_bu_id, [{"sr_item_id": seed.sr_item_id, "quantity": Decimal("50")}]
    )
    assert notes[0].items[0].allocated_qty == Decimal("50")


async def set_available_quantity(db, warehouse_id, item_id, available: int) -> None:
    await db.execute(
        InventoryBalance.__table__.update()
        .where(InventoryBalance.warehouse_id == warehouse_id, InventoryBalance.item_id == item_id)
        .values(available_quantity=Decimal(available), on_hand_quantity=Decimal(available))
    )
    await db.commit()
