import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from fulfillment.core.exceptions import (
    InvalidStateError,
    NotFoundError,
    PolicyViolationError,
    ValidationError,
)
from fulfillment.models import PickList
from fulfillment.services import PickListService
from fulfillment.services.dn_state_machine import DNStatus
from fulfillment.services.pick_list_service import parse_quantity


async def active_pick_list(flow, dn):
    return await flow.dn_service.get_active_pick_list(dn.id)


def test_parse_quantity():
    assert parse_quantity("12.5") == Decimal("12.5")
    assert parse_quantity(3) == Decimal("3")
    assert parse_quantity("0.1000000") == Decimal("0.1")
    assert parse_quantity("1.2345") == Decimal("1.2345")
    for bad in ("abc", None, "NaN", "Infinity", "0.00001", "2.12345"):
        with pytest.raises(ValidationError):
            parse_quantity(bad, "picked_qty")


async def test_start_picking_moves_delivery_note(flow, seed):
    dn = await flow.queued()
    pick_list = await active_pick_list(flow, dn)

    pick_list = await flow.pl_service.start_picking(pick_list.id, user_id=seed.picker_id)
    assert pick_list.status == "in_progress"
    assert pick_list.started_at is not None

    dn = await flow.dn_service.get_delivery_note(dn.id)
    assert dn.status == DNStatus.PICKING_IN_PROGRESS
    assert dn.picking_started_by == seed.picker_id


async def test_start_picking_twice_is_invalid(flow, seed):
    dn = await flow.queued()
    pick_list = await active_pick_list(flow, dn)
    await flow.pl_service.start_picking(pick_list.id, user_id=seed.picker_id)

    with pytest.raises(InvalidStateError):
        await flow.pl_service.start_picking(pick_list.id, user_id=seed.picker_id)


async def test_record_picks_leaves_delivery_note_untouched(flow, seed):
    dn = await flow.queued()
    pick_list = await active_pick_list(flow, dn)
    dn_item_id = dn.items[0].id

    pick_list = await flow.pl_service.record_picks(
        pick_list.id,
        [{"dn_item_id": dn_item_id, "picked_qty": Decimal("20")}],
        user_id=seed.picker_id,
    )
    [pick_item] = pick_list.items
    assert pick_item.picked_qty == Decimal("20")
    assert pick_item.short_qty == Decimal("40")
    assert pick_item.picked_by == seed.picker_id

    dn = await flow.dn_service.get_delivery_note(dn.id)
    assert dn.items[0].picked_qty == Decimal("0")
    assert dn.status == DNStatus.QUEUED_FOR_PICKING


@pytest.mark.parametrize("picked", ["-1", "61", "lots", "0.00001"])
async def test_record_picks_bounds(flow, seed, picked):
    dn = await flow.queued()
    pick_list = await active_pick_list(flow, dn)

    with pytest.raises(ValidationError):
        await flow.pl_service.record_picks(
            pick_list.id,
            [{"dn_item_id": dn.items[0].id, "picked_qty": picked}],
            user_id=seed.picker_id,
        )


async def test_record_picks_rejects_foreign_line(flow, seed):
    dn = await flow.queued()
    pick_list = await active_pick_list(flow, dn)

    with pytest.raises(ValidationError):
        await flow.pl_service.record_picks(
            pick_list.id,
            [{"dn_item_id": uuid.uuid4(), "picked_qty": "1"}],
            user_id=seed.picker_id,
        )


async def test_complete_uses_recorded_picks(flow, seed):
    dn = await flow.queued()
    pick_list = await active_pick_list(flow, dn)
    dn_item_id = dn.items[0].id
    await flow.pl_service.start_picking(pick_list.id, user_id=seed.picker_id)
    await flow.pl_service.record_picks(
        pick_list.id, [{"dn_item_id": dn_item_id, "picked_qty": Decimal("42")}], user_id=seed.picker_id
    )

    pick_list = await flow.pl_service.complete_pick_list(pick_list.id, user_id=seed.picker_id)
    assert pick_list.status == "completed"
    assert pick_list.completed_at is not None

    dn = await flow.dn_service.get_delivery_note(dn.id)
    assert dn.status == DNStatus.DISPATCH_READY
    assert dn.items[0].picked_qty == Decimal("42")
    assert dn.items[0].short_qty == Decimal("18")
    assert dn.picking_completed_by == seed.picker_id


async def test_complete_straight_from_queue(flow, seed):
    dn = await flow.queued()
    pick_list = await active_pick_list(flow, dn)

    pick_list = await flow.pl_service.complete_pick_list(
        pick_list.id,
        lines=[{"dn_item_id": dn.items[0].id, "picked_qty": Decimal("60")}],
        user_id=seed.picker_id,
    )
    assert pick_list.started_at is not None

    dn = await flow.dn_service.get_delivery_note(dn.id)
    assert dn.status == DNStatus.DISPATCH_READY
    assert dn.items[0].short_qty == Decimal("0")


async def test_complete_requires_some_quantity(flow, seed):
    dn = await flow.queued()
    dn_id = dn.id
    pick_list = await active_pick_list(flow, dn)

    with pytest.raises(ValidationError):
        await flow.pl_service.complete_pick_list(pick_list.id, user_id=seed.picker_id)

    dn = await flow.dn_service.get_delivery_note(dn_id)
    assert dn.status == DNStatus.QUEUED_FOR_PICKING


async def test_completed_pick_list_is_frozen(flow, seed):
    dn = await flow.dispatch_ready()
    dn_item_id = dn.items[0].id
    pick_list_id = (await flow.pl_service.get_pick_lists(dn_id=dn.id))[0][0].id

    with pytest.raises(InvalidStateError):
        await flow.pl_service.record_picks(
            pick_list_id, [{"dn_item_id": dn_item_id, "picked_qty": "1"}], user_id=seed.picker_id
        )
    with pytest.raises(InvalidStateError):
        await flow.pl_service.cancel_pick_list(pick_list_id)


async def test_cancel_returns_delivery_note_to_confirmed(flow, seed):
    dn = await flow.queued()
    first = await active_pick_list(flow, dn)
    await flow.pl_service.start_picking(first.id, user_id=seed.picker_id)

    cancelled = await flow.pl_service.cancel_pick_list(first.id, reason="Picker unavailable")
    assert cancelled.status == "cancelled"
    assert cancelled.cancellation_reason == "Picker unavailable"

    dn = await flow.dn_service.get_delivery_note(dn.id)
    assert dn.status == DNStatus.CONFIRMED
    assert await active_pick_list(flow, dn) is None

    # A new pick list can be queued and becomes the active one
    dn = await flow.dn_service.queue_picking(dn.id, picker_ids=[seed.second_picker_id])
    second = await active_pick_list(flow, dn)
    assert second.id != first.id
    assert second.picker_ids == [seed.second_picker_id]

    pick_lists, total = await flow.pl_service.get_pick_lists(dn_id=dn.id)
    assert total == 2
    assert [p.id for p in pick_lists] == [second.id, first.id]
    assert len(dn.pick_lists) == 2


async def test_cancel_unknown_pick_list(flow):
    with pytest.raises(NotFoundError):
        await flow.pl_service.cancel_pick_list(uuid.uuid4())


async def test_picker_assignment_policy(db, flow, seed, policy):
    dn = await flow.queued()
    pick_list_id = (await active_pick_list(flow, dn)).id
    strict = PickListService(db, policy=policy.with_overrides(enforce_picker_assignment=True))

    with pytest.raises(PolicyViolationError):
        await strict.start_picking(pick_list_id, user_id=seed.second_picker_id)

    pick_list = await strict.start_picking(pick_list_id, user_id=seed.picker_id)
    assert pick_list.status == "in_progress"


async def test_complete_rejects_quantity_finer_than_storage(flow, seed):
    dn = await flow.queued()
    dn_id, dn_item_id = dn.id, dn.items[0].id
    pick_list_id = (await active_pick_list(flow, dn)).id

    with pytest.raises(ValidationError) as exc_info:
        await flow.pl_service.complete_pick_list(
            pick_list_id, lines=[{"dn_item_id": dn_item_id, "picked_qty": "0.00001"}], user_id=seed.picker_id
        )
    assert exc_info.value.details["max_decimal_places"] == 4

    dn = await flow.dn_service.get_delivery_note(dn_id)
    assert dn.status == DNStatus.QUEUED_FOR_PICKING


# ==================== ACTIVE PICK LIST ====================

async def add_pick_list(db, dn_id, number, status, created_at, deleted_at=None) -> uuid.UUID:
    pick_list = PickList(
        pick_list_number=number,
        dn_id=dn_id,
        status=status,
        created_at=created_at,
        updated_at=created_at,
        deleted_at=deleted_at,
    )
    db.add(pick_list)
    await db.flush()
    return pick_list.id


async def test_latest_cancelled_pick_list_hides_older_open_one(flow, db):
    dn_id = (await flow.confirmed()).id
    morning = datetime(2026, 5, 4, 9, 0, tzinfo=timezone.utc)
    await add_pick_list(db, dn_id, "PL/WH/26-27/09001", "queued", morning)
    await add_pick_list(db, dn_id, "PL/WH/26-27/09002", "cancelled", morning + timedelta(hours=1))
    await db.commit()

    assert await flow.pl_service.get_active_pick_list(dn_id) is None
    assert await flow.dn_service.get_active_pick_list(dn_id) is None


async def test_active_pick_list_skips_deleted_and_breaks_ties_by_number(flow, db):
    dn_id = (await flow.confirmed()).id
    morning = datetime(2026, 5, 4, 9, 0, tzinfo=timezone.utc)
    await add_pick_list(db, dn_id, "PL/WH/26-27/09001", "cancelled", morning)
    queued_id = await add_pick_list(db, dn_id, "PL/WH/26-27/09002", "queued", morning)
    await add_pick_list(
        db, dn_id, "PL/WH/26-27/09003", "queued", morning + timedelta(hours=2),
        deleted_at=morning + timedelta(hours=3),
    )
    await db.commit()

    active = await flow.pl_service.get_active_pick_list(dn_id)
    assert active.id == queued_id
