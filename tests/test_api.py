"""HTTP tests for the delivery note, pick list and allocation endpoints."""
import uuid
from decimal import Decimal

import pytest


API = "/api/v1"


def as_user(user_id) -> dict:
    return {"X-User-Id": str(user_id), "Idempotency-Key": str(uuid.uuid4())}


async def create_note(client, seed, quantity="60"):
    response = await client.post(
        f"{API}/delivery-notes",
        json={
            "requesting_warehouse_id": str(seed.requesting_warehouse_id),
            "fulfilling_warehouse_id": str(seed.fulfilling_warehouse_id),
            "lines": [{"sr_item_id": str(seed.sr_item_id), "allocated_qty": quantity}],
            "notes": "Urgent top-up",
        },
        headers=as_user(seed.dispatcher_id),
    )
    return response


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "connected"


async def test_mutations_require_acting_user(client, seed):
    response = await client.post(
        f"{API}/delivery-notes",
        json={
            "requesting_warehouse_id": str(seed.requesting_warehouse_id),
            "fulfilling_warehouse_id": str(seed.fulfilling_warehouse_id),
            "lines": [],
        },
    )
    assert response.status_code == 401

    response = await client.post(
        f"{API}/delivery-notes/{uuid.uuid4()}/confirm",
        headers={"X-User-Id": "not-a-uuid"},
    )
    assert response.status_code == 401


async def test_get_unknown_delivery_note(client, seed):
    response = await client.get(f"{API}/delivery-notes/{uuid.uuid4()}")
    assert response.status_code == 404
    body = response.json()
    assert body["type"] == "NotFoundError"


async def test_create_over_availability_is_rejected(client, seed):
    response = await create_note(client, seed, quantity="80")
    assert response.status_code == 400
    body = response.json()
    assert body["type"] == "ValidationError"
    assert "exceeds available quantity" in body["error"]

    response = await client.get(f"{API}/delivery-notes")
    assert response.json()["total"] == 0


async def test_full_lifecycle(client, seed):
    response = await create_note(client, seed)
    assert response.status_code == 201
    dn = response.json()
    dn_id = dn["id"]
    assert dn["status"] == "draft"
    assert dn["stock_request_ids"] == [str(seed.sr_id)]
    assert dn["fulfilling_warehouse"]["label"] == "WH-S01 - South Hub"
    assert dn["fulfilling_warehouse"]["full_address"] == "Chennai"
    item_id = dn["items"][0]["id"]

    response = await client.post(f"{API}/delivery-notes/{dn_id}/confirm", headers=as_user(seed.dispatcher_id))
    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"

    response = await client.post(f"{API}/delivery-notes/{dn_id}/confirm", headers=as_user(seed.dispatcher_id))
    assert response.status_code == 422
    assert response.json()["details"]["current_status"] == "confirmed"

    response = await client.post(
        f"{API}/delivery-notes/{dn_id}/queue-picking",
        json={"picker_ids": [str(seed.picker_id)], "instructions": "Aisle 4 first"},
        headers=as_user(seed.dispatcher_id),
    )
    assert response.status_code == 200
    dn = response.json()
    assert dn["status"] == "queued_for_picking"
    pick_list_id = dn["active_pick_list"]["id"]
    assert dn["active_pick_list"]["picker_ids"] == [str(seed.picker_id)]

    response = await client.post(
        f"{API}/delivery-notes/{dn_id}/queue-picking",
        json={"picker_ids": [str(seed.second_picker_id)]},
        headers=as_user(seed.dispatcher_id),
    )
    assert response.status_code == 409
    assert response.json()["details"]["pick_list_id"] == pick_list_id

    response = await client.post(f"{API}/pick-lists/{pick_list_id}/start", headers=as_user(seed.picker_id))
    assert response.status_code == 200
    assert response.json()["status"] == "in_progress"
    assert response.json()["assignees"][0]["display_name"] == "Pat"

    response = await client.post(
        f"{API}/pick-lists/{pick_list_id}/complete",
        json={"lines": [{"dn_item_id": item_id, "picked_qty": "55"}]},
        headers=as_user(seed.picker_id),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "completed"

    response = await client.get(f"{API}/delivery-notes/{dn_id}")
    dn = response.json()
    assert dn["status"] == "dispatch_ready"
    assert dn["active_pick_list"]["status"] == "completed"
    assert Decimal(dn["items"][0]["short_qty"]) == Decimal("5")

    response = await client.post(
        f"{API}/delivery-notes/{dn_id}/dispatch",
        json={"driver_name": "Ravi Kumar"},
        headers=as_user(seed.dispatcher_id),
    )
    assert response.status_code == 400

    response = await client.post(
        f"{API}/delivery-notes/{dn_id}/dispatch",
        json={"driver_name": "Ravi Kumar", "driver_signature": "R. Kumar"},
        headers=as_user(seed.dispatcher_id),
    )
    assert response.status_code == 200
    dn = response.json()
    assert dn["status"] == "dispatched"
    assert Decimal(dn["items"][0]["dispatched_qty"]) == Decimal("55")

    response = await client.post(f"{API}/delivery-notes/{dn_id}/void", headers=as_user(seed.dispatcher_id))
    assert response.status_code == 422

    response = await client.post(
        f"{API}/delivery-notes/{dn_id}/receive", json={}, headers=as_user(seed.dispatcher_id)
    )
    assert response.status_code == 403
    assert response.json()["type"] == "PolicyViolationError"

    response = await client.post(
        f"{API}/delivery-notes/{dn_id}/receive",
        json={"notes": "Seal intact"},
        headers=as_user(seed.receiver_id),
    )
    assert response.status_code == 200
    dn = response.json()
    assert dn["status"] == "received"
    assert Decimal(dn["items"][0]["received_qty"]) == Decimal("55")
    assert dn["received_by"] == str(seed.receiver_id)

    # The request still needs 45; the planner offers what the hub has left to allocate
    response = await client.get(
        f"{API}/allocation/plan", params={"business_unit_id": str(seed.requesting_bu_id)}
    )
    [line] = response.json()["lines"]
    assert Decimal(line["received_qty"]) == Decimal("55")
    assert Decimal(line["allocatable_qty"]) == Decimal("45")


async def test_void_and_cancel(client, seed):
    dn_id = (await create_note(client, seed, quantity="10")).json()["id"]
    await client.post(f"{API}/delivery-notes/{dn_id}/confirm", headers=as_user(seed.dispatcher_id))
    dn = (
        await client.post(
            f"{API}/delivery-notes/{dn_id}/queue-picking",
            json={"picker_ids": [str(seed.picker_id)]},
            headers=as_user(seed.dispatcher_id),
        )
    ).json()
    first_pick_list = dn["active_pick_list"]["id"]

    response = await client.post(
        f"{API}/pick-lists/{first_pick_list}/cancel",
        json={"reason": "Wrong picker"},
        headers=as_user(seed.dispatcher_id),
    )
    assert response.status_code == 200
    assert response.json()["cancellation_reason"] == "Wrong picker"

    dn = (await client.get(f"{API}/delivery-notes/{dn_id}")).json()
    assert dn["status"] == "confirmed"
    assert dn["active_pick_list"] is None

    response = await client.post(
        f"{API}/delivery-notes/{dn_id}/queue-picking",
        json={"picker_ids": [str(seed.second_picker_id)]},
        headers=as_user(seed.dispatcher_id),
    )
    assert response.status_code == 200
    second_pick_list = response.json()["active_pick_list"]["id"]
    assert second_pick_list != first_pick_list

    response = await client.post(
        f"{API}/delivery-notes/{dn_id}/void",
        json={"reason": "Duplicate"},
        headers=as_user(seed.dispatcher_id),
    )
    assert response.status_code == 200
    dn = response.json()
    assert dn["status"] == "voided"
    assert dn["void_reason"] == "Duplicate"
    assert dn["active_pick_list"] is None

    response = await client.get(f"{API}/pick-lists", params={"dn_id": dn_id})
    body = response.json()
    assert body["total"] == 2
    assert {p["status"] for p in body["items"]} == {"cancelled"}


async def test_list_delivery_notes(client, seed):
    await create_note(client, seed, quantity="10")
    await create_note(client, seed, quantity="10")

    response = await client.get(f"{API}/delivery-notes", params={"size": 1})
    body = response.json()
    assert body["total"] == 2
    assert body["pages"] == 2
    assert len(body["items"]) == 1

    response = await client.get(f"{API}/delivery-notes", params={"status": "confirmed"})
    assert response.json()["total"] == 0


async def test_allocation_plan_and_submit(client, seed):
    response = await client.get(
        f"{API}/allocation/plan", params={"business_unit_id": str(seed.requesting_bu_id)}
    )
    assert response.status_code == 200
    plan = response.json()
    assert plan["inventory_loaded"] is True
    [line] = plan["lines"]
    assert Decimal(line["max_allowed_qty"]) == Decimal("60")

    response = await client.post(
        f"{API}/allocation/submit",
        json={
            "business_unit_id": str(seed.requesting_bu_id),
            "selections": [{"sr_item_id": str(seed.sr_item_id), "quantity": "61"}],
        },
        headers=as_user(seed.dispatcher_id),
    )
    assert response.status_code == 400

    response = await client.post(
        f"{API}/allocation/submit",
        json={
            "business_unit_id": str(seed.requesting_bu_id),
            "selections": [{"sr_item_id": str(seed.sr_item_id), "quantity": "60"}],
            "notes": "From planner",
        },
        headers=as_user(seed.dispatcher_id),
    )
    assert response.status_code == 201
    [dn] = response.json()["delivery_notes"]
    assert dn["status"] == "draft"
    assert Decimal(dn["items"][0]["allocated_qty"]) == Decimal("60")


@pytest.mark.parametrize("path", ["confirm", "void"])
async def test_transition_unknown_delivery_note(client, seed, path):
    response = await client.post(
        f"{API}/delivery-notes/{uuid.uuid4()}/{path}", headers=as_user(seed.dispatcher_id)
    )
    assert response.status_code == 404
