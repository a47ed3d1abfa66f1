"""Allocation planner API endpoints."""
import uuid
import logging

from fastapi import APIRouter, status, Query

from fulfillment.api.deps import DB, CurrentUser, IdempotencyKey
from fulfillment.schemas.allocation import (
    AllocationPlanResponse,
    AllocationSubmitRequest,
    AllocationSubmitResponse,
)
from fulfillment.schemas.delivery_note import DeliveryNoteResponse
from fulfillment.services.allocation_planner import AllocationPlanner


logger = logging.getLogger(__name__)

router = APIRouter(tags=["Allocation"])


@router.get("/plan", response_model=AllocationPlanResponse)
async def build_allocation_plan(
    db: DB,
    business_unit_id: uuid.UUID = Query(...),
):
    """
    Candidate allocation lines for the business unit's open stock requests.

    inventory_loaded is false when availability could not be read for some
    warehouse; such a plan cannot be submitted.
    """
    planner = AllocationPlanner(db)
    plan = await planner.build_plan(business_unit_id)
    return AllocationPlanResponse.model_validate(plan)


@router.post(
    "/submit",
    response_model=AllocationSubmitResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_allocation(
    data: AllocationSubmitRequest,
    db: DB,
    current_user: CurrentUser,
    idempotency_key: IdempotencyKey,
):
    """
    Create one draft delivery note per warehouse pair from the selections.

    The plan is rebuilt from current data; a quantity above its line's
    max_allowed_qty rejects the whole submission.
    """
    logger.info(f"submit_allocation by {current_user} (idempotency key {idempotency_key})")
    planner = AllocationPlanner(db)
    notes = await planner.submit_selections(
        data.business_unit_id,
        selections=[selection.model_dump() for selection in data.selections],
        actor_id=current_user,
        notes=data.notes,
    )
    return AllocationSubmitResponse(
        delivery_notes=[DeliveryNoteResponse.model_validate(dn) for dn in notes]
    )
