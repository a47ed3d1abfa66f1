"""Pick List API endpoints."""
from typing import Optional
import uuid
import logging
from math import ceil

from fastapi import APIRouter, Query

from fulfillment.api.deps import DB, CurrentUser, IdempotencyKey
from fulfillment.core.exceptions import NotFoundError
from fulfillment.models.pick_list import PickList, PickListStatus
from fulfillment.schemas.pick_list import (
    PickListResponse,
    PickListListResponse,
    RecordPicksRequest,
    CompletePickListRequest,
    CancelPickListRequest,
)
from fulfillment.services.pick_list_service import PickListService


logger = logging.getLogger(__name__)

router = APIRouter(tags=["Pick Lists"])


async def build_pick_list_response(service: PickListService, pick_list: PickList) -> PickListResponse:
    """Serialize a pick list with picker display names."""
    response = PickListResponse.model_validate(pick_list)
    names = await service.users.get_display_names(pick_list.picker_ids)
    for assignee in response.assignees:
        assignee.display_name = names.get(assignee.user_id)
    return response


@router.get("", response_model=PickListListResponse)
async def list_pick_lists(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    dn_id: Optional[uuid.UUID] = Query(None),
    status: Optional[PickListStatus] = Query(None),
):
    """Get paginated pick lists, newest first."""
    service = PickListService(db)
    skip = (page - 1) * size

    pick_lists, total = await service.get_pick_lists(
        dn_id=dn_id,
        status=status,
        skip=skip,
        limit=size,
    )

    return PickListListResponse(
        items=[PickListResponse.model_validate(p) for p in pick_lists],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get("/{pick_list_id}", response_model=PickListResponse)
async def get_pick_list(
    pick_list_id: uuid.UUID,
    db: DB,
):
    """Get pick list with assignees and worksheet lines."""
    service = PickListService(db)
    pick_list = await service.get_pick_list(pick_list_id)
    if not pick_list:
        raise NotFoundError(f"Pick list {pick_list_id} not found", {"pick_list_id": str(pick_list_id)})
    return await build_pick_list_response(service, pick_list)


@router.post("/{pick_list_id}/start", response_model=PickListResponse)
async def start_picking(
    pick_list_id: uuid.UUID,
    db: DB,
    current_user: CurrentUser,
    idempotency_key: IdempotencyKey,
):
    """queued -> in_progress; the delivery note moves to picking_in_progress."""
    logger.info(f"start_picking {pick_list_id} by {current_user} (idempotency key {idempotency_key})")
    service = PickListService(db)
    await service.start_picking(pick_list_id, user_id=current_user)
    return await build_pick_list_response(service, await service.get_pick_list(pick_list_id))


@router.post("/{pick_list_id}/picks", response_model=PickListResponse)
async def record_picks(
    pick_list_id: uuid.UUID,
    data: RecordPicksRequest,
    db: DB,
    current_user: CurrentUser,
    idempotency_key: IdempotencyKey,
):
    """Record picked quantities on the worksheet."""
    logger.info(f"record_picks {pick_list_id} by {current_user} (idempotency key {idempotency_key})")
    service = PickListService(db)
    await service.record_picks(
        pick_list_id,
        lines=[line.model_dump() for line in data.lines],
        user_id=current_user,
    )
    return await build_pick_list_response(service, await service.get_pick_list(pick_list_id))


@router.post("/{pick_list_id}/complete", response_model=PickListResponse)
async def complete_pick_list(
    pick_list_id: uuid.UUID,
    db: DB,
    current_user: CurrentUser,
    idempotency_key: IdempotencyKey,
    data: Optional[CompletePickListRequest] = None,
):
    """Freeze picks onto the delivery note, which becomes dispatch_ready."""
    logger.info(f"complete_pick_list {pick_list_id} by {current_user} (idempotency key {idempotency_key})")
    service = PickListService(db)
    lines = [line.model_dump() for line in data.lines] if data else None
    await service.complete_pick_list(pick_list_id, lines=lines, user_id=current_user)
    return await build_pick_list_response(service, await service.get_pick_list(pick_list_id))


@router.post("/{pick_list_id}/cancel", response_model=PickListResponse)
async def cancel_pick_list(
    pick_list_id: uuid.UUID,
    db: DB,
    current_user: CurrentUser,
    idempotency_key: IdempotencyKey,
    data: Optional[CancelPickListRequest] = None,
):
    """Cancel an open pick list; the delivery note returns to confirmed."""
    logger.info(f"cancel_pick_list {pick_list_id} by {current_user} (idempotency key {idempotency_key})")
    service = PickListService(db)
    reason = data.reason if data else None
    await service.cancel_pick_list(pick_list_id, reason=reason, user_id=current_user)
    return await build_pick_list_response(service, await service.get_pick_list(pick_list_id))
