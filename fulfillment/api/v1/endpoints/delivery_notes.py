"""Delivery Note API endpoints."""
from typing import Optional
import uuid
import logging
from math import ceil

from fastapi import APIRouter, status, Query

from fulfillment.api.deps import DB, CurrentUser, IdempotencyKey
from fulfillment.core.exceptions import NotFoundError
from fulfillment.models.delivery_note import DeliveryNote, DeliveryNoteStatus
from fulfillment.schemas.delivery_note import (
    DeliveryNoteCreate,
    DeliveryNoteResponse,
    DeliveryNoteBrief,
    DeliveryNoteListResponse,
    QueuePickingRequest,
    DispatchRequest,
    ReceiveRequest,
    VoidRequest,
)
from fulfillment.schemas.pick_list import PickListBrief
from fulfillment.services.delivery_note_service import DeliveryNoteService


logger = logging.getLogger(__name__)

router = APIRouter(tags=["Delivery Notes"])


async def build_delivery_note_response(
    service: DeliveryNoteService,
    dn: DeliveryNote,
) -> DeliveryNoteResponse:
    """Serialize the aggregate including its active pick list."""
    response = DeliveryNoteResponse.model_validate(dn)
    active = await service.get_active_pick_list(dn.id)
    if active:
        response.active_pick_list = PickListBrief.model_validate(active)
    return response


@router.get("", response_model=DeliveryNoteListResponse)
async def list_delivery_notes(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status: Optional[DeliveryNoteStatus] = Query(None),
    requesting_warehouse_id: Optional[uuid.UUID] = Query(None),
    fulfilling_warehouse_id: Optional[uuid.UUID] = Query(None),
):
    """Get paginated list of delivery notes, newest first."""
    service = DeliveryNoteService(db)
    skip = (page - 1) * size

    notes, total = await service.get_delivery_notes(
        status=status,
        requesting_warehouse_id=requesting_warehouse_id,
        fulfilling_warehouse_id=fulfilling_warehouse_id,
        skip=skip,
        limit=size,
    )

    return DeliveryNoteListResponse(
        items=[DeliveryNoteBrief.model_validate(dn) for dn in notes],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get("/{dn_id}", response_model=DeliveryNoteResponse)
async def get_delivery_note(
    dn_id: uuid.UUID,
    db: DB,
):
    """Get delivery note with lines, pick list history and active pick list."""
    service = DeliveryNoteService(db)
    dn = await service.get_delivery_note(dn_id)
    if not dn:
        raise NotFoundError(f"Delivery note {dn_id} not found", {"dn_id": str(dn_id)})
    return await build_delivery_note_response(service, dn)


@router.post(
    "",
    response_model=DeliveryNoteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_delivery_note(
    data: DeliveryNoteCreate,
    db: DB,
    current_user: CurrentUser,
    idempotency_key: IdempotencyKey,
):
    """
    Create a draft delivery note.

    Every line is re-checked against its stock request and the fulfilling
    warehouse's current availability; any failing line rejects the whole note.
    """
    logger.info(f"create_delivery_note by {current_user} (idempotency key {idempotency_key})")
    service = DeliveryNoteService(db)
    dn = await service.create_delivery_note(
        requesting_warehouse_id=data.requesting_warehouse_id,
        fulfilling_warehouse_id=data.fulfilling_warehouse_id,
        lines=[line.model_dump() for line in data.lines],
        notes=data.notes,
        created_by=current_user,
    )
    return await build_delivery_note_response(service, dn)


@router.post("/{dn_id}/confirm", response_model=DeliveryNoteResponse)
async def confirm_delivery_note(
    dn_id: uuid.UUID,
    db: DB,
    current_user: CurrentUser,
    idempotency_key: IdempotencyKey,
):
    """draft -> confirmed."""
    logger.info(f"confirm_delivery_note {dn_id} by {current_user} (idempotency key {idempotency_key})")
    service = DeliveryNoteService(db)
    dn = await service.confirm(dn_id, user_id=current_user)
    return await build_delivery_note_response(service, dn)


@router.post("/{dn_id}/queue-picking", response_model=DeliveryNoteResponse)
async def queue_picking(
    dn_id: uuid.UUID,
    data: QueuePickingRequest,
    db: DB,
    current_user: CurrentUser,
    idempotency_key: IdempotencyKey,
):
    """
    confirmed -> queued_for_picking with a new pick list.

    Returns 409 with the existing pick list id when one is already active.
    """
    logger.info(f"queue_picking {dn_id} by {current_user} (idempotency key {idempotency_key})")
    service = DeliveryNoteService(db)
    dn = await service.queue_picking(
        dn_id,
        picker_ids=data.picker_ids,
        instructions=data.instructions,
        user_id=current_user,
    )
    return await build_delivery_note_response(service, dn)


@router.post("/{dn_id}/dispatch", response_model=DeliveryNoteResponse)
async def dispatch_delivery_note(
    dn_id: uuid.UUID,
    data: DispatchRequest,
    db: DB,
    current_user: CurrentUser,
    idempotency_key: IdempotencyKey,
):
    """dispatch_ready -> dispatched."""
    logger.info(f"dispatch_delivery_note {dn_id} by {current_user} (idempotency key {idempotency_key})")
    service = DeliveryNoteService(db)
    dn = await service.dispatch(
        dn_id,
        driver_signature=data.driver_signature,
        driver_name=data.driver_name,
        notes=data.notes,
        lines=[line.model_dump() for line in data.lines],
        user_id=current_user,
    )
    return await build_delivery_note_response(service, dn)


@router.post("/{dn_id}/receive", response_model=DeliveryNoteResponse)
async def receive_delivery_note(
    dn_id: uuid.UUID,
    data: ReceiveRequest,
    db: DB,
    current_user: CurrentUser,
    idempotency_key: IdempotencyKey,
):
    """dispatched -> received, crediting the stock request items."""
    logger.info(f"receive_delivery_note {dn_id} by {current_user} (idempotency key {idempotency_key})")
    service = DeliveryNoteService(db)
    dn = await service.receive(
        dn_id,
        notes=data.notes,
        lines=[line.model_dump() for line in data.lines],
        user_id=current_user,
    )
    return await build_delivery_note_response(service, dn)


@router.post("/{dn_id}/void", response_model=DeliveryNoteResponse)
async def void_delivery_note(
    dn_id: uuid.UUID,
    db: DB,
    current_user: CurrentUser,
    idempotency_key: IdempotencyKey,
    data: Optional[VoidRequest] = None,
):
    """Void a delivery note that has not been dispatched."""
    logger.info(f"void_delivery_note {dn_id} by {current_user} (idempotency key {idempotency_key})")
    service = DeliveryNoteService(db)
    reason = data.reason if data else None
    dn = await service.void(dn_id, reason=reason, user_id=current_user)
    return await build_delivery_note_response(service, dn)
