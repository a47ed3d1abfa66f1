"""Pydantic schemas for delivery notes."""
from pydantic import BaseModel, Field

from fulfillment.schemas.base import BaseResponseSchema, BaseCreateSchema
from fulfillment.schemas.pick_list import PickListBrief
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid

from fulfillment.models.delivery_note import DeliveryNoteStatus


# ==================== DELIVERY NOTE ITEM SCHEMAS ====================

class DeliveryNoteLineCreate(BaseCreateSchema):
    """One allocation line. sr_id, item_id and uom_id are cross-checked when given."""
    sr_item_id: uuid.UUID
    allocated_qty: Decimal
    sr_id: Optional[uuid.UUID] = None
    item_id: Optional[uuid.UUID] = None
    uom_id: Optional[uuid.UUID] = None


class DeliveryNoteItemResponse(BaseResponseSchema):
    """Delivery note line with derived shortfalls."""
    id: uuid.UUID
    line_number: int
    sr_id: uuid.UUID
    sr_item_id: uuid.UUID
    item_id: uuid.UUID
    uom_id: uuid.UUID
    allocated_qty: Decimal
    picked_qty: Decimal
    short_qty: Decimal
    dispatched_qty: Decimal
    received_qty: Decimal
    dispatch_short_qty: Decimal
    receive_short_qty: Decimal


class WarehouseBrief(BaseResponseSchema):
    id: uuid.UUID
    code: str
    name: str
    label: str
    full_address: str = ""
    business_unit_id: Optional[uuid.UUID] = None


# ==================== DELIVERY NOTE SCHEMAS ====================

class DeliveryNoteCreate(BaseCreateSchema):
    """Delivery note creation schema."""
    requesting_warehouse_id: uuid.UUID
    fulfilling_warehouse_id: uuid.UUID
    lines: List[DeliveryNoteLineCreate] = Field(default_factory=list)
    notes: Optional[str] = None


class QueuePickingRequest(BaseCreateSchema):
    picker_ids: List[uuid.UUID] = Field(default_factory=list)
    instructions: Optional[str] = None


class DispatchLine(BaseCreateSchema):
    dn_item_id: uuid.UUID
    dispatched_qty: Optional[Decimal] = None


class DispatchRequest(BaseCreateSchema):
    """Lines left out dispatch their picked quantity."""
    driver_name: Optional[str] = None
    driver_signature: Optional[str] = None
    notes: Optional[str] = None
    lines: List[DispatchLine] = Field(default_factory=list)


class ReceiveLine(BaseCreateSchema):
    dn_item_id: uuid.UUID
    received_qty: Optional[Decimal] = None


class ReceiveRequest(BaseCreateSchema):
    """Lines left out receive their dispatched quantity."""
    notes: Optional[str] = None
    lines: List[ReceiveLine] = Field(default_factory=list)


class VoidRequest(BaseCreateSchema):
    reason: Optional[str] = None


class DeliveryNoteBrief(BaseResponseSchema):
    """Delivery note list row."""
    id: uuid.UUID
    dn_number: str
    status: DeliveryNoteStatus
    requesting_warehouse_id: uuid.UUID
    fulfilling_warehouse_id: uuid.UUID
    requesting_warehouse: Optional[WarehouseBrief] = None
    fulfilling_warehouse: Optional[WarehouseBrief] = None
    notes: Optional[str] = None
    created_at: datetime
    dispatched_at: Optional[datetime] = None
    received_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None


class DeliveryNoteResponse(DeliveryNoteBrief):
    """Delivery note aggregate."""
    confirmed_at: Optional[datetime] = None
    confirmed_by: Optional[uuid.UUID] = None
    picking_started_at: Optional[datetime] = None
    picking_started_by: Optional[uuid.UUID] = None
    picking_completed_at: Optional[datetime] = None
    picking_completed_by: Optional[uuid.UUID] = None
    dispatched_by: Optional[uuid.UUID] = None
    received_by: Optional[uuid.UUID] = None
    voided_by: Optional[uuid.UUID] = None
    void_reason: Optional[str] = None
    driver_name: Optional[str] = None
    driver_signature: Optional[str] = None
    dispatch_notes: Optional[str] = None
    receipt_notes: Optional[str] = None
    created_by: Optional[uuid.UUID] = None
    updated_by: Optional[uuid.UUID] = None
    updated_at: Optional[datetime] = None
    stock_request_ids: List[uuid.UUID] = []
    items: List[DeliveryNoteItemResponse] = []
    pick_lists: List[PickListBrief] = []
    active_pick_list: Optional[PickListBrief] = None


class DeliveryNoteListResponse(BaseModel):
    """Paginated delivery note list response."""
    items: List[DeliveryNoteBrief]
    total: int
    page: int
    size: int
    pages: int
