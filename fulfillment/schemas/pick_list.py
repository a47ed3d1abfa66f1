"""Pydantic schemas for pick lists."""
from pydantic import BaseModel, Field

from fulfillment.schemas.base import BaseResponseSchema, BaseCreateSchema
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid

from fulfillment.models.pick_list import PickListStatus


# ==================== PICK LIST ITEM SCHEMAS ====================

class PickListItemResponse(BaseResponseSchema):
    """Worksheet line."""
    id: uuid.UUID
    dn_item_id: uuid.UUID
    sr_id: uuid.UUID
    sr_item_id: uuid.UUID
    item_id: uuid.UUID
    uom_id: uuid.UUID
    allocated_qty: Decimal
    picked_qty: Decimal
    short_qty: Decimal
    picked_by: Optional[uuid.UUID] = None
    picked_at: Optional[datetime] = None


class PickListAssigneeResponse(BaseResponseSchema):
    user_id: uuid.UUID
    assigned_at: datetime
    assigned_by: Optional[uuid.UUID] = None
    display_name: Optional[str] = None


# ==================== PICK LIST SCHEMAS ====================

class PickListBrief(BaseResponseSchema):
    """Pick list summary shown on the delivery note."""
    id: uuid.UUID
    pick_list_number: str
    dn_id: uuid.UUID
    status: PickListStatus
    picker_ids: List[uuid.UUID] = []
    instructions: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None


class PickListResponse(PickListBrief):
    """Pick list with assignees and worksheet lines."""
    created_by: Optional[uuid.UUID] = None
    updated_at: datetime
    assignees: List[PickListAssigneeResponse] = []
    items: List[PickListItemResponse] = []


class PickListListResponse(BaseModel):
    """Paginated pick list response."""
    items: List[PickListResponse]
    total: int
    page: int
    size: int
    pages: int


# ==================== REQUESTS ====================

class PickLine(BaseCreateSchema):
    """Picked quantity for one delivery note line."""
    dn_item_id: uuid.UUID
    picked_qty: Decimal


class RecordPicksRequest(BaseCreateSchema):
    lines: List[PickLine] = Field(default_factory=list)


class CompletePickListRequest(BaseCreateSchema):
    """Lines left out keep the quantity recorded on the worksheet."""
    lines: List[PickLine] = Field(default_factory=list)


class CancelPickListRequest(BaseCreateSchema):
    reason: Optional[str] = None
