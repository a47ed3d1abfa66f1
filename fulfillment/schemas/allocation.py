"""Pydantic schemas for the allocation planner."""
from pydantic import BaseModel, Field

from fulfillment.schemas.base import BaseResponseSchema, BaseCreateSchema
from fulfillment.schemas.delivery_note import DeliveryNoteResponse
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal
import uuid


class AllocationLineResponse(BaseResponseSchema):
    """Candidate line; available/max_allowed are null when availability failed to load."""
    sr_id: uuid.UUID
    request_code: str
    sr_item_id: uuid.UUID
    item_id: uuid.UUID
    uom_id: uuid.UUID
    requesting_warehouse_id: uuid.UUID
    fulfilling_warehouse_id: uuid.UUID
    requested_qty: Decimal
    received_qty: Decimal
    already_allocated_qty: Decimal
    allocatable_qty: Decimal
    available_qty: Optional[Decimal] = None
    max_allowed_qty: Optional[Decimal] = None
    proposed_qty: Decimal
    priority: Optional[int] = None
    required_date: Optional[date] = None


class AllocationPlanResponse(BaseResponseSchema):
    business_unit_id: uuid.UUID
    lines: List[AllocationLineResponse]
    inventory_loaded: bool
    failed_warehouse_ids: List[uuid.UUID] = []
    generated_at: datetime


class AllocationSelection(BaseCreateSchema):
    sr_item_id: uuid.UUID
    quantity: Decimal


class AllocationSubmitRequest(BaseCreateSchema):
    business_unit_id: uuid.UUID
    selections: List[AllocationSelection] = Field(default_factory=list)
    notes: Optional[str] = None


class AllocationSubmitResponse(BaseModel):
    delivery_notes: List[DeliveryNoteResponse]
