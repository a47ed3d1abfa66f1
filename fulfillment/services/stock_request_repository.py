"""
Stock request repository.

The only place the engine reads stock request demand or writes to it.
Stock request status stays with its owner; the single write exposed here
is the atomic received-quantity increment performed at receipt.
"""
import logging
import uuid
from decimal import Decimal
from typing import Dict, Iterable, List, Sequence, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fulfillment.core.exceptions import ValidationError
from fulfillment.models.delivery_note import DeliveryNote, DeliveryNoteItem, DeliveryNoteStatus
from fulfillment.models.stock_request import (
    StockRequest,
    StockRequestItem,
    SELECTABLE_STATUSES,
)
from fulfillment.models.warehouse import Warehouse

logger = logging.getLogger(__name__)


# Delivery notes in these statuses no longer hold an allocation
CLOSED_DN_STATUSES = (
    DeliveryNoteStatus.VOIDED.value,
    DeliveryNoteStatus.RECEIVED.value,
)


class StockRequestRepository:
    """Data access for stock requests and their items."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_eligible_items(
        self,
        business_unit_id: uuid.UUID,
        statuses: Sequence[str] = SELECTABLE_STATUSES,
    ) -> List[Tuple[StockRequest, StockRequestItem]]:
        """
        Items of stock requests raised by warehouses of a business unit.

        Ordered by request priority, required date and request code so the
        planner output is stable between calls.
        """
        query = (
            select(StockRequest, StockRequestItem)
            .join(StockRequestItem, StockRequestItem.stock_request_id == StockRequest.id)
            .join(Warehouse, Warehouse.id == StockRequest.requesting_warehouse_id)
            .where(
                Warehouse.business_unit_id == business_unit_id,
                StockRequest.status.in_(statuses),
            )
            .order_by(
                StockRequest.priority,
                StockRequest.required_date,
                StockRequest.request_code,
                StockRequestItem.id,
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return [(row[0], row[1]) for row in result.all()]

    async def get_items(
        self,
        sr_item_ids: Iterable[uuid.UUID],
        lock: bool = False,
    ) -> Dict[uuid.UUID, StockRequestItem]:
        """Items by id with their request loaded; lock=True holds row locks on the items."""
        sr_item_ids = list(set(sr_item_ids))
        if not sr_item_ids:
            return {}
        query = (
            select(StockRequestItem)
            .options(selectinload(StockRequestItem.stock_request))
            .where(StockRequestItem.id.in_(sr_item_ids))
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update(of=StockRequestItem)
        result = await self.db.execute(query)
        return {item.id: item for item in result.scalars().all()}

    async def get_open_allocations(
        self,
        sr_item_ids: Iterable[uuid.UUID],
    ) -> Dict[uuid.UUID, Decimal]:
        """
        Quantity already allocated to each stock request item by delivery
        notes that are neither voided nor received.
        """
        sr_item_ids = list(set(sr_item_ids))
        if not sr_item_ids:
            return {}

        query = (
            select(
                DeliveryNoteItem.sr_item_id,
                func.coalesce(func.sum(DeliveryNoteItem.allocated_qty), 0),
            )
            .join(DeliveryNote, DeliveryNote.id == DeliveryNoteItem.dn_id)
            .where(
                DeliveryNoteItem.sr_item_id.in_(sr_item_ids),
                DeliveryNote.status.notin_(CLOSED_DN_STATUSES),
            )
            .group_by(DeliveryNoteItem.sr_item_id)
        )
        result = await self.db.execute(query)
        return {sr_item_id: Decimal(str(total)) for sr_item_id, total in result.all()}

    async def increment_received_quantity(
        self,
        sr_item_id: uuid.UUID,
        quantity: Decimal,
    ) -> None:
        """
        Atomically add quantity to an item's received_quantity.

        The guard lives in the UPDATE itself, so concurrent receipts can
        never push received past requested.
        """
        if quantity < 0:
            raise ValidationError(
                f"Received quantity cannot be negative (got {quantity})",
                {"sr_item_id": str(sr_item_id), "quantity": str(quantity)},
            )
        if quantity == 0:
            return

        result = await self.db.execute(
            update(StockRequestItem)
            .where(
                StockRequestItem.id == sr_item_id,
                StockRequestItem.received_quantity + quantity <= StockRequestItem.requested_quantity,
            )
            .values(received_quantity=StockRequestItem.received_quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            item = await self.db.get(StockRequestItem, sr_item_id)
            if item is None:
                raise ValidationError(
                    f"Stock request item {sr_item_id} no longer exists",
                    {"sr_item_id": str(sr_item_id)},
                )
            await self.db.refresh(item)
            raise ValidationError(
                f"Receiving {quantity} would exceed requested quantity for stock request item "
                f"{sr_item_id}: requested {item.requested_quantity}, already received {item.received_quantity}",
                {
                    "sr_item_id": str(sr_item_id),
                    "quantity": str(quantity),
                    "requested_quantity": str(item.requested_quantity),
                    "received_quantity": str(item.received_quantity),
                },
            )
        logger.debug(f"Stock request item {sr_item_id} received += {quantity}")
