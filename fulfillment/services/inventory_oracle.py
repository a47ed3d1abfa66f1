"""
Inventory Availability Oracle.

Read-only view of available stock per (warehouse, item). The engine never
decrements stock itself; serializing concurrent decrements is the
inventory owner's job.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.models.inventory import InventoryBalance

logger = logging.getLogger(__name__)


class InventoryAvailabilityOracle(ABC):
    """Abstract availability source."""

    @abstractmethod
    async def get_available(self, warehouse_id: uuid.UUID, item_id: uuid.UUID) -> Decimal:
        """Available quantity of one item; 0 when the item is unknown."""
        pass

    @abstractmethod
    async def get_available_batch(
        self,
        warehouse_id: uuid.UUID,
        item_ids: Iterable[uuid.UUID],
    ) -> Dict[uuid.UUID, Decimal]:
        """
        Available quantity for many items at one warehouse, in one round trip.

        Every requested item id is present in the result; unknown items map to 0.
        """
        pass


class InventoryBalanceOracle(InventoryAvailabilityOracle):
    """Oracle backed by the inventory_balances table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_available(self, warehouse_id: uuid.UUID, item_id: uuid.UUID) -> Decimal:
        result = await self.db.execute(
            select(InventoryBalance.available_quantity).where(
                InventoryBalance.warehouse_id == warehouse_id,
                InventoryBalance.item_id == item_id,
            )
        )
        available = result.scalar_one_or_none()
        return Decimal(str(available or 0))

    async def get_available_batch(
        self,
        warehouse_id: uuid.UUID,
        item_ids: Iterable[uuid.UUID],
    ) -> Dict[uuid.UUID, Decimal]:
        item_ids = list(dict.fromkeys(item_ids))
        availability = {item_id: Decimal("0") for item_id in item_ids}
        if not item_ids:
            return availability

        result = await self.db.execute(
            select(InventoryBalance.item_id, InventoryBalance.available_quantity).where(
                InventoryBalance.warehouse_id == warehouse_id,
                InventoryBalance.item_id.in_(item_ids),
            )
        )
        for item_id, available in result.all():
            availability[item_id] = Decimal(str(available or 0))

        logger.debug(f"Availability for {len(item_ids)} items at warehouse {warehouse_id} loaded")
        return availability
