"""User and warehouse directory lookups used by the fulfillment services."""
import uuid
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.models.user import User
from fulfillment.models.warehouse import Warehouse


class UserDirectory:
    """Resolves users for display and picker validation."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        return await self.db.get(User, user_id)

    async def get_users(self, user_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, User]:
        user_ids = list(set(user_ids))
        if not user_ids:
            return {}
        result = await self.db.execute(select(User).where(User.id.in_(user_ids)))
        return {user.id: user for user in result.scalars().all()}

    async def find_inactive_or_unknown(self, user_ids: Iterable[uuid.UUID]) -> List[uuid.UUID]:
        """Ids that do not resolve to an active user, in input order."""
        user_ids = list(user_ids)
        users = await self.get_users(user_ids)
        return [
            user_id for user_id in user_ids
            if user_id not in users or not users[user_id].is_active
        ]

    async def get_display_names(self, user_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, str]:
        users = await self.get_users(user_ids)
        return {user_id: user.full_name for user_id, user in users.items()}

    async def get_business_unit_id(self, user_id: uuid.UUID) -> Optional[uuid.UUID]:
        user = await self.get_user(user_id)
        return user.business_unit_id if user else None


class WarehouseDirectory:
    """Resolves warehouses to business units and display labels."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_warehouse(self, warehouse_id: uuid.UUID) -> Optional[Warehouse]:
        return await self.db.get(Warehouse, warehouse_id)

    async def get_warehouses(self, warehouse_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, Warehouse]:
        warehouse_ids = list(set(warehouse_ids))
        if not warehouse_ids:
            return {}
        result = await self.db.execute(select(Warehouse).where(Warehouse.id.in_(warehouse_ids)))
        return {warehouse.id: warehouse for warehouse in result.scalars().all()}

    async def get_business_unit_id(self, warehouse_id: uuid.UUID) -> Optional[uuid.UUID]:
        warehouse = await self.get_warehouse(warehouse_id)
        return warehouse.business_unit_id if warehouse else None
