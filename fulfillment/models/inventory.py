"""Inventory balance model read by the availability oracle."""
from datetime import datetime, timezone
from sqlalchemy import Column, ForeignKey, DateTime, Numeric, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid

from fulfillment.database import Base


class InventoryBalance(Base):
    """Aggregated stock level per item per warehouse.

    Owned by the inventory module; this engine only reads it.
    """

    __tablename__ = "inventory_balances"
    __table_args__ = (
        UniqueConstraint("warehouse_id", "item_id", name="uq_inventory_balance"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    warehouse_id = Column(UUID(as_uuid=True), ForeignKey("warehouses.id"), nullable=False, index=True)
    item_id = Column(UUID(as_uuid=True), nullable=False, index=True)

    # Stock levels
    on_hand_quantity = Column(Numeric(20, 4), default=0)
    reserved_quantity = Column(Numeric(20, 4), default=0)
    available_quantity = Column(Numeric(20, 4), default=0)

    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    warehouse = relationship("Warehouse")

    def __repr__(self):
        return f"<InventoryBalance {self.warehouse_id}/{self.item_id}: {self.available_quantity}>"
