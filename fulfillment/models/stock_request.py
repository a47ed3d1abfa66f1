"""Stock request models (demand documents fulfilled by delivery notes)."""
from decimal import Decimal
from enum import Enum
from datetime import datetime, date, timezone
from sqlalchemy import Column, String, Text, ForeignKey, Integer, DateTime, Date, Numeric, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid

from fulfillment.database import Base


class StockRequestStatus(str, Enum):
    """Stock request status enum."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    READY_FOR_PICK = "ready_for_pick"
    PICKED = "picked"
    DELIVERED = "delivered"
    RECEIVED = "received"
    COMPLETED = "completed"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


# Requests in these statuses may receive new delivery note allocations
SELECTABLE_STATUSES = (
    StockRequestStatus.SUBMITTED.value,
    StockRequestStatus.APPROVED.value,
    StockRequestStatus.READY_FOR_PICK.value,
    StockRequestStatus.PICKED.value,
)


class StockRequest(Base):
    """A warehouse's request for material from another warehouse."""

    __tablename__ = "stock_requests"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    request_code = Column(String(50), unique=True, nullable=False, index=True)
    status = Column(String(50), default="draft", nullable=False, index=True)
    priority = Column(Integer, default=5)

    # Warehouses
    requesting_warehouse_id = Column(UUID(as_uuid=True), ForeignKey("warehouses.id"), nullable=False, index=True)
    fulfilling_warehouse_id = Column(UUID(as_uuid=True), ForeignKey("warehouses.id"), index=True)

    # Dates
    request_date = Column(Date, default=date.today)
    required_date = Column(Date)

    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    requesting_warehouse = relationship("Warehouse", foreign_keys=[requesting_warehouse_id])
    fulfilling_warehouse = relationship("Warehouse", foreign_keys=[fulfilling_warehouse_id])
    items = relationship("StockRequestItem", back_populates="stock_request", cascade="all, delete-orphan")

    @property
    def is_selectable(self) -> bool:
        return self.status in SELECTABLE_STATUSES

    def __repr__(self):
        return f"<StockRequest {self.request_code}>"


class StockRequestItem(Base):
    """Requested line of a stock request."""

    __tablename__ = "stock_request_items"
    __table_args__ = (
        CheckConstraint("received_quantity >= 0", name="ck_sr_item_received_non_negative"),
        CheckConstraint("received_quantity <= requested_quantity", name="ck_sr_item_received_le_requested"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    stock_request_id = Column(UUID(as_uuid=True), ForeignKey("stock_requests.id", ondelete="CASCADE"), nullable=False, index=True)

    item_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    uom_id = Column(UUID(as_uuid=True), nullable=False)

    # Quantities
    requested_quantity = Column(Numeric(20, 4), nullable=False)
    received_quantity = Column(Numeric(20, 4), default=0, nullable=False)

    notes = Column(Text)

    stock_request = relationship("StockRequest", back_populates="items")

    @property
    def outstanding_quantity(self):
        """Requested minus received, never negative."""
        requested = Decimal(str(self.requested_quantity or 0))
        received = Decimal(str(self.received_quantity or 0))
        return max(Decimal("0"), requested - received)

    def __repr__(self):
        return f"<StockRequestItem {self.id}>"
