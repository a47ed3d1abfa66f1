"""Delivery note models for stock request fulfillment."""
from enum import Enum
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import Column, String, Text, ForeignKey, Integer, DateTime, Numeric
from sqlalchemy import UniqueConstraint, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid

from fulfillment.database import Base


class DeliveryNoteStatus(str, Enum):
    """Delivery note status enum."""
    DRAFT = "draft"  # Lines allocated, not yet committed
    CONFIRMED = "confirmed"  # Ready to queue for picking
    QUEUED_FOR_PICKING = "queued_for_picking"  # Pick list created
    PICKING_IN_PROGRESS = "picking_in_progress"
    DISPATCH_READY = "dispatch_ready"  # Picks frozen
    DISPATCHED = "dispatched"  # Left the fulfilling warehouse
    RECEIVED = "received"  # Terminal
    VOIDED = "voided"  # Terminal


class DeliveryNote(Base):
    """Fulfillment movement between one requesting and one fulfilling warehouse."""

    __tablename__ = "delivery_notes"
    __table_args__ = (
        CheckConstraint(
            "requesting_warehouse_id <> fulfilling_warehouse_id",
            name="ck_delivery_note_distinct_warehouses",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    dn_number = Column(String(50), unique=True, nullable=False, index=True)
    status = Column(String(50), default="draft", nullable=False, index=True)

    # Warehouses
    requesting_warehouse_id = Column(UUID(as_uuid=True), ForeignKey("warehouses.id"), nullable=False, index=True)
    fulfilling_warehouse_id = Column(UUID(as_uuid=True), ForeignKey("warehouses.id"), nullable=False, index=True)

    # Lifecycle stamps
    confirmed_at = Column(DateTime(timezone=True))
    confirmed_by = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    picking_started_at = Column(DateTime(timezone=True))
    picking_started_by = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    picking_completed_at = Column(DateTime(timezone=True))
    picking_completed_by = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    dispatched_at = Column(DateTime(timezone=True))
    dispatched_by = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    received_at = Column(DateTime(timezone=True))
    received_by = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    voided_at = Column(DateTime(timezone=True))
    voided_by = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    void_reason = Column(Text)

    # Logistics
    driver_name = Column(String(150))
    driver_signature = Column(Text)

    notes = Column(Text)
    dispatch_notes = Column(Text)
    receipt_notes = Column(Text)

    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    updated_by = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    # Relationships
    requesting_warehouse = relationship("Warehouse", foreign_keys=[requesting_warehouse_id])
    fulfilling_warehouse = relationship("Warehouse", foreign_keys=[fulfilling_warehouse_id])
    items = relationship(
        "DeliveryNoteItem",
        back_populates="delivery_note",
        cascade="all, delete-orphan",
        order_by="DeliveryNoteItem.line_number",
    )
    sources = relationship("DeliveryNoteSource", back_populates="delivery_note", cascade="all, delete-orphan")
    pick_lists = relationship(
        "PickList",
        back_populates="delivery_note",
        order_by="PickList.created_at",
    )

    @property
    def stock_request_ids(self) -> list:
        return [source.sr_id for source in self.sources]

    def __repr__(self):
        return f"<DeliveryNote {self.dn_number}>"


class DeliveryNoteSource(Base):
    """Stock request headers contributing to a delivery note."""

    __tablename__ = "delivery_note_sources"

    dn_id = Column(UUID(as_uuid=True), ForeignKey("delivery_notes.id", ondelete="CASCADE"), primary_key=True)
    sr_id = Column(UUID(as_uuid=True), ForeignKey("stock_requests.id"), primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    delivery_note = relationship("DeliveryNote", back_populates="sources")
    stock_request = relationship("StockRequest")


class DeliveryNoteItem(Base):
    """Allocation line of a delivery note."""

    __tablename__ = "delivery_note_items"
    __table_args__ = (
        UniqueConstraint("dn_id", "sr_item_id", name="uq_delivery_note_item_sr_item"),
        CheckConstraint(
            "allocated_qty >= 0 AND picked_qty >= 0 AND short_qty >= 0 "
            "AND dispatched_qty >= 0 AND received_qty >= 0",
            name="ck_dn_item_non_negative",
        ),
        CheckConstraint("picked_qty <= allocated_qty", name="ck_dn_item_picked_le_allocated"),
        CheckConstraint("dispatched_qty <= picked_qty", name="ck_dn_item_dispatched_le_picked"),
        CheckConstraint("received_qty <= dispatched_qty", name="ck_dn_item_received_le_dispatched"),
        CheckConstraint("short_qty = allocated_qty - picked_qty", name="ck_dn_item_short_derived"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    dn_id = Column(UUID(as_uuid=True), ForeignKey("delivery_notes.id", ondelete="CASCADE"), nullable=False, index=True)
    line_number = Column(Integer, nullable=False, default=1)

    # Source demand
    sr_id = Column(UUID(as_uuid=True), ForeignKey("stock_requests.id"), nullable=False, index=True)
    sr_item_id = Column(UUID(as_uuid=True), ForeignKey("stock_request_items.id"), nullable=False, index=True)

    item_id = Column(UUID(as_uuid=True), nullable=False)
    uom_id = Column(UUID(as_uuid=True), nullable=False)

    # Quantities
    allocated_qty = Column(Numeric(20, 4), nullable=False)
    picked_qty = Column(Numeric(20, 4), default=0, nullable=False)
    short_qty = Column(Numeric(20, 4), default=0, nullable=False)
    dispatched_qty = Column(Numeric(20, 4), default=0, nullable=False)
    received_qty = Column(Numeric(20, 4), default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    # Relationships
    delivery_note = relationship("DeliveryNote", back_populates="items")
    stock_request = relationship("StockRequest")
    stock_request_item = relationship("StockRequestItem")

    @property
    def dispatch_short_qty(self) -> Decimal:
        """Picked but not dispatched."""
        return (self.picked_qty or 0) - (self.dispatched_qty or 0)

    @property
    def receive_short_qty(self) -> Decimal:
        """Dispatched but not received."""
        return (self.dispatched_qty or 0) - (self.received_qty or 0)

    def __repr__(self):
        return f"<DeliveryNoteItem {self.id}>"
