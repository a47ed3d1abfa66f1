"""Pick list models for delivery note picking operations."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, DateTime, ForeignKey, Numeric, Text, Index, CheckConstraint, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment.database import Base

if TYPE_CHECKING:
    from fulfillment.models.delivery_note import DeliveryNote, DeliveryNoteItem
    from fulfillment.models.user import User


class PickListStatus(str, Enum):
    """Pick list status enumeration."""
    QUEUED = "queued"             # Created, waiting for pickers
    IN_PROGRESS = "in_progress"   # Picking in progress
    COMPLETED = "completed"       # Picks frozen onto the delivery note
    CANCELLED = "cancelled"       # Abandoned, delivery note back to confirmed


class PickList(Base):
    """
    Picking work order for a delivery note.
    A delivery note keeps every pick list it ever spawned; at most one is active.
    """
    __tablename__ = "pick_lists"
    __table_args__ = (
        Index(
            "ux_pick_lists_active_per_dn",
            "dn_id",
            unique=True,
            postgresql_where=text("status <> 'cancelled' AND deleted_at IS NULL"),
            sqlite_where=text("status <> 'cancelled' AND deleted_at IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    pick_list_number: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="Unique pick list number e.g., PL/WH/25-26/00001"
    )

    dn_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("delivery_notes.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    status: Mapped[str] = mapped_column(
        String(50),
        default="queued",
        nullable=False,
        index=True,
        comment="queued, in_progress, completed, cancelled"
    )

    instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    delivery_note: Mapped["DeliveryNote"] = relationship("DeliveryNote", back_populates="pick_lists")
    assignees: Mapped[List["PickListAssignee"]] = relationship(
        "PickListAssignee",
        back_populates="pick_list",
        cascade="all, delete-orphan"
    )
    items: Mapped[List["PickListItem"]] = relationship(
        "PickListItem",
        back_populates="pick_list",
        cascade="all, delete-orphan"
    )

    @property
    def picker_ids(self) -> List[uuid.UUID]:
        return [assignee.user_id for assignee in self.assignees]

    @property
    def is_open(self) -> bool:
        return self.status in (PickListStatus.QUEUED.value, PickListStatus.IN_PROGRESS.value)

    def __repr__(self) -> str:
        return f"<PickList(number='{self.pick_list_number}', status='{self.status}')>"


class PickListAssignee(Base):
    """Picker assigned to a pick list."""
    __tablename__ = "pick_list_assignees"

    pick_list_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("pick_lists.id", ondelete="CASCADE"),
        primary_key=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id"),
        primary_key=True,
        index=True
    )
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    assigned_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id"),
        nullable=True
    )

    pick_list: Mapped["PickList"] = relationship("PickList", back_populates="assignees")
    user: Mapped["User"] = relationship("User", foreign_keys=[user_id])


class PickListItem(Base):
    """Picking worksheet line copied from a delivery note line."""
    __tablename__ = "pick_list_items"
    __table_args__ = (
        UniqueConstraint("pick_list_id", "dn_item_id", name="uq_pick_list_item_dn_item"),
        CheckConstraint("picked_qty >= 0 AND short_qty >= 0", name="ck_pick_list_item_non_negative"),
        CheckConstraint("picked_qty <= allocated_qty", name="ck_pick_list_item_picked_le_allocated"),
        CheckConstraint("short_qty = allocated_qty - picked_qty", name="ck_pick_list_item_short_derived"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    pick_list_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("pick_lists.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    dn_item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("delivery_note_items.id"),
        nullable=False
    )
    sr_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    sr_item_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    item_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    uom_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    allocated_qty: Mapped[Decimal] = mapped_column(Numeric(20, 4), nullable=False)
    picked_qty: Mapped[Decimal] = mapped_column(Numeric(20, 4), default=0, nullable=False)
    short_qty: Mapped[Decimal] = mapped_column(Numeric(20, 4), default=0, nullable=False)

    picked_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    picked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    pick_list: Mapped["PickList"] = relationship("PickList", back_populates="items")
    dn_item: Mapped["DeliveryNoteItem"] = relationship("DeliveryNoteItem")

    def __repr__(self) -> str:
        return f"<PickListItem(dn_item='{self.dn_item_id}', picked={self.picked_qty})>"
