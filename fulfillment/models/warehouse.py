"""Warehouse and business unit directory models."""
from datetime import datetime, timezone
from sqlalchemy import Column, String, Boolean, ForeignKey, DateTime
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid

from fulfillment.database import Base


class BusinessUnit(Base):
    """Organizational grouping of warehouses used for segregation policies."""

    __tablename__ = "business_units"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String(20), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    warehouses = relationship("Warehouse", back_populates="business_unit")

    def __repr__(self):
        return f"<BusinessUnit {self.code}>"


class Warehouse(Base):
    """Warehouse model for storing inventory locations."""

    __tablename__ = "warehouses"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String(20), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)

    business_unit_id = Column(UUID(as_uuid=True), ForeignKey("business_units.id"), index=True)

    # Address
    address_line1 = Column(String(255))
    address_line2 = Column(String(255))
    city = Column(String(100))
    state = Column(String(100))
    pincode = Column(String(10))

    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    business_unit = relationship("BusinessUnit", back_populates="warehouses")

    @property
    def full_address(self) -> str:
        """Get formatted full address."""
        parts = [p for p in (self.address_line1, self.address_line2, self.city, self.state, self.pincode) if p]
        return ", ".join(parts)

    @property
    def label(self) -> str:
        return f"{self.code} - {self.name}"

    def __repr__(self):
        return f"<Warehouse {self.code}: {self.name}>"
