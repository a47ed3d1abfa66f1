"""
Document Sequence Model for Atomic Number Generation

Delivery notes and pick lists are numbered from a row-locked counter
per document type and financial year (April-March):

    DN/WH/25-26/00001   (Delivery Note)
    PL/WH/25-26/00001   (Pick List)
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Integer, DateTime, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment.database import Base


class DocumentSequence(Base):
    """
    Document sequence counter.

    Example:
        document_type = "DN"
        financial_year = "25-26"
        current_number = 42
        → Next DN number: DN/WH/25-26/00043
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        UniqueConstraint(
            "document_type", "financial_year",
            name="uq_document_type_fy"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    document_type: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        index=True,
        comment="DN, PL"
    )
    company_code: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="WH",
    )
    financial_year: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="e.g., 25-26 for FY 2025-26"
    )
    current_number: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Last used sequence number"
    )
    padding_length: Mapped[int] = mapped_column(Integer, default=5)
    separator: Mapped[str] = mapped_column(String(5), default="/")

    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def get_next_number(self) -> str:
        """
        Increment the counter and format the new number.

        Does NOT commit; the caller owns the transaction.
        """
        self.current_number += 1
        seq = str(self.current_number).zfill(self.padding_length)
        sep = self.separator
        return f"{self.document_type}{sep}{self.company_code}{sep}{self.financial_year}{sep}{seq}"

    @staticmethod
    def get_financial_year(now: Optional[datetime] = None) -> str:
        """
        Financial year string, April to March.

        - Jan 2026 → FY 25-26
        - Apr 2026 → FY 26-27
        """
        now = now or datetime.now(timezone.utc)
        if now.month >= 4:
            fy_start = now.year
        else:
            fy_start = now.year - 1
        return f"{fy_start % 100:02d}-{(fy_start + 1) % 100:02d}"

    def __repr__(self) -> str:
        return f"<DocumentSequence({self.document_type}/{self.financial_year}: {self.current_number})>"
