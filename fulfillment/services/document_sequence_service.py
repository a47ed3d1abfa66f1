"""
Document Sequence Service for Atomic Number Generation

- Financial year based numbering (April-March)
- Continuous sequence within financial year (no daily reset)
- Row-locked increment, so concurrent creators never share a number
- Format: {PREFIX}/{COMPANY_CODE}/{FY}/{SEQUENCE}

USAGE:
    service = DocumentSequenceService(db)
    dn_number = await service.get_next_number("DN")
    # Returns: DN/WH/25-26/00001
"""

import uuid
from typing import Optional
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.config import settings
from fulfillment.models.document_sequence import DocumentSequence


# Document type metadata
DOCUMENT_METADATA = {
    settings.DN_NUMBER_PREFIX: {"name": "Delivery Note", "padding": 5},
    settings.PICK_LIST_NUMBER_PREFIX: {"name": "Pick List", "padding": 5},
}

# INSERT ... ON CONFLICT DO NOTHING per supported backend
UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class DocumentSequenceService:
    """Generates document numbers inside the caller's transaction."""

    def __init__(self, db: AsyncSession, company_code: Optional[str] = None):
        self.db = db
        self.company_code = company_code or settings.DOCUMENT_COMPANY_CODE

    async def get_next_number(
        self,
        document_type: str,
        financial_year: Optional[str] = None
    ) -> str:
        """
        Get next document number with atomic increment.

        Uses SELECT FOR UPDATE; the lock is held until the caller's
        transaction ends, so a rolled back create does not burn a number.

        Raises:
            ValueError: If document_type is unknown
        """
        doc_type = document_type.upper()
        if doc_type not in DOCUMENT_METADATA:
            valid_types = ", ".join(DOCUMENT_METADATA.keys())
            raise ValueError(f"Invalid document type '{doc_type}'. Valid types: {valid_types}")

        if not financial_year:
            financial_year = DocumentSequence.get_financial_year()

        sequence = await self._get_or_create_sequence(doc_type, financial_year)
        doc_number = sequence.get_next_number()
        await self.db.flush()

        return doc_number

    async def get_current_number(
        self,
        document_type: str,
        financial_year: Optional[str] = None
    ) -> int:
        """Current (last used) sequence number, 0 if none issued yet."""
        doc_type = document_type.upper()
        if not financial_year:
            financial_year = DocumentSequence.get_financial_year()

        result = await self.db.execute(
            select(DocumentSequence.current_number)
            .where(
                DocumentSequence.document_type == doc_type,
                DocumentSequence.financial_year == financial_year,
            )
        )
        current = result.scalar_one_or_none()
        return current or 0

    async def _get_or_create_sequence(
        self,
        document_type: str,
        financial_year: str
    ) -> DocumentSequence:
        """
        Get existing sequence with row lock, or create it.

        The first number of a financial year may be requested by two
        transactions at once; the insert skips on conflict and both then
        wait on the same row lock.
        """
        sequence = await self._lock_sequence(document_type, financial_year)
        if sequence:
            return sequence

        await self._insert_sequence_if_missing(document_type, financial_year)
        return await self._lock_sequence(document_type, financial_year)

    async def _lock_sequence(self, document_type: str, financial_year: str) -> Optional[DocumentSequence]:
        result = await self.db.execute(
            select(DocumentSequence)
            .where(
                DocumentSequence.document_type == document_type,
                DocumentSequence.financial_year == financial_year,
            )
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def _insert_sequence_if_missing(self, document_type: str, financial_year: str) -> None:
        metadata = DOCUMENT_METADATA[document_type]
        dialect = self.db.get_bind().dialect.name
        if dialect not in UPSERT_INSERTS:
            raise ValueError(f"Document numbering is not supported on '{dialect}' databases")

        stmt = (
            UPSERT_INSERTS[dialect](DocumentSequence)
            .values(
                id=uuid.uuid4(),
                document_type=document_type,
                company_code=self.company_code,
                financial_year=financial_year,
                current_number=0,
                padding_length=metadata["padding"],
                separator="/",
            )
            .on_conflict_do_nothing(index_elements=["document_type", "financial_year"])
        )
        await self.db.execute(stmt)
