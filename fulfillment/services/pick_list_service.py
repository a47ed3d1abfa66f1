"""Service for pick lists raised against delivery notes."""
import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple
from datetime import datetime, timezone
import uuid

from sqlalchemy import select, func, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fulfillment.config import settings
from fulfillment.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PolicyViolationError,
    ValidationError,
)
from fulfillment.core.transaction import transactional
from fulfillment.models.delivery_note import DeliveryNote
from fulfillment.models.pick_list import PickList, PickListAssignee, PickListItem, PickListStatus
from fulfillment.services.directory_service import UserDirectory
from fulfillment.services.dn_state_machine import (
    DNStatus,
    lock_delivery_note,
    transition_delivery_note,
)
from fulfillment.services.document_sequence_service import DocumentSequenceService
from fulfillment.services.policy import FulfillmentPolicy

logger = logging.getLogger(__name__)


PICK_LIST_TRANSITIONS: Dict[str, List[str]] = {
    PickListStatus.QUEUED.value: [
        PickListStatus.IN_PROGRESS.value,
        PickListStatus.COMPLETED.value,
        PickListStatus.CANCELLED.value,
    ],
    PickListStatus.IN_PROGRESS.value: [
        PickListStatus.COMPLETED.value,
        PickListStatus.CANCELLED.value,
    ],
    PickListStatus.COMPLETED.value: [],
    PickListStatus.CANCELLED.value: [],
}

PICK_LIST_ACTIONS = {
    PickListStatus.IN_PROGRESS.value: "start",
    PickListStatus.COMPLETED.value: "complete",
    PickListStatus.CANCELLED.value: "cancel",
}

VOID_CANCELLATION_REASON = "Delivery note voided"

# Quantity columns are Numeric(20, 4)
QUANTITY_SCALE = 4


def validate_pick_list_transition(pick_list: PickList, new_status: str) -> None:
    if new_status in PICK_LIST_TRANSITIONS.get(pick_list.status, []):
        return
    action = PICK_LIST_ACTIONS.get(new_status, f"move to {new_status}")
    raise InvalidStateError(
        f"pick list {pick_list.pick_list_number}",
        pick_list.status,
        new_status,
        message=f"Cannot {action} pick list {pick_list.pick_list_number}: current status is '{pick_list.status}'",
    )


def parse_quantity(value, field: str = "quantity") -> Decimal:
    try:
        quantity = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid {field}: {value!r}", {field: str(value)})
    if not quantity.is_finite():
        raise ValidationError(f"Invalid {field}: {value!r}", {field: str(value)})
    if quantity.normalize().as_tuple().exponent < -QUANTITY_SCALE:
        raise ValidationError(
            f"Invalid {field}: {value!r} has more than {QUANTITY_SCALE} decimal places",
            {field: str(value), "max_decimal_places": QUANTITY_SCALE},
        )
    return quantity


class PickListService:
    """
    Pick List Coordinator.

    A delivery note may accumulate many pick lists over its life (each
    cancellation allows a new one) but has at most one active pick list:
    the most recently created, non-deleted one, provided it is not cancelled.
    """

    def __init__(self, db: AsyncSession, policy: Optional[FulfillmentPolicy] = None):
        self.db = db
        self.policy = policy or FulfillmentPolicy.from_settings()
        self.users = UserDirectory(db)

    # ==================== QUERIES ====================

    async def get_pick_list(self, pick_list_id: uuid.UUID) -> Optional[PickList]:
        """Get pick list by ID with assignees and worksheet lines."""
        stmt = (
            select(PickList)
            .options(
                selectinload(PickList.assignees),
                selectinload(PickList.items),
            )
            .where(PickList.id == pick_list_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_pick_lists(
        self,
        dn_id: Optional[uuid.UUID] = None,
        status: Optional[PickListStatus] = None,
        include_deleted: bool = False,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[PickList], int]:
        """Get paginated pick lists, newest first."""
        filters = []
        if dn_id:
            filters.append(PickList.dn_id == dn_id)
        if status:
            filters.append(PickList.status == status)
        if not include_deleted:
            filters.append(PickList.deleted_at.is_(None))

        count_stmt = select(func.count(PickList.id))
        if filters:
            count_stmt = count_stmt.where(and_(*filters))
        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = (
            select(PickList)
            .options(selectinload(PickList.assignees), selectinload(PickList.items))
            .order_by(PickList.created_at.desc(), PickList.pick_list_number.desc())
        )
        if filters:
            stmt = stmt.where(and_(*filters))
        stmt = stmt.offset(skip).limit(limit)

        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def get_active_pick_list(self, dn_id: uuid.UUID) -> Optional[PickList]:
        """
        Active pick list of a delivery note.

        Takes the latest non-deleted pick list (created_at, then number as
        tie-break). If that one is cancelled there is no active pick list,
        even when an older one is still open.
        """
        stmt = (
            select(PickList)
            .options(selectinload(PickList.assignees), selectinload(PickList.items))
            .where(PickList.dn_id == dn_id, PickList.deleted_at.is_(None))
            .order_by(PickList.created_at.desc(), PickList.pick_list_number.desc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        latest = result.scalar_one_or_none()
        if latest is None or latest.status == PickListStatus.CANCELLED.value:
            return None
        return latest

    # ==================== CREATION (runs inside the DN transaction) ====================

    async def validate_pickers(self, picker_ids: List[uuid.UUID]) -> List[uuid.UUID]:
        """De-duplicate picker ids and check each is an active user."""
        pickers = list(dict.fromkeys(picker_ids or []))
        if not pickers:
            raise ValidationError("At least one picker must be assigned", {"picker_ids": []})

        invalid = await self.users.find_inactive_or_unknown(pickers)
        if invalid:
            raise ValidationError(
                f"Pickers not found or inactive: {', '.join(str(i) for i in invalid)}",
                {"invalid_picker_ids": [str(i) for i in invalid]},
            )
        return pickers

    async def ensure_no_active_pick_list(self, dn: DeliveryNote) -> None:
        active = await self.get_active_pick_list(dn.id)
        if active is not None:
            raise self._conflict(dn.dn_number, active)

    async def create_pick_list(
        self,
        dn: DeliveryNote,
        picker_ids: List[uuid.UUID],
        instructions: Optional[str] = None,
        created_by: Optional[uuid.UUID] = None,
    ) -> PickList:
        """
        Create a queued pick list for a locked delivery note.

        Does not commit; the caller moves the delivery note to
        queued_for_picking in the same transaction.
        """
        pickers = await self.validate_pickers(picker_ids)
        await self.ensure_no_active_pick_list(dn)

        pick_list_number = await DocumentSequenceService(self.db).get_next_number(
            settings.PICK_LIST_NUMBER_PREFIX
        )
        now = datetime.now(timezone.utc)
        pick_list = PickList(
            pick_list_number=pick_list_number,
            dn_id=dn.id,
            status=PickListStatus.QUEUED.value,
            instructions=instructions,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        for picker_id in pickers:
            pick_list.assignees.append(
                PickListAssignee(user_id=picker_id, assigned_at=now, assigned_by=created_by)
            )
        for dn_item in dn.items:
            pick_list.items.append(
                PickListItem(
                    dn_item_id=dn_item.id,
                    sr_id=dn_item.sr_id,
                    sr_item_id=dn_item.sr_item_id,
                    item_id=dn_item.item_id,
                    uom_id=dn_item.uom_id,
                    allocated_qty=dn_item.allocated_qty,
                    picked_qty=Decimal("0"),
                    short_qty=dn_item.allocated_qty,
                )
            )
        self.db.add(pick_list)
        dn_id, dn_number = dn.id, dn.dn_number

        try:
            await self.db.flush()
        except IntegrityError:
            # Another transaction queued a pick list between our check and flush
            await self.db.rollback()
            active = await self.get_active_pick_list(dn_id)
            if active is None:
                raise
            raise self._conflict(dn_number, active)

        logger.info(
            f"Pick list {pick_list_number} queued for DN {dn.dn_number} "
            f"with {len(pickers)} picker(s)"
        )
        return pick_list

    def _conflict(self, dn_number: str, active: PickList) -> ConflictError:
        return ConflictError(
            f"Delivery note {dn_number} already has an active pick list "
            f"{active.pick_list_number} (status '{active.status}')",
            {
                "pick_list_id": str(active.id),
                "pick_list_number": active.pick_list_number,
                "pick_list_status": active.status,
            },
        )

    # ==================== PICKING ====================

    @transactional
    async def start_picking(
        self,
        pick_list_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
    ) -> PickList:
        """Move a queued pick list to in_progress and its DN to picking_in_progress."""
        pick_list = await self._lock_pick_list(pick_list_id)
        self._check_picker(pick_list, user_id)
        validate_pick_list_transition(pick_list, PickListStatus.IN_PROGRESS.value)

        dn = await self._lock_delivery_note(pick_list.dn_id)
        await transition_delivery_note(self.db, dn, DNStatus.PICKING_IN_PROGRESS, user_id)

        pick_list.status = PickListStatus.IN_PROGRESS.value
        pick_list.started_at = datetime.now(timezone.utc)
        await self.db.flush()

        logger.info(f"Pick list {pick_list.pick_list_number} started by {user_id}")
        return pick_list

    @transactional
    async def record_picks(
        self,
        pick_list_id: uuid.UUID,
        lines: List[dict],
        user_id: Optional[uuid.UUID] = None,
    ) -> PickList:
        """
        Update the picking worksheet.

        Each line is {"dn_item_id", "picked_qty"}. Delivery note lines are
        not touched until the pick list is completed.
        """
        pick_list = await self._lock_pick_list(pick_list_id)
        self._check_picker(pick_list, user_id)
        if not pick_list.is_open:
            raise InvalidStateError(
                f"pick list {pick_list.pick_list_number}",
                pick_list.status,
                "record picks",
                message=(
                    f"Cannot record picks on pick list {pick_list.pick_list_number}: "
                    f"current status is '{pick_list.status}'"
                ),
            )
        if not lines:
            raise ValidationError("No pick lines supplied")

        self._apply_picks(pick_list, lines, user_id)
        await self.db.flush()

        logger.info(f"Pick list {pick_list.pick_list_number}: {len(lines)} line(s) recorded by {user_id}")
        return pick_list

    @transactional
    async def complete_pick_list(
        self,
        pick_list_id: uuid.UUID,
        lines: Optional[List[dict]] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> PickList:
        """
        Freeze picks onto the delivery note and make it dispatch_ready.

        Supplied lines override the worksheet; lines left out keep their
        recorded quantity. The worksheet, DN lines, pick list status and DN
        status all change in one transaction.
        """
        pick_list = await self._lock_pick_list(pick_list_id)
        self._check_picker(pick_list, user_id)
        validate_pick_list_transition(pick_list, PickListStatus.COMPLETED.value)

        dn = await self._lock_delivery_note(pick_list.dn_id, selectinload(DeliveryNote.items))

        if lines:
            self._apply_picks(pick_list, lines, user_id)

        if not any(item.picked_qty > 0 for item in pick_list.items):
            raise ValidationError(
                f"Cannot complete pick list {pick_list.pick_list_number}: no quantity has been picked",
                {"pick_list_id": str(pick_list.id)},
            )

        dn_items = {item.id: item for item in dn.items}
        for pick_item in pick_list.items:
            dn_item = dn_items.get(pick_item.dn_item_id)
            if dn_item is None:
                raise ValidationError(
                    f"Pick line {pick_item.id} refers to a line missing from {dn.dn_number}",
                    {"dn_item_id": str(pick_item.dn_item_id)},
                )
            dn_item.picked_qty = pick_item.picked_qty
            dn_item.short_qty = dn_item.allocated_qty - pick_item.picked_qty

        await transition_delivery_note(self.db, dn, DNStatus.DISPATCH_READY, user_id)

        now = datetime.now(timezone.utc)
        pick_list.status = PickListStatus.COMPLETED.value
        pick_list.completed_at = now
        if pick_list.started_at is None:
            pick_list.started_at = now
        await self.db.flush()

        logger.info(f"Pick list {pick_list.pick_list_number} completed; DN {dn.dn_number} dispatch ready")
        return pick_list

    # ==================== CANCELLATION ====================

    @transactional
    async def cancel_pick_list(
        self,
        pick_list_id: uuid.UUID,
        reason: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> PickList:
        """Cancel an open pick list and return its DN to confirmed."""
        pick_list = await self._lock_pick_list(pick_list_id)
        validate_pick_list_transition(pick_list, PickListStatus.CANCELLED.value)

        dn = await self._lock_delivery_note(pick_list.dn_id)
        if dn.status in (DNStatus.QUEUED_FOR_PICKING, DNStatus.PICKING_IN_PROGRESS):
            await transition_delivery_note(self.db, dn, DNStatus.CONFIRMED, user_id)

        self._mark_cancelled(pick_list, reason)
        await self.db.flush()

        logger.info(f"Pick list {pick_list.pick_list_number} cancelled by {user_id}: {reason}")
        return pick_list

    async def cancel_active_pick_list(
        self,
        dn: DeliveryNote,
        reason: str = VOID_CANCELLATION_REASON,
    ) -> Optional[PickList]:
        """Cancel the DN's active pick list, if any. Does not commit or touch the DN."""
        active = await self.get_active_pick_list(dn.id)
        if active is None or not active.is_open:
            return None
        self._mark_cancelled(active, reason)
        await self.db.flush()
        logger.info(f"Pick list {active.pick_list_number} cancelled with DN {dn.dn_number}: {reason}")
        return active

    # ==================== HELPERS ====================

    def _mark_cancelled(self, pick_list: PickList, reason: Optional[str]) -> None:
        pick_list.status = PickListStatus.CANCELLED.value
        pick_list.cancelled_at = datetime.now(timezone.utc)
        pick_list.cancellation_reason = reason

    def _apply_picks(self, pick_list: PickList, lines: List[dict], user_id: Optional[uuid.UUID]) -> None:
        items = {item.dn_item_id: item for item in pick_list.items}
        now = datetime.now(timezone.utc)
        seen = set()

        for line in lines:
            dn_item_id = line.get("dn_item_id")
            item = items.get(dn_item_id)
            if item is None:
                raise ValidationError(
                    f"Line {dn_item_id} is not part of pick list {pick_list.pick_list_number}",
                    {"dn_item_id": str(dn_item_id)},
                )
            if dn_item_id in seen:
                raise ValidationError(
                    f"Line {dn_item_id} appears more than once",
                    {"dn_item_id": str(dn_item_id)},
                )
            seen.add(dn_item_id)

            picked = parse_quantity(line.get("picked_qty"), "picked_qty")
            allocated = Decimal(str(item.allocated_qty))
            if picked < 0 or picked > allocated:
                raise ValidationError(
                    f"Picked quantity {picked} for line {dn_item_id} must be between 0 and "
                    f"allocated quantity {allocated}",
                    {"dn_item_id": str(dn_item_id), "picked_qty": str(picked), "allocated_qty": str(allocated)},
                )
            item.picked_qty = picked
            item.short_qty = allocated - picked
            item.picked_by = user_id
            item.picked_at = now

    def _check_picker(self, pick_list: PickList, user_id: Optional[uuid.UUID]) -> None:
        if not self.policy.enforce_picker_assignment:
            return
        if user_id is None or user_id not in pick_list.picker_ids:
            raise PolicyViolationError(
                f"User {user_id} is not assigned to pick list {pick_list.pick_list_number}",
                {"user_id": str(user_id), "picker_ids": [str(p) for p in pick_list.picker_ids]},
            )

    async def _lock_pick_list(self, pick_list_id: uuid.UUID) -> PickList:
        result = await self.db.execute(
            select(PickList)
            .options(selectinload(PickList.assignees), selectinload(PickList.items))
            .where(PickList.id == pick_list_id, PickList.deleted_at.is_(None))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        pick_list = result.scalar_one_or_none()
        if pick_list is None:
            raise NotFoundError(f"Pick list {pick_list_id} not found", {"pick_list_id": str(pick_list_id)})
        return pick_list

    async def _lock_delivery_note(self, dn_id: uuid.UUID, *options) -> DeliveryNote:
        dn = await lock_delivery_note(self.db, dn_id, *options)
        if dn is None:
            raise NotFoundError(f"Delivery note {dn_id} not found", {"dn_id": str(dn_id)})
        return dn
