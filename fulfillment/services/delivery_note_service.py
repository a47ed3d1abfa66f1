"""Delivery Note Service: creation and lifecycle of delivery notes."""
import logging
from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import uuid

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload, joinedload

from fulfillment.config import settings
from fulfillment.core.exceptions import (
    NotFoundError,
    PolicyViolationError,
    ValidationError,
)
from fulfillment.core.transaction import transactional
from fulfillment.models.delivery_note import (
    DeliveryNote,
    DeliveryNoteItem,
    DeliveryNoteSource,
    DeliveryNoteStatus,
)
from fulfillment.models.pick_list import PickList
from fulfillment.services.directory_service import UserDirectory, WarehouseDirectory
from fulfillment.services.dn_state_machine import (
    DNStatus,
    lock_delivery_note,
    transition_delivery_note,
    validate_transition,
)
from fulfillment.services.document_sequence_service import DocumentSequenceService
from fulfillment.services.inventory_oracle import InventoryAvailabilityOracle, InventoryBalanceOracle
from fulfillment.services.pick_list_service import PickListService, parse_quantity
from fulfillment.services.policy import FulfillmentPolicy
from fulfillment.services.stock_request_repository import StockRequestRepository

logger = logging.getLogger(__name__)


class DeliveryNoteService:
    """
    Delivery Note State Machine operations.

    Each public mutating method is one transaction: status change, audit
    stamps, line quantity writes and stock request increments commit
    together or not at all.
    """

    def __init__(
        self,
        db: AsyncSession,
        oracle: Optional[InventoryAvailabilityOracle] = None,
        policy: Optional[FulfillmentPolicy] = None,
    ):
        self.db = db
        self.policy = policy or FulfillmentPolicy.from_settings()
        self.oracle = oracle or InventoryBalanceOracle(db)
        self.stock_requests = StockRequestRepository(db)
        self.users = UserDirectory(db)
        self.warehouses = WarehouseDirectory(db)
        self.pick_lists = PickListService(db, policy=self.policy)

    # ==================== QUERIES ====================

    async def get_delivery_note(self, dn_id: uuid.UUID) -> Optional[DeliveryNote]:
        """Get delivery note with lines, sources, pick list history and warehouses."""
        query = (
            select(DeliveryNote)
            .options(
                selectinload(DeliveryNote.items),
                selectinload(DeliveryNote.sources),
                selectinload(DeliveryNote.pick_lists).selectinload(PickList.assignees),
                joinedload(DeliveryNote.requesting_warehouse),
                joinedload(DeliveryNote.fulfilling_warehouse),
            )
            .where(DeliveryNote.id == dn_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_active_pick_list(self, dn_id: uuid.UUID) -> Optional[PickList]:
        return await self.pick_lists.get_active_pick_list(dn_id)

    async def get_delivery_notes(
        self,
        status: Optional[DeliveryNoteStatus] = None,
        requesting_warehouse_id: Optional[uuid.UUID] = None,
        fulfilling_warehouse_id: Optional[uuid.UUID] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[DeliveryNote], int]:
        """Get paginated list of delivery notes, newest first."""
        query = select(DeliveryNote).options(
            selectinload(DeliveryNote.items),
            joinedload(DeliveryNote.requesting_warehouse),
            joinedload(DeliveryNote.fulfilling_warehouse),
        )

        conditions = []
        if status:
            conditions.append(DeliveryNote.status == status)
        if requesting_warehouse_id:
            conditions.append(DeliveryNote.requesting_warehouse_id == requesting_warehouse_id)
        if fulfilling_warehouse_id:
            conditions.append(DeliveryNote.fulfilling_warehouse_id == fulfilling_warehouse_id)

        if conditions:
            query = query.where(and_(*conditions))

        # Count
        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query)

        # Paginate
        query = (
            query.order_by(DeliveryNote.created_at.desc(), DeliveryNote.dn_number.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.db.execute(query)

        return list(result.scalars().unique().all()), total or 0

    # ==================== CREATE ====================

    @transactional
    async def create_delivery_note(
        self,
        requesting_warehouse_id: uuid.UUID,
        fulfilling_warehouse_id: uuid.UUID,
        lines: List[dict],
        notes: Optional[str] = None,
        created_by: Optional[uuid.UUID] = None,
    ) -> DeliveryNote:
        """
        Create a draft delivery note from stock request lines.

        Each line is {"sr_item_id", "allocated_qty"} with optional
        "sr_id", "item_id" and "uom_id" cross-checked against the stock
        request item. Every line is re-validated against the stock request
        and live availability; any failure creates nothing.
        """
        dn = await self.build_delivery_note(
            requesting_warehouse_id,
            fulfilling_warehouse_id,
            lines,
            notes=notes,
            created_by=created_by,
        )
        return await self.get_delivery_note(dn.id)

    async def build_delivery_note(
        self,
        requesting_warehouse_id: uuid.UUID,
        fulfilling_warehouse_id: uuid.UUID,
        lines: List[dict],
        notes: Optional[str] = None,
        created_by: Optional[uuid.UUID] = None,
        pending_demand: Optional[Dict[uuid.UUID, Decimal]] = None,
    ) -> DeliveryNote:
        """
        Validate and persist a draft delivery note without committing.

        pending_demand maps item id to quantity already taken from the
        fulfilling warehouse by notes built earlier in the same transaction;
        it counts against availability together with this note's lines.
        """
        pending_demand = pending_demand or {}
        if requesting_warehouse_id == fulfilling_warehouse_id:
            raise ValidationError(
                "Requesting and fulfilling warehouses must be different",
                {"warehouse_id": str(requesting_warehouse_id)},
            )

        warehouses = await self.warehouses.get_warehouses(
            [requesting_warehouse_id, fulfilling_warehouse_id]
        )
        for warehouse_id in (requesting_warehouse_id, fulfilling_warehouse_id):
            if warehouse_id not in warehouses:
                raise NotFoundError(f"Warehouse {warehouse_id} not found", {"warehouse_id": str(warehouse_id)})

        if not lines:
            raise ValidationError("A delivery note needs at least one line")

        seen = set()
        quantities: Dict[uuid.UUID, Decimal] = {}
        for line in lines:
            sr_item_id = line.get("sr_item_id")
            if sr_item_id is None:
                raise ValidationError("Every line must reference a stock request item")
            if sr_item_id in seen:
                raise ValidationError(
                    f"Stock request item {sr_item_id} appears more than once",
                    {"sr_item_id": str(sr_item_id)},
                )
            seen.add(sr_item_id)

            quantity = parse_quantity(line.get("allocated_qty"), "allocated_qty")
            if quantity <= 0:
                raise ValidationError(
                    f"Allocated quantity must be greater than zero (got {quantity} for stock request item {sr_item_id})",
                    {"sr_item_id": str(sr_item_id), "allocated_qty": str(quantity)},
                )
            quantities[sr_item_id] = quantity

        sr_items = await self.stock_requests.get_items(quantities.keys(), lock=True)
        missing = [str(i) for i in quantities if i not in sr_items]
        if missing:
            raise NotFoundError(
                f"Stock request items not found: {', '.join(missing)}",
                {"sr_item_ids": missing},
            )

        open_allocations: Dict[uuid.UUID, Decimal] = {}
        if self.policy.deduct_active_allocations:
            open_allocations = await self.stock_requests.get_open_allocations(quantities.keys())

        demand_by_item: Dict[uuid.UUID, Decimal] = defaultdict(Decimal)
        for line in lines:
            sr_item = sr_items[line["sr_item_id"]]
            sr = sr_item.stock_request
            quantity = quantities[sr_item.id]

            if line.get("sr_id") and line["sr_id"] != sr.id:
                raise ValidationError(
                    f"Stock request item {sr_item.id} does not belong to stock request {line['sr_id']}",
                    {"sr_item_id": str(sr_item.id), "sr_id": str(line["sr_id"])},
                )
            if not sr.is_selectable:
                raise ValidationError(
                    f"Stock request {sr.request_code} is not eligible for delivery note allocation "
                    f"(status '{sr.status}')",
                    {"sr_id": str(sr.id), "status": sr.status},
                )
            if (
                sr.requesting_warehouse_id != requesting_warehouse_id
                or sr.fulfilling_warehouse_id != fulfilling_warehouse_id
            ):
                raise ValidationError(
                    f"Stock request {sr.request_code} moves stock from {sr.fulfilling_warehouse_id} "
                    f"to {sr.requesting_warehouse_id}, not from {fulfilling_warehouse_id} "
                    f"to {requesting_warehouse_id}",
                    {"sr_id": str(sr.id)},
                )
            if line.get("item_id") and line["item_id"] != sr_item.item_id:
                raise ValidationError(
                    f"Item mismatch for stock request item {sr_item.id}",
                    {"sr_item_id": str(sr_item.id), "item_id": str(line["item_id"])},
                )
            if line.get("uom_id") and line["uom_id"] != sr_item.uom_id:
                raise ValidationError(
                    f"Unit of measure mismatch for stock request item {sr_item.id}",
                    {"sr_item_id": str(sr_item.id), "uom_id": str(line["uom_id"])},
                )

            requested = Decimal(str(sr_item.requested_quantity))
            received = Decimal(str(sr_item.received_quantity or 0))
            already_allocated = open_allocations.get(sr_item.id, Decimal("0"))
            allocatable = max(Decimal("0"), sr_item.outstanding_quantity - already_allocated)
            if quantity > allocatable:
                raise ValidationError(
                    f"Allocated quantity ({quantity}) exceeds allocatable quantity ({allocatable}) "
                    f"for stock request item {sr_item.id} of {sr.request_code}. "
                    f"Requested: {requested}, received: {received}, "
                    f"already allocated in other open delivery notes: {already_allocated}",
                    {
                        "sr_item_id": str(sr_item.id),
                        "allocated_qty": str(quantity),
                        "allocatable_qty": str(allocatable),
                        "requested_qty": str(requested),
                        "received_qty": str(received),
                        "already_allocated_qty": str(already_allocated),
                    },
                )
            demand_by_item[sr_item.item_id] += quantity

        # Authoritative availability check, read inside this transaction
        available = await self.oracle.get_available_batch(fulfilling_warehouse_id, demand_by_item.keys())
        for item_id, demand in demand_by_item.items():
            on_hand = available.get(item_id, Decimal("0"))
            pending = pending_demand.get(item_id, Decimal("0"))
            if demand + pending > on_hand:
                message = (
                    f"Allocated quantity ({demand + pending}) for item {item_id} exceeds available quantity "
                    f"({on_hand}) at warehouse {warehouses[fulfilling_warehouse_id].label}"
                )
                if pending:
                    message += f", including {pending} allocated by other delivery notes in this submission"
                raise ValidationError(
                    message,
                    {
                        "item_id": str(item_id),
                        "allocated_qty": str(demand + pending),
                        "pending_qty": str(pending),
                        "available_qty": str(on_hand),
                        "warehouse_id": str(fulfilling_warehouse_id),
                    },
                )

        dn_number = await DocumentSequenceService(self.db).get_next_number(settings.DN_NUMBER_PREFIX)
        dn = DeliveryNote(
            dn_number=dn_number,
            status=DNStatus.DRAFT,
            requesting_warehouse_id=requesting_warehouse_id,
            fulfilling_warehouse_id=fulfilling_warehouse_id,
            notes=notes,
            created_by=created_by,
            updated_by=created_by,
        )
        self.db.add(dn)
        await self.db.flush()

        sr_ids = []
        for line_number, line in enumerate(lines, start=1):
            sr_item = sr_items[line["sr_item_id"]]
            quantity = quantities[sr_item.id]
            if sr_item.stock_request_id not in sr_ids:
                sr_ids.append(sr_item.stock_request_id)
            self.db.add(
                DeliveryNoteItem(
                    dn_id=dn.id,
                    line_number=line_number,
                    sr_id=sr_item.stock_request_id,
                    sr_item_id=sr_item.id,
                    item_id=sr_item.item_id,
                    uom_id=sr_item.uom_id,
                    allocated_qty=quantity,
                    picked_qty=Decimal("0"),
                    short_qty=quantity,
                    dispatched_qty=Decimal("0"),
                    received_qty=Decimal("0"),
                )
            )
        for sr_id in sr_ids:
            self.db.add(DeliveryNoteSource(dn_id=dn.id, sr_id=sr_id))
        await self.db.flush()

        logger.info(
            f"DN {dn_number} created with {len(lines)} line(s) from {len(sr_ids)} stock request(s) by {created_by}"
        )
        return dn

    # ==================== TRANSITIONS ====================

    @transactional
    async def confirm(self, dn_id: uuid.UUID, user_id: Optional[uuid.UUID] = None) -> DeliveryNote:
        """draft -> confirmed. No quantity changes."""
        dn = await self._lock(dn_id)
        await transition_delivery_note(self.db, dn, DNStatus.CONFIRMED, user_id)
        return await self.get_delivery_note(dn_id)

    @transactional
    async def queue_picking(
        self,
        dn_id: uuid.UUID,
        picker_ids: List[uuid.UUID],
        instructions: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> DeliveryNote:
        """
        confirmed -> queued_for_picking, creating a pick list for the pickers.

        The active pick list check runs before the state check, so a call that
        loses a race against another queue_picking reports the winner's pick
        list as a conflict.
        """
        dn = await self._lock(dn_id, selectinload(DeliveryNote.items))
        await self.pick_lists.ensure_no_active_pick_list(dn)
        validate_transition(dn.status, DNStatus.QUEUED_FOR_PICKING, dn.dn_number)

        await self.pick_lists.create_pick_list(dn, picker_ids, instructions=instructions, created_by=user_id)
        await transition_delivery_note(self.db, dn, DNStatus.QUEUED_FOR_PICKING, user_id)
        return await self.get_delivery_note(dn_id)

    @transactional
    async def dispatch(
        self,
        dn_id: uuid.UUID,
        driver_signature: Optional[str] = None,
        driver_name: Optional[str] = None,
        notes: Optional[str] = None,
        lines: Optional[List[dict]] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> DeliveryNote:
        """
        dispatch_ready -> dispatched.

        Lines are {"dn_item_id", "dispatched_qty"}; a line left out
        dispatches its picked quantity.
        """
        dn = await self._lock(dn_id, selectinload(DeliveryNote.items))
        validate_transition(dn.status, DNStatus.DISPATCHED, dn.dn_number)

        driver_signature = (driver_signature or "").strip() or None
        if self.policy.require_driver_signature and not driver_signature:
            raise ValidationError(
                f"Driver signature is required to dispatch {dn.dn_number}",
                {"field": "driver_signature"},
            )

        overrides = self._line_quantities(dn, lines, "dispatched_qty")
        for item in dn.items:
            picked = Decimal(str(item.picked_qty))
            dispatched = overrides.get(item.id, picked)
            if dispatched < 0 or dispatched > picked:
                raise ValidationError(
                    f"Dispatched quantity {dispatched} for line {item.line_number} of {dn.dn_number} "
                    f"must be between 0 and picked quantity {picked}",
                    {"dn_item_id": str(item.id), "dispatched_qty": str(dispatched), "picked_qty": str(picked)},
                )
            item.dispatched_qty = dispatched
        await self.db.flush()

        await transition_delivery_note(
            self.db,
            dn,
            DNStatus.DISPATCHED,
            user_id,
            driver_name=driver_name,
            driver_signature=driver_signature,
            dispatch_notes=notes,
        )
        return await self.get_delivery_note(dn_id)

    @transactional
    async def receive(
        self,
        dn_id: uuid.UUID,
        notes: Optional[str] = None,
        lines: Optional[List[dict]] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> DeliveryNote:
        """
        dispatched -> received.

        Lines are {"dn_item_id", "received_qty"}; a line left out receives
        its dispatched quantity. Each stock request item is incremented by
        the line's received quantity in the same transaction.
        """
        dn = await self._lock(dn_id, selectinload(DeliveryNote.items))
        validate_transition(dn.status, DNStatus.RECEIVED, dn.dn_number)
        await self._check_receiver(dn, user_id)

        overrides = self._line_quantities(dn, lines, "received_qty")
        for item in dn.items:
            dispatched = Decimal(str(item.dispatched_qty))
            received = overrides.get(item.id, dispatched)
            if received < 0 or received > dispatched:
                raise ValidationError(
                    f"Received quantity {received} for line {item.line_number} of {dn.dn_number} "
                    f"must be between 0 and dispatched quantity {dispatched}",
                    {"dn_item_id": str(item.id), "received_qty": str(received), "dispatched_qty": str(dispatched)},
                )
            item.received_qty = received
        await self.db.flush()

        for item in dn.items:
            await self.stock_requests.increment_received_quantity(
                item.sr_item_id,
                Decimal(str(item.received_qty)),
            )

        await transition_delivery_note(self.db, dn, DNStatus.RECEIVED, user_id, receipt_notes=notes)
        return await self.get_delivery_note(dn_id)

    @transactional
    async def void(
        self,
        dn_id: uuid.UUID,
        reason: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> DeliveryNote:
        """
        Void a delivery note that has not been dispatched.

        Stock request quantities are untouched: they are only spent at
        receipt. The active pick list, if any, is cancelled with the note.
        """
        dn = await self._lock(dn_id)
        validate_transition(dn.status, DNStatus.VOIDED, dn.dn_number)

        await self.pick_lists.cancel_active_pick_list(dn)
        await transition_delivery_note(self.db, dn, DNStatus.VOIDED, user_id, void_reason=reason)
        return await self.get_delivery_note(dn_id)

    # ==================== HELPERS ====================

    async def _lock(self, dn_id: uuid.UUID, *options) -> DeliveryNote:
        dn = await lock_delivery_note(self.db, dn_id, *options)
        if dn is None:
            raise NotFoundError(f"Delivery note {dn_id} not found", {"dn_id": str(dn_id)})
        return dn

    def _line_quantities(
        self,
        dn: DeliveryNote,
        lines: Optional[List[dict]],
        field: str,
    ) -> Dict[uuid.UUID, Decimal]:
        """Explicit per-line quantities keyed by DN item id."""
        item_ids = {item.id for item in dn.items}
        quantities: Dict[uuid.UUID, Decimal] = {}
        for line in lines or []:
            dn_item_id = line.get("dn_item_id")
            if dn_item_id not in item_ids:
                raise ValidationError(
                    f"Line {dn_item_id} is not part of {dn.dn_number}",
                    {"dn_item_id": str(dn_item_id)},
                )
            if dn_item_id in quantities:
                raise ValidationError(
                    f"Line {dn_item_id} appears more than once",
                    {"dn_item_id": str(dn_item_id)},
                )
            quantity = line.get(field)
            if quantity is None:
                continue
            quantities[dn_item_id] = parse_quantity(quantity, field)
        return quantities

    async def _check_receiver(self, dn: DeliveryNote, user_id: Optional[uuid.UUID]) -> None:
        """The fulfilling business unit may not receive its own shipment."""
        if not self.policy.enforce_bu_segregation_on_receive:
            return

        actor_bu = await self.users.get_business_unit_id(user_id) if user_id else None
        if actor_bu is None:
            raise PolicyViolationError(
                f"Cannot receive {dn.dn_number}: the receiving user's business unit is unknown",
                {"user_id": str(user_id) if user_id else None},
            )

        fulfilling_bu = await self.warehouses.get_business_unit_id(dn.fulfilling_warehouse_id)
        if fulfilling_bu is not None and fulfilling_bu == actor_bu:
            raise PolicyViolationError(
                f"Cannot receive {dn.dn_number}: users of the fulfilling business unit "
                f"cannot receive their own shipment",
                {"user_id": str(user_id), "business_unit_id": str(actor_bu)},
            )
