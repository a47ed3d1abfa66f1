"""
Allocation Planner.

Proposes delivery note lines for the open stock requests of a business
unit, capped by what is still allocatable and what the fulfilling
warehouse has available. The plan is advisory: submission hands the
selected quantities to DeliveryNoteService.build_delivery_note, which
re-validates everything inside its own transaction.

Flow:
1. build_plan() - candidate lines with max_allowed_qty and a default proposal
2. operator adjusts quantities (never above max_allowed_qty)
3. submit_plan() - one draft delivery note per warehouse pair, all or nothing
"""
import logging
import uuid
from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.exceptions import ValidationError
from fulfillment.core.transaction import transactional
from fulfillment.models.delivery_note import DeliveryNote
from fulfillment.services.delivery_note_service import DeliveryNoteService
from fulfillment.services.inventory_oracle import InventoryAvailabilityOracle, InventoryBalanceOracle
from fulfillment.services.pick_list_service import parse_quantity
from fulfillment.services.policy import FulfillmentPolicy
from fulfillment.services.stock_request_repository import StockRequestRepository

logger = logging.getLogger(__name__)


@dataclass
class AllocationLine:
    """One candidate (stock request, stock request item) allocation."""
    sr_id: uuid.UUID
    request_code: str
    sr_item_id: uuid.UUID
    item_id: uuid.UUID
    uom_id: uuid.UUID
    requesting_warehouse_id: uuid.UUID
    fulfilling_warehouse_id: uuid.UUID
    requested_qty: Decimal
    received_qty: Decimal
    already_allocated_qty: Decimal
    allocatable_qty: Decimal
    available_qty: Optional[Decimal] = None
    priority: Optional[int] = None
    required_date: Optional[date] = None

    @property
    def max_allowed_qty(self) -> Optional[Decimal]:
        if self.available_qty is None:
            return None
        return max(Decimal("0"), min(self.allocatable_qty, self.available_qty))

    @property
    def proposed_qty(self) -> Decimal:
        return self.max_allowed_qty or Decimal("0")


@dataclass
class AllocationPlan:
    """Result of a planning pass."""
    business_unit_id: uuid.UUID
    lines: List[AllocationLine] = field(default_factory=list)
    inventory_loaded: bool = True
    failed_warehouse_ids: List[uuid.UUID] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def get_line(self, sr_item_id: uuid.UUID) -> Optional[AllocationLine]:
        for line in self.lines:
            if line.sr_item_id == sr_item_id:
                return line
        return None


class AllocationPlanner:
    """Builds allocation plans and turns operator selections into delivery notes."""

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
        self.delivery_notes = DeliveryNoteService(db, oracle=self.oracle, policy=self.policy)

    async def build_plan(self, business_unit_id: uuid.UUID) -> AllocationPlan:
        """
        Candidate lines for the selectable stock requests of a business unit.

        Availability is fetched with one batch query per fulfilling
        warehouse. A warehouse whose batch fails leaves its lines without
        availability and marks the plan as not loaded, which blocks
        submission.
        """
        plan = AllocationPlan(business_unit_id=business_unit_id)
        rows = await self.stock_requests.list_eligible_items(business_unit_id)

        open_allocations: Dict[uuid.UUID, Decimal] = {}
        if self.policy.deduct_active_allocations and rows:
            open_allocations = await self.stock_requests.get_open_allocations(
                [item.id for _, item in rows]
            )

        for sr, item in rows:
            if sr.fulfilling_warehouse_id is None:
                continue
            requested = Decimal(str(item.requested_quantity))
            received = Decimal(str(item.received_quantity or 0))
            already_allocated = open_allocations.get(item.id, Decimal("0"))
            allocatable = max(Decimal("0"), item.outstanding_quantity - already_allocated)
            if allocatable == 0:
                continue
            plan.lines.append(
                AllocationLine(
                    sr_id=sr.id,
                    request_code=sr.request_code,
                    sr_item_id=item.id,
                    item_id=item.item_id,
                    uom_id=item.uom_id,
                    requesting_warehouse_id=sr.requesting_warehouse_id,
                    fulfilling_warehouse_id=sr.fulfilling_warehouse_id,
                    requested_qty=requested,
                    received_qty=received,
                    already_allocated_qty=already_allocated,
                    allocatable_qty=allocatable,
                    priority=sr.priority,
                    required_date=sr.required_date,
                )
            )

        items_by_warehouse: Dict[uuid.UUID, List[uuid.UUID]] = OrderedDict()
        for line in plan.lines:
            items_by_warehouse.setdefault(line.fulfilling_warehouse_id, [])
            if line.item_id not in items_by_warehouse[line.fulfilling_warehouse_id]:
                items_by_warehouse[line.fulfilling_warehouse_id].append(line.item_id)

        availability: Dict[Tuple[uuid.UUID, uuid.UUID], Decimal] = {}
        for warehouse_id, item_ids in items_by_warehouse.items():
            try:
                batch = await self.oracle.get_available_batch(warehouse_id, item_ids)
            except Exception as e:
                logger.warning(f"Availability lookup failed for warehouse {warehouse_id}: {e}")
                plan.inventory_loaded = False
                plan.failed_warehouse_ids.append(warehouse_id)
                continue
            for item_id in item_ids:
                availability[(warehouse_id, item_id)] = batch.get(item_id, Decimal("0"))

        for line in plan.lines:
            line.available_qty = availability.get((line.fulfilling_warehouse_id, line.item_id))

        logger.info(
            f"Allocation plan for business unit {business_unit_id}: {len(plan.lines)} line(s) "
            f"across {len(items_by_warehouse)} warehouse(s), inventory loaded={plan.inventory_loaded}"
        )
        return plan

    @transactional
    async def submit_plan(
        self,
        plan: AllocationPlan,
        selections: List[dict],
        actor_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> List[DeliveryNote]:
        """
        Create one draft delivery note per (requesting, fulfilling) pair.

        Selections are {"sr_item_id", "quantity"}. Quantities above a line's
        max_allowed_qty are rejected, never clamped. Either every delivery
        note is created or none is.
        """
        if not selections:
            raise ValidationError("Select at least one line to allocate")
        if not plan.inventory_loaded:
            raise ValidationError(
                "Inventory availability has not finished loading; refresh the plan before submitting",
                {"failed_warehouse_ids": [str(w) for w in plan.failed_warehouse_ids]},
            )

        groups: Dict[Tuple[uuid.UUID, uuid.UUID], List[dict]] = OrderedDict()
        seen = set()
        for selection in selections:
            sr_item_id = selection.get("sr_item_id")
            line = plan.get_line(sr_item_id)
            if line is None:
                raise ValidationError(
                    f"Stock request item {sr_item_id} is not part of the allocation plan",
                    {"sr_item_id": str(sr_item_id)},
                )
            if sr_item_id in seen:
                raise ValidationError(
                    f"Stock request item {sr_item_id} is selected more than once",
                    {"sr_item_id": str(sr_item_id)},
                )
            seen.add(sr_item_id)

            quantity = parse_quantity(selection.get("quantity"), "quantity")
            if quantity <= 0:
                raise ValidationError(
                    f"Quantity for {line.request_code} item {line.item_id} must be greater than zero",
                    {"sr_item_id": str(sr_item_id), "quantity": str(quantity)},
                )
            max_allowed = line.max_allowed_qty
            if max_allowed is None:
                raise ValidationError(
                    f"Availability for {line.request_code} item {line.item_id} is unknown",
                    {"sr_item_id": str(sr_item_id)},
                )
            if quantity > max_allowed:
                raise ValidationError(
                    f"Quantity {quantity} for {line.request_code} item {line.item_id} exceeds the "
                    f"maximum allowed {max_allowed} (allocatable {line.allocatable_qty}, "
                    f"available {line.available_qty})",
                    {
                        "sr_item_id": str(sr_item_id),
                        "quantity": str(quantity),
                        "max_allowed_qty": str(max_allowed),
                    },
                )

            key = (line.requesting_warehouse_id, line.fulfilling_warehouse_id)
            groups.setdefault(key, []).append({
                "sr_id": line.sr_id,
                "sr_item_id": line.sr_item_id,
                "item_id": line.item_id,
                "uom_id": line.uom_id,
                "allocated_qty": quantity,
            })

        # Stock taken per fulfilling warehouse and item by notes already built here
        claimed: Dict[uuid.UUID, Dict[uuid.UUID, Decimal]] = defaultdict(lambda: defaultdict(Decimal))
        dn_ids = []
        for (requesting_warehouse_id, fulfilling_warehouse_id), lines in groups.items():
            dn = await self.delivery_notes.build_delivery_note(
                requesting_warehouse_id,
                fulfilling_warehouse_id,
                lines,
                notes=notes,
                created_by=actor_id,
                pending_demand=dict(claimed[fulfilling_warehouse_id]),
            )
            dn_ids.append(dn.id)
            for line in lines:
                claimed[fulfilling_warehouse_id][line["item_id"]] += line["allocated_qty"]

        logger.info(f"Allocation plan submitted by {actor_id}: {len(dn_ids)} delivery note(s) created")
        return [await self.delivery_notes.get_delivery_note(dn_id) for dn_id in dn_ids]

    async def submit_selections(
        self,
        business_unit_id: uuid.UUID,
        selections: List[dict],
        actor_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> List[DeliveryNote]:
        """Rebuild the plan from current data and submit selections against it."""
        plan = await self.build_plan(business_unit_id)
        return await self.submit_plan(plan, selections, actor_id=actor_id, notes=notes)
