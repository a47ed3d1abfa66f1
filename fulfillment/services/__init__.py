# Services module
from fulfillment.services.delivery_note_service import DeliveryNoteService
from fulfillment.services.pick_list_service import PickListService
from fulfillment.services.allocation_planner import AllocationPlanner, AllocationPlan, AllocationLine
from fulfillment.services.inventory_oracle import InventoryAvailabilityOracle, InventoryBalanceOracle
from fulfillment.services.stock_request_repository import StockRequestRepository
from fulfillment.services.directory_service import UserDirectory, WarehouseDirectory
from fulfillment.services.document_sequence_service import DocumentSequenceService
from fulfillment.services.policy import FulfillmentPolicy

__all__ = [
    "DeliveryNoteService",
    "PickListService",
    "AllocationPlanner",
    "AllocationPlan",
    "AllocationLine",
    "InventoryAvailabilityOracle",
    "InventoryBalanceOracle",
    "StockRequestRepository",
    "UserDirectory",
    "WarehouseDirectory",
    "DocumentSequenceService",
    "FulfillmentPolicy",
]
