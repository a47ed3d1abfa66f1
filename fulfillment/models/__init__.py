from fulfillment.models.warehouse import BusinessUnit, Warehouse
from fulfillment.models.user import User
from fulfillment.models.inventory import InventoryBalance
from fulfillment.models.stock_request import StockRequest, StockRequestItem, StockRequestStatus
from fulfillment.models.delivery_note import (
    DeliveryNote,
    DeliveryNoteItem,
    DeliveryNoteSource,
    DeliveryNoteStatus,
)
from fulfillment.models.pick_list import PickList, PickListAssignee, PickListItem, PickListStatus
from fulfillment.models.document_sequence import DocumentSequence

__all__ = [
    "BusinessUnit",
    "Warehouse",
    "User",
    "InventoryBalance",
    "StockRequest",
    "StockRequestItem",
    "StockRequestStatus",
    "DeliveryNote",
    "DeliveryNoteItem",
    "DeliveryNoteSource",
    "DeliveryNoteStatus",
    "PickList",
    "PickListAssignee",
    "PickListItem",
    "PickListStatus",
    "DocumentSequence",
]
