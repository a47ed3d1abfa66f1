from fastapi import APIRouter

from fulfillment.api.v1.endpoints import (
    allocation,
    delivery_notes,
    pick_lists,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Allocation Planner ====================
api_router.include_router(
    allocation.router,
    prefix="/allocation",
    tags=["Allocation"]
)

# ==================== Delivery Notes ====================
api_router.include_router(
    delivery_notes.router,
    prefix="/delivery-notes",
    tags=["Delivery Notes"]
)

# ==================== Pick Lists ====================
api_router.include_router(
    pick_lists.router,
    prefix="/pick-lists",
    tags=["Pick Lists"]
)
