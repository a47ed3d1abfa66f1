"""Configurable fulfillment policies."""
from dataclasses import dataclass, replace

from fulfillment.config import settings


@dataclass(frozen=True)
class FulfillmentPolicy:
    """Business rules that vary per deployment rather than per request."""
    require_driver_signature: bool = True
    enforce_bu_segregation_on_receive: bool = True
    enforce_picker_assignment: bool = False
    deduct_active_allocations: bool = True

    @classmethod
    def from_settings(cls) -> "FulfillmentPolicy":
        return cls(
            require_driver_signature=settings.REQUIRE_DRIVER_SIGNATURE,
            enforce_bu_segregation_on_receive=settings.ENFORCE_BU_SEGREGATION_ON_RECEIVE,
            enforce_picker_assignment=settings.ENFORCE_PICKER_ASSIGNMENT,
            deduct_active_allocations=settings.DEDUCT_ACTIVE_ALLOCATIONS,
        )

    def with_overrides(self, **changes) -> "FulfillmentPolicy":
        return replace(self, **changes)
