"""
Delivery Note State Machine

All delivery note status changes go through this module. It holds the
transition table, the audit stamps written by each transition and the
guarded write that serializes concurrent transitions on the same note.
"""

import logging
import uuid
from typing import Optional, List, Dict
from datetime import datetime, timezone

from sqlalchemy import update, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from fulfillment.core.exceptions import InvalidStateError
from fulfillment.models.delivery_note import DeliveryNote, DeliveryNoteStatus


logger = logging.getLogger(__name__)


# =============================================================================
# STATUS DEFINITIONS
# =============================================================================

class DNStatus:
    """Delivery note status constants - use these instead of strings."""
    DRAFT = DeliveryNoteStatus.DRAFT.value
    CONFIRMED = DeliveryNoteStatus.CONFIRMED.value
    QUEUED_FOR_PICKING = DeliveryNoteStatus.QUEUED_FOR_PICKING.value
    PICKING_IN_PROGRESS = DeliveryNoteStatus.PICKING_IN_PROGRESS.value
    DISPATCH_READY = DeliveryNoteStatus.DISPATCH_READY.value
    DISPATCHED = DeliveryNoteStatus.DISPATCHED.value
    RECEIVED = DeliveryNoteStatus.RECEIVED.value
    VOIDED = DeliveryNoteStatus.VOIDED.value

    @classmethod
    def all(cls) -> List[str]:
        return [
            cls.DRAFT, cls.CONFIRMED, cls.QUEUED_FOR_PICKING,
            cls.PICKING_IN_PROGRESS, cls.DISPATCH_READY,
            cls.DISPATCHED, cls.RECEIVED, cls.VOIDED,
        ]


# =============================================================================
# TRANSITION RULES
# =============================================================================

# Format: current_status -> [list of allowed next statuses]
DN_TRANSITIONS: Dict[str, List[str]] = {
    DNStatus.DRAFT: [
        DNStatus.CONFIRMED,
        DNStatus.VOIDED,
    ],
    DNStatus.CONFIRMED: [
        DNStatus.QUEUED_FOR_PICKING,    # Pick list created
        DNStatus.VOIDED,
    ],
    DNStatus.QUEUED_FOR_PICKING: [
        DNStatus.PICKING_IN_PROGRESS,   # Picker started
        DNStatus.DISPATCH_READY,        # Pick list completed straight from the queue
        DNStatus.CONFIRMED,             # Pick list cancelled
        DNStatus.VOIDED,
    ],
    DNStatus.PICKING_IN_PROGRESS: [
        DNStatus.DISPATCH_READY,
        DNStatus.CONFIRMED,             # Pick list cancelled
        DNStatus.VOIDED,
    ],
    DNStatus.DISPATCH_READY: [
        DNStatus.DISPATCHED,
        DNStatus.VOIDED,
    ],
    DNStatus.DISPATCHED: [
        DNStatus.RECEIVED,
    ],
    DNStatus.RECEIVED: [],              # Terminal state
    DNStatus.VOIDED: [],                # Terminal state
}

# Human-readable action names for each target status
TRANSITION_ACTIONS: Dict[str, str] = {
    DNStatus.CONFIRMED: "confirm",
    DNStatus.QUEUED_FOR_PICKING: "queue picking for",
    DNStatus.PICKING_IN_PROGRESS: "start picking",
    DNStatus.DISPATCH_READY: "complete picking for",
    DNStatus.DISPATCHED: "dispatch",
    DNStatus.RECEIVED: "receive",
    DNStatus.VOIDED: "void",
}

# Stamp columns written when entering a status: (timestamp column, actor column)
TRANSITION_STAMPS: Dict[str, tuple] = {
    DNStatus.CONFIRMED: ("confirmed_at", "confirmed_by"),
    DNStatus.PICKING_IN_PROGRESS: ("picking_started_at", "picking_started_by"),
    DNStatus.DISPATCH_READY: ("picking_completed_at", "picking_completed_by"),
    DNStatus.DISPATCHED: ("dispatched_at", "dispatched_by"),
    DNStatus.RECEIVED: ("received_at", "received_by"),
    DNStatus.VOIDED: ("voided_at", "voided_by"),
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return new_status in DN_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str) -> List[str]:
    """Get list of statuses that can be transitioned to from current status."""
    return DN_TRANSITIONS.get(current_status, [])


def get_transition_action(new_status: str) -> str:
    return TRANSITION_ACTIONS.get(new_status, f"move to {new_status}")


def validate_transition(current_status: str, new_status: str, dn_number: str = "delivery note") -> None:
    """
    Validate a status transition. Raises InvalidStateError if invalid.

    Unlike PATCH-style updates, re-entering the current status is never a
    no-op: confirming a confirmed note is an error.
    """
    if can_transition(current_status, new_status):
        return

    action = get_transition_action(new_status)
    allowed = get_allowed_transitions(current_status)
    if not allowed:
        message = (
            f"Cannot {action} {dn_number}: it is '{current_status}', a terminal state"
        )
    else:
        message = (
            f"Cannot {action} {dn_number}: current status is '{current_status}'. "
            f"Allowed next statuses: {', '.join(allowed)}"
        )
    raise InvalidStateError(dn_number, current_status, new_status, message=message)


def is_terminal(status: str) -> bool:
    return status in [DNStatus.RECEIVED, DNStatus.VOIDED]


def can_void(status: str) -> bool:
    return can_transition(status, DNStatus.VOIDED)


def transition_stamps(new_status: str, user_id: Optional[uuid.UUID], now: datetime) -> Dict:
    """Audit columns to write when entering new_status."""
    stamps = {"updated_at": now, "updated_by": user_id}
    if new_status in TRANSITION_STAMPS:
        at_column, by_column = TRANSITION_STAMPS[new_status]
        stamps[at_column] = now
        stamps[by_column] = user_id
    return stamps


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

async def lock_delivery_note(db: AsyncSession, dn_id: uuid.UUID, *options) -> Optional[DeliveryNote]:
    """Load a delivery note holding a row lock until the transaction ends."""
    result = await db.execute(
        select(DeliveryNote)
        .options(*options)
        .where(DeliveryNote.id == dn_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def transition_delivery_note(
    db: AsyncSession,
    dn: DeliveryNote,
    new_status: str,
    user_id: Optional[uuid.UUID] = None,
    **values,
) -> None:
    """
    Move a delivery note to new_status inside the caller's transaction.

    The write is conditional on the status the caller observed, so a
    concurrent transition that committed first makes this one fail with
    InvalidStateError instead of applying twice. Extra column values
    (driver name, void reason...) are written in the same statement.
    """
    current_status = dn.status
    validate_transition(current_status, new_status, dn.dn_number)

    now = datetime.now(timezone.utc)
    payload = {"status": new_status, **transition_stamps(new_status, user_id, now), **values}

    result = await db.execute(
        update(DeliveryNote)
        .where(DeliveryNote.id == dn.id, DeliveryNote.status == current_status)
        .values(**payload)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.refresh(dn, attribute_names=["status"])
        raise InvalidStateError(
            dn.dn_number,
            dn.status,
            new_status,
            message=(
                f"Cannot {get_transition_action(new_status)} {dn.dn_number}: status changed "
                f"concurrently from '{current_status}' to '{dn.status}'"
            ),
        )

    for key, value in payload.items():
        set_committed_value(dn, key, value)
    logger.info(f"DN {dn.dn_number}: {current_status} -> {new_status} by {user_id}")
