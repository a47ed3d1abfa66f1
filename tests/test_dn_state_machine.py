import pytest

from fulfillment.core.exceptions import InvalidStateError
from fulfillment.services.dn_state_machine import (
    DN_TRANSITIONS,
    DNStatus,
    can_transition,
    can_void,
    get_allowed_transitions,
    is_terminal,
    transition_stamps,
    validate_transition,
)


def test_every_status_has_a_transition_entry():
    assert set(DN_TRANSITIONS) == set(DNStatus.all())
    for targets in DN_TRANSITIONS.values():
        assert set(targets) <= set(DNStatus.all())


@pytest.mark.parametrize(
    "current,new",
    [
        (DNStatus.DRAFT, DNStatus.CONFIRMED),
        (DNStatus.CONFIRMED, DNStatus.QUEUED_FOR_PICKING),
        (DNStatus.QUEUED_FOR_PICKING, DNStatus.PICKING_IN_PROGRESS),
        (DNStatus.QUEUED_FOR_PICKING, DNStatus.DISPATCH_READY),
        (DNStatus.PICKING_IN_PROGRESS, DNStatus.DISPATCH_READY),
        (DNStatus.PICKING_IN_PROGRESS, DNStatus.CONFIRMED),
        (DNStatus.DISPATCH_READY, DNStatus.DISPATCHED),
        (DNStatus.DISPATCHED, DNStatus.RECEIVED),
    ],
)
def test_forward_transitions_allowed(current, new):
    assert can_transition(current, new)
    validate_transition(current, new, "DN/WH/25-26/00001")


@pytest.mark.parametrize(
    "current,new",
    [
        (DNStatus.DRAFT, DNStatus.DISPATCHED),
        (DNStatus.CONFIRMED, DNStatus.CONFIRMED),
        (DNStatus.DISPATCH_READY, DNStatus.RECEIVED),
        (DNStatus.DISPATCHED, DNStatus.VOIDED),
        (DNStatus.RECEIVED, DNStatus.VOIDED),
        (DNStatus.VOIDED, DNStatus.CONFIRMED),
    ],
)
def test_invalid_transitions_raise(current, new):
    assert not can_transition(current, new)
    with pytest.raises(InvalidStateError) as exc_info:
        validate_transition(current, new, "DN/WH/25-26/00001")
    assert exc_info.value.current_status == current
    assert exc_info.value.attempted == new
    assert "DN/WH/25-26/00001" in exc_info.value.message


def test_error_lists_allowed_next_statuses():
    with pytest.raises(InvalidStateError) as exc_info:
        validate_transition(DNStatus.DRAFT, DNStatus.DISPATCHED, "DN-1")
    assert "confirmed" in exc_info.value.message
    assert "voided" in exc_info.value.message


def test_terminal_states():
    assert is_terminal(DNStatus.RECEIVED)
    assert is_terminal(DNStatus.VOIDED)
    assert not is_terminal(DNStatus.DISPATCHED)
    assert get_allowed_transitions(DNStatus.RECEIVED) == []


def test_void_only_before_dispatch():
    for status in (
        DNStatus.DRAFT,
        DNStatus.CONFIRMED,
        DNStatus.QUEUED_FOR_PICKING,
        DNStatus.PICKING_IN_PROGRESS,
        DNStatus.DISPATCH_READY,
    ):
        assert can_void(status)
    for status in (DNStatus.DISPATCHED, DNStatus.RECEIVED, DNStatus.VOIDED):
        assert not can_void(status)


def test_transition_stamps():
    from datetime import datetime, timezone
    import uuid

    now = datetime.now(timezone.utc)
    user_id = uuid.uuid4()

    stamps = transition_stamps(DNStatus.DISPATCHED, user_id, now)
    assert stamps["dispatched_at"] == now
    assert stamps["dispatched_by"] == user_id
    assert stamps["updated_by"] == user_id

    # Queueing has no stamp columns of its own
    stamps = transition_stamps(DNStatus.QUEUED_FOR_PICKING, user_id, now)
    assert set(stamps) == {"updated_at", "updated_by"}
