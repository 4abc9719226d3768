import pytest

from app.errors import InvalidReminderTransition
from app.services import reminder_state as rs


@pytest.mark.parametrize("current", [rs.PENDING, rs.SNOOZED, rs.SENT, rs.FAILED])
def test_claimable_states_move_to_processing(current):
    assert rs.transition(current, rs.PROCESSING) == rs.PROCESSING


@pytest.mark.parametrize(
    "current,target",
    [(rs.SENT, rs.SENT), (rs.PENDING, rs.SENT), (rs.PENDING, rs.FAILED), (rs.PROCESSING, rs.PROCESSING)],
)
def test_illegal_edges_raise(current, target):
    with pytest.raises(InvalidReminderTransition):
        rs.transition(current, target)


def test_processing_is_not_triggerable():
    assert rs.PROCESSING not in rs.TRIGGERABLE_STATUSES
    assert rs.DUE_STATUSES == {rs.PENDING, rs.SNOOZED}


def test_outcome_status_depends_on_next_fire_time():
    assert rs.outcome_status(object()) == rs.PENDING
    assert rs.outcome_status(None) == rs.SENT
