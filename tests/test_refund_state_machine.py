import pytest

from vilo.core.errors import InvalidStateTransition, PermissionDenied
from vilo.core.security import Actor
from vilo.models.refund import ACTIVE_STATUSES, TERMINAL_STATUSES
from vilo.services import refund_state_machine as sm

GUEST = Actor(user_id="guest-1", role="guest")
MANAGER = Actor(user_id="manager-1", role="property_manager")


class TestNextStatus:
    @pytest.mark.parametrize(
        "current,action,expected",
        [
            ("requested", sm.REVIEW, "under_review"),
            ("requested", sm.APPROVE, "approved"),
            ("under_review", sm.APPROVE, "approved"),
            ("requested", sm.REJECT, "rejected"),
            ("under_review", sm.REJECT, "rejected"),
            ("approved", sm.PROCESS, "processing"),
            ("processing", sm.COMPLETE, "completed"),
            ("processing", sm.FAIL, "failed"),
            ("requested", sm.WITHDRAW, "withdrawn"),
            ("under_review", sm.WITHDRAW, "withdrawn"),
            ("approved", sm.WITHDRAW, "withdrawn"),
        ],
    )
    def test_legal_transitions(self, current, action, expected):
        assert sm.next_status(current, action) == expected

    @pytest.mark.parametrize(
        "current,action",
        [
            ("requested", sm.PROCESS),
            ("under_review", sm.REVIEW),
            ("approved", sm.APPROVE),
            ("approved", sm.REJECT),
            ("processing", sm.WITHDRAW),
            ("processing", sm.PROCESS),
        ],
    )
    def test_illegal_transitions(self, current, action):
        with pytest.raises(InvalidStateTransition) as exc:
            sm.next_status(current, action)
        assert exc.value.details == {"current_status": current, "action": action}
        assert exc.value.status_code == 400

    @pytest.mark.parametrize("terminal", TERMINAL_STATUSES)
    def test_nothing_leaves_a_terminal_state(self, terminal):
        for action in sm.TRANSITIONS:
            with pytest.raises(InvalidStateTransition) as exc:
                sm.next_status(terminal, action)
            assert "no further changes" in exc.value.message

    def test_unknown_action(self):
        with pytest.raises(ValueError):
            sm.next_status("requested", "escalate")

    def test_active_and_terminal_partition_all_statuses(self):
        assert set(ACTIVE_STATUSES).isdisjoint(TERMINAL_STATUSES)
        assert all(sm.is_active(s) for s in ACTIVE_STATUSES)
        assert all(sm.is_terminal(s) for s in TERMINAL_STATUSES)


class TestRoleGuard:
    @pytest.mark.parametrize("action", [sm.REVIEW, sm.APPROVE, sm.REJECT, sm.PROCESS, sm.COMPLETE])
    def test_guests_cannot_drive_admin_actions(self, action):
        with pytest.raises(PermissionDenied):
            sm.assert_actor_may(GUEST, action, requested_by=GUEST.user_id)

    def test_only_the_requester_withdraws(self):
        sm.assert_actor_may(GUEST, sm.WITHDRAW, requested_by=GUEST.user_id)
        with pytest.raises(PermissionDenied):
            sm.assert_actor_may(MANAGER, sm.WITHDRAW, requested_by=GUEST.user_id)

    def test_available_actions(self):
        assert sm.available_actions("requested", GUEST, GUEST.user_id) == [sm.WITHDRAW]
        assert sm.available_actions("requested", MANAGER, GUEST.user_id) == [sm.REVIEW, sm.APPROVE, sm.REJECT]
        assert sm.available_actions("approved", MANAGER, GUEST.user_id) == [sm.PROCESS]
        assert sm.available_actions("completed", MANAGER, GUEST.user_id) == []
