"""
Tests for the shipment status machine.
"""

import pytest

from core.errors import Conflict, InvalidArgument
from fulfillment.states import SHIPMENT_FLOW, SHIPMENT_STATUSES, can_transition, check_transition, is_known


class TestForwardFlow:
    def test_each_step_forward(self):
        for current, target in zip(SHIPMENT_FLOW, SHIPMENT_FLOW[1:]):
            assert can_transition(current, target), f"{current} → {target}"

    def test_forward_skip_allowed(self):
        assert can_transition("labeled", "delivered")
        assert can_transition("pending", "in_transit")

    def test_backwards_rejected(self):
        assert not can_transition("in_transit", "shipped")
        assert not can_transition("labeled", "pending")

    def test_same_status_is_not_a_move(self):
        assert not can_transition("shipped", "shipped")

    def test_delivered_is_terminal(self):
        for target in SHIPMENT_STATUSES:
            assert not can_transition("delivered", target)


class TestDelayed:
    def test_enter_from_any_open_state(self):
        for current in SHIPMENT_FLOW[:-1]:
            assert can_transition(current, "delayed")

    def test_resume_same_or_later(self):
        assert can_transition("delayed", "in_transit", before_delay="in_transit")
        assert can_transition("delayed", "delivered", before_delay="in_transit")

    def test_resume_earlier_rejected(self):
        assert not can_transition("delayed", "shipped", before_delay="in_transit")

    def test_unknown_prior_state_resumes_anywhere(self):
        assert can_transition("delayed", "pending")


class TestCheckTransition:
    def test_unknown_target(self):
        with pytest.raises(InvalidArgument):
            check_transition("pending", "lost")

    def test_from_delivered(self):
        with pytest.raises(Conflict, match="Delivered"):
            check_transition("delivered", "in_transit")

    def test_illegal_move(self):
        with pytest.raises(Conflict):
            check_transition("shipped", "labeled")

    def test_legal_move(self):
        check_transition("shipped", "out_for_delivery")

    def test_is_known(self):
        assert is_known("delayed")
        assert not is_known("returned")
