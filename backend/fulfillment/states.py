"""
Shipment status machine.

    pending → labeled → shipped → in_transit → out_for_delivery → delivered

Forward skips are allowed. 'delayed' can be entered from any non-terminal
state and left for the state it interrupted or any later one. 'delivered'
is terminal.
"""

from core.errors import Conflict, InvalidArgument

SHIPMENT_FLOW = ("pending", "labeled", "shipped", "in_transit", "out_for_delivery", "delivered")
DELAYED = "delayed"
DELIVERED = "delivered"
SHIPMENT_STATUSES = SHIPMENT_FLOW + (DELAYED,)

_RANK = {status: index for index, status in enumerate(SHIPMENT_FLOW)}


def is_known(status: str) -> bool:
    return status in SHIPMENT_STATUSES


def can_transition(current: str, target: str, before_delay: str | None = None) -> bool:
    """True if current → target is a legal move (same-status is not a move)."""
    if current == DELIVERED or current == target:
        return False
    if target == DELAYED:
        return True
    if current == DELAYED:
        resume_from = before_delay or "pending"
        return _RANK[target] >= _RANK[resume_from]
    return _RANK[target] > _RANK[current]


def check_transition(current: str, target: str, before_delay: str | None = None) -> None:
    """Raise InvalidArgument for unknown statuses, Conflict for illegal moves."""
    if not is_known(target):
        raise InvalidArgument(f"Unknown shipment status '{target}'", status=target)
    if current == DELIVERED:
        raise Conflict("Delivered shipments cannot change status")
    if not can_transition(current, target, before_delay):
        raise Conflict(f"Cannot move shipment from '{current}' to '{target}'")
