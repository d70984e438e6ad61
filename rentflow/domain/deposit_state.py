"""Deposit hold state machine."""

from enum import Enum

from rentflow.core.exceptions import InvalidTransitionError


class HoldStatus(str, Enum):
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    RELEASED = "released"
    EXPIRED = "expired"
    FAILED = "failed"


HOLD_TRANSITIONS: dict[HoldStatus, set[HoldStatus]] = {
    HoldStatus.AUTHORIZED: {
        HoldStatus.CAPTURED,
        HoldStatus.RELEASED,
        HoldStatus.EXPIRED,
        HoldStatus.FAILED,
    },
    HoldStatus.CAPTURED: set(),
    HoldStatus.RELEASED: set(),
    HoldStatus.EXPIRED: set(),
    HoldStatus.FAILED: set(),
}


def assert_hold_transition(current: str, target: str) -> None:
    allowed = HOLD_TRANSITIONS.get(HoldStatus(current), set())
    if HoldStatus(target) not in allowed:
        raise InvalidTransitionError("deposit hold", HoldStatus(current).value, HoldStatus(target).value)
