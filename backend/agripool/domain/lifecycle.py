"""
Reservation state machines.

Both single bookings and group bookings move through an ordered set of
states. Each legal move is a Transition naming the parties allowed to trigger
it; anything not in the table is an InvalidStateTransition.

Usage:
    BOOKING_TRANSITIONS.check(BookingStatus.PENDING, BookingStatus.CONFIRMED, {Party.OWNER})
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from agripool.core.errors import Forbidden, InvalidStateTransition
from agripool.domain.actors import Party


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class GroupBookingStatus(str, Enum):
    OPEN = "OPEN"
    FILLED = "FILLED"
    CONFIRMED = "CONFIRMED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    REFUNDED = "REFUNDED"


def _value(state) -> str:
    return state.value if isinstance(state, Enum) else str(state)


# Statuses that hold the equipment calendar. An open group booking
# provisionally reserves its slot so two competing groups cannot both fill.
BOOKING_HOLDING_STATUSES = frozenset({BookingStatus.CONFIRMED.value, BookingStatus.ACTIVE.value})
GROUP_HOLDING_STATUSES = frozenset({
    GroupBookingStatus.OPEN.value,
    GroupBookingStatus.FILLED.value,
    GroupBookingStatus.CONFIRMED.value,
    GroupBookingStatus.ACTIVE.value,
})
GROUP_JOINABLE_STATUSES = frozenset({GroupBookingStatus.OPEN.value, GroupBookingStatus.FILLED.value})


@dataclass(frozen=True)
class Transition:
    from_state: str
    to_state: str
    allowed: frozenset


class TransitionTable:
    def __init__(self, name: str, transitions: Iterable[Transition], terminal: Iterable[str]):
        self.name = name
        self.terminal = frozenset(_value(s) for s in terminal)
        self._index = {(_value(t.from_state), _value(t.to_state)): t for t in transitions}

    def get(self, from_state, to_state):
        return self._index.get((_value(from_state), _value(to_state)))

    def targets(self, from_state) -> set:
        current = _value(from_state)
        return {to for (frm, to) in self._index if frm == current}

    def is_terminal(self, state) -> bool:
        return _value(state) in self.terminal

    def check(self, from_state: str, to_state: str, parties: set) -> Transition:
        transition = self.get(from_state, to_state)
        if transition is None:
            raise InvalidStateTransition(
                f"Cannot move {self.name} from {_value(from_state)} to {_value(to_state)}",
                current_status=_value(from_state),
                requested_status=_value(to_state),
            )
        if not transition.allowed & set(parties):
            raise Forbidden(
                f"You are not allowed to move this {self.name} to {_value(to_state)}",
            )
        return transition


def _t(frm, to, *parties: Party) -> Transition:
    return Transition(frm, to, frozenset(parties))


_B = BookingStatus
BOOKING_TRANSITIONS = TransitionTable(
    "booking",
    [
        _t(_B.PENDING, _B.CONFIRMED, Party.OWNER, Party.ADMIN),
        _t(_B.PENDING, _B.CANCELLED, Party.RENTER, Party.ADMIN),
        _t(_B.CONFIRMED, _B.CANCELLED, Party.RENTER, Party.ADMIN),
        _t(_B.CONFIRMED, _B.ACTIVE, Party.OWNER, Party.ADMIN),
        _t(_B.ACTIVE, _B.COMPLETED, Party.OWNER, Party.ADMIN),
    ],
    terminal=[_B.COMPLETED, _B.CANCELLED],
)

_G = GroupBookingStatus
GROUP_TRANSITIONS = TransitionTable(
    "group booking",
    [
        _t(_G.OPEN, _G.FILLED, Party.SYSTEM),
        _t(_G.FILLED, _G.OPEN, Party.SYSTEM),
        _t(_G.OPEN, _G.CONFIRMED, Party.OWNER, Party.ADMIN),
        _t(_G.FILLED, _G.CONFIRMED, Party.OWNER, Party.ADMIN),
        _t(_G.CONFIRMED, _G.ACTIVE, Party.OWNER, Party.ADMIN),
        _t(_G.ACTIVE, _G.COMPLETED, Party.OWNER, Party.ADMIN),
        _t(_G.OPEN, _G.CANCELLED, Party.INITIATOR, Party.ADMIN),
        _t(_G.FILLED, _G.CANCELLED, Party.INITIATOR, Party.ADMIN),
        _t(_G.CONFIRMED, _G.CANCELLED, Party.INITIATOR, Party.OWNER, Party.ADMIN),
        _t(_G.ACTIVE, _G.CANCELLED, Party.INITIATOR, Party.ADMIN),
    ],
    terminal=[_G.COMPLETED, _G.CANCELLED],
)
