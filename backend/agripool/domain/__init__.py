"""
Pure booking rules: interval arithmetic, share splitting and the reservation
state machines. Nothing here touches the database.
"""

from .actors import Actor, Party, Role
from .intervals import Interval, ReservedInterval, find_conflicts, total_days, validate_interval
from .lifecycle import (
    BOOKING_TRANSITIONS,
    GROUP_TRANSITIONS,
    BookingStatus,
    GroupBookingStatus,
    PaymentStatus,
)
from .shares import split_evenly

__all__ = [
    "Actor", "Party", "Role",
    "Interval", "ReservedInterval", "find_conflicts", "total_days", "validate_interval",
    "BOOKING_TRANSITIONS", "GROUP_TRANSITIONS",
    "BookingStatus", "GroupBookingStatus", "PaymentStatus",
    "split_evenly",
]
