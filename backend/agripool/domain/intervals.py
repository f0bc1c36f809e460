"""
Half-open interval arithmetic for equipment calendars.

Two reservations [s1, e1) and [s2, e2) conflict iff s1 < e2 and s2 < e1.
Touching intervals (e1 == s2) do not conflict: the checkout day can be the
next rental's start day.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from agripool.core.errors import ValidationError

ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class Interval:
    start: datetime
    end: datetime

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end


@dataclass(frozen=True)
class ReservedInterval(Interval):
    """An interval held on the calendar by an existing reservation."""
    kind: str = "booking"  # booking, group_booking
    reservation_id: Optional[int] = None
    status: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "kind": self.kind,
            "id": self.reservation_id,
            "status": self.status,
            "start_date": self.start.isoformat(),
            "end_date": self.end.isoformat(),
        }


def intervals_overlap(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    return Interval(start1, end1).overlaps(Interval(start2, end2))


def find_conflicts(candidate: Interval, existing: Iterable[ReservedInterval]) -> list[ReservedInterval]:
    return sorted(
        (held for held in existing if candidate.overlaps(held)),
        key=lambda held: held.start,
    )


def validate_interval(start: datetime, end: datetime, now: datetime) -> None:
    """Reject intervals that start in the past or are empty."""
    if start < now:
        raise ValidationError("Start date cannot be in the past", field="start_date")
    if end <= start:
        raise ValidationError("End date must be after start date", field="end_date")


def total_days(start: datetime, end: datetime) -> int:
    """Whole days spanned, rounded up: a 25 hour rental is billed as 2 days."""
    return math.ceil((end - start) / ONE_DAY)
