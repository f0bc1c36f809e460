"""
Who is acting on a reservation, and in what capacity.
"""

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    FARMER = "FARMER"
    PLATFORM_OWNER = "PLATFORM_OWNER"
    ADMIN = "ADMIN"


class Party(str, Enum):
    """Relationship of an actor to a specific reservation."""
    OWNER = "owner"          # owns the equipment
    RENTER = "renter"        # farmer on a single booking
    INITIATOR = "initiator"  # farmer who opened a group booking
    PARTICIPANT = "participant"
    ADMIN = "admin"
    SYSTEM = "system"        # engine-driven transitions (join/leave)


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: Role = Role.FARMER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN
