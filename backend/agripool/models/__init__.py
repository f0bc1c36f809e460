from agripool.models.equipment import Equipment
from agripool.models.booking import Booking
from agripool.models.group_booking import GroupBooking, GroupParticipant

__all__ = ["Equipment", "Booking", "GroupBooking", "GroupParticipant"]
