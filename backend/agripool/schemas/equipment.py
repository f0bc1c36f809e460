"""
Pydantic schemas for equipment availability.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ReservedSlot(BaseModel):
    kind: str
    id: Optional[int]
    status: Optional[str]
    start_date: datetime
    end_date: datetime


class AvailabilityResponse(BaseModel):
    equipment_id: int
    is_available: bool
    reserved: list[ReservedSlot]
    cached: bool = False
