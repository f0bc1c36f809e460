"""
Equipment calendar endpoints.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from agripool.core.errors import ValidationError
from agripool.db.session import get_db
from agripool.schemas.booking import as_utc
from agripool.schemas.equipment import AvailabilityResponse
from agripool.services.booking_service import get_equipment_availability

router = APIRouter(prefix="/equipment", tags=["Equipment"])


@router.get("/{equipment_id}/availability", response_model=AvailabilityResponse)
async def equipment_availability(
    equipment_id: int,
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """
    Reserved slots of one equipment unit, optionally within [start_date, end_date).
    Cached in Redis; invalidated whenever the calendar changes.
    """
    start, end = as_utc(start_date), as_utc(end_date)
    if start and end and end <= start:
        raise ValidationError("End date must be after start date", field="end_date")
    return await get_equipment_availability(db, equipment_id, start, end)
