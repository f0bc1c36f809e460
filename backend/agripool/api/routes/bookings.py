"""
Single booking endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from agripool.api.deps import get_locks, get_notifications
from agripool.core.security import get_current_actor
from agripool.db.session import get_db
from agripool.domain.actors import Actor
from agripool.schemas.booking import (
    BookingCancel,
    BookingCreate,
    BookingListResponse,
    BookingResponse,
    BookingStatusUpdate,
    BookingUpdate,
)
from agripool.services import booking_service
from agripool.services.interfaces.notification import NotificationSink
from agripool.services.interfaces.reservation_lock import ReservationLock

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    locks: ReservationLock = Depends(get_locks),
    notifications: NotificationSink = Depends(get_notifications),
):
    """
    Request a booking. It starts PENDING until the equipment owner confirms.
    Overlapping a confirmed reservation returns 409 with the conflicting dates.
    """
    return await booking_service.create_booking(db, actor, booking_data, locks, notifications)


@router.get("/", response_model=BookingListResponse)
async def list_bookings(
    status_filter: Optional[str] = Query(None, alias="status"),
    equipment_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Bookings you made, plus bookings of equipment you own."""
    bookings, total = await booking_service.list_bookings(
        db, actor, status=status_filter, equipment_id=equipment_id, page=page, page_size=page_size
    )
    return BookingListResponse(
        bookings=[BookingResponse.model_validate(b) for b in bookings],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await booking_service.get_booking(db, booking_id, actor)


@router.patch("/{booking_id}", response_model=BookingResponse)
async def update_booking(
    booking_id: int,
    update_data: BookingUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    locks: ReservationLock = Depends(get_locks),
    notifications: NotificationSink = Depends(get_notifications),
):
    """Change dates or notes while the booking is pending and unpaid."""
    return await booking_service.update_booking(db, booking_id, actor, update_data, locks, notifications)


@router.patch("/{booking_id}/status", response_model=BookingResponse)
async def set_booking_status(
    booking_id: int,
    status_data: BookingStatusUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    locks: ReservationLock = Depends(get_locks),
    notifications: NotificationSink = Depends(get_notifications),
):
    return await booking_service.set_booking_status(
        db, booking_id, actor, status_data.status, locks, notifications
    )


@router.patch("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: int,
    cancel_data: BookingCancel,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    locks: ReservationLock = Depends(get_locks),
    notifications: NotificationSink = Depends(get_notifications),
):
    return await booking_service.cancel_booking(
        db, booking_id, actor, locks, notifications, reason=cancel_data.cancellation_reason
    )
