"""
Group booking endpoints: create, join, leave, confirm, cancel.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from agripool.api.deps import get_locks, get_notifications
from agripool.core.security import get_current_actor
from agripool.db.session import get_db
from agripool.domain.actors import Actor
from agripool.schemas.group_booking import (
    GroupBookingCreate,
    GroupBookingListResponse,
    GroupBookingResponse,
    GroupCancel,
    GroupJoin,
    GroupLeaveResponse,
    GroupParticipantResponse,
    GroupStatusUpdate,
)
from agripool.services import group_booking_service
from agripool.services.interfaces.notification import NotificationSink
from agripool.services.interfaces.reservation_lock import ReservationLock

router = APIRouter(prefix="/group-bookings", tags=["Group Bookings"])


@router.get("/available/{equipment_id}", response_model=list[GroupBookingResponse])
async def list_available_group_bookings(
    equipment_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Public, unexpired groups on this equipment that still have room. No auth required."""
    return await group_booking_service.list_available_group_bookings(db, equipment_id)


@router.get("/", response_model=GroupBookingListResponse)
async def list_group_bookings(
    status_filter: Optional[str] = Query(None, alias="status"),
    equipment_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    groups, total = await group_booking_service.list_group_bookings(
        db, actor, status=status_filter, equipment_id=equipment_id, page=page, page_size=page_size
    )
    return GroupBookingListResponse(
        group_bookings=[GroupBookingResponse.model_validate(g) for g in groups],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{group_booking_id}", response_model=GroupBookingResponse)
async def get_group_booking(
    group_booking_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await group_booking_service.get_group_booking(db, group_booking_id, actor)


@router.post("/", response_model=GroupBookingResponse, status_code=status.HTTP_201_CREATED)
async def create_group_booking(
    group_data: GroupBookingCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    locks: ReservationLock = Depends(get_locks),
    notifications: NotificationSink = Depends(get_notifications),
):
    """
    Open a group booking. The slot is held from creation, so a second group
    for overlapping dates on the same equipment gets 409.
    """
    return await group_booking_service.create_group_booking(db, actor, group_data, locks, notifications)


@router.post(
    "/{group_booking_id}/join",
    response_model=GroupParticipantResponse,
    status_code=status.HTTP_201_CREATED,
)
async def join_group_booking(
    group_booking_id: int,
    join_data: Optional[GroupJoin] = None,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    locks: ReservationLock = Depends(get_locks),
    notifications: NotificationSink = Depends(get_notifications),
):
    """
    Join a group. Shares of every participant are recomputed in the same
    transaction; the group turns FILLED when the last slot is taken.
    """
    return await group_booking_service.join_group(
        db, group_booking_id, actor, locks, notifications, data=join_data
    )


@router.delete("/{group_booking_id}/leave", response_model=GroupLeaveResponse)
async def leave_group_booking(
    group_booking_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    locks: ReservationLock = Depends(get_locks),
    notifications: NotificationSink = Depends(get_notifications),
):
    group = await group_booking_service.leave_group(db, group_booking_id, actor, locks, notifications)
    return GroupLeaveResponse(
        message="Successfully left group booking",
        group_booking_id=group.id,
        status=group.status,
    )


@router.post("/{group_booking_id}/confirm", response_model=GroupBookingResponse)
async def confirm_group_booking(
    group_booking_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    locks: ReservationLock = Depends(get_locks),
    notifications: NotificationSink = Depends(get_notifications),
):
    """Owner confirmation; requires quorum and every participant paid."""
    return await group_booking_service.confirm_group(db, group_booking_id, actor, locks, notifications)


@router.patch("/{group_booking_id}/status", response_model=GroupBookingResponse)
async def set_group_booking_status(
    group_booking_id: int,
    status_data: GroupStatusUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    locks: ReservationLock = Depends(get_locks),
    notifications: NotificationSink = Depends(get_notifications),
):
    return await group_booking_service.set_group_status(
        db, group_booking_id, actor, status_data.status, locks, notifications
    )


@router.patch("/{group_booking_id}/cancel", response_model=GroupBookingResponse)
async def cancel_group_booking(
    group_booking_id: int,
    cancel_data: GroupCancel,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    locks: ReservationLock = Depends(get_locks),
    notifications: NotificationSink = Depends(get_notifications),
):
    return await group_booking_service.cancel_group(
        db, group_booking_id, actor, locks, notifications, reason=cancel_data.reason
    )
