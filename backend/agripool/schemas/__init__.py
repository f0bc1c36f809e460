from agripool.schemas.booking import (
    BookingCreate, BookingUpdate, BookingStatusUpdate, BookingCancel,
    BookingResponse, BookingListResponse,
)
from agripool.schemas.group_booking import (
    GroupBookingCreate, GroupJoin, GroupStatusUpdate, GroupCancel,
    GroupBookingResponse, GroupParticipantResponse, GroupBookingListResponse, GroupLeaveResponse,
)
from agripool.schemas.payment import (
    PaymentInitializeRequest, PaymentInitializeResponse, PaymentApplicationResponse, WebhookEvent,
)
from agripool.schemas.equipment import AvailabilityResponse, ReservedSlot

__all__ = [
    "BookingCreate", "BookingUpdate", "BookingStatusUpdate", "BookingCancel",
    "BookingResponse", "BookingListResponse",
    "GroupBookingCreate", "GroupJoin", "GroupStatusUpdate", "GroupCancel",
    "GroupBookingResponse", "GroupParticipantResponse", "GroupBookingListResponse", "GroupLeaveResponse",
    "PaymentInitializeRequest", "PaymentInitializeResponse", "PaymentApplicationResponse", "WebhookEvent",
    "AvailabilityResponse", "ReservedSlot",
]
