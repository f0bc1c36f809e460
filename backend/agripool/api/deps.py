"""
Shared FastAPI dependencies.
Tests override these to inject fakes for the lock, sink and gateway.
"""

from agripool.services.interfaces.notification import NotificationSink
from agripool.services.interfaces.payment import PaymentGateway
from agripool.services.interfaces.reservation_lock import ReservationLock
from agripool.services.strategy_factory import (
    get_notification_sink,
    get_payment_gateway,
    get_reservation_lock,
)


def get_locks() -> ReservationLock:
    return get_reservation_lock()


def get_notifications() -> NotificationSink:
    return get_notification_sink()


def get_gateway() -> PaymentGateway:
    return get_payment_gateway()
