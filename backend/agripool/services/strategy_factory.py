"""
Strategy factory.
Configures which lock, notification and payment implementations to use.
"""

from agripool.core.config import get_settings
from agripool.infrastructure.paystack import PaystackGateway
from agripool.infrastructure.redis_lock import RedisReservationLock
from agripool.infrastructure.redis_notifications import RedisNotificationSink
from agripool.services.interfaces.notification import LogNotificationSink, NotificationSink
from agripool.services.interfaces.payment import PaymentGateway
from agripool.services.interfaces.reservation_lock import LocalReservationLock, ReservationLock

settings = get_settings()


def get_reservation_lock_strategy() -> ReservationLock:
    """
    Strategy selection via LOCK_BACKEND:
    - local: asyncio locks, one API process (development, tests)
    - redis: locks shared by every worker process (production)
    """
    if settings.LOCK_BACKEND == "redis":
        return RedisReservationLock()
    return LocalReservationLock()


def get_notification_sink_strategy() -> NotificationSink:
    """
    NOTIFICATION_BACKEND:
    - log: structured log line per event
    - redis: queue consumed by the notification worker
    """
    if settings.NOTIFICATION_BACKEND == "redis":
        return RedisNotificationSink()
    return LogNotificationSink()


# Singleton instances
_lock: ReservationLock = None
_sink: NotificationSink = None
_gateway: PaymentGateway = None


def get_reservation_lock() -> ReservationLock:
    global _lock
    if _lock is None:
        _lock = get_reservation_lock_strategy()
    return _lock


def get_notification_sink() -> NotificationSink:
    global _sink
    if _sink is None:
        _sink = get_notification_sink_strategy()
    return _sink


def get_payment_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = PaystackGateway()
    return _gateway
