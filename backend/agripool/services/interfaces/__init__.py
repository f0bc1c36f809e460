"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .notification import LogNotificationSink, Notification, NotificationSink
from .payment import PaymentGateway, PaymentInitialization, PaymentVerification
from .reservation_lock import LocalReservationLock, ReservationLock, equipment_key, group_key

__all__ = [
    'LogNotificationSink', 'Notification', 'NotificationSink',
    'PaymentGateway', 'PaymentInitialization', 'PaymentVerification',
    'LocalReservationLock', 'ReservationLock', 'equipment_key', 'group_key',
]
