"""
Booking model: a single renter's reservation of one equipment unit.

Key design decisions:
- Half-open interval [start_date, end_date), enforced start < end at the DB level
- `price_per_day` is snapshotted at creation; later equipment price changes
  never touch existing bookings
- Status is a lifecycle, never deleted: cancellation is a soft state
- `payment_reference` is unique so webhook application is keyed by it
"""

from sqlalchemy import (
    Column, Integer, BigInteger, String, Text, ForeignKey, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship

from agripool.db.base import Base, TimestampMixin, UTCDateTime


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    equipment_id = Column(Integer, ForeignKey("equipment.id"), nullable=False, index=True)
    farmer_id = Column(Integer, nullable=False, index=True)

    start_date = Column(UTCDateTime, nullable=False)
    end_date = Column(UTCDateTime, nullable=False)
    total_days = Column(Integer, nullable=False)
    price_per_day = Column(BigInteger, nullable=False)
    total_price = Column(BigInteger, nullable=False)

    status = Column(String(20), nullable=False, default="PENDING")
    payment_status = Column(String(20), nullable=False, default="PENDING")
    payment_reference = Column(String(100), nullable=True, unique=True)
    amount_paid = Column(BigInteger, nullable=True)
    paid_at = Column(UTCDateTime, nullable=True)

    notes = Column(Text, nullable=True)
    confirmed_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    equipment = relationship("Equipment", lazy="selectin")

    __table_args__ = (
        CheckConstraint("end_date > start_date", name="check_booking_interval"),
        CheckConstraint("total_price >= 0", name="check_booking_total_non_negative"),
        CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'ACTIVE', 'COMPLETED', 'CANCELLED')",
            name="check_booking_status",
        ),
        CheckConstraint(
            "payment_status IN ('PENDING', 'PAID', 'REFUNDED')",
            name="check_booking_payment_status",
        ),
        # Calendar lookups: bookings of one equipment in a date window
        Index("ix_bookings_equipment_window", "equipment_id", "start_date", "end_date"),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, equipment={self.equipment_id}, farmer={self.farmer_id}, status={self.status})>"
