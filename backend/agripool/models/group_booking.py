"""
Group booking models: a pooled reservation and its participants.

Key design decisions:
- `participant_count` is denormalized so a join can be one conditional UPDATE
  (count < max) instead of a COUNT followed by an INSERT
- `version` is bumped by every membership or payment change; confirmation
  only commits if nothing moved since its read
- Unique (group_booking_id, farmer_id) backs the "join once" rule
- Participants are ordered by joined_at; the earliest joiner absorbs the
  rounding remainder of the cost split
"""

from sqlalchemy import (
    Column, Integer, BigInteger, String, Text, Boolean, ForeignKey,
    CheckConstraint, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship

from agripool.db.base import Base, TimestampMixin, UTCDateTime, utcnow
from agripool.domain.lifecycle import GROUP_JOINABLE_STATUSES, PaymentStatus


class GroupBooking(Base, TimestampMixin):
    __tablename__ = "group_bookings"

    id = Column(Integer, primary_key=True, index=True)
    equipment_id = Column(Integer, ForeignKey("equipment.id"), nullable=False, index=True)
    initiator_id = Column(Integer, nullable=False, index=True)

    start_date = Column(UTCDateTime, nullable=False)
    end_date = Column(UTCDateTime, nullable=False)
    total_days = Column(Integer, nullable=False)
    price_per_day = Column(BigInteger, nullable=False)
    total_price = Column(BigInteger, nullable=False)

    min_participants = Column(Integer, nullable=False)
    max_participants = Column(Integer, nullable=False)
    participant_count = Column(Integer, nullable=False, default=0)
    is_public = Column(Boolean, nullable=False, default=True)
    expires_at = Column(UTCDateTime, nullable=True)

    status = Column(String(20), nullable=False, default="OPEN")
    version = Column(Integer, nullable=False, default=1)

    notes = Column(Text, nullable=True)
    confirmed_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    equipment = relationship("Equipment", lazy="selectin")
    participants = relationship(
        "GroupParticipant",
        lazy="selectin",
        order_by=lambda: [GroupParticipant.joined_at, GroupParticipant.id],
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("end_date > start_date", name="check_group_interval"),
        CheckConstraint("min_participants >= 2", name="check_group_min_participants"),
        CheckConstraint("max_participants >= min_participants", name="check_group_max_gte_min"),
        CheckConstraint(
            "participant_count >= 0 AND participant_count <= max_participants",
            name="check_group_participant_count",
        ),
        CheckConstraint(
            "status IN ('OPEN', 'FILLED', 'CONFIRMED', 'ACTIVE', 'COMPLETED', 'CANCELLED')",
            name="check_group_status",
        ),
        Index("ix_group_bookings_equipment_window", "equipment_id", "start_date", "end_date"),
    )

    def is_expired(self, now) -> bool:
        return self.expires_at is not None and now > self.expires_at

    @property
    def ready_for_confirmation(self) -> bool:
        """Quorum reached and everyone paid; the owner still confirms explicitly."""
        participants = list(self.participants)
        return (
            self.status in GROUP_JOINABLE_STATUSES
            and len(participants) >= self.min_participants
            and all(p.payment_status == PaymentStatus.PAID.value for p in participants)
        )

    def __repr__(self) -> str:
        return (
            f"<GroupBooking(id={self.id}, equipment={self.equipment_id}, "
            f"participants={self.participant_count}/{self.max_participants}, status={self.status})>"
        )


class GroupParticipant(Base, TimestampMixin):
    __tablename__ = "group_participants"

    id = Column(Integer, primary_key=True, index=True)
    group_booking_id = Column(
        Integer, ForeignKey("group_bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    farmer_id = Column(Integer, nullable=False, index=True)

    share_amount = Column(BigInteger, nullable=False, default=0)
    payment_status = Column(String(20), nullable=False, default="PENDING")
    payment_reference = Column(String(100), nullable=True, unique=True)
    amount_paid = Column(BigInteger, nullable=True)
    paid_at = Column(UTCDateTime, nullable=True)

    notes = Column(Text, nullable=True)
    joined_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("group_booking_id", "farmer_id", name="uq_group_participant"),
        CheckConstraint("share_amount >= 0", name="check_share_non_negative"),
        CheckConstraint(
            "payment_status IN ('PENDING', 'PAID', 'REFUNDED')",
            name="check_participant_payment_status",
        ),
    )

    @property
    def balance_due(self) -> int:
        return max(self.share_amount - (self.amount_paid or 0), 0)

    def __repr__(self) -> str:
        return f"<GroupParticipant(group={self.group_booking_id}, farmer={self.farmer_id}, share={self.share_amount})>"
