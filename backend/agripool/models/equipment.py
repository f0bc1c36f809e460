"""
Equipment model: the resource being reserved.

Key design decisions:
- `price_per_day` is integer minor units (kobo); bookings snapshot it
- `is_available` is an administrative toggle, independent of bookings
- `version` guards the equipment's reservation calendar: every write that
  makes a reservation hold the calendar bumps it with a compare-and-swap
"""

from sqlalchemy import Column, Integer, BigInteger, String, Boolean, CheckConstraint

from agripool.db.base import Base, TimestampMixin


class Equipment(Base, TimestampMixin):
    __tablename__ = "equipment"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    price_per_day = Column(BigInteger, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)

    # Optimistic locking version counter for the reservation calendar
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("price_per_day >= 0", name="check_equipment_price_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Equipment(id={self.id}, owner={self.owner_id}, price_per_day={self.price_per_day})>"
