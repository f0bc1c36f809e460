"""
Share ledger: keeps participant shares of a group booking summing to its total.

Called inside the join/leave transaction, after the participant insert or
delete has been flushed and before commit, so no reader ever sees shares that
do not add up.

A paid participant whose share grows (someone left) owes the difference:
their payment goes back to PENDING for the balance, so the group is not ready
for confirmation until it is settled. A share that shrinks back to what they
already paid settles them again; any surplus is refunded outside the engine.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agripool.core.logging import get_logger
from agripool.domain.lifecycle import PaymentStatus
from agripool.domain.shares import split_evenly
from agripool.models.group_booking import GroupParticipant

logger = get_logger(__name__)


async def recompute_shares(db: AsyncSession, group_booking_id: int, total_price: int) -> list[GroupParticipant]:
    """
    Split `total_price` evenly across current participants.
    The earliest joiner (ties broken by id) absorbs the remainder.
    """
    result = await db.execute(
        select(GroupParticipant)
        .where(GroupParticipant.group_booking_id == group_booking_id)
        .order_by(GroupParticipant.joined_at, GroupParticipant.id)
        .execution_options(populate_existing=True)
    )
    participants = list(result.scalars().all())

    for participant, share in zip(participants, split_evenly(total_price, len(participants))):
        participant.share_amount = share
        if participant.payment_status == PaymentStatus.PAID.value and participant.balance_due > 0:
            participant.payment_status = PaymentStatus.PENDING.value
            logger.info(
                "share_balance_due",
                group_booking_id=group_booking_id,
                participant_id=participant.id,
                farmer_id=participant.farmer_id,
                amount_paid=participant.amount_paid,
                share_amount=share,
            )
        elif (
            participant.payment_status == PaymentStatus.PENDING.value
            and participant.amount_paid
            and participant.balance_due == 0
        ):
            participant.payment_status = PaymentStatus.PAID.value

    await db.flush()
    logger.debug(
        "shares_recomputed",
        group_booking_id=group_booking_id,
        participants=len(participants),
        total_price=total_price,
    )
    return participants
