"""
shared/utils/bookings.py
Price arithmetic and the cancellation routine shared by the customer
and admin cancel paths.
"""

import logging
import uuid
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    Booking,
    BookingStatus,
    PaymentMethod,
    PaymentStatus,
    utcnow,
)
from shared.utils.wallet import credit_wallet

logger = logging.getLogger(__name__)


def compute_discount(subtotal: int, discount_percent: int) -> int:
    """Percentage of a rupee amount, rounded half up to whole rupees."""
    return (subtotal * discount_percent + 50) // 100


async def lock_booking(
    db: AsyncSession,
    booking_id: uuid.UUID,
    user_id: Optional[uuid.UUID] = None,
) -> Booking:
    """
    Load a booking FOR UPDATE. With `user_id`, bookings owned by someone
    else are reported as missing.
    """
    query = select(Booking).where(Booking.id == booking_id)
    if user_id is not None:
        query = query.where(Booking.user_id == user_id)
    result = await db.execute(
        query.with_for_update().execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


def refund_due(booking: Booking) -> bool:
    return (
        booking.status != BookingStatus.CANCELLED
        and booking.payment_method == PaymentMethod.WALLET
        and booking.payment_status == PaymentStatus.PAID
    )


async def cancel_booking(db: AsyncSession, booking: Booking) -> Booking:
    """
    Cancel a booking locked with lock_booking().

    Wallet-paid bookings get their total credited back once: the refund
    and the status change share a transaction, and the row lock keeps a
    second canceller waiting until it can see the Cancelled status.
    """
    if booking.status == BookingStatus.CANCELLED:
        raise HTTPException(status_code=400, detail="Booking is already cancelled")

    if refund_due(booking):
        await credit_wallet(
            db,
            booking.user_id,
            booking.total_amount,
            f"Refund for cancelled booking: {booking.service_name}",
            booking_id=booking.id,
        )
        # Refunded bookings no longer count as paid
        booking.payment_status = PaymentStatus.UNPAID
        logger.info(f"Refunded {booking.total_amount} to wallet for booking {booking.id}")

    booking.status = BookingStatus.CANCELLED
    booking.cancelled_at = utcnow()
    await db.flush()
    return booking
