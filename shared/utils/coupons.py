"""
shared/utils/coupons.py
Coupon eligibility checks used by /coupons/validate and booking creation.
"""

import uuid
from typing import List, Optional

from fastapi import HTTPException
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Booking, BookingStatus, Coupon


def normalize_code(code: str) -> str:
    return code.strip().upper()


async def count_live_bookings(
    db: AsyncSession,
    user_id: uuid.UUID,
    coupon_code: Optional[str] = None,
) -> int:
    """Bookings of `user_id` that are not Cancelled, optionally for one coupon."""
    query = select(func.count(Booking.id)).where(
        Booking.user_id == user_id,
        Booking.status != BookingStatus.CANCELLED,
    )
    if coupon_code is not None:
        query = query.where(Booking.coupon_code == coupon_code)
    return await db.scalar(query) or 0


async def validate_coupon(
    db: AsyncSession,
    code: str,
    user_id: Optional[uuid.UUID] = None,
) -> Coupon:
    """
    Resolve `code` to the coupon row that applies to `user_id`.

    A row scoped to the user wins over a global row with the same code.
    Usage-limit and first-booking checks only run when the user is known.
    Raises HTTPException 404/400 with the message shown to the customer.
    """
    normalized = normalize_code(code)
    if not normalized:
        raise HTTPException(status_code=400, detail="Coupon code is required")

    result = await db.execute(
        select(Coupon).where(Coupon.code == normalized, Coupon.active.is_(True))
    )
    rows = result.scalars().all()
    if not rows:
        raise HTTPException(status_code=404, detail="Invalid coupon code")

    coupon = None
    if user_id is not None:
        coupon = next((c for c in rows if c.user_id == user_id), None)
    if coupon is None:
        coupon = next((c for c in rows if c.user_id is None), None)
    if coupon is None:
        # Only rows scoped to other users
        raise HTTPException(status_code=400, detail="This coupon is not available for you")

    if user_id is not None:
        used = await count_live_bookings(db, user_id, coupon.code)
        if used >= (coupon.usage_limit or 1):
            raise HTTPException(
                status_code=400,
                detail=f"You have already used this coupon {used} times",
            )

        if coupon.first_booking_only and await count_live_bookings(db, user_id) > 0:
            raise HTTPException(
                status_code=400,
                detail="This coupon is only valid for your first booking",
            )

    return coupon


async def list_offers(db: AsyncSession, user_id: Optional[uuid.UUID] = None) -> List[Coupon]:
    """Active coupons the user may see: their own first, then global ones."""
    global_result = await db.execute(
        select(Coupon)
        .where(Coupon.user_id.is_(None), Coupon.active.is_(True))
        .order_by(Coupon.created_at.desc())
    )
    offers = list(global_result.scalars().all())
    if user_id is None:
        return offers

    own_result = await db.execute(
        select(Coupon)
        .where(Coupon.user_id == user_id, Coupon.active.is_(True))
        .order_by(Coupon.created_at.desc())
    )
    offers = list(own_result.scalars().all()) + offers

    if any(c.first_booking_only for c in offers) and await count_live_bookings(db, user_id) > 0:
        offers = [c for c in offers if not c.first_booking_only]
    return offers
