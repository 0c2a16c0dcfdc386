"""
services/booking/router.py
Booking workflow for customers.
Create: services → coupon → price → payment method (razorpay | wallet | pay_later).
States: Pending → Confirmed | Rescheduled → Completed, any → Cancelled.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_user
from shared.models.models import (
    Booking,
    BookingStatus,
    PaymentMethod,
    PaymentStatus,
    Profile,
    ServicePrice,
)
from shared.schemas.schemas import BookingCreateRequest, BookingResponse
from shared.utils.bookings import cancel_booking, compute_discount, lock_booking
from shared.utils.coupons import validate_coupon
from shared.utils.wallet import debit_wallet

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


# ── Helpers ───────────────────────────────────────────────────

async def _get_booking_or_404(booking_id: UUID, user_id: UUID, db: AsyncSession) -> Booking:
    result = await db.execute(
        select(Booking).where(Booking.id == booking_id, Booking.user_id == user_id)
    )
    booking = result.scalar_one_or_none()
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


async def _load_services(db: AsyncSession, service_ids: list[str]) -> list[ServicePrice]:
    """Active catalogue rows for the requested ids, in request order."""
    wanted = list(dict.fromkeys(s.strip() for s in service_ids if s.strip()))
    if not wanted:
        raise HTTPException(status_code=400, detail="Select at least one service")

    result = await db.execute(
        select(ServicePrice).where(
            ServicePrice.service_id.in_(wanted),
            ServicePrice.is_active.is_(True),
        )
    )
    by_id = {s.service_id: s for s in result.scalars().all()}
    missing = [s for s in wanted if s not in by_id]
    if missing:
        raise HTTPException(
            status_code=400,
            detail=f"Service not available: {', '.join(missing)}",
        )
    return [by_id[s] for s in wanted]


def _service_address(profile: Profile) -> str:
    if profile.location_address:
        return profile.location_address
    return ", ".join(
        part for part in (
            profile.address_line1, profile.address_line2,
            profile.city, profile.state, profile.pincode,
        ) if part
    )


# ── Create ────────────────────────────────────────────────────

@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Price and submit a booking.

    Wallet bookings are debited in the same transaction that inserts the
    booking, so a failure at any step leaves neither the charge nor the
    booking behind.
    """
    if not current_user.has_address:
        raise HTTPException(status_code=400, detail="Please set your service address")

    services = await _load_services(db, data.service_ids)
    subtotal = sum(s.price for s in services)
    service_name = ", ".join(s.service_name for s in services)

    coupon_code: Optional[str] = None
    discount = 0
    if data.coupon_code and data.coupon_code.strip():
        coupon = await validate_coupon(db, data.coupon_code, current_user.id)
        coupon_code = coupon.code
        discount = compute_discount(subtotal, coupon.discount_percent)
    total = subtotal - discount

    method = PaymentMethod(data.payment_method)
    if method == PaymentMethod.WALLET and total <= 0:
        raise HTTPException(status_code=400, detail="Nothing to pay from wallet for this booking")

    booking = Booking(
        user_id=current_user.id,
        service_ids=[s.service_id for s in services],
        service_name=service_name,
        vehicle_type=data.vehicle_type,
        vehicle_number=data.vehicle_number,
        vehicle_make_model=data.vehicle_make_model,
        service_mode=data.service_mode,
        address=_service_address(current_user),
        location_lat=current_user.location_lat,
        location_lng=current_user.location_lng,
        preferred_date_time=data.preferred_date_time,
        notes=data.notes,
        subtotal_amount=subtotal,
        discount_amount=discount,
        total_amount=total,
        coupon_code=coupon_code,
        status=BookingStatus.PENDING,
        payment_status=PaymentStatus.UNPAID,
        payment_method=method,
    )
    db.add(booking)
    await db.flush()

    if method == PaymentMethod.WALLET:
        await debit_wallet(
            db,
            current_user.id,
            total,
            f"Payment for {service_name}",
            booking_id=booking.id,
        )
        booking.payment_status = PaymentStatus.PAID
        await db.flush()

    logger.info(
        f"Booking {booking.id} created by {current_user.id}: "
        f"total={total} method={method.value} coupon={coupon_code}"
    )
    return BookingResponse.model_validate(booking)


# ── Read ──────────────────────────────────────────────────────

@router.get("", response_model=list[BookingResponse])
async def list_my_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    query = select(Booking).where(Booking.user_id == current_user.id)
    if status_filter:
        query = query.where(Booking.status == status_filter)
    query = query.order_by(Booking.created_at.desc()).offset((page - 1) * page_size).limit(page_size)

    result = await db.execute(query)
    return [BookingResponse.model_validate(b) for b in result.scalars().all()]


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await _get_booking_or_404(booking_id, current_user.id, db)
    return BookingResponse.model_validate(booking)


# ── Cancel ────────────────────────────────────────────────────

@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_my_booking(
    booking_id: UUID,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel one of the caller's bookings, refunding wallet payments."""
    booking = await lock_booking(db, booking_id, user_id=current_user.id)
    await cancel_booking(db, booking)
    logger.info(f"Booking {booking.id} cancelled by customer {current_user.id}")
    return BookingResponse.model_validate(booking)
