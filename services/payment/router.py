"""
services/payment/router.py
Razorpay checkout: order creation and payment signature verification.
"""

import logging
import time
from uuid import UUID

import razorpay
from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from shared.middleware.auth import get_current_user
from shared.models.models import Booking, BookingStatus, PaymentMethod, PaymentStatus, Profile
from shared.schemas.schemas import (
    CreateOrderRequest,
    CreateOrderResponse,
    MessageResponse,
    PaymentVerifyRequest,
)
from shared.utils.bookings import lock_booking
from shared.utils.security import verify_razorpay_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def get_razorpay_client() -> razorpay.Client:
    if not (settings.RAZORPAY_KEY_ID and settings.RAZORPAY_KEY_SECRET):
        raise HTTPException(status_code=503, detail="Payment service unavailable")
    return razorpay.Client(auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET))


async def _own_booking(db: AsyncSession, booking_id: UUID, user_id: UUID) -> Booking:
    result = await db.execute(
        select(Booking).where(Booking.id == booking_id, Booking.user_id == user_id)
    )
    booking = result.scalar_one_or_none()
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


# ── Create Order ──────────────────────────────────────────────

@router.post("/create-order", response_model=CreateOrderResponse)
async def create_order(
    data: CreateOrderRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a Razorpay order in paise. With a booking id the amount is the
    booking total; otherwise (wallet top-up) the client supplies it.
    Client uses orderId + key id to open Razorpay checkout.
    """
    booking = None
    if data.booking_id:
        booking = await _own_booking(db, data.booking_id, current_user.id)
        if booking.payment_status == PaymentStatus.PAID:
            raise HTTPException(status_code=400, detail="Payment already completed")
        if booking.status == BookingStatus.CANCELLED:
            raise HTTPException(status_code=400, detail="Booking is cancelled")
        amount = booking.total_amount
    else:
        amount = data.amount

    if not amount or amount <= 0:
        raise HTTPException(status_code=400, detail="Invalid amount")

    rzp = get_razorpay_client()
    # Razorpay caps receipts at 40 characters
    receipt = f"ua_{current_user.id.hex[:12]}_{int(time.time())}"
    try:
        order = await run_in_threadpool(rzp.order.create, {
            "amount": amount * 100,
            "currency": settings.CURRENCY,
            "receipt": receipt,
            "notes": {
                "user_id": str(current_user.id),
                "booking_id": str(booking.id) if booking else "",
            },
        })
    except Exception as e:
        logger.error(f"Razorpay order creation failed: {e}")
        raise HTTPException(status_code=502, detail=f"Payment gateway error: {str(e)}")

    if booking:
        booking.razorpay_order_id = order["id"]

    return CreateOrderResponse(
        orderId=order["id"],
        amount=order["amount"],
        currency=order["currency"],
    )


# ── Verify Payment ────────────────────────────────────────────

@router.post("/verify", response_model=MessageResponse)
async def verify_payment(
    data: PaymentVerifyRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Check the checkout signature (HMAC-SHA256 over "order|payment") and
    mark the booking paid by Razorpay. The signed order must be the one
    create-order opened for this booking.
    """
    if not verify_razorpay_signature(
        data.razorpay_order_id,
        data.razorpay_payment_id,
        data.razorpay_signature,
    ):
        logger.warning(f"Invalid payment signature for order {data.razorpay_order_id}")
        raise HTTPException(status_code=400, detail="Invalid payment signature")

    booking = await lock_booking(db, data.booking_id, user_id=current_user.id)
    if booking.status == BookingStatus.CANCELLED:
        raise HTTPException(status_code=400, detail="Booking is cancelled")
    if booking.payment_status == PaymentStatus.PAID:
        raise HTTPException(status_code=400, detail="Payment already completed")
    if not booking.razorpay_order_id or booking.razorpay_order_id != data.razorpay_order_id:
        logger.warning(
            f"Order {data.razorpay_order_id} does not belong to booking {booking.id}"
        )
        raise HTTPException(status_code=400, detail="Order does not match this booking")

    booking.payment_status = PaymentStatus.PAID
    booking.payment_method = PaymentMethod.RAZORPAY
    booking.razorpay_payment_id = data.razorpay_payment_id

    logger.info(f"Booking {booking.id} paid via Razorpay payment {data.razorpay_payment_id}")
    return MessageResponse(message="Payment verified")
