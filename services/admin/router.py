"""
services/admin/router.py
Admin console API. One GET endpoint multiplexed on `resource` and one
POST endpoint multiplexed on `action`.

Every request is checked against the stored ADMIN role, and every
successful action is appended to AdminAuditLog before returning.
"""

import csv
import io
import logging
import uuid
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from shared.middleware.auth import require_admin
from shared.models.models import (
    AdminAuditLog,
    AppConfig,
    Booking,
    BookingStatus,
    Coupon,
    DeviceToken,
    Profile,
    ServicePrice,
    UserRole,
    WalletTransaction,
)
from shared.schemas.schemas import (
    AdminActionRequest,
    BookingResponse,
    CouponResponse,
    ProfileResponse,
    ServicePriceResponse,
    WalletTransactionResponse,
)
from shared.utils.bookings import cancel_booking, lock_booking
from shared.utils.coupons import normalize_code
from shared.utils.notifications import notify_user, send_push_notification
from shared.utils.security import hash_password
from shared.utils.wallet import credit_wallet

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


# ── Helpers ───────────────────────────────────────────────────

async def _log(
    db: AsyncSession,
    admin: Profile,
    action: str,
    entity_type: str,
    entity_id: Optional[str],
    payload: Optional[dict] = None,
    request: Optional[Request] = None,
):
    """Append an immutable record to AdminAuditLog."""
    db.add(AdminAuditLog(
        admin_id=admin.id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        payload=payload or {},
        ip_address=request.client.host if request and request.client else None,
    ))


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=400, detail=detail)


async def _get_profile_or_404(db: AsyncSession, user_id: Optional[uuid.UUID]) -> Profile:
    if not user_id:
        raise _bad_request("userId is required")
    profile = await db.get(Profile, user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="User not found")
    return profile


async def _get_coupon_or_404(db: AsyncSession, coupon_id: Optional[uuid.UUID]) -> Coupon:
    if not coupon_id:
        raise _bad_request("couponId is required")
    coupon = await db.get(Coupon, coupon_id)
    if not coupon:
        raise HTTPException(status_code=404, detail="Coupon not found")
    return coupon


# ── Resource listing ──────────────────────────────────────────

async def _list_bookings(db: AsyncSession) -> list[dict]:
    result = await db.execute(
        select(Booking, Profile.full_name, Profile.email, Profile.phone)
        .join(Profile, Profile.id == Booking.user_id)
        .order_by(Booking.created_at.desc())
    )
    return [
        {
            **BookingResponse.model_validate(booking).model_dump(mode="json"),
            "customer_name": full_name,
            "customer_email": email,
            "customer_phone": phone,
        }
        for booking, full_name, email, phone in result.all()
    ]


async def _list_profiles(db: AsyncSession) -> list[ProfileResponse]:
    result = await db.execute(select(Profile).order_by(Profile.created_at.desc()))
    return [ProfileResponse.model_validate(p) for p in result.scalars().all()]


async def _user_detail(db: AsyncSession, user_id: Optional[uuid.UUID]) -> dict:
    profile = await _get_profile_or_404(db, user_id)
    bookings = await db.execute(
        select(Booking).where(Booking.user_id == profile.id).order_by(Booking.created_at.desc())
    )
    transactions = await db.execute(
        select(WalletTransaction)
        .where(WalletTransaction.user_id == profile.id)
        .order_by(WalletTransaction.created_at.desc())
    )
    return {
        "profile": ProfileResponse.model_validate(profile),
        "bookings": [BookingResponse.model_validate(b) for b in bookings.scalars().all()],
        "transactions": [
            WalletTransactionResponse.model_validate(t) for t in transactions.scalars().all()
        ],
    }


def _users_csv(profiles: list[Profile]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow([
        "id", "full_name", "email", "phone", "wallet_balance",
        "verified", "blocked", "city", "created_at",
    ])
    for p in profiles:
        writer.writerow([
            p.id, p.full_name, p.email, p.phone or "", p.wallet_balance,
            p.verified, p.blocked, p.city or "",
            p.created_at.isoformat() if p.created_at else "",
        ])
    return buffer.getvalue()


@router.get("")
async def get_resource(
    resource: str = Query(...),
    user_id: Optional[uuid.UUID] = Query(None, alias="userId"),
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Read-only listings for the admin screens."""
    if resource == "bookings":
        return {"data": await _list_bookings(db)}

    if resource == "profiles":
        return {"data": await _list_profiles(db)}

    if resource == "services":
        result = await db.execute(select(ServicePrice).order_by(ServicePrice.service_name))
        return {"data": [ServicePriceResponse.model_validate(s) for s in result.scalars().all()]}

    if resource == "coupons":
        result = await db.execute(select(Coupon).order_by(Coupon.created_at.desc()))
        return {"data": [CouponResponse.model_validate(c) for c in result.scalars().all()]}

    if resource == "user-detail":
        return await _user_detail(db, user_id)

    if resource == "user-coupons":
        profile = await _get_profile_or_404(db, user_id)
        result = await db.execute(
            select(Coupon).where(Coupon.user_id == profile.id).order_by(Coupon.created_at.desc())
        )
        return {"data": [CouponResponse.model_validate(c) for c in result.scalars().all()]}

    if resource == "app-config":
        result = await db.execute(select(AppConfig).order_by(AppConfig.key))
        return {"data": {row.key: row.value for row in result.scalars().all()}}

    if resource == "export-users":
        result = await db.execute(select(Profile).order_by(Profile.created_at.desc()))
        return Response(
            content=_users_csv(list(result.scalars().all())),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="users.csv"'},
        )

    raise _bad_request("Invalid resource")


# ── Actions ───────────────────────────────────────────────────

async def _reset_password(db: AsyncSession, data: AdminActionRequest) -> dict:
    profile = await _get_profile_or_404(db, data.user_id)
    if len(data.password or "") < settings.ADMIN_MIN_PASSWORD_LENGTH:
        raise _bad_request(
            f"Password must be at least {settings.ADMIN_MIN_PASSWORD_LENGTH} characters"
        )
    profile.password_hash = hash_password(data.password)
    return {}


def _set_flag(field: str, value: bool):
    async def handler(db: AsyncSession, data: AdminActionRequest) -> dict:
        profile = await _get_profile_or_404(db, data.user_id)
        if field == "blocked" and value and profile.role == UserRole.ADMIN:
            raise _bad_request("Admin accounts cannot be blocked")
        setattr(profile, field, value)
        return {}
    return handler


async def _add_wallet_money(db: AsyncSession, data: AdminActionRequest) -> dict:
    await _get_profile_or_404(db, data.user_id)
    if not data.amount or data.amount <= 0:
        raise _bad_request("Valid amount required")
    profile = await credit_wallet(
        db, data.user_id, data.amount, data.description or "Added by admin"
    )
    return {"newBalance": profile.wallet_balance}


async def _create_coupon(db: AsyncSession, data: AdminActionRequest) -> dict:
    code = normalize_code(data.coupon_code or "")
    if not code or not data.coupon_discount:
        raise _bad_request("Code and discount required")
    if not 1 <= data.coupon_discount <= 100:
        raise _bad_request("Discount must be between 1 and 100")
    usage_limit = data.coupon_limit if data.coupon_limit is not None else 1
    if usage_limit < 1:
        raise _bad_request("Usage limit must be at least 1")
    if data.coupon_user_id:
        await _get_profile_or_404(db, data.coupon_user_id)

    duplicate = await db.scalar(
        select(Coupon.id).where(
            Coupon.code == code,
            Coupon.user_id.is_(None) if data.coupon_user_id is None
            else Coupon.user_id == data.coupon_user_id,
        )
    )
    if duplicate:
        raise HTTPException(status_code=409, detail="Coupon code already exists")

    coupon = Coupon(
        code=code,
        discount_percent=data.coupon_discount,
        active=True,
        user_id=data.coupon_user_id,
        usage_limit=usage_limit,
        first_booking_only=data.first_booking_only,
    )
    db.add(coupon)
    try:
        await db.flush()
    except IntegrityError:
        # Lost a race with a concurrent insert of the same code
        raise HTTPException(status_code=409, detail="Coupon code already exists")
    return {"coupon": CouponResponse.model_validate(coupon)}


async def _toggle_coupon(db: AsyncSession, data: AdminActionRequest) -> dict:
    coupon = await _get_coupon_or_404(db, data.coupon_id)
    coupon.active = not coupon.active
    return {"active": coupon.active}


async def _delete_coupon(db: AsyncSession, data: AdminActionRequest) -> dict:
    coupon = await _get_coupon_or_404(db, data.coupon_id)
    await db.delete(coupon)
    return {}


async def _push_booking_confirmed(db: AsyncSession, booking: Booking) -> None:
    try:
        await notify_user(
            db,
            booking.user_id,
            "Booking Confirmed",
            f"Your booking for {booking.service_name} has been confirmed.",
            {"type": "booking_confirmed", "booking_id": str(booking.id)},
        )
    except Exception as e:
        logger.error(f"Booking confirmation push failed for {booking.id}: {e}")


async def _update_booking_status(db: AsyncSession, data: AdminActionRequest) -> dict:
    if not data.booking_id or not data.status:
        raise _bad_request("bookingId and status are required")
    try:
        new_status = BookingStatus(data.status)
    except ValueError:
        raise _bad_request("Invalid status")

    booking = await lock_booking(db, data.booking_id)
    previous = booking.status
    if previous == BookingStatus.CANCELLED and new_status != BookingStatus.CANCELLED:
        raise _bad_request("Cannot change status of a cancelled booking")

    if new_status == BookingStatus.CANCELLED:
        if previous != BookingStatus.CANCELLED:
            await cancel_booking(db, booking)
    else:
        booking.status = new_status
        await db.flush()

    if new_status == BookingStatus.CONFIRMED and previous != BookingStatus.CONFIRMED:
        await _push_booking_confirmed(db, booking)

    return {"status": booking.status.value}


async def _reschedule_booking(db: AsyncSession, data: AdminActionRequest) -> dict:
    if not data.booking_id or not (data.date_time or "").strip():
        raise _bad_request("bookingId and dateTime are required")
    booking = await lock_booking(db, data.booking_id)
    if booking.status == BookingStatus.CANCELLED:
        raise _bad_request("Cannot reschedule a cancelled booking")
    booking.status = BookingStatus.RESCHEDULED
    booking.preferred_date_time = data.date_time.strip()
    booking.rescheduled_by = "admin"
    return {}


async def _update_service_price(db: AsyncSession, data: AdminActionRequest) -> dict:
    if not data.service_id or not data.prices:
        raise _bad_request("serviceId and prices are required")
    result = await db.execute(
        select(ServicePrice).where(ServicePrice.service_id == data.service_id)
    )
    service = result.scalar_one_or_none()
    if not service:
        raise HTTPException(status_code=404, detail="Service not found")

    if "price" in data.prices:
        try:
            price = int(data.prices["price"])
        except (TypeError, ValueError):
            raise _bad_request("Price must be a whole number")
        if price < 0:
            raise _bad_request("Price cannot be negative")
        service.price = price
    if data.prices.get("service_name"):
        service.service_name = str(data.prices["service_name"])
    if "is_active" in data.prices:
        service.is_active = bool(data.prices["is_active"])

    await db.flush()
    return {"service": ServicePriceResponse.model_validate(service)}


async def _send_push_notification(db: AsyncSession, data: AdminActionRequest) -> dict:
    if not data.title or not data.content:
        raise _bad_request("Title and content are required")
    result = await db.execute(select(DeviceToken.token))
    tokens = [t for t in result.scalars().all() if t]

    pruned = await send_push_notification(
        db, tokens, data.title, data.content, {"type": "broadcast"}
    )
    logger.info(f"Broadcast push '{data.title}' to {len(tokens)} devices")
    return {"deviceCount": len(tokens), "prunedCount": len(pruned)}


async def _update_app_config(db: AsyncSession, data: AdminActionRequest) -> dict:
    if not data.key:
        raise _bad_request("key is required")
    row = await db.get(AppConfig, data.key)
    if row:
        row.value = data.value
    else:
        db.add(AppConfig(key=data.key, value=data.value))
    return {}


async def _update_manual_location(db: AsyncSession, data: AdminActionRequest) -> dict:
    profile = await _get_profile_or_404(db, data.user_id)
    profile.manual_location_link = (data.link or "").strip() or None
    return {}


ActionHandler = Callable[[AsyncSession, AdminActionRequest], Awaitable[dict]]

ACTIONS: dict[str, tuple[ActionHandler, str]] = {
    "reset-password": (_reset_password, "Profile"),
    "block-user": (_set_flag("blocked", True), "Profile"),
    "unblock-user": (_set_flag("blocked", False), "Profile"),
    "verify-user": (_set_flag("verified", True), "Profile"),
    "unverify-user": (_set_flag("verified", False), "Profile"),
    "add-wallet-money": (_add_wallet_money, "Profile"),
    "create-coupon": (_create_coupon, "Coupon"),
    "toggle-coupon": (_toggle_coupon, "Coupon"),
    "delete-coupon": (_delete_coupon, "Coupon"),
    "update-booking-status": (_update_booking_status, "Booking"),
    "reschedule-booking": (_reschedule_booking, "Booking"),
    "update-service-price": (_update_service_price, "ServicePrice"),
    "send-push-notification": (_send_push_notification, "DeviceToken"),
    "update-app-config": (_update_app_config, "AppConfig"),
    "update-user-manual-location": (_update_manual_location, "Profile"),
}


def _entity_id(data: AdminActionRequest) -> Optional[str]:
    for value in (data.user_id, data.coupon_id, data.booking_id, data.service_id, data.key):
        if value:
            return str(value)
    return None


@router.post("")
async def perform_action(
    data: AdminActionRequest,
    request: Request,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    entry = ACTIONS.get(data.action)
    if entry is None:
        raise _bad_request("Unknown action")
    handler, entity_type = entry

    result = await handler(db, data)

    await _log(
        db, current_user, data.action, entity_type, _entity_id(data),
        data.model_dump(mode="json", exclude_none=True, exclude={"password"}),
        request,
    )
    logger.info(f"Admin {current_user.id} performed {data.action} on {entity_type}")
    return {"success": True, **result}
