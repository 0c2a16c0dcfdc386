"""
services/auth/router.py
Phone/email authentication endpoints.
Implements: OTP send → verify → signup / phone login / password reset,
plus email login, logout and account deletion.
"""

import logging
import re
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import get_redis, revoke_token
from config.settings import settings
from shared.middleware.auth import (
    BLOCKED_MESSAGE,
    TokenData,
    get_current_user,
    get_token_data,
)
from shared.models.models import OtpCode, Profile, UserRole, utcnow
from shared.schemas.schemas import (
    CheckExistsRequest,
    LoginRequest,
    MessageResponse,
    PhoneLoginRequest,
    PhonePasswordLoginRequest,
    ProfileResponse,
    ResetPasswordRequest,
    ResetPasswordResponse,
    SendOtpRequest,
    SessionResponse,
    SignupRequest,
    VerifyOtpRequest,
    VerifyOtpResponse,
)
from shared.utils.notifications import send_otp_sms
from shared.utils.security import (
    create_access_token,
    generate_otp,
    get_token_remaining_ttl,
    hash_password,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

PHONE_RE = re.compile(r"^[6-9]\d{9}$")


# ── Helpers ───────────────────────────────────────────────────

def _require_valid_phone(phone: str) -> str:
    phone = (phone or "").strip()
    if not PHONE_RE.match(phone):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid phone number")
    return phone


def _require_password(password: str) -> None:
    if len(password or "") < settings.MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Password must be at least {settings.MIN_PASSWORD_LENGTH} characters",
        )


def _is_admin_account(profile: Profile) -> bool:
    if profile.role == UserRole.ADMIN:
        return True
    return bool(settings.ADMIN_EMAIL) and profile.email.lower() == settings.ADMIN_EMAIL.lower()


def _issue_session(profile: Profile) -> SessionResponse:
    access_token, _ = create_access_token(
        user_id=str(profile.id),
        role=profile.role.value,
        email=profile.email,
    )
    return SessionResponse(
        access_token=access_token,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=ProfileResponse.model_validate(profile),
    )


async def has_recent_verification(db: AsyncSession, phone: str) -> bool:
    """
    True when the phone has an OTP that was verified through verify-otp
    and whose expiry window is still open. Codes retired by a resend are
    marked used but never count.
    """
    found = await db.scalar(
        select(OtpCode.id)
        .where(
            OtpCode.phone == phone,
            OtpCode.verified_at.is_not(None),
            OtpCode.expires_at >= utcnow(),
        )
        .limit(1)
    )
    return found is not None


async def require_recent_verification(db: AsyncSession, phone: str) -> None:
    if not await has_recent_verification(db, phone):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="OTP verification required",
        )


async def _profile_by_phone(db: AsyncSession, phone: str) -> Profile:
    result = await db.execute(select(Profile).where(Profile.phone == phone))
    profile = result.scalar_one_or_none()
    if not profile:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No account found with this phone number",
        )
    return profile


def _check_phone_login_allowed(profile: Profile) -> None:
    if profile.blocked:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=BLOCKED_MESSAGE)
    if _is_admin_account(profile):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin account must use email login.",
        )


# ── Availability ──────────────────────────────────────────────

@router.post("/check-exists", summary="Check that an email or phone is unused")
async def check_exists(data: CheckExistsRequest, db: AsyncSession = Depends(get_db)):
    if data.email:
        taken = await db.scalar(
            select(Profile.id).where(func.lower(Profile.email) == data.email.strip().lower())
        )
        if taken:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="An account with this email already exists",
            )
    if data.phone:
        taken = await db.scalar(select(Profile.id).where(Profile.phone == data.phone.strip()))
        if taken:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Number is already registered",
            )
    return {"available": True}


# ── OTP ───────────────────────────────────────────────────────

@router.post("/send-otp", response_model=MessageResponse, summary="Send an SMS OTP")
async def send_otp(data: SendOtpRequest, db: AsyncSession = Depends(get_db)):
    """
    Issue a fresh code for the phone. Older unused codes are retired first,
    so only the newest code can be verified.
    """
    phone = _require_valid_phone(data.phone)

    await db.execute(
        update(OtpCode)
        .where(OtpCode.phone == phone, OtpCode.used.is_(False))
        .values(used=True)
    )

    code = generate_otp()
    db.add(OtpCode(
        phone=phone,
        code=code,
        expires_at=utcnow() + timedelta(minutes=settings.OTP_EXPIRE_MINUTES),
    ))
    await db.flush()

    await send_otp_sms(phone, code)
    return MessageResponse(message="OTP sent successfully")


@router.post("/verify-otp", response_model=VerifyOtpResponse, summary="Verify an SMS OTP")
async def verify_otp(data: VerifyOtpRequest, db: AsyncSession = Depends(get_db)):
    """Consume a matching, unexpired code. Does not sign the user in."""
    phone = (data.phone or "").strip()
    code = (data.code or "").strip()
    if not phone or not code:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Phone and OTP code are required",
        )

    result = await db.execute(
        select(OtpCode)
        .where(
            OtpCode.phone == phone,
            OtpCode.code == code,
            OtpCode.used.is_(False),
            OtpCode.expires_at >= utcnow(),
        )
        .order_by(OtpCode.created_at.desc())
        .limit(1)
        .with_for_update()
    )
    otp = result.scalar_one_or_none()
    if not otp:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired OTP",
        )

    otp.used = True
    otp.verified_at = utcnow()
    return VerifyOtpResponse()


# ── Signup / Login ────────────────────────────────────────────

@router.post(
    "/signup",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an account after phone verification",
)
async def signup(data: SignupRequest, db: AsyncSession = Depends(get_db)):
    _require_password(data.password)
    await require_recent_verification(db, data.phone)

    if await db.scalar(select(Profile.id).where(func.lower(Profile.email) == data.email)):
        raise HTTPException(status_code=409, detail="An account with this email already exists")
    if await db.scalar(select(Profile.id).where(Profile.phone == data.phone)):
        raise HTTPException(status_code=409, detail="Number is already registered")

    profile = Profile(
        email=data.email,
        phone=data.phone,
        full_name=data.full_name.strip(),
        password_hash=hash_password(data.password),
        role=UserRole.USER,
    )
    db.add(profile)
    await db.flush()
    await db.refresh(profile)

    logger.info(f"New signup {profile.id}")
    return _issue_session(profile)


@router.post("/login", response_model=SessionResponse, summary="Email + password login")
async def login(data: LoginRequest, db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(Profile).where(func.lower(Profile.email) == data.email.strip().lower())
    )
    profile = result.scalar_one_or_none()
    if not profile or not verify_password(data.password, profile.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if profile.blocked:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=BLOCKED_MESSAGE)
    return _issue_session(profile)


@router.post(
    "/phone-password-login",
    response_model=SessionResponse,
    summary="Phone + password login",
)
async def phone_password_login(
    data: PhonePasswordLoginRequest,
    db: AsyncSession = Depends(get_db),
):
    phone = _require_valid_phone(data.phone)
    profile = await _profile_by_phone(db, phone)
    _check_phone_login_allowed(profile)

    if not verify_password(data.password, profile.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid phone number or password",
        )
    return _issue_session(profile)


@router.post("/phone-login", response_model=SessionResponse, summary="Phone + OTP login")
async def phone_login(data: PhoneLoginRequest, db: AsyncSession = Depends(get_db)):
    """Sign in with a phone number whose OTP was just verified."""
    phone = _require_valid_phone(data.phone)
    profile = await _profile_by_phone(db, phone)
    _check_phone_login_allowed(profile)
    await require_recent_verification(db, phone)
    return _issue_session(profile)


# ── Password reset ────────────────────────────────────────────

@router.post(
    "/reset-password",
    response_model=ResetPasswordResponse,
    summary="Reset password after phone verification",
)
async def reset_password(data: ResetPasswordRequest, db: AsyncSession = Depends(get_db)):
    phone = _require_valid_phone(data.phone)
    _require_password(data.new_password)
    await require_recent_verification(db, phone)

    profile = await _profile_by_phone(db, phone)
    profile.password_hash = hash_password(data.new_password)

    logger.info(f"Password reset for user {profile.id}")
    return ResetPasswordResponse(email=profile.email)


# ── Session ───────────────────────────────────────────────────

@router.post("/logout", response_model=MessageResponse, summary="Logout user")
async def logout(
    token_data: TokenData = Depends(get_token_data),
    redis=Depends(get_redis),
):
    """Add the presented JWT to the Redis deny-list until it would expire."""
    ttl = get_token_remaining_ttl(token_data.payload)
    if ttl > 0:
        await revoke_token(redis, token_data.jti, ttl)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=ProfileResponse, summary="Get current user")
async def get_me(current_user: Profile = Depends(get_current_user)):
    """Returns the authenticated user's profile."""
    return ProfileResponse.model_validate(current_user)


@router.post("/delete-account", response_model=MessageResponse, summary="Delete own account")
async def delete_account(
    token_data: TokenData = Depends(get_token_data),
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Permanently delete the caller's profile. Bookings, ledger rows, device
    tokens and personal coupons go with it (ON DELETE CASCADE).
    """
    if current_user.role == UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Admin account cannot be deleted")

    await db.execute(delete(Profile).where(Profile.id == current_user.id))
    ttl = get_token_remaining_ttl(token_data.payload)
    if ttl > 0:
        await revoke_token(redis, token_data.jti, ttl)

    logger.info(f"Account {current_user.id} deleted")
    return MessageResponse(message="Account deleted")
