"""
services/user/router.py
Profile management: basic details, service address and phone number.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.auth.router import require_recent_verification
from shared.middleware.auth import get_current_user
from shared.models.models import Profile
from shared.schemas.schemas import (
    AddressUpdateRequest,
    PhoneUpdateRequest,
    ProfileResponse,
    ProfileUpdateRequest,
)

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me", response_model=ProfileResponse)
async def get_my_profile(current_user: Profile = Depends(get_current_user)):
    return ProfileResponse.model_validate(current_user)


@router.put("/me", response_model=ProfileResponse)
async def update_my_profile(
    data: ProfileUpdateRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    updates = data.model_dump(exclude_none=True)

    if "email" in updates:
        email = updates["email"].lower()
        taken = await db.scalar(
            select(Profile.id).where(
                func.lower(Profile.email) == email,
                Profile.id != current_user.id,
            )
        )
        if taken:
            raise HTTPException(status_code=409, detail="An account with this email already exists")
        updates["email"] = email

    for field, value in updates.items():
        setattr(current_user, field, value)

    await db.flush()
    return ProfileResponse.model_validate(current_user)


@router.put("/me/address", response_model=ProfileResponse)
async def update_my_address(
    data: AddressUpdateRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Save the service address. The one-line `location_address` is composed
    from the parts when the client does not send it.
    """
    current_user.address_line1 = data.address_line1
    current_user.address_line2 = data.address_line2
    current_user.city = data.city
    current_user.state = data.state
    current_user.pincode = data.pincode
    current_user.location_lat = data.latitude
    current_user.location_lng = data.longitude
    current_user.location_address = data.location_address or ", ".join(
        part for part in (
            data.address_line1, data.address_line2, data.city, data.state, data.pincode
        ) if part
    )

    await db.flush()
    return ProfileResponse.model_validate(current_user)


@router.put("/me/phone", response_model=ProfileResponse)
async def update_my_phone(
    data: PhoneUpdateRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Switch to a new phone number that was just verified by OTP."""
    if data.phone == current_user.phone:
        return ProfileResponse.model_validate(current_user)

    await require_recent_verification(db, data.phone)

    taken = await db.scalar(select(Profile.id).where(Profile.phone == data.phone))
    if taken:
        raise HTTPException(status_code=409, detail="Number is already registered")

    current_user.phone = data.phone
    await db.flush()
    return ProfileResponse.model_validate(current_user)
