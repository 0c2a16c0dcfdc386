"""
services/notification/router.py
Device token registration for FCM push notifications.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_user
from shared.models.models import DeviceToken, Profile
from shared.schemas.schemas import DeviceTokenRequest, MessageResponse

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.post("/device-tokens", response_model=MessageResponse)
async def register_device_token(
    data: DeviceTokenRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Upsert on token: a device that changes hands moves to the user who
    registered it last.
    """
    token = data.token.strip()
    result = await db.execute(select(DeviceToken).where(DeviceToken.token == token))
    existing = result.scalar_one_or_none()

    if existing:
        existing.user_id = current_user.id
        existing.platform = data.platform or existing.platform
    else:
        db.add(DeviceToken(user_id=current_user.id, token=token, platform=data.platform))

    return MessageResponse(message="Device registered")


@router.delete("/device-tokens/{token}", response_model=MessageResponse)
async def unregister_device_token(
    token: str,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        delete(DeviceToken).where(
            DeviceToken.token == token,
            DeviceToken.user_id == current_user.id,
        )
    )
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Device token not found")
    return MessageResponse(message="Device unregistered")
