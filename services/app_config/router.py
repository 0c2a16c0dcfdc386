"""
services/app_config/router.py
Public client configuration read from the app_config table.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.models.models import AppConfig
from shared.schemas.schemas import DataResponse

router = APIRouter(prefix="/config", tags=["Config"])

PUBLIC_KEYS = ("signup_carousel", "payment_config")


@router.get("", response_model=DataResponse)
async def get_public_config(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(AppConfig).where(AppConfig.key.in_(PUBLIC_KEYS)))
    return DataResponse(data={row.key: row.value for row in result.scalars().all()})
