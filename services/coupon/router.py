"""
services/coupon/router.py
Coupon offers and validation. Both work signed out; a bearer token
makes the checks user-specific.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_optional_user
from shared.models.models import Profile
from shared.schemas.schemas import (
    CouponValidateRequest,
    CouponValidateResponse,
    OfferResponse,
    OffersResponse,
)
from shared.utils.coupons import list_offers, validate_coupon

router = APIRouter(prefix="/coupons", tags=["Coupons"])


@router.get("/offers", response_model=OffersResponse)
async def get_offers(
    current_user: Optional[Profile] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    offers = await list_offers(db, current_user.id if current_user else None)
    return OffersResponse(offers=[OfferResponse.model_validate(c) for c in offers])


@router.post("/validate", response_model=CouponValidateResponse)
async def validate(
    data: CouponValidateRequest,
    current_user: Optional[Profile] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    coupon = await validate_coupon(db, data.code, current_user.id if current_user else None)
    return CouponValidateResponse(code=coupon.code, discount_percent=coupon.discount_percent)
