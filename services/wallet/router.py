"""
services/wallet/router.py
Customer view of the wallet balance and its ledger.
"""

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from shared.middleware.auth import get_current_user
from shared.models.models import Profile, TransactionType, WalletTransaction
from shared.schemas.schemas import WalletResponse, WalletTransactionResponse

router = APIRouter(prefix="/wallet", tags=["Wallet"])


@router.get("", response_model=WalletResponse)
async def get_wallet(
    tx_type: Literal["all", "credit", "debit"] = Query("all", alias="type"),
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Balance plus the most recent ledger rows, newest first."""
    query = select(WalletTransaction).where(WalletTransaction.user_id == current_user.id)
    if tx_type != "all":
        query = query.where(WalletTransaction.type == TransactionType(tx_type))
    query = query.order_by(WalletTransaction.created_at.desc()).limit(settings.WALLET_HISTORY_LIMIT)

    result = await db.execute(query)
    return WalletResponse(
        balance=current_user.wallet_balance,
        transactions=[WalletTransactionResponse.model_validate(t) for t in result.scalars().all()],
    )
