"""
shared/utils/wallet.py
Wallet ledger writes. The balance on the profile and the ledger row are
written in the caller's session so they commit (or roll back) together.
"""

import logging
import uuid
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Profile, TransactionType, WalletTransaction

logger = logging.getLogger(__name__)


async def lock_profile(db: AsyncSession, user_id: uuid.UUID) -> Profile:
    """
    SELECT ... FOR UPDATE on the profile row. Concurrent wallet writers
    for the same user queue here until the holder's transaction ends.
    """
    result = await db.execute(
        select(Profile)
        .where(Profile.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    profile = result.scalar_one_or_none()
    if not profile:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return profile


async def _append(
    db: AsyncSession,
    profile: Profile,
    amount: int,
    tx_type: TransactionType,
    description: str,
    booking_id: Optional[uuid.UUID],
) -> WalletTransaction:
    tx = WalletTransaction(
        user_id=profile.id,
        amount=amount,
        type=tx_type,
        description=description,
        booking_id=booking_id,
    )
    db.add(tx)
    await db.flush()
    logger.info(
        f"Wallet {tx_type.value} of {amount} for user {profile.id}, "
        f"balance now {profile.wallet_balance}"
    )
    return tx


async def credit_wallet(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    description: str,
    booking_id: Optional[uuid.UUID] = None,
) -> Profile:
    """Add `amount` to the balance and append a credit row."""
    if amount <= 0:
        raise HTTPException(status_code=400, detail="Amount must be positive")

    profile = await lock_profile(db, user_id)
    profile.wallet_balance += amount
    await _append(db, profile, amount, TransactionType.CREDIT, description, booking_id)
    return profile


async def debit_wallet(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    description: str,
    booking_id: Optional[uuid.UUID] = None,
) -> Profile:
    """Take `amount` from the balance and append a debit row."""
    if amount <= 0:
        raise HTTPException(status_code=400, detail="Amount must be positive")

    profile = await lock_profile(db, user_id)
    if profile.wallet_balance < amount:
        raise HTTPException(status_code=400, detail="Insufficient wallet balance")
    profile.wallet_balance -= amount
    await _append(db, profile, amount, TransactionType.DEBIT, description, booking_id)
    return profile
