"""Wallet collaborator: credits and debits on a user's wallet ledger."""
import logging
import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from marketship.models.wallet import WalletTransaction, WalletTransactionType

logger = logging.getLogger(__name__)


class WalletService:
    """Ledger-backed wallet. Balances are the sum of credits minus debits."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _record(
        self,
        user_id: str,
        transaction_type: WalletTransactionType,
        amount: Decimal,
        memo: str,
        order_id: Optional[uuid.UUID] = None,
    ) -> str:
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError(f"Wallet {transaction_type.value.lower()} amount must be positive, got {amount}")

        txn = WalletTransaction(
            user_id=str(user_id),
            transaction_type=transaction_type.value,
            amount=amount,
            memo=memo,
            order_id=order_id,
        )
        self.db.add(txn)
        await self.db.flush()

        logger.info(f"Wallet {transaction_type.value} {amount} for user {user_id}: {memo}")
        return str(txn.id)

    async def debit(self, user_id: str, amount: Decimal, memo: str, order_id: Optional[uuid.UUID] = None) -> str:
        return await self._record(user_id, WalletTransactionType.DEBIT, amount, memo, order_id)

    async def credit(self, user_id: str, amount: Decimal, memo: str, order_id: Optional[uuid.UUID] = None) -> str:
        return await self._record(user_id, WalletTransactionType.CREDIT, amount, memo, order_id)

    async def balance(self, user_id: str) -> Decimal:
        signed = case(
            (WalletTransaction.transaction_type == WalletTransactionType.CREDIT.value, WalletTransaction.amount),
            else_=-WalletTransaction.amount,
        )
        result = await self.db.execute(
            select(func.coalesce(func.sum(signed), 0)).where(WalletTransaction.user_id == str(user_id))
        )
        return Decimal(str(result.scalar_one()))
