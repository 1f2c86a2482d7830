"""Wallet ledger rows written by the shipping engine."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from marketship.database import Base
from marketship.db_types import UUIDType, MoneyType


class WalletTransactionType(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class WalletTransaction(Base):
    """Single credit or debit on a user's wallet."""
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        Index("ix_wallet_transactions_user_created", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(10), nullable=False, comment="CREDIT or DEBIT")
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    memo: Mapped[str] = mapped_column(String(500), nullable=False)
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)
    category: Mapped[str] = mapped_column(String(30), default="shipping", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
