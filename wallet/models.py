from sqlalchemy import Column, Integer, Numeric, ForeignKey, Enum, String, Index, BigInteger
from sqlalchemy.sql import func
from auth.database import Base, UTCDateTime
from auth.core.enums import PaymentMethod, WalletTransactionType, LedgerReference

class WalletAccount(Base):
    __tablename__ = "wallet_accounts"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)
    # 冗余余额，必须始终等于该用户流水金额之和
    balance = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(UTCDateTime, default=func.now(), nullable=False)
    updated_at = Column(UTCDateTime, default=func.now(), onupdate=func.now(), nullable=False)

class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"
    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # 带符号金额，负数为扣款
    amount = Column(Numeric(12, 2), nullable=False)
    balance_after = Column(Numeric(12, 2), nullable=False)
    transaction_type = Column(Enum(WalletTransactionType), nullable=False)
    method = Column(Enum(PaymentMethod), nullable=True)
    description = Column(String(255), nullable=True)
    reference_type = Column(Enum(LedgerReference), nullable=True)
    reference_id = Column(BigInteger().with_variant(Integer, 'sqlite'), nullable=True)
    created_at = Column(UTCDateTime, default=func.now(), nullable=False)
    __table_args__ = (
        Index("idx_wallet_tx_user_type", "user_id", "transaction_type"),
        Index("idx_wallet_tx_reference", "reference_type", "reference_id"),
    )
