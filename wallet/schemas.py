from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from auth.core.enums import PaymentMethod, WalletTransactionType, LedgerReference

class WalletBalanceRead(BaseModel):
    balance: Decimal

class WalletRechargeRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    payment_method: PaymentMethod

class WalletTransactionRead(BaseModel):
    id: int
    user_id: int
    amount: Decimal
    balance_after: Decimal
    transaction_type: WalletTransactionType
    method: Optional[PaymentMethod] = None
    description: Optional[str] = None
    reference_type: Optional[LedgerReference] = None
    reference_id: Optional[int] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)

class WalletTransactionList(BaseModel):
    total: int
    transactions: List[WalletTransactionRead]
