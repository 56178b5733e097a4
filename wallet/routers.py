import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from auth.database import get_db
from auth.services.auth_service import get_current_user
from auth.routers.admin import require_admin
from auth.core.enums import PaymentMethod, WalletTransactionType
from parking.errors import ParkingError, http_error
from .schemas import WalletBalanceRead, WalletRechargeRequest, WalletTransactionList
from .services import get_balance, top_up, list_transactions

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Wallet"])

@router.get("/wallet/balance", response_model=WalletBalanceRead)
def balance(db: Session = Depends(get_db), user=Depends(get_current_user)):
    return {"balance": get_balance(db, user.id)}

@router.post("/wallet/recharge", response_model=WalletBalanceRead)
def recharge(req: WalletRechargeRequest, db: Session = Depends(get_db), user=Depends(get_current_user)):
    if req.payment_method == PaymentMethod.BALANCE:
        raise HTTPException(status_code=400, detail="不能使用余额为钱包充值")
    try:
        acc = top_up(db, user.id, req.amount, req.payment_method)
        return {"balance": acc.balance}
    except ParkingError as e:
        raise http_error(e)
    except Exception:
        logger.exception("wallet top-up failed for user %s", user.id)
        raise HTTPException(status_code=500, detail="充值失败")

@router.get("/wallet/transactions", response_model=WalletTransactionList)
def transactions(skip: int = 0, limit: int = 20, transaction_type: WalletTransactionType | None = None,
                 db: Session = Depends(get_db), user=Depends(get_current_user)):
    total, items = list_transactions(db, user.id, skip, limit, transaction_type)
    return {"total": total, "transactions": items}

@router.get("/admin/wallet/transactions", response_model=WalletTransactionList)
def admin_transactions(user_id: int, skip: int = 0, limit: int = 20, transaction_type: WalletTransactionType | None = None,
                       db: Session = Depends(get_db), admin=Depends(require_admin)):
    total, items = list_transactions(db, user_id, skip, limit, transaction_type)
    return {"total": total, "transactions": items}
