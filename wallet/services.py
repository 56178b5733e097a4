import logging
from decimal import Decimal
from sqlalchemy import update, func
from sqlalchemy.orm import Session
from auth.core.enums import WalletTransactionType, PaymentMethod, LedgerReference
from parking.errors import InsufficientFunds, InvalidState
from parking.locks import guarded, wallet_key
from .models import WalletAccount, WalletTransaction

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

def _money(amount) -> Decimal:
    value = Decimal(str(amount)).quantize(CENT)
    if value <= 0:
        raise InvalidState("金额必须大于0")
    return value

def get_or_create_wallet(db: Session, user_id: int, lock: bool = False) -> WalletAccount:
    q = db.query(WalletAccount).filter(WalletAccount.user_id == user_id)
    if lock:
        q = q.populate_existing().with_for_update()
    acc = q.first()
    if not acc:
        acc = WalletAccount(user_id=user_id, balance=Decimal("0.00"))
        db.add(acc)
        db.flush()
    return acc

def _append(db: Session, acc: WalletAccount, amount: Decimal, tx_type: WalletTransactionType, description: str | None,
            reference_type: LedgerReference | None, reference_id: int | None, method: PaymentMethod | None) -> WalletTransaction:
    tx = WalletTransaction(
        user_id=acc.user_id,
        amount=amount,
        balance_after=acc.balance,
        transaction_type=tx_type,
        method=method,
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    db.add(tx)
    db.flush()
    logger.info("wallet %s %s %s -> balance %s", acc.user_id, tx_type.value, amount, acc.balance)
    return tx

def credit(db: Session, user_id: int, amount, tx_type: WalletTransactionType = WalletTransactionType.TOPUP, description: str | None = None,
           reference_type: LedgerReference | None = None, reference_id: int | None = None, method: PaymentMethod | None = None) -> WalletTransaction:
    """Add ``amount`` to the balance and append the matching transaction.

    Runs inside the caller's transaction; the caller owns the wallet lock and
    the commit.
    """
    value = _money(amount)
    acc = get_or_create_wallet(db, user_id, lock=True)
    db.execute(
        update(WalletAccount)
        .where(WalletAccount.id == acc.id)
        .values(balance=WalletAccount.balance + value)
        .execution_options(synchronize_session="fetch")
    )
    return _append(db, acc, value, tx_type, description, reference_type, reference_id, method)

def debit(db: Session, user_id: int, amount, tx_type: WalletTransactionType = WalletTransactionType.CHARGE, description: str | None = None,
          reference_type: LedgerReference | None = None, reference_id: int | None = None, method: PaymentMethod | None = PaymentMethod.BALANCE) -> WalletTransaction:
    """Take ``amount`` from the balance, or raise ``InsufficientFunds`` without writing anything."""
    value = _money(amount)
    acc = get_or_create_wallet(db, user_id, lock=True)
    charged = db.execute(
        update(WalletAccount)
        .where(WalletAccount.id == acc.id, WalletAccount.balance >= value)
        .values(balance=WalletAccount.balance - value)
        .execution_options(synchronize_session="fetch")
    )
    if charged.rowcount != 1:
        logger.info("wallet %s debit of %s refused, balance %s", user_id, value, acc.balance)
        raise InsufficientFunds(user_id, acc.balance, value)
    return _append(db, acc, -value, tx_type, description, reference_type, reference_id, method)

def top_up(db: Session, user_id: int, amount, method: PaymentMethod) -> WalletAccount:
    with guarded(db, wallet_key(user_id)):
        tx = credit(db, user_id, amount, WalletTransactionType.TOPUP, f"通过{method.value}充值", method=method)
    acc = get_or_create_wallet(db, user_id)
    db.refresh(acc)
    logger.debug("top-up transaction %s committed", tx.id)
    return acc

def get_balance(db: Session, user_id: int) -> Decimal:
    acc = db.query(WalletAccount).filter(WalletAccount.user_id == user_id).first()
    if not acc:
        return Decimal("0.00")
    return Decimal(str(acc.balance)).quantize(CENT)

def ledger_sum(db: Session, user_id: int) -> Decimal:
    total = db.query(func.sum(WalletTransaction.amount)).filter(WalletTransaction.user_id == user_id).scalar()
    return Decimal(str(total or 0)).quantize(CENT)

def list_transactions(db: Session, user_id: int, skip: int = 0, limit: int = 20, tx_type: WalletTransactionType | None = None) -> tuple[int, list[WalletTransaction]]:
    q = db.query(WalletTransaction).filter(WalletTransaction.user_id == user_id)
    if tx_type is not None:
        q = q.filter(WalletTransaction.transaction_type == tx_type)
    total = q.count()
    items = q.order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc()).offset(skip).limit(limit).all()
    return total, items
