import threading
from decimal import Decimal

import pytest

from auth.core.enums import PaymentMethod, WalletTransactionType, LedgerReference
from parking.errors import InsufficientFunds, InvalidState
from parking.locks import guarded, wallet_key
from wallet.services import top_up, credit, debit, get_balance, ledger_sum, list_transactions


def test_new_user_has_zero_balance(db_session, owner):
    assert get_balance(db_session, owner.id) == Decimal("0.00")
    assert ledger_sum(db_session, owner.id) == Decimal("0.00")


def test_top_up_appends_transaction(db_session, owner):
    acc = top_up(db_session, owner.id, Decimal("100"), PaymentMethod.WECHAT_PAY)
    assert acc.balance == Decimal("100.00")

    total, txs = list_transactions(db_session, owner.id)
    assert total == 1
    tx = txs[0]
    assert tx.amount == Decimal("100.00")
    assert tx.balance_after == Decimal("100.00")
    assert tx.transaction_type == WalletTransactionType.TOPUP
    assert tx.method == PaymentMethod.WECHAT_PAY


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5.00")])
def test_non_positive_amount_is_rejected(db_session, owner, amount):
    with pytest.raises(InvalidState):
        top_up(db_session, owner.id, amount, PaymentMethod.ALIPAY)
    assert list_transactions(db_session, owner.id)[0] == 0


def test_debit_and_credit_keep_ledger_in_step(db_session, owner):
    top_up(db_session, owner.id, Decimal("30.00"), PaymentMethod.ALIPAY)
    with guarded(db_session, wallet_key(owner.id)):
        debit(db_session, owner.id, Decimal("12.50"), description="停车费",
              reference_type=LedgerReference.PARKING_RECORD, reference_id=7)
    with guarded(db_session, wallet_key(owner.id)):
        credit(db_session, owner.id, Decimal("2.50"), WalletTransactionType.REFUND, "退款",
               LedgerReference.RESERVATION, 3, PaymentMethod.BALANCE)

    assert get_balance(db_session, owner.id) == Decimal("20.00")
    assert ledger_sum(db_session, owner.id) == Decimal("20.00")

    total, charges = list_transactions(db_session, owner.id, tx_type=WalletTransactionType.CHARGE)
    assert total == 1
    assert charges[0].amount == Decimal("-12.50")
    assert charges[0].balance_after == Decimal("17.50")
    assert charges[0].reference_type == LedgerReference.PARKING_RECORD
    assert charges[0].method == PaymentMethod.BALANCE


def test_failed_debit_writes_nothing(db_session, owner):
    top_up(db_session, owner.id, Decimal("5.00"), PaymentMethod.ALIPAY)
    with pytest.raises(InsufficientFunds) as exc:
        with guarded(db_session, wallet_key(owner.id)):
            debit(db_session, owner.id, Decimal("5.01"))
    assert exc.value.amount == Decimal("5.01")
    assert get_balance(db_session, owner.id) == Decimal("5.00")
    total, _ = list_transactions(db_session, owner.id)
    assert total == 1


def test_debit_of_exact_balance_empties_wallet(db_session, owner):
    top_up(db_session, owner.id, Decimal("8.00"), PaymentMethod.ALIPAY)
    with guarded(db_session, wallet_key(owner.id)):
        debit(db_session, owner.id, Decimal("8.00"))
    assert get_balance(db_session, owner.id) == Decimal("0.00")
    assert ledger_sum(db_session, owner.id) == Decimal("0.00")


def test_concurrent_debits_never_overdraw(db_session, session_factory, owner):
    user_id = owner.id
    top_up(db_session, user_id, Decimal("10.00"), PaymentMethod.ALIPAY)
    barrier = threading.Barrier(2)
    outcomes = []

    def worker():
        db = session_factory()
        try:
            barrier.wait()
            with guarded(db, wallet_key(user_id)):
                debit(db, user_id, Decimal("6.00"), WalletTransactionType.CHARGE, "并发扣款")
            outcomes.append("ok")
        except InsufficientFunds:
            outcomes.append("insufficient")
        finally:
            db.close()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["insufficient", "ok"]
    db_session.expire_all()
    assert get_balance(db_session, user_id) == Decimal("4.00")
    assert ledger_sum(db_session, user_id) == get_balance(db_session, user_id)
    total, _ = list_transactions(db_session, user_id, tx_type=WalletTransactionType.CHARGE)
    assert total == 1
