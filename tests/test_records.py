from decimal import Decimal

import pytest

from auth.core.enums import (
    SpaceStatus, ReservationStatus, RecordPaymentStatus, PaymentMethod, ParkingLotStatus,
    WalletTransactionType, ReservationPaymentStatus,
)
from parking import registry
from parking.models import ParkingSpace, Reservation, ParkingRecord
from parking.commands import CreateEntryCommand, CreateReservationCommand, PayCommand, UpdateLotCommand, CreateLotCommand
from parking.errors import (
    AlreadyExited, AlreadyPaid, InsufficientFunds, InvalidState, SpaceUnavailable,
    ReservationMismatch, PartialSettlement, Forbidden, NotFound,
)
from parking.records import create_entry, exit_record, pay_record, load_record, list_records, list_active_records
from parking.reservations import create_reservation, pay_reservation, cancel_reservation, load_reservation
from parking.consistency import check_consistency, repair
from parking.services import update_lot, create_lot, delete_lot
from wallet.services import top_up, get_balance, list_transactions
from conftest import NOW


def _at(hour, minute=0):
    return NOW.replace(hour=hour, minute=minute)


def _enter(db, actor, lot, space="A-001", plate="京A12345", at=NOW, **kwargs):
    cmd = CreateEntryCommand(lot_id=lot.id, space_number=space, license_plate=plate, **kwargs)
    return create_entry(db, actor, cmd, now=at)


def _reserve_and_pay(db, actor, owner, lot, start, end, space="A-001", plate="京A12345"):
    top_up(db, owner.id, Decimal("100.00"), PaymentMethod.ALIPAY)
    res = create_reservation(db, actor, CreateReservationCommand(
        lot_id=lot.id, space_number=space, license_plate=plate, start=start, end=end,
    ), now=NOW)
    return pay_reservation(db, actor, res.id, PayCommand(), now=NOW)


def _space(db, lot, number="A-001"):
    return registry.get_space(db, lot.id, number)


def _available(db, lot):
    lot = registry.get_lot(db, lot.id)
    db.refresh(lot)
    return lot.available_spaces


def test_walk_in_entry_and_exit(db_session, admin_actor, lot):
    record = _enter(db_session, admin_actor, lot)
    assert record.user_id is None
    assert record.is_active is True
    assert record.payment_status == RecordPaymentStatus.UNPAID
    assert _space(db_session, lot).status == SpaceStatus.OCCUPIED
    assert _available(db_session, lot) == 2

    done = exit_record(db_session, admin_actor, record.id, now=_at(10, 5))
    # 65 分钟按两小时计费
    assert done.duration_minutes == 65
    assert done.fee == Decimal("20.00")
    assert done.is_active is False
    assert _space(db_session, lot).status == SpaceStatus.FREE
    assert _available(db_session, lot) == 3


def test_exit_twice_is_rejected_and_fee_unchanged(db_session, admin_actor, lot):
    record = _enter(db_session, admin_actor, lot)
    exit_record(db_session, admin_actor, record.id, now=_at(10, 5))
    with pytest.raises(AlreadyExited):
        exit_record(db_session, admin_actor, record.id, now=_at(13))
    record = load_record(db_session, record.id)
    assert record.fee == Decimal("20.00")
    assert record.duration_minutes == 65
    assert _available(db_session, lot) == 3


def test_vehicle_already_inside_cannot_enter_again(db_session, admin_actor, lot):
    _enter(db_session, admin_actor, lot)
    with pytest.raises(InvalidState):
        _enter(db_session, admin_actor, lot, space="A-002")
    assert _space(db_session, lot, "A-002").status == SpaceStatus.FREE


def test_user_cannot_enter_on_behalf_of_someone_else(db_session, actor, other_user, lot):
    with pytest.raises(Forbidden):
        _enter(db_session, actor, lot, user_id=other_user.id)


def test_closed_lot_refuses_entry(db_session, admin_actor, lot):
    update_lot(db_session, admin_actor, lot.id, UpdateLotCommand(status=ParkingLotStatus.RENOVATING))
    with pytest.raises(InvalidState):
        _enter(db_session, admin_actor, lot)


def test_pay_with_insufficient_funds_leaves_record_untouched(db_session, actor, owner, lot):
    top_up(db_session, owner.id, Decimal("5.00"), PaymentMethod.ALIPAY)
    record = _enter(db_session, actor, lot)

    with pytest.raises(InsufficientFunds):
        pay_record(db_session, actor, record.id, PayCommand(), now=_at(10, 5))

    record = load_record(db_session, record.id)
    assert record.exit_time is None
    assert record.fee is None
    assert record.is_active is True
    assert record.payment_status == RecordPaymentStatus.UNPAID
    assert _space(db_session, lot).status == SpaceStatus.OCCUPIED
    assert get_balance(db_session, owner.id) == Decimal("5.00")
    total, _ = list_transactions(db_session, owner.id, tx_type=WalletTransactionType.CHARGE)
    assert total == 0


def test_pay_runs_exit_inline(db_session, actor, owner, lot):
    top_up(db_session, owner.id, Decimal("100.00"), PaymentMethod.ALIPAY)
    record = _enter(db_session, actor, lot)

    paid = pay_record(db_session, actor, record.id, PayCommand(), now=_at(10, 5))
    assert paid.payment_status == RecordPaymentStatus.PAID
    assert paid.fee == Decimal("20.00")
    assert paid.exit_time is not None
    assert paid.is_active is False
    assert paid.payment_id.startswith("PAY")
    assert get_balance(db_session, owner.id) == Decimal("80.00")
    assert _space(db_session, lot).status == SpaceStatus.FREE

    with pytest.raises(AlreadyPaid):
        pay_record(db_session, actor, record.id, PayCommand(), now=_at(11))
    assert get_balance(db_session, owner.id) == Decimal("80.00")


def test_pay_after_exit_uses_recorded_fee(db_session, actor, owner, lot):
    top_up(db_session, owner.id, Decimal("100.00"), PaymentMethod.ALIPAY)
    record = _enter(db_session, actor, lot)
    exit_record(db_session, actor, record.id, now=_at(10, 5))

    paid = pay_record(db_session, actor, record.id, PayCommand(), now=_at(15))
    assert paid.fee == Decimal("20.00")
    assert get_balance(db_session, owner.id) == Decimal("80.00")
    _, charges = list_transactions(db_session, owner.id, tx_type=WalletTransactionType.CHARGE)
    assert [c.reference_id for c in charges] == [record.id]


def test_walk_in_pays_outside_the_wallet(db_session, admin_actor, lot):
    record = _enter(db_session, admin_actor, lot)
    with pytest.raises(InvalidState):
        pay_record(db_session, admin_actor, record.id, PayCommand(), now=_at(10))
    assert load_record(db_session, record.id).exit_time is None

    paid = pay_record(db_session, admin_actor, record.id, PayCommand(method=PaymentMethod.CASH), now=_at(10))
    assert paid.payment_status == RecordPaymentStatus.PAID
    assert paid.fee == Decimal("10.00")
    assert paid.is_active is False


def test_entry_with_reservation_consumes_it(db_session, actor, owner, lot):
    res = _reserve_and_pay(db_session, actor, owner, lot, _at(9, 30), _at(10, 30))
    assert _available(db_session, lot) == 2

    record = _enter(db_session, actor, lot, at=_at(9, 35), reservation_id=res.id)
    assert record.reservation_id == res.id
    assert record.user_id == owner.id
    assert load_reservation(db_session, res.id).status == ReservationStatus.USED
    assert _space(db_session, lot).status == SpaceStatus.OCCUPIED
    assert _available(db_session, lot) == 2

    # 已使用的预约不能再取消
    with pytest.raises(InvalidState):
        cancel_reservation(db_session, actor, res.id, now=_at(9, 40))


def test_entry_with_mismatched_reservation(db_session, actor, owner, lot):
    res = _reserve_and_pay(db_session, actor, owner, lot, _at(9, 30), _at(10, 30))
    with pytest.raises(ReservationMismatch):
        _enter(db_session, actor, lot, plate="京Z99999", at=_at(9, 35), reservation_id=res.id)
    assert load_reservation(db_session, res.id).status == ReservationStatus.CONFIRMED
    assert _space(db_session, lot).status == SpaceStatus.RESERVED


def test_unpaid_reservation_cannot_be_used_for_entry(db_session, actor, lot):
    res = create_reservation(db_session, actor, CreateReservationCommand(
        lot_id=lot.id, space_number="A-001", license_plate="京A12345", start=_at(9, 30), end=_at(10, 30),
    ), now=NOW)
    with pytest.raises(InvalidState):
        _enter(db_session, actor, lot, at=_at(9, 35), reservation_id=res.id)


def test_walk_in_cannot_take_reserved_space(db_session, actor, owner, admin_actor, lot):
    _reserve_and_pay(db_session, actor, owner, lot, _at(9, 30), _at(10, 30))
    with pytest.raises(SpaceUnavailable):
        _enter(db_session, admin_actor, lot, plate="京C00001", at=_at(9, 35))
    assert _space(db_session, lot).status == SpaceStatus.RESERVED


def test_walk_in_takes_space_after_hold_has_ended(db_session, actor, owner, admin_actor, lot):
    paid = _reserve_and_pay(db_session, actor, owner, lot, _at(9, 30), _at(10, 30))
    unpaid = create_reservation(db_session, actor, CreateReservationCommand(
        lot_id=lot.id, space_number="A-002", license_plate="京A12345", start=_at(9, 30), end=_at(10, 0),
    ), now=NOW)

    # 未执行过期清理，直接入场
    record = _enter(db_session, admin_actor, lot, plate="京C00001", at=_at(10, 45))
    assert record.is_active is True
    assert _space(db_session, lot).status == SpaceStatus.OCCUPIED
    paid = load_reservation(db_session, paid.id)
    assert paid.status == ReservationStatus.EXPIRED
    assert paid.payment_status == ReservationPaymentStatus.PAID

    _enter(db_session, admin_actor, lot, space="A-002", plate="京C00002", at=_at(10, 45))
    unpaid = load_reservation(db_session, unpaid.id)
    assert unpaid.status == ReservationStatus.EXPIRED
    assert unpaid.payment_status == ReservationPaymentStatus.CANCELLED
    assert _available(db_session, lot) == 1
    # 已付预约费不退
    assert get_balance(db_session, owner.id) == Decimal("98.00")


def test_exit_requeues_space_for_later_reservation(db_session, actor, owner, other_actor, lot):
    res = _reserve_and_pay(db_session, actor, owner, lot, _at(9, 30), _at(10, 30))
    later = create_reservation(db_session, other_actor, CreateReservationCommand(
        lot_id=lot.id, space_number="A-001", license_plate="京B00001", start=_at(11), end=_at(12),
    ), now=NOW)

    record = _enter(db_session, actor, lot, at=_at(9, 35), reservation_id=res.id)
    exit_record(db_session, actor, record.id, now=_at(10, 20))
    assert _space(db_session, lot).status == SpaceStatus.RESERVED
    assert _available(db_session, lot) == 2

    cancel_reservation(db_session, other_actor, later.id, now=_at(10, 30))
    assert _space(db_session, lot).status == SpaceStatus.FREE
    assert _available(db_session, lot) == 3


def test_failed_release_is_partial_settlement_until_repair(db_session, admin_actor, lot):
    record = _enter(db_session, admin_actor, lot, space="A-003")
    # 绕过状态机制造车位状态漂移
    db_session.query(ParkingSpace).filter(
        ParkingSpace.parking_lot_id == lot.id, ParkingSpace.space_number == "A-003"
    ).update({ParkingSpace.status: SpaceStatus.MAINTENANCE})
    db_session.commit()

    with pytest.raises(PartialSettlement) as exc:
        exit_record(db_session, admin_actor, record.id, now=_at(9, 30))
    assert exc.value.record_id == record.id

    record = load_record(db_session, record.id)
    assert record.exit_time is not None
    assert record.fee == Decimal("10.00")
    assert record.is_active is True
    assert check_consistency(db_session)["partial_settlements"] == [record.id]

    with pytest.raises(AlreadyExited):
        exit_record(db_session, admin_actor, record.id, now=_at(9, 40))

    result = repair(db_session, now=_at(9, 45))
    assert result["settled_records"] == [record.id]
    assert load_record(db_session, record.id).is_active is False
    assert check_consistency(db_session)["ok"] is True


def test_record_listing(db_session, actor, admin_actor, lot):
    mine = _enter(db_session, actor, lot)
    _enter(db_session, admin_actor, lot, space="A-002", plate="京C00001")

    total, items = list_records(db_session, actor)
    assert total == 1
    assert items[0].id == mine.id
    total, _ = list_records(db_session, admin_actor, is_active=True)
    assert total == 2
    assert [r.id for r in list_active_records(db_session, actor)] == [mine.id]

    exit_record(db_session, actor, mine.id, now=_at(10))
    assert list_active_records(db_session, actor) == []
    total, _ = list_records(db_session, admin_actor, payment_status=RecordPaymentStatus.UNPAID)
    assert total == 2


def test_lot_with_finished_history_cannot_be_deleted(db_session, actor, owner, admin_actor, lot):
    res = _reserve_and_pay(db_session, actor, owner, lot, _at(9, 30), _at(10, 30))
    cancel_reservation(db_session, actor, res.id, now=_at(9, 10))
    record = _enter(db_session, admin_actor, lot, space="A-002", plate="京C00001")
    exit_record(db_session, admin_actor, record.id, now=_at(10))

    # 只剩已结束的预约和记录，依然不能删除
    with pytest.raises(InvalidState):
        delete_lot(db_session, admin_actor, lot.id)
    assert registry.get_lot(db_session, lot.id).id == lot.id
    assert load_reservation(db_session, res.id).status == ReservationStatus.CANCELLED
    assert load_record(db_session, record.id).fee == Decimal("10.00")
    for model in (Reservation, ParkingRecord):
        fk = next(iter(model.__table__.c.parking_lot_id.foreign_keys))
        assert fk.ondelete == "RESTRICT"

    empty = create_lot(db_session, admin_actor, CreateLotCommand(
        name="空停车场", address="测试路 2 号", hourly_rate=Decimal("5.00"), total_spaces=1,
    ))
    delete_lot(db_session, admin_actor, empty.id)
    with pytest.raises(NotFound):
        registry.get_lot(db_session, empty.id)
