"""Parking session manager: entry, exit and settlement of a physical stay.

``exit_time``, ``duration_minutes`` and ``fee`` are written once, by whichever
of exit or payment runs first. ``is_active`` only turns false after the space
was released; a failed release is reported as ``PartialSettlement`` with the
exit fields already committed, and left to the repair pass.
"""
import logging
from datetime import datetime
from sqlalchemy.orm import Session
from auth.core.enums import (
    ParkingLotStatus, SpaceStatus, ReservationStatus, RecordPaymentStatus, PaymentMethod,
    WalletTransactionType, LedgerReference,
)
from wallet.services import debit
from .models import ParkingRecord
from .commands import Actor, CreateEntryCommand, PayCommand
from .errors import (
    NotFound, InvalidState, ReservationMismatch, SpaceUnavailable, SpaceConflict,
    AlreadyExited, AlreadyPaid, PartialSettlement, ParkingError,
)
from .fees import compute_fee
from .locks import guarded, space_key, wallet_key
from .registry import get_lot, get_space, try_occupy, release
from .reservations import load_reservation, is_overdue, find_conflicts, live_holds, expire_space_holds, new_payment_id
from .clock import utcnow, as_utc

logger = logging.getLogger(__name__)


def load_record(db: Session, record_id: int, lock: bool = False) -> ParkingRecord:
    q = db.query(ParkingRecord).filter(ParkingRecord.id == record_id)
    if lock:
        q = q.populate_existing().with_for_update()
    record = q.first()
    if not record:
        raise NotFound("停车记录不存在")
    return record


def create_entry(db: Session, actor: Actor, cmd: CreateEntryCommand, now: datetime | None = None) -> ParkingRecord:
    now = as_utc(now) or utcnow()
    if actor.is_admin:
        user_id = cmd.user_id
    else:
        actor.ensure_owns(cmd.user_id if cmd.user_id is not None else actor.user_id)
        user_id = actor.user_id

    with guarded(db, space_key(cmd.lot_id, cmd.space_number)):
        lot = get_lot(db, cmd.lot_id)
        if lot.status != ParkingLotStatus.OPEN:
            raise InvalidState("停车场当前未营业")
        space = get_space(db, cmd.lot_id, cmd.space_number, lock=True)
        parked = db.query(ParkingRecord.id).filter(
            ParkingRecord.license_plate == cmd.license_plate, ParkingRecord.is_active.is_(True)
        ).first()
        if parked:
            raise InvalidState(f"车辆 {cmd.license_plate} 已在场内")

        reservation = None
        if cmd.reservation_id is not None:
            reservation = load_reservation(db, cmd.reservation_id, lock=True)
            actor.ensure_owns(reservation.user_id)
            if is_overdue(reservation, now):
                raise InvalidState("预约已过期")
            if reservation.status != ReservationStatus.CONFIRMED:
                raise InvalidState(f"预约状态为 {reservation.status.value}，无法入场")
            if (reservation.parking_lot_id, reservation.space_number, reservation.license_plate) != (cmd.lot_id, cmd.space_number, cmd.license_plate):
                raise ReservationMismatch("入场信息与预约的停车场、车位或车牌不一致")
            others = find_conflicts(db, cmd.lot_id, cmd.space_number, now, reservation.expiry_time, exclude_id=reservation.id)
            if others:
                raise SpaceConflict("车位在本次预约时段内已有其他预约", [r.id for r in others])
            user_id = reservation.user_id
        elif space.status == SpaceStatus.RESERVED:
            # 已预约车位只接受持有预约的车辆
            if live_holds(db, cmd.lot_id, cmd.space_number, now):
                raise SpaceUnavailable(cmd.lot_id, cmd.space_number, space.status)
            # 预约均已过期但尚未清理，随本次入场一并落库
            expire_space_holds(db, cmd.lot_id, cmd.space_number, now)

        try_occupy(db, cmd.lot_id, cmd.space_number)
        if reservation is not None:
            reservation.status = ReservationStatus.USED
        record = ParkingRecord(
            user_id=user_id,
            parking_lot_id=cmd.lot_id,
            space_number=cmd.space_number,
            license_plate=cmd.license_plate,
            vehicle_type=cmd.vehicle_type,
            entry_time=now,
            payment_status=RecordPaymentStatus.UNPAID,
            is_active=True,
            reservation_id=reservation.id if reservation is not None else None,
            notes=cmd.notes,
        )
        db.add(record)
        db.flush()
    db.refresh(record)
    logger.info("entry %s: %s on %s/%s", record.id, record.license_plate, record.parking_lot_id, record.space_number)
    return record


def _record_exit(db: Session, record: ParkingRecord, now: datetime) -> None:
    if record.exit_time is not None:
        raise AlreadyExited(record.id)
    lot = get_lot(db, record.parking_lot_id)
    minutes, fee = compute_fee(as_utc(record.entry_time), now, record.vehicle_type, lot)
    record.exit_time = now
    record.duration_minutes = minutes
    record.fee = fee
    db.flush()


def _free_space(db: Session, record: ParkingRecord, now: datetime) -> None:
    try:
        space = get_space(db, record.parking_lot_id, record.space_number, lock=True)
        if space.status != SpaceStatus.OCCUPIED:
            raise SpaceUnavailable(record.parking_lot_id, record.space_number, space.status)
        requeue = live_holds(db, record.parking_lot_id, record.space_number, now) > 0
        release(db, record.parking_lot_id, record.space_number, requeue=requeue)
    except ParkingError as exc:
        logger.warning("record %s settled but space %s/%s not released: %s",
                       record.id, record.parking_lot_id, record.space_number, exc.message)
        raise PartialSettlement(record.id, exc) from exc
    record.is_active = False
    db.flush()


def exit_record(db: Session, actor: Actor, record_id: int, now: datetime | None = None) -> ParkingRecord:
    now = as_utc(now) or utcnow()
    record = load_record(db, record_id)
    actor.ensure_owns(record.user_id)

    with guarded(db, space_key(record.parking_lot_id, record.space_number)):
        record = load_record(db, record_id, lock=True)
        _record_exit(db, record, now)
        _free_space(db, record, now)
    db.refresh(record)
    logger.info("exit %s after %s min, fee %s", record.id, record.duration_minutes, record.fee)
    return record


def pay_record(db: Session, actor: Actor, record_id: int, cmd: PayCommand, now: datetime | None = None) -> ParkingRecord:
    """Settle a record, running the exit first when the vehicle is still inside.

    A failed wallet debit rolls back the inline exit too, so the record and
    the space look exactly as before the call.
    """
    now = as_utc(now) or utcnow()
    record = load_record(db, record_id)
    actor.ensure_owns(record.user_id)
    keys = [space_key(record.parking_lot_id, record.space_number)]
    if cmd.method == PaymentMethod.BALANCE and record.user_id is not None:
        keys.append(wallet_key(record.user_id))

    with guarded(db, *keys):
        record = load_record(db, record_id, lock=True)
        if record.payment_status == RecordPaymentStatus.PAID:
            raise AlreadyPaid("该停车记录已支付")
        if record.payment_status != RecordPaymentStatus.UNPAID:
            raise InvalidState(f"停车记录支付状态为 {record.payment_status.value}，无法支付")
        if cmd.method == PaymentMethod.BALANCE and record.user_id is None:
            raise InvalidState("散客停车记录不能使用钱包支付")
        if record.exit_time is None:
            _record_exit(db, record, now)
        if cmd.method == PaymentMethod.BALANCE and record.fee > 0:
            debit(
                db, record.user_id, record.fee, WalletTransactionType.CHARGE,
                f"支付停车费用 - 记录{record.id}", LedgerReference.PARKING_RECORD, record.id,
            )
        record.payment_status = RecordPaymentStatus.PAID
        record.payment_method = cmd.method
        record.payment_time = now
        record.payment_id = new_payment_id(now)
        db.flush()
        if record.is_active:
            _free_space(db, record, now)
    db.refresh(record)
    logger.info("record %s paid %s via %s", record.id, record.fee, cmd.method.value)
    return record


def get_record(db: Session, actor: Actor, record_id: int) -> ParkingRecord:
    record = load_record(db, record_id)
    actor.ensure_owns(record.user_id)
    return record


def list_records(db: Session, actor: Actor, user_id: int | None = None, is_active: bool | None = None,
                 payment_status: RecordPaymentStatus | None = None, lot_id: int | None = None,
                 license_plate: str | None = None, start_date: datetime | None = None, end_date: datetime | None = None,
                 skip: int = 0, limit: int = 20) -> tuple[int, list[ParkingRecord]]:
    q = db.query(ParkingRecord)
    if actor.is_admin:
        if user_id is not None:
            q = q.filter(ParkingRecord.user_id == user_id)
    else:
        q = q.filter(ParkingRecord.user_id == actor.user_id)
    if is_active is not None:
        q = q.filter(ParkingRecord.is_active.is_(is_active))
    if payment_status is not None:
        q = q.filter(ParkingRecord.payment_status == payment_status)
    if lot_id is not None:
        q = q.filter(ParkingRecord.parking_lot_id == lot_id)
    if license_plate:
        q = q.filter(ParkingRecord.license_plate == license_plate.strip().upper())
    if start_date is not None:
        q = q.filter(ParkingRecord.entry_time >= as_utc(start_date))
    if end_date is not None:
        q = q.filter(ParkingRecord.entry_time <= as_utc(end_date))
    total = q.count()
    items = q.order_by(ParkingRecord.entry_time.desc(), ParkingRecord.id.desc()).offset(skip).limit(limit).all()
    return total, items


def list_active_records(db: Session, actor: Actor) -> list[ParkingRecord]:
    return db.query(ParkingRecord).filter(
        ParkingRecord.user_id == actor.user_id, ParkingRecord.is_active.is_(True)
    ).order_by(ParkingRecord.entry_time.desc()).all()
