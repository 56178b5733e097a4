"""Reservation manager.

PENDING -> CONFIRMED (paid) -> USED (consumed at entry); PENDING|CONFIRMED
-> CANCELLED; PENDING|CONFIRMED -> EXPIRED once ``expiry_time`` has passed.
Expiry is applied lazily by every decision path and persisted by
``expire_overdue_reservations``.

A RESERVED space may carry several live reservations as long as their
windows do not overlap; it returns to FREE only when the last one ends.
"""
import logging
import secrets
from datetime import datetime, timedelta
from sqlalchemy import func
from sqlalchemy.orm import Session
from auth.core.config import settings
from auth.core.enums import (
    ReservationStatus, ReservationPaymentStatus, PaymentMethod, ParkingLotStatus,
    SpaceStatus, WalletTransactionType, LedgerReference, LIVE_RESERVATION_STATUSES,
)
from wallet.services import debit, credit
from .models import Reservation
from .commands import Actor, CreateReservationCommand, PayCommand
from .errors import NotFound, InvalidState, InvalidInterval, SpaceConflict, AlreadyPaid, ParkingError
from .fees import compute_reservation_fee
from .locks import guarded, space_key, wallet_key
from .registry import get_lot, get_space, try_reserve, release
from .clock import utcnow, as_utc

logger = logging.getLogger(__name__)


def new_payment_id(now: datetime) -> str:
    return f"PAY{now:%Y%m%d%H%M%S}{secrets.token_hex(4).upper()}"


def _confirmation_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def is_overdue(reservation: Reservation, now: datetime) -> bool:
    return reservation.status in LIVE_RESERVATION_STATUSES and as_utc(now) > as_utc(reservation.expiry_time)


def effective_status(reservation: Reservation, now: datetime) -> ReservationStatus:
    if is_overdue(reservation, now):
        return ReservationStatus.EXPIRED
    return reservation.status


def load_reservation(db: Session, reservation_id: int, lock: bool = False) -> Reservation:
    q = db.query(Reservation).filter(Reservation.id == reservation_id)
    if lock:
        q = q.populate_existing().with_for_update()
    res = q.first()
    if not res:
        raise NotFound("预约不存在")
    return res


def find_conflicts(db: Session, lot_id: int, space_number: str, start: datetime, end: datetime, exclude_id: int | None = None) -> list[Reservation]:
    """Live reservations on the space whose window touches ``[start, end]``.

    Both ends are inclusive, so a window that starts exactly when another
    ends is a conflict.
    """
    q = db.query(Reservation).filter(
        Reservation.parking_lot_id == lot_id,
        Reservation.space_number == space_number,
        Reservation.status.in_(LIVE_RESERVATION_STATUSES),
        Reservation.reservation_time <= end,
        Reservation.expiry_time >= start,
    )
    if exclude_id is not None:
        q = q.filter(Reservation.id != exclude_id)
    return q.order_by(Reservation.reservation_time).all()


def live_holds(db: Session, lot_id: int, space_number: str, now: datetime, exclude_id: int | None = None) -> int:
    q = db.query(func.count(Reservation.id)).filter(
        Reservation.parking_lot_id == lot_id,
        Reservation.space_number == space_number,
        Reservation.status.in_(LIVE_RESERVATION_STATUSES),
        Reservation.expiry_time >= now,
    )
    if exclude_id is not None:
        q = q.filter(Reservation.id != exclude_id)
    return q.scalar() or 0


def _mark_expired(res: Reservation) -> None:
    res.status = ReservationStatus.EXPIRED
    if res.payment_status == ReservationPaymentStatus.UNPAID:
        res.payment_status = ReservationPaymentStatus.CANCELLED


def expire_space_holds(db: Session, lot_id: int, space_number: str, now: datetime) -> list[int]:
    """Persist EXPIRED for the overdue live reservations of one space.

    The caller holds the space lock and decides what happens to the space.
    """
    overdue = db.query(Reservation).filter(
        Reservation.parking_lot_id == lot_id,
        Reservation.space_number == space_number,
        Reservation.status.in_(LIVE_RESERVATION_STATUSES),
        Reservation.expiry_time < now,
    ).populate_existing().with_for_update().all()
    for res in overdue:
        _mark_expired(res)
    db.flush()
    if overdue:
        logger.info("expired %d reservation(s) on %s/%s: %s", len(overdue), lot_id, space_number, [r.id for r in overdue])
    return [r.id for r in overdue]


def _release_hold(db: Session, lot_id: int, space_number: str, now: datetime) -> bool:
    space = get_space(db, lot_id, space_number, lock=True)
    if space.status != SpaceStatus.RESERVED:
        return False
    if live_holds(db, lot_id, space_number, now):
        return False
    release(db, lot_id, space_number)
    return True


def create_reservation(db: Session, actor: Actor, cmd: CreateReservationCommand, now: datetime | None = None) -> Reservation:
    now = as_utc(now) or utcnow()
    start, end = as_utc(cmd.start), as_utc(cmd.end)
    if start < now:
        raise InvalidInterval("预约开始时间不能早于当前时间")
    if end <= start:
        raise InvalidInterval("预约结束时间必须晚于开始时间")
    if end - start > timedelta(minutes=settings.MAX_RESERVATION_MINUTES):
        raise InvalidInterval(f"预约时长不能超过 {settings.MAX_RESERVATION_MINUTES} 分钟")

    with guarded(db, space_key(cmd.lot_id, cmd.space_number)):
        lot = get_lot(db, cmd.lot_id)
        if lot.status != ParkingLotStatus.OPEN:
            raise InvalidState("停车场当前不可预约")
        get_space(db, cmd.lot_id, cmd.space_number)
        conflicts = find_conflicts(db, cmd.lot_id, cmd.space_number, start, end)
        if conflicts:
            raise SpaceConflict(conflicting_ids=[r.id for r in conflicts])
        fee = compute_reservation_fee(start, end, cmd.vehicle_type, lot)
        res = Reservation(
            user_id=actor.user_id,
            parking_lot_id=cmd.lot_id,
            space_number=cmd.space_number,
            license_plate=cmd.license_plate,
            vehicle_type=cmd.vehicle_type,
            reservation_time=start,
            expiry_time=end,
            status=ReservationStatus.PENDING,
            fee=fee,
            payment_status=ReservationPaymentStatus.UNPAID,
            confirmation_code=_confirmation_code(),
            notes=cmd.notes,
        )
        db.add(res)
        db.flush()
        try_reserve(db, cmd.lot_id, cmd.space_number, join_existing=True)
    db.refresh(res)
    logger.info("reservation %s created on %s/%s fee %s", res.id, res.parking_lot_id, res.space_number, res.fee)
    return res


def pay_reservation(db: Session, actor: Actor, reservation_id: int, cmd: PayCommand, now: datetime | None = None) -> Reservation:
    now = as_utc(now) or utcnow()
    res = load_reservation(db, reservation_id)
    actor.ensure_owns(res.user_id)
    if cmd.method == PaymentMethod.CASH:
        raise InvalidState("预约费用不支持现金支付")
    keys = [space_key(res.parking_lot_id, res.space_number)]
    if cmd.method == PaymentMethod.BALANCE:
        keys.append(wallet_key(res.user_id))

    with guarded(db, *keys):
        res = load_reservation(db, reservation_id, lock=True)
        if res.payment_status == ReservationPaymentStatus.PAID:
            raise AlreadyPaid("该预约已支付")
        if is_overdue(res, now):
            raise InvalidState("预约已过期")
        if res.status != ReservationStatus.PENDING or res.payment_status != ReservationPaymentStatus.UNPAID:
            raise InvalidState(f"预约状态为 {res.status.value}，无法支付")
        if cmd.method == PaymentMethod.BALANCE and res.fee > 0:
            debit(
                db, res.user_id, res.fee, WalletTransactionType.CHARGE,
                f"支付预约费用 - 预约{res.id}", LedgerReference.RESERVATION, res.id,
            )
        res.status = ReservationStatus.CONFIRMED
        res.payment_status = ReservationPaymentStatus.PAID
        res.payment_method = cmd.method
        res.payment_time = now
        res.payment_id = new_payment_id(now)
    db.refresh(res)
    logger.info("reservation %s paid via %s", res.id, cmd.method.value)
    return res


def cancel_reservation(db: Session, actor: Actor, reservation_id: int, now: datetime | None = None) -> Reservation:
    now = as_utc(now) or utcnow()
    res = load_reservation(db, reservation_id)
    actor.ensure_owns(res.user_id)

    with guarded(db, space_key(res.parking_lot_id, res.space_number), wallet_key(res.user_id)):
        res = load_reservation(db, reservation_id, lock=True)
        if res.status.is_terminal or is_overdue(res, now):
            raise InvalidState(f"预约状态为 {effective_status(res, now).value}，无法取消")
        if res.payment_status == ReservationPaymentStatus.PAID:
            # 非钱包支付由外部渠道退款
            if res.payment_method == PaymentMethod.BALANCE and res.fee > 0:
                credit(
                    db, res.user_id, res.fee, WalletTransactionType.REFUND,
                    f"预约取消退款 - 预约{res.id}", LedgerReference.RESERVATION, res.id, PaymentMethod.BALANCE,
                )
            res.payment_status = ReservationPaymentStatus.REFUNDED
        else:
            res.payment_status = ReservationPaymentStatus.CANCELLED
        res.status = ReservationStatus.CANCELLED
        db.flush()
        _release_hold(db, res.parking_lot_id, res.space_number, now)
    db.refresh(res)
    logger.info("reservation %s cancelled, payment %s", res.id, res.payment_status.value)
    return res


def expire_overdue_reservations(db: Session, now: datetime | None = None) -> list[int]:
    """Persist EXPIRED for every live reservation whose window has passed.

    Each reservation is its own unit of work under its space lock. Paid hold
    fees are kept.
    """
    now = as_utc(now) or utcnow()
    candidates = db.query(Reservation.id, Reservation.parking_lot_id, Reservation.space_number).filter(
        Reservation.status.in_(LIVE_RESERVATION_STATUSES),
        Reservation.expiry_time < now,
    ).order_by(Reservation.expiry_time).all()

    expired = []
    for reservation_id, lot_id, space_number in candidates:
        try:
            with guarded(db, space_key(lot_id, space_number)):
                res = load_reservation(db, reservation_id, lock=True)
                if not is_overdue(res, now):
                    continue
                _mark_expired(res)
                db.flush()
                _release_hold(db, lot_id, space_number, now)
        except ParkingError as exc:
            logger.warning("expiring reservation %s failed: %s", reservation_id, exc.message)
            continue
        expired.append(reservation_id)
    if expired:
        logger.info("expired %d reservation(s): %s", len(expired), expired)
    return expired


def get_reservation(db: Session, actor: Actor, reservation_id: int) -> Reservation:
    res = load_reservation(db, reservation_id)
    actor.ensure_owns(res.user_id)
    return res


def list_reservations(db: Session, actor: Actor, user_id: int | None = None, status: ReservationStatus | None = None,
                      payment_status: ReservationPaymentStatus | None = None, lot_id: int | None = None,
                      license_plate: str | None = None, start_date: datetime | None = None, end_date: datetime | None = None,
                      skip: int = 0, limit: int = 20) -> tuple[int, list[Reservation]]:
    q = db.query(Reservation)
    if actor.is_admin:
        if user_id is not None:
            q = q.filter(Reservation.user_id == user_id)
    else:
        q = q.filter(Reservation.user_id == actor.user_id)
    if status is not None:
        q = q.filter(Reservation.status == status)
    if payment_status is not None:
        q = q.filter(Reservation.payment_status == payment_status)
    if lot_id is not None:
        q = q.filter(Reservation.parking_lot_id == lot_id)
    if license_plate:
        q = q.filter(Reservation.license_plate == license_plate.strip().upper())
    if start_date is not None:
        q = q.filter(Reservation.reservation_time >= as_utc(start_date))
    if end_date is not None:
        q = q.filter(Reservation.reservation_time <= as_utc(end_date))
    total = q.count()
    items = q.order_by(Reservation.reservation_time.desc(), Reservation.id.desc()).offset(skip).limit(limit).all()
    return total, items


def list_active_reservations(db: Session, actor: Actor, now: datetime | None = None) -> list[Reservation]:
    now = as_utc(now) or utcnow()
    return db.query(Reservation).filter(
        Reservation.user_id == actor.user_id,
        Reservation.status.in_(LIVE_RESERVATION_STATUSES),
        Reservation.expiry_time >= now,
    ).order_by(Reservation.reservation_time).all()
