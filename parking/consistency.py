"""Drift detection and repair for the denormalized state.

``check_consistency`` is read-only. ``repair`` fixes what can be derived from
the primary rows: it finishes partially settled records, frees spaces that no
reservation or record holds any more and re-derives the lot counters. Wallet
drift is only reported; money is never moved by a repair.
"""
import logging
from datetime import datetime
from sqlalchemy import func
from sqlalchemy.orm import Session
from auth.core.enums import SpaceStatus, LIVE_RESERVATION_STATUSES
from wallet.models import WalletAccount
from wallet.services import ledger_sum
from . import registry
from .models import ParkingLot, ParkingSpace, Reservation, ParkingRecord
from .locks import guarded, space_key
from .reservations import live_holds, expire_overdue_reservations
from .clock import utcnow, as_utc

logger = logging.getLogger(__name__)


def _counter_drift(db: Session) -> list[dict]:
    drift = []
    for lot in db.query(ParkingLot).order_by(ParkingLot.id).all():
        free = registry.count_free(db, lot.id)
        total = db.query(func.count(ParkingSpace.id)).filter(ParkingSpace.parking_lot_id == lot.id).scalar() or 0
        if free != lot.available_spaces or total != lot.total_spaces:
            drift.append({
                "lot_id": lot.id,
                "available_spaces": lot.available_spaces,
                "free_spaces": free,
                "total_spaces": lot.total_spaces,
                "space_rows": total,
            })
    return drift


def _wallet_drift(db: Session) -> list[dict]:
    drift = []
    for acc in db.query(WalletAccount).order_by(WalletAccount.user_id).all():
        total = ledger_sum(db, acc.user_id)
        if total != acc.balance:
            drift.append({"user_id": acc.user_id, "balance": acc.balance, "ledger_sum": total})
    return drift


def _partial_settlements(db: Session) -> list[ParkingRecord]:
    return db.query(ParkingRecord).filter(
        ParkingRecord.exit_time.isnot(None), ParkingRecord.is_active.is_(True)
    ).order_by(ParkingRecord.id).all()


def _orphaned_spaces(db: Session) -> tuple[list[ParkingSpace], list[ParkingSpace]]:
    reserved = []
    for space in db.query(ParkingSpace).filter(ParkingSpace.status == SpaceStatus.RESERVED).order_by(ParkingSpace.id).all():
        held = db.query(Reservation.id).filter(
            Reservation.parking_lot_id == space.parking_lot_id,
            Reservation.space_number == space.space_number,
            Reservation.status.in_(LIVE_RESERVATION_STATUSES),
        ).first()
        if not held:
            reserved.append(space)
    occupied = []
    for space in db.query(ParkingSpace).filter(ParkingSpace.status == SpaceStatus.OCCUPIED).order_by(ParkingSpace.id).all():
        parked = db.query(ParkingRecord.id).filter(
            ParkingRecord.parking_lot_id == space.parking_lot_id,
            ParkingRecord.space_number == space.space_number,
            ParkingRecord.is_active.is_(True),
            ParkingRecord.exit_time.is_(None),
        ).first()
        if not parked:
            occupied.append(space)
    return reserved, occupied


def check_consistency(db: Session) -> dict:
    reserved, occupied = _orphaned_spaces(db)
    report = {
        "lot_counters": _counter_drift(db),
        "wallets": _wallet_drift(db),
        "partial_settlements": [r.id for r in _partial_settlements(db)],
        "orphaned_reserved_spaces": [{"lot_id": s.parking_lot_id, "space_number": s.space_number} for s in reserved],
        "orphaned_occupied_spaces": [{"lot_id": s.parking_lot_id, "space_number": s.space_number} for s in occupied],
    }
    report["ok"] = not any(report.values())
    if not report["ok"]:
        logger.warning("consistency check found drift: %s", {k: v for k, v in report.items() if v and k != "ok"})
    return report


def _settle_partial(db: Session, record_id: int, now: datetime) -> bool:
    record = db.query(ParkingRecord).filter(ParkingRecord.id == record_id).first()
    lot_id, number = record.parking_lot_id, record.space_number
    with guarded(db, space_key(lot_id, number)):
        record = db.query(ParkingRecord).filter(ParkingRecord.id == record_id).populate_existing().with_for_update().first()
        if record.exit_time is None or not record.is_active:
            return False
        space = registry.get_space(db, lot_id, number, lock=True)
        if space.status == SpaceStatus.OCCUPIED:
            registry.release(db, lot_id, number, requeue=live_holds(db, lot_id, number, now) > 0)
        record.is_active = False
    logger.warning("record %s finished by repair", record_id)
    return True


def _free_orphan(db: Session, lot_id: int, number: str, now: datetime) -> bool:
    with guarded(db, space_key(lot_id, number)):
        space = registry.get_space(db, lot_id, number, lock=True)
        holds = live_holds(db, lot_id, number, now)
        if space.status == SpaceStatus.RESERVED:
            if holds:
                return False
            registry.release(db, lot_id, number)
        elif space.status == SpaceStatus.OCCUPIED:
            parked = db.query(ParkingRecord.id).filter(
                ParkingRecord.parking_lot_id == lot_id,
                ParkingRecord.space_number == number,
                ParkingRecord.is_active.is_(True),
                ParkingRecord.exit_time.is_(None),
            ).first()
            if parked:
                return False
            registry.release(db, lot_id, number, requeue=holds > 0)
        else:
            return False
    logger.warning("orphaned space %s/%s released by repair", lot_id, number)
    return True


def repair(db: Session, now: datetime | None = None) -> dict:
    now = as_utc(now) or utcnow()
    expired = expire_overdue_reservations(db, now)
    settled = [r.id for r in _partial_settlements(db)]
    settled = [rid for rid in settled if _settle_partial(db, rid, now)]

    reserved, occupied = _orphaned_spaces(db)
    freed = []
    for lot_id, number in [(s.parking_lot_id, s.space_number) for s in reserved + occupied]:
        if _free_orphan(db, lot_id, number, now):
            freed.append({"lot_id": lot_id, "space_number": number})

    rederived = []
    lot_ids = [lot_id for (lot_id,) in db.query(ParkingLot.id).order_by(ParkingLot.id).all()]
    for lot_id in lot_ids:
        # 重算期间挡住该停车场所有车位的状态变更
        numbers = [n for (n,) in db.query(ParkingSpace.space_number).filter(ParkingSpace.parking_lot_id == lot_id).all()]
        with guarded(db, *(space_key(lot_id, n) for n in numbers)):
            old, new = registry.rederive_counters(db, lot_id)
        if old != new:
            rederived.append({"lot_id": lot_id, "from": old, "to": new})

    result = {
        "expired_reservations": expired,
        "settled_records": settled,
        "released_spaces": freed,
        "rederived_counters": rederived,
    }
    logger.info("repair finished: %s", result)
    return result
