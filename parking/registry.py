"""Space registry: the only code allowed to change a space's status.

Each transition reads the lot and the space ``FOR UPDATE``, validates the
move against the transition table, then swaps the space status with a
compare-and-swap ``UPDATE ... WHERE status = :current`` and adjusts the
lot's ``available_spaces`` in the same transaction. Nothing is written
unless the whole transition is legal, so a raised error never leaves the
space and the lot counter out of step.
"""
import logging
from sqlalchemy import update, func
from sqlalchemy.orm import Session
from auth.core.enums import SpaceStatus, SpaceType
from .models import ParkingLot, ParkingSpace
from .errors import NotFound, SpaceUnavailable, InvalidState

logger = logging.getLogger(__name__)

# 目标状态 -> 允许的当前状态
RESERVE_FROM = frozenset({SpaceStatus.FREE})
OCCUPY_FROM = frozenset({SpaceStatus.FREE, SpaceStatus.RESERVED})
RELEASE_FROM = frozenset({SpaceStatus.OCCUPIED, SpaceStatus.RESERVED})
REQUEUE_FROM = frozenset({SpaceStatus.OCCUPIED})
MAINTENANCE_FROM = frozenset({SpaceStatus.FREE})
RESTORE_FROM = frozenset({SpaceStatus.MAINTENANCE})


def _free_delta(current: SpaceStatus, target: SpaceStatus) -> int:
    if current == SpaceStatus.FREE and target != SpaceStatus.FREE:
        return -1
    if current != SpaceStatus.FREE and target == SpaceStatus.FREE:
        return 1
    return 0


def get_lot(db: Session, lot_id: int, lock: bool = False) -> ParkingLot:
    q = db.query(ParkingLot).filter(ParkingLot.id == lot_id)
    if lock:
        q = q.populate_existing().with_for_update()
    lot = q.first()
    if not lot:
        raise NotFound("停车场不存在")
    return lot


def get_space(db: Session, lot_id: int, space_number: str, lock: bool = False) -> ParkingSpace:
    q = db.query(ParkingSpace).filter(ParkingSpace.parking_lot_id == lot_id, ParkingSpace.space_number == space_number)
    if lock:
        q = q.populate_existing().with_for_update()
    space = q.first()
    if not space:
        raise NotFound("车位不存在")
    return space


def _transition(db: Session, lot_id: int, space_number: str, allowed: frozenset, target: SpaceStatus) -> ParkingSpace:
    lot = get_lot(db, lot_id, lock=True)
    space = get_space(db, lot_id, space_number, lock=True)
    current = space.status
    if current not in allowed:
        raise SpaceUnavailable(lot_id, space_number, current)
    delta = _free_delta(current, target)
    if not 0 <= lot.available_spaces + delta <= lot.total_spaces:
        raise InvalidState(f"停车场 {lot_id} 可用车位计数异常，需先执行对账修复")
    swapped = db.execute(
        update(ParkingSpace)
        .where(ParkingSpace.id == space.id, ParkingSpace.status == current)
        .values(status=target)
        .execution_options(synchronize_session="fetch")
    )
    if swapped.rowcount != 1:
        latest = db.query(ParkingSpace.status).filter(ParkingSpace.id == space.id).scalar()
        raise SpaceUnavailable(lot_id, space_number, latest or current)
    if delta:
        db.execute(
            update(ParkingLot)
            .where(ParkingLot.id == lot_id)
            .values(available_spaces=ParkingLot.available_spaces + delta)
            .execution_options(synchronize_session="fetch")
        )
    logger.info("space %s/%s %s -> %s", lot_id, space_number, current.value, target.value)
    return space


def try_reserve(db: Session, lot_id: int, space_number: str, join_existing: bool = False) -> ParkingSpace:
    """FREE -> RESERVED.

    With ``join_existing`` a space that is already RESERVED is accepted as is;
    the caller must have checked that the new hold does not overlap the ones
    already on the space.
    """
    if join_existing:
        space = get_space(db, lot_id, space_number, lock=True)
        if space.status == SpaceStatus.RESERVED:
            return space
    return _transition(db, lot_id, space_number, RESERVE_FROM, SpaceStatus.RESERVED)


def try_occupy(db: Session, lot_id: int, space_number: str) -> ParkingSpace:
    return _transition(db, lot_id, space_number, OCCUPY_FROM, SpaceStatus.OCCUPIED)


def release(db: Session, lot_id: int, space_number: str, requeue: bool = False) -> ParkingSpace:
    """OCCUPIED|RESERVED -> FREE, or OCCUPIED -> RESERVED when later holds remain."""
    if requeue:
        return _transition(db, lot_id, space_number, REQUEUE_FROM, SpaceStatus.RESERVED)
    return _transition(db, lot_id, space_number, RELEASE_FROM, SpaceStatus.FREE)


def start_maintenance(db: Session, lot_id: int, space_number: str) -> ParkingSpace:
    return _transition(db, lot_id, space_number, MAINTENANCE_FROM, SpaceStatus.MAINTENANCE)


def end_maintenance(db: Session, lot_id: int, space_number: str) -> ParkingSpace:
    return _transition(db, lot_id, space_number, RESTORE_FROM, SpaceStatus.FREE)


def add_space(db: Session, lot_id: int, space_number: str, space_type: SpaceType = SpaceType.STANDARD, floor: str = "1", section: str | None = None) -> ParkingSpace:
    lot = get_lot(db, lot_id, lock=True)
    exists = db.query(ParkingSpace.id).filter(ParkingSpace.parking_lot_id == lot_id, ParkingSpace.space_number == space_number).first()
    if exists:
        raise InvalidState(f"车位编号 {space_number} 已存在")
    space = ParkingSpace(parking_lot_id=lot_id, space_number=space_number, space_type=space_type, status=SpaceStatus.FREE, floor=floor, section=section)
    db.add(space)
    db.flush()
    db.expire(lot, ["spaces"])
    db.execute(
        update(ParkingLot)
        .where(ParkingLot.id == lot_id)
        .values(total_spaces=ParkingLot.total_spaces + 1, available_spaces=ParkingLot.available_spaces + 1)
        .execution_options(synchronize_session="fetch")
    )
    logger.info("space %s/%s added", lot_id, space_number)
    return space


def remove_space(db: Session, lot_id: int, space_number: str) -> None:
    lot = get_lot(db, lot_id, lock=True)
    space = get_space(db, lot_id, space_number, lock=True)
    if space.status != SpaceStatus.FREE:
        raise SpaceUnavailable(lot_id, space_number, space.status)
    if lot.total_spaces <= 1:
        raise InvalidState("停车场至少保留一个车位")
    db.delete(space)
    db.flush()
    db.expire(lot, ["spaces"])
    db.execute(
        update(ParkingLot)
        .where(ParkingLot.id == lot_id)
        .values(total_spaces=ParkingLot.total_spaces - 1, available_spaces=ParkingLot.available_spaces - 1)
        .execution_options(synchronize_session="fetch")
    )
    logger.info("space %s/%s removed", lot_id, space_number)


def count_free(db: Session, lot_id: int) -> int:
    return db.query(func.count(ParkingSpace.id)).filter(
        ParkingSpace.parking_lot_id == lot_id, ParkingSpace.status == SpaceStatus.FREE
    ).scalar() or 0


def rederive_counters(db: Session, lot_id: int) -> tuple[int, int]:
    """Reset ``total_spaces``/``available_spaces`` from the space rows; returns (old, new) available."""
    lot = get_lot(db, lot_id, lock=True)
    old = lot.available_spaces
    total = db.query(func.count(ParkingSpace.id)).filter(ParkingSpace.parking_lot_id == lot_id).scalar() or 0
    free = count_free(db, lot_id)
    if old != free or lot.total_spaces != total:
        db.execute(
            update(ParkingLot)
            .where(ParkingLot.id == lot_id)
            .values(total_spaces=total, available_spaces=free)
            .execution_options(synchronize_session="fetch")
        )
        logger.warning("lot %s counters re-derived: available %s -> %s, total %s", lot_id, old, free, total)
    return old, free
