import logging
from sqlalchemy.orm import Session
from auth.core.enums import (
    VehicleStatus, VehicleType, SpaceStatus, SpaceType, ParkingLotStatus,
)
from . import registry
from .models import Vehicle, ParkingLot, LotRate, ParkingSpace, Reservation, ParkingRecord
from .commands import Actor, CreateLotCommand, UpdateLotCommand
from .errors import NotFound, InvalidState
from .locks import guarded, space_key

logger = logging.getLogger(__name__)


def generate_space_numbers(count: int, prefix: str = "A") -> list[str]:
    return [f"{prefix}-{i:03d}" for i in range(1, count + 1)]


def create_lot(db: Session, actor: Actor, cmd: CreateLotCommand) -> ParkingLot:
    actor.ensure_admin()
    if cmd.space_numbers:
        numbers = cmd.space_numbers
    elif cmd.total_spaces:
        numbers = generate_space_numbers(cmd.total_spaces)
    else:
        raise InvalidState("必须指定车位数量或车位编号")
    with guarded(db):
        if db.query(ParkingLot.id).filter(ParkingLot.name == cmd.name).first():
            raise InvalidState("停车场名称已存在")
        lot = ParkingLot(
            name=cmd.name,
            address=cmd.address,
            contact_phone=cmd.contact_phone,
            description=cmd.description,
            hourly_rate=cmd.hourly_rate,
            status=cmd.status,
            total_spaces=len(numbers),
            available_spaces=len(numbers),
        )
        lot.spaces = [ParkingSpace(space_number=n, space_type=cmd.space_type, status=SpaceStatus.FREE) for n in numbers]
        lot.rates = [LotRate(vehicle_type=r.vehicle_type, hourly_rate=r.hourly_rate, description=r.description) for r in cmd.rates]
        db.add(lot)
        db.flush()
    db.refresh(lot)
    logger.info("lot %s '%s' created with %d spaces", lot.id, lot.name, lot.total_spaces)
    return lot


def update_lot(db: Session, actor: Actor, lot_id: int, cmd: UpdateLotCommand) -> ParkingLot:
    actor.ensure_admin()
    with guarded(db):
        lot = registry.get_lot(db, lot_id, lock=True)
        if cmd.name is not None and cmd.name != lot.name:
            if db.query(ParkingLot.id).filter(ParkingLot.name == cmd.name).first():
                raise InvalidState("停车场名称已存在")
            lot.name = cmd.name
        for field in ("address", "contact_phone", "description", "hourly_rate", "status"):
            value = getattr(cmd, field)
            if value is not None:
                setattr(lot, field, value)
        if cmd.rates is not None:
            lot.rates = []
            db.flush()
            lot.rates = [LotRate(vehicle_type=r.vehicle_type, hourly_rate=r.hourly_rate, description=r.description) for r in cmd.rates]
        db.flush()
    db.refresh(lot)
    logger.info("lot %s updated", lot.id)
    return lot


def delete_lot(db: Session, actor: Actor, lot_id: int) -> None:
    actor.ensure_admin()
    with guarded(db):
        lot = registry.get_lot(db, lot_id, lock=True)
        # 预约与停车记录只流转不删除，有历史的停车场只能关闭
        reserved = db.query(Reservation.id).filter(Reservation.parking_lot_id == lot_id).first()
        parked = db.query(ParkingRecord.id).filter(ParkingRecord.parking_lot_id == lot_id).first()
        if reserved or parked:
            raise InvalidState("停车场存在预约或停车记录，无法删除，请改为关闭")
        db.delete(lot)
    logger.info("lot %s deleted", lot_id)


def list_lots(db: Session, status: ParkingLotStatus | None = None, skip: int = 0, limit: int = 20) -> tuple[int, list[ParkingLot]]:
    q = db.query(ParkingLot)
    if status is not None:
        q = q.filter(ParkingLot.status == status)
    total = q.count()
    return total, q.order_by(ParkingLot.id).offset(skip).limit(limit).all()


def list_spaces(db: Session, lot_id: int, status: SpaceStatus | None = None, space_type: SpaceType | None = None) -> list[ParkingSpace]:
    registry.get_lot(db, lot_id)
    q = db.query(ParkingSpace).filter(ParkingSpace.parking_lot_id == lot_id)
    if status is not None:
        q = q.filter(ParkingSpace.status == status)
    if space_type is not None:
        q = q.filter(ParkingSpace.space_type == space_type)
    return q.order_by(ParkingSpace.id).all()


def add_space(db: Session, actor: Actor, lot_id: int, space_number: str, space_type: SpaceType = SpaceType.STANDARD,
              floor: str = "1", section: str | None = None) -> ParkingSpace:
    actor.ensure_admin()
    with guarded(db, space_key(lot_id, space_number)):
        space = registry.add_space(db, lot_id, space_number, space_type, floor, section)
    db.refresh(space)
    return space


def remove_space(db: Session, actor: Actor, lot_id: int, space_number: str) -> None:
    actor.ensure_admin()
    with guarded(db, space_key(lot_id, space_number)):
        registry.remove_space(db, lot_id, space_number)


def set_maintenance(db: Session, actor: Actor, lot_id: int, space_number: str, enabled: bool) -> ParkingSpace:
    actor.ensure_admin()
    with guarded(db, space_key(lot_id, space_number)):
        if enabled:
            space = registry.start_maintenance(db, lot_id, space_number)
        else:
            space = registry.end_maintenance(db, lot_id, space_number)
    db.refresh(space)
    return space


def set_space_type(db: Session, actor: Actor, lot_id: int, space_number: str, space_type: SpaceType) -> ParkingSpace:
    actor.ensure_admin()
    with guarded(db, space_key(lot_id, space_number)):
        space = registry.get_space(db, lot_id, space_number, lock=True)
        space.space_type = space_type
    db.refresh(space)
    return space


def set_default_vehicle(db: Session, user_id: int, vehicle_id: int) -> Vehicle:
    with guarded(db):
        v = db.query(Vehicle).filter(
            Vehicle.id == vehicle_id, Vehicle.user_id == user_id, Vehicle.status == VehicleStatus.ACTIVE
        ).first()
        if not v:
            raise NotFound("车辆不存在")
        db.query(Vehicle).filter(Vehicle.user_id == user_id).update({Vehicle.is_default: False})
        v.is_default = True
    db.refresh(v)
    return v


def create_vehicle(db: Session, user_id: int, license_plate: str, vehicle_type: VehicleType = VehicleType.SMALL, is_default: bool = False) -> Vehicle:
    plate = license_plate.strip().upper()
    with guarded(db):
        v = db.query(Vehicle).filter(Vehicle.license_plate == plate).first()
        if v and v.status == VehicleStatus.ACTIVE:
            raise InvalidState("车牌号已绑定")
        if v:
            # 已删除的车牌允许重新绑定
            v.user_id = user_id
            v.status = VehicleStatus.ACTIVE
            v.vehicle_type = vehicle_type
            v.is_default = False
        else:
            v = Vehicle(user_id=user_id, license_plate=plate, vehicle_type=vehicle_type, is_default=False)
            db.add(v)
        db.flush()
        first = db.query(Vehicle.id).filter(
            Vehicle.user_id == user_id, Vehicle.status == VehicleStatus.ACTIVE, Vehicle.id != v.id
        ).first() is None
        if is_default or first:
            db.query(Vehicle).filter(Vehicle.user_id == user_id).update({Vehicle.is_default: False})
            v.is_default = True
    db.refresh(v)
    logger.info("vehicle %s bound to user %s", v.license_plate, user_id)
    return v


def list_vehicles(db: Session, user_id: int, skip: int = 0, limit: int = 20) -> list[Vehicle]:
    return db.query(Vehicle).filter(
        Vehicle.user_id == user_id, Vehicle.status == VehicleStatus.ACTIVE
    ).order_by(Vehicle.is_default.desc(), Vehicle.id).offset(skip).limit(limit).all()


def delete_vehicle(db: Session, user_id: int, vehicle_id: int) -> None:
    with guarded(db):
        v = db.query(Vehicle).filter(
            Vehicle.id == vehicle_id, Vehicle.user_id == user_id, Vehicle.status == VehicleStatus.ACTIVE
        ).first()
        if not v:
            raise NotFound("车辆不存在")
        v.status = VehicleStatus.DELETED
        v.is_default = False
    logger.info("vehicle %s unbound from user %s", vehicle_id, user_id)
