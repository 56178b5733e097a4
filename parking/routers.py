import logging
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, BackgroundTasks, status
from sqlalchemy.orm import Session
from realtime.ws_manager import manager
from auth.database import get_db
from auth.services.auth_service import get_current_user
from auth.routers.admin import require_admin
from auth.core.enums import (
    PaymentMethod, ParkingLotStatus, SpaceStatus, SpaceType,
    ReservationStatus, ReservationPaymentStatus, RecordPaymentStatus,
)
from . import services, reservations, records, registry
from .consistency import check_consistency, repair
from .commands import (
    Actor, CreateReservationCommand, PayCommand, CreateEntryCommand, CreateLotCommand, UpdateLotCommand,
)
from .errors import ParkingError, NotFound, http_error
from .schemas import (
    VehicleCreate, VehicleRead,
    ParkingLotRead, ParkingLotList, ParkingSpaceRead, SpaceCreate, SpaceMaintenanceRequest, SpaceTypeUpdate,
    ReservationRead, ReservationList, ParkingRecordRead, ParkingRecordList, PaymentMethodRead,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Parking"])

def _internal_error(action: str) -> HTTPException:
    logger.exception("%s failed", action)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="内部错误")

def _announce(background_tasks: BackgroundTasks, db: Session, lot_id: int, space_number: str):
    # 事务提交后推送车位状态
    try:
        space = registry.get_space(db, lot_id, space_number)
        lot = registry.get_lot(db, lot_id)
    except NotFound:
        return
    background_tasks.add_task(manager.notify_space_change, lot_id, space_number, space.status, lot.available_spaces)

# --- 车辆 ---

@router.post("/vehicles", response_model=VehicleRead)
def create_vehicle(request: VehicleCreate, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    try:
        return services.create_vehicle(db, current_user.id, request.license_plate, request.vehicle_type, request.is_default)
    except ParkingError as e:
        raise http_error(e)
    except Exception:
        raise _internal_error("create vehicle")

@router.get("/vehicles/me", response_model=List[VehicleRead])
def list_my_vehicles(skip: int = 0, limit: int = 20, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return services.list_vehicles(db, current_user.id, skip, limit)

@router.put("/vehicles/{vehicle_id}/default", response_model=VehicleRead)
def set_default(vehicle_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    try:
        return services.set_default_vehicle(db, current_user.id, vehicle_id)
    except ParkingError as e:
        raise http_error(e)

@router.delete("/vehicles/{vehicle_id}", status_code=204)
def delete_vehicle(vehicle_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    try:
        services.delete_vehicle(db, current_user.id, vehicle_id)
    except ParkingError as e:
        raise http_error(e)

@router.get("/payment-methods", response_model=List[PaymentMethodRead])
def payment_methods():
    return [
        {"method": PaymentMethod.BALANCE, "name": "账户余额", "provider": "Wallet", "for_reservation": True, "for_parking": True},
        {"method": PaymentMethod.WECHAT_PAY, "name": "微信支付", "provider": "WeChat", "for_reservation": True, "for_parking": True},
        {"method": PaymentMethod.ALIPAY, "name": "支付宝", "provider": "Alipay", "for_reservation": True, "for_parking": True},
        {"method": PaymentMethod.BANK_CARD, "name": "银行卡", "provider": "UnionPay", "for_reservation": True, "for_parking": True},
        {"method": PaymentMethod.CASH, "name": "现金", "provider": None, "for_reservation": False, "for_parking": True},
    ]

# --- 停车场与车位 ---

@router.post("/parking-lots", response_model=ParkingLotRead, status_code=201)
def create_parking_lot(request: CreateLotCommand, db: Session = Depends(get_db), current_admin=Depends(require_admin)):
    try:
        return services.create_lot(db, Actor.of(current_admin), request)
    except ParkingError as e:
        raise http_error(e)
    except Exception:
        raise _internal_error("create lot")

@router.get("/parking-lots", response_model=ParkingLotList)
def list_parking_lots(status: Optional[ParkingLotStatus] = None, skip: int = 0, limit: int = 20, db: Session = Depends(get_db)):
    total, lots = services.list_lots(db, status, skip, limit)
    return {"total": total, "lots": lots}

@router.get("/parking-lots/{lot_id}", response_model=ParkingLotRead)
def get_parking_lot(lot_id: int, db: Session = Depends(get_db)):
    try:
        return registry.get_lot(db, lot_id)
    except ParkingError as e:
        raise http_error(e)

@router.patch("/parking-lots/{lot_id}", response_model=ParkingLotRead)
def update_parking_lot(lot_id: int, request: UpdateLotCommand, db: Session = Depends(get_db), current_admin=Depends(require_admin)):
    try:
        return services.update_lot(db, Actor.of(current_admin), lot_id, request)
    except ParkingError as e:
        raise http_error(e)
    except Exception:
        raise _internal_error("update lot")

@router.delete("/parking-lots/{lot_id}", status_code=204)
def delete_parking_lot(lot_id: int, db: Session = Depends(get_db), current_admin=Depends(require_admin)):
    try:
        services.delete_lot(db, Actor.of(current_admin), lot_id)
    except ParkingError as e:
        raise http_error(e)

@router.get("/parking-lots/{lot_id}/spaces", response_model=List[ParkingSpaceRead])
def list_spaces(lot_id: int, status: Optional[SpaceStatus] = None, space_type: Optional[SpaceType] = None, db: Session = Depends(get_db)):
    try:
        return services.list_spaces(db, lot_id, status, space_type)
    except ParkingError as e:
        raise http_error(e)

@router.post("/parking-lots/{lot_id}/spaces", response_model=ParkingSpaceRead, status_code=201)
def add_space(lot_id: int, request: SpaceCreate, background_tasks: BackgroundTasks, db: Session = Depends(get_db), current_admin=Depends(require_admin)):
    try:
        space = services.add_space(db, Actor.of(current_admin), lot_id, request.space_number, request.space_type, request.floor, request.section)
    except ParkingError as e:
        raise http_error(e)
    _announce(background_tasks, db, lot_id, space.space_number)
    return space

@router.delete("/parking-lots/{lot_id}/spaces/{space_number}", status_code=204)
def remove_space(lot_id: int, space_number: str, db: Session = Depends(get_db), current_admin=Depends(require_admin)):
    try:
        services.remove_space(db, Actor.of(current_admin), lot_id, space_number)
    except ParkingError as e:
        raise http_error(e)

@router.put("/parking-lots/{lot_id}/spaces/{space_number}/maintenance", response_model=ParkingSpaceRead)
def set_space_maintenance(lot_id: int, space_number: str, request: SpaceMaintenanceRequest, background_tasks: BackgroundTasks,
                          db: Session = Depends(get_db), current_admin=Depends(require_admin)):
    try:
        space = services.set_maintenance(db, Actor.of(current_admin), lot_id, space_number, request.enabled)
    except ParkingError as e:
        raise http_error(e)
    _announce(background_tasks, db, lot_id, space_number)
    return space

@router.put("/parking-lots/{lot_id}/spaces/{space_number}/type", response_model=ParkingSpaceRead)
def set_space_type(lot_id: int, space_number: str, request: SpaceTypeUpdate, db: Session = Depends(get_db), current_admin=Depends(require_admin)):
    try:
        return services.set_space_type(db, Actor.of(current_admin), lot_id, space_number, request.space_type)
    except ParkingError as e:
        raise http_error(e)

# --- 预约 ---

@router.post("/reservations", response_model=ReservationRead, status_code=201)
def create_reservation(request: CreateReservationCommand, background_tasks: BackgroundTasks, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    try:
        res = reservations.create_reservation(db, Actor.of(current_user), request)
    except ParkingError as e:
        raise http_error(e)
    except Exception:
        raise _internal_error("create reservation")
    _announce(background_tasks, db, res.parking_lot_id, res.space_number)
    return res

@router.get("/reservations", response_model=ReservationList)
def list_reservations(
    status: Optional[ReservationStatus] = None,
    payment_status: Optional[ReservationPaymentStatus] = None,
    parking_lot_id: Optional[int] = None,
    license_plate: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    user_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 20,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    total, items = reservations.list_reservations(
        db, Actor.of(current_user), user_id, status, payment_status, parking_lot_id, license_plate, start_date, end_date, skip, limit
    )
    return {"total": total, "reservations": items}

@router.get("/reservations/active", response_model=List[ReservationRead])
def list_active_reservations(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return reservations.list_active_reservations(db, Actor.of(current_user))

@router.get("/reservations/{reservation_id}", response_model=ReservationRead)
def get_reservation(reservation_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    try:
        return reservations.get_reservation(db, Actor.of(current_user), reservation_id)
    except ParkingError as e:
        raise http_error(e)

@router.post("/reservations/{reservation_id}/pay", response_model=ReservationRead)
def pay_reservation(reservation_id: int, request: PayCommand, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    try:
        return reservations.pay_reservation(db, Actor.of(current_user), reservation_id, request)
    except ParkingError as e:
        raise http_error(e)
    except Exception:
        raise _internal_error("pay reservation")

@router.post("/reservations/{reservation_id}/cancel", response_model=ReservationRead)
def cancel_reservation(reservation_id: int, background_tasks: BackgroundTasks, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    try:
        res = reservations.cancel_reservation(db, Actor.of(current_user), reservation_id)
    except ParkingError as e:
        raise http_error(e)
    except Exception:
        raise _internal_error("cancel reservation")
    _announce(background_tasks, db, res.parking_lot_id, res.space_number)
    return res

# --- 停车记录 ---

@router.post("/parking-records/entry", response_model=ParkingRecordRead, status_code=201)
def create_entry(request: CreateEntryCommand, background_tasks: BackgroundTasks, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    try:
        record = records.create_entry(db, Actor.of(current_user), request)
    except ParkingError as e:
        raise http_error(e)
    except Exception:
        raise _internal_error("create entry")
    _announce(background_tasks, db, record.parking_lot_id, record.space_number)
    return record

@router.get("/parking-records", response_model=ParkingRecordList)
def list_records(
    is_active: Optional[bool] = None,
    payment_status: Optional[RecordPaymentStatus] = None,
    parking_lot_id: Optional[int] = None,
    license_plate: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    user_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 20,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    total, items = records.list_records(
        db, Actor.of(current_user), user_id, is_active, payment_status, parking_lot_id, license_plate, start_date, end_date, skip, limit
    )
    return {"total": total, "records": items}

@router.get("/parking-records/active", response_model=List[ParkingRecordRead])
def list_active_records(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return records.list_active_records(db, Actor.of(current_user))

@router.get("/parking-records/{record_id}", response_model=ParkingRecordRead)
def get_record(record_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    try:
        return records.get_record(db, Actor.of(current_user), record_id)
    except ParkingError as e:
        raise http_error(e)

@router.post("/parking-records/{record_id}/exit", response_model=ParkingRecordRead)
def exit_record(record_id: int, background_tasks: BackgroundTasks, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    try:
        record = records.exit_record(db, Actor.of(current_user), record_id)
    except ParkingError as e:
        raise http_error(e)
    except Exception:
        raise _internal_error("exit")
    _announce(background_tasks, db, record.parking_lot_id, record.space_number)
    return record

@router.post("/parking-records/{record_id}/pay", response_model=ParkingRecordRead)
def pay_record(record_id: int, request: PayCommand, background_tasks: BackgroundTasks, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    try:
        record = records.pay_record(db, Actor.of(current_user), record_id, request)
    except ParkingError as e:
        raise http_error(e)
    except Exception:
        raise _internal_error("pay record")
    _announce(background_tasks, db, record.parking_lot_id, record.space_number)
    return record

# --- 运维 ---

@router.get("/admin/consistency")
def get_consistency(db: Session = Depends(get_db), current_admin=Depends(require_admin)):
    return check_consistency(db)

@router.post("/admin/consistency/repair")
def run_repair(db: Session = Depends(get_db), current_admin=Depends(require_admin)):
    try:
        return repair(db)
    except ParkingError as e:
        raise http_error(e)

@router.post("/admin/reservations/expire")
def run_expiry(db: Session = Depends(get_db), current_admin=Depends(require_admin)):
    expired = reservations.expire_overdue_reservations(db)
    return {"expired": expired}
