# schemas.py
from pydantic import BaseModel, Field, ConfigDict, computed_field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from auth.core.enums import (
    VehicleStatus, VehicleType, ParkingLotStatus, SpaceStatus, SpaceType,
    ReservationStatus, ReservationPaymentStatus, RecordPaymentStatus, PaymentMethod,
)
from .clock import utcnow, as_utc

class VehicleCreate(BaseModel):
    license_plate: str = Field(..., min_length=1, max_length=20)
    vehicle_type: VehicleType = VehicleType.SMALL
    is_default: bool = False

class VehicleRead(BaseModel):
    id: int
    user_id: int
    license_plate: str
    vehicle_type: VehicleType
    is_default: bool
    status: VehicleStatus
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)

class LotRateRead(BaseModel):
    vehicle_type: VehicleType
    hourly_rate: Decimal
    description: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)

class ParkingLotRead(BaseModel):
    id: int
    name: str
    address: str
    contact_phone: Optional[str] = None
    description: Optional[str] = None
    total_spaces: int
    available_spaces: int
    hourly_rate: Decimal
    status: ParkingLotStatus
    rates: List[LotRateRead] = []
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)

class ParkingLotList(BaseModel):
    total: int
    lots: List[ParkingLotRead]

class ParkingSpaceRead(BaseModel):
    id: int
    parking_lot_id: int
    space_number: str
    space_type: SpaceType
    status: SpaceStatus
    floor: str
    section: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)

class SpaceCreate(BaseModel):
    space_number: str = Field(..., min_length=1, max_length=20)
    space_type: SpaceType = SpaceType.STANDARD
    floor: str = Field("1", max_length=10)
    section: Optional[str] = Field(None, max_length=20)

class SpaceMaintenanceRequest(BaseModel):
    enabled: bool

class SpaceTypeUpdate(BaseModel):
    space_type: SpaceType

class ReservationRead(BaseModel):
    id: int
    user_id: int
    parking_lot_id: int
    space_number: str
    license_plate: str
    vehicle_type: VehicleType
    reservation_time: datetime
    expiry_time: datetime
    status: ReservationStatus
    fee: Decimal
    payment_status: ReservationPaymentStatus
    payment_method: Optional[PaymentMethod] = None
    payment_time: Optional[datetime] = None
    payment_id: Optional[str] = None
    confirmation_code: str
    notes: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def effective_status(self) -> ReservationStatus:
        # 已过期但尚未被清理任务处理的预约
        if self.status in (ReservationStatus.PENDING, ReservationStatus.CONFIRMED) and utcnow() > as_utc(self.expiry_time):
            return ReservationStatus.EXPIRED
        return self.status

class ReservationList(BaseModel):
    total: int
    reservations: List[ReservationRead]

class ParkingRecordRead(BaseModel):
    id: int
    user_id: Optional[int] = None
    parking_lot_id: int
    space_number: str
    license_plate: str
    vehicle_type: VehicleType
    entry_time: datetime
    exit_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    fee: Optional[Decimal] = None
    payment_status: RecordPaymentStatus
    payment_method: Optional[PaymentMethod] = None
    payment_time: Optional[datetime] = None
    payment_id: Optional[str] = None
    is_active: bool
    reservation_id: Optional[int] = None
    notes: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)

class ParkingRecordList(BaseModel):
    total: int
    records: List[ParkingRecordRead]

class PaymentMethodRead(BaseModel):
    method: PaymentMethod
    name: str
    provider: Optional[str] = None
    for_reservation: bool
    for_parking: bool
