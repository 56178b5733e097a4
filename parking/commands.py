"""Explicit input structs for the engine's mutating operations.

Each command is validated as a whole by pydantic before the engine touches
the database; the engine itself never reads request bodies.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Annotated
from pydantic import BaseModel, Field, ConfigDict, AfterValidator
from auth.core.enums import UserRole, VehicleType, PaymentMethod, ParkingLotStatus, SpaceType
from .clock import as_utc
from .errors import Forbidden


class Actor(BaseModel):
    user_id: int
    role: UserRole = UserRole.USER
    model_config = ConfigDict(frozen=True)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @classmethod
    def of(cls, user) -> "Actor":
        return cls(user_id=user.id, role=user.role)

    def ensure_owns(self, owner_id: int | None) -> None:
        if not self.is_admin and owner_id != self.user_id:
            raise Forbidden("无权操作他人的数据")

    def ensure_admin(self) -> None:
        if not self.is_admin:
            raise Forbidden("需要管理员权限")


def _plate(value: str) -> str:
    value = value.strip().upper()
    if not value:
        raise ValueError("车牌号不能为空")
    return value


def _space_numbers(value):
    if value is None:
        return value
    numbers = [v.strip() for v in value]
    if not numbers or any(not n or len(n) > 20 for n in numbers):
        raise ValueError("车位编号无效")
    if len(set(numbers)) != len(numbers):
        raise ValueError("车位编号重复")
    return numbers


def _unique_rates(value):
    if value is None:
        return value
    types = [r.vehicle_type for r in value]
    if len(set(types)) != len(types):
        raise ValueError("同一车型只能设置一个特殊费率")
    return value


LicensePlate = Annotated[str, Field(min_length=1, max_length=20), AfterValidator(_plate)]
UTCTime = Annotated[datetime, AfterValidator(as_utc)]
Money = Annotated[Decimal, Field(gt=0, max_digits=10, decimal_places=2)]


class CreateReservationCommand(BaseModel):
    lot_id: int
    space_number: str = Field(..., min_length=1, max_length=20)
    license_plate: LicensePlate
    vehicle_type: VehicleType = VehicleType.SMALL
    start: UTCTime
    end: UTCTime
    notes: Optional[str] = Field(None, max_length=255)


class PayCommand(BaseModel):
    method: PaymentMethod = PaymentMethod.BALANCE


class CreateEntryCommand(BaseModel):
    lot_id: int
    space_number: str = Field(..., min_length=1, max_length=20)
    license_plate: LicensePlate
    vehicle_type: VehicleType = VehicleType.SMALL
    reservation_id: Optional[int] = None
    # 为空表示散客
    user_id: Optional[int] = None
    notes: Optional[str] = Field(None, max_length=255)


class LotRateCommand(BaseModel):
    vehicle_type: VehicleType
    hourly_rate: Money
    description: Optional[str] = Field(None, max_length=255)


class CreateLotCommand(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    address: str = Field(..., min_length=1, max_length=255)
    contact_phone: Optional[str] = Field(None, max_length=20)
    description: Optional[str] = Field(None, max_length=500)
    hourly_rate: Money
    total_spaces: Optional[int] = Field(None, ge=1, le=10000)
    # 显式给出车位编号时忽略 total_spaces
    space_numbers: Annotated[Optional[List[str]], AfterValidator(_space_numbers)] = None
    space_type: SpaceType = SpaceType.STANDARD
    status: ParkingLotStatus = ParkingLotStatus.OPEN
    rates: Annotated[List[LotRateCommand], AfterValidator(_unique_rates)] = Field(default_factory=list)


class UpdateLotCommand(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    address: Optional[str] = Field(None, min_length=1, max_length=255)
    contact_phone: Optional[str] = Field(None, max_length=20)
    description: Optional[str] = Field(None, max_length=500)
    hourly_rate: Optional[Money] = None
    status: Optional[ParkingLotStatus] = None
    # 给出时整体替换特殊费率
    rates: Annotated[Optional[List[LotRateCommand]], AfterValidator(_unique_rates)] = None
