from sqlalchemy import Column, Integer, String, Boolean, Enum, ForeignKey, Index, BigInteger, Numeric, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from auth.database import Base, UTCDateTime
from auth.core.enums import (
    VehicleStatus, VehicleType, ParkingLotStatus, SpaceStatus, SpaceType,
    ReservationStatus, ReservationPaymentStatus, RecordPaymentStatus, PaymentMethod,
)

class Vehicle(Base):
    __tablename__ = "vehicles"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    license_plate = Column(String(20), unique=True, nullable=False, index=True)
    vehicle_type = Column(Enum(VehicleType), default=VehicleType.SMALL, nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)
    status = Column(Enum(VehicleStatus), default=VehicleStatus.ACTIVE, nullable=False)
    created_at = Column(UTCDateTime, default=func.now(), nullable=False)
    updated_at = Column(UTCDateTime, default=func.now(), onupdate=func.now(), nullable=False)
    user = relationship("User", back_populates="vehicles")
    __table_args__ = (
        Index("idx_vehicles_status", "status"),
        Index("idx_vehicles_user_default", "user_id", "is_default"),
    )

class ParkingLot(Base):
    __tablename__ = "parking_lots"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False)
    address = Column(String(255), nullable=False)
    contact_phone = Column(String(20), nullable=True)
    description = Column(String(500), nullable=True)
    total_spaces = Column(Integer, nullable=False)
    # 冗余计数，只能经由车位登记表随车位状态一起修改
    available_spaces = Column(Integer, nullable=False)
    hourly_rate = Column(Numeric(10, 2), nullable=False)
    status = Column(Enum(ParkingLotStatus), default=ParkingLotStatus.OPEN, nullable=False)
    created_at = Column(UTCDateTime, default=func.now(), nullable=False)
    updated_at = Column(UTCDateTime, default=func.now(), onupdate=func.now(), nullable=False)
    spaces = relationship("ParkingSpace", back_populates="lot", cascade="all, delete-orphan", order_by="ParkingSpace.id")
    rates = relationship("LotRate", back_populates="lot", cascade="all, delete-orphan")
    __table_args__ = (
        CheckConstraint("total_spaces >= 1", name="ck_parking_lots_total"),
        CheckConstraint("available_spaces >= 0 AND available_spaces <= total_spaces", name="ck_parking_lots_available"),
        Index("idx_parking_lots_status", "status"),
        Index("idx_parking_lots_available", "available_spaces"),
    )

class LotRate(Base):
    __tablename__ = "lot_rates"
    id = Column(Integer, primary_key=True, autoincrement=True)
    parking_lot_id = Column(Integer, ForeignKey("parking_lots.id", ondelete="CASCADE"), nullable=False, index=True)
    vehicle_type = Column(Enum(VehicleType), nullable=False)
    hourly_rate = Column(Numeric(10, 2), nullable=False)
    description = Column(String(255), nullable=True)
    lot = relationship("ParkingLot", back_populates="rates")
    __table_args__ = (
        UniqueConstraint("parking_lot_id", "vehicle_type", name="uq_lot_rates_lot_type"),
    )

class ParkingSpace(Base):
    __tablename__ = "parking_spaces"
    id = Column(Integer, primary_key=True, autoincrement=True)
    parking_lot_id = Column(Integer, ForeignKey("parking_lots.id", ondelete="CASCADE"), nullable=False, index=True)
    space_number = Column(String(20), nullable=False)
    space_type = Column(Enum(SpaceType), nullable=False, default=SpaceType.STANDARD)
    status = Column(Enum(SpaceStatus), nullable=False, default=SpaceStatus.FREE, index=True)
    floor = Column(String(10), nullable=False, default="1")
    section = Column(String(20), nullable=True)
    created_at = Column(UTCDateTime, default=func.now(), nullable=False)
    updated_at = Column(UTCDateTime, default=func.now(), onupdate=func.now(), nullable=False)
    lot = relationship("ParkingLot", back_populates="spaces")
    __table_args__ = (
        UniqueConstraint("parking_lot_id", "space_number", name="uq_spaces_lot_number"),
        Index("idx_spaces_lot_status", "parking_lot_id", "status"),
        Index("idx_spaces_lot_type", "parking_lot_id", "space_type"),
    )

class Reservation(Base):
    __tablename__ = "reservations"
    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    parking_lot_id = Column(Integer, ForeignKey("parking_lots.id", ondelete="RESTRICT"), nullable=False, index=True)
    space_number = Column(String(20), nullable=False)
    license_plate = Column(String(20), nullable=False)
    vehicle_type = Column(Enum(VehicleType), default=VehicleType.SMALL, nullable=False)
    reservation_time = Column(UTCDateTime, nullable=False, index=True)
    expiry_time = Column(UTCDateTime, nullable=False, index=True)
    status = Column(Enum(ReservationStatus), default=ReservationStatus.PENDING, nullable=False, index=True)
    # 创建时确定，之后不再重新计算
    fee = Column(Numeric(10, 2), nullable=False)
    payment_status = Column(Enum(ReservationPaymentStatus), default=ReservationPaymentStatus.UNPAID, nullable=False)
    payment_method = Column(Enum(PaymentMethod), nullable=True)
    payment_time = Column(UTCDateTime, nullable=True)
    payment_id = Column(String(64), unique=True, nullable=True)
    confirmation_code = Column(String(6), nullable=False)
    notes = Column(String(255), nullable=True)
    created_at = Column(UTCDateTime, default=func.now(), nullable=False)
    updated_at = Column(UTCDateTime, default=func.now(), onupdate=func.now(), nullable=False)
    __table_args__ = (
        CheckConstraint("expiry_time > reservation_time", name="ck_reservations_window"),
        Index("idx_reservations_user_status", "user_id", "status"),
        Index("idx_reservations_lot_space_time", "parking_lot_id", "space_number", "reservation_time"),
        Index("idx_reservations_expiry_status", "expiry_time", "status"),
    )

class ParkingRecord(Base):
    __tablename__ = "parking_records"
    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    # 散客入场时为空
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    parking_lot_id = Column(Integer, ForeignKey("parking_lots.id", ondelete="RESTRICT"), nullable=False, index=True)
    space_number = Column(String(20), nullable=False)
    license_plate = Column(String(20), nullable=False)
    vehicle_type = Column(Enum(VehicleType), default=VehicleType.SMALL, nullable=False)
    entry_time = Column(UTCDateTime, nullable=False, index=True)
    exit_time = Column(UTCDateTime, nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    fee = Column(Numeric(10, 2), nullable=True)
    payment_status = Column(Enum(RecordPaymentStatus), default=RecordPaymentStatus.UNPAID, nullable=False, index=True)
    payment_method = Column(Enum(PaymentMethod), nullable=True)
    payment_time = Column(UTCDateTime, nullable=True)
    payment_id = Column(String(64), unique=True, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    reservation_id = Column(BigInteger().with_variant(Integer, 'sqlite'), ForeignKey("reservations.id", ondelete="SET NULL"), nullable=True, unique=True)
    notes = Column(String(255), nullable=True)
    created_at = Column(UTCDateTime, default=func.now(), nullable=False)
    updated_at = Column(UTCDateTime, default=func.now(), onupdate=func.now(), nullable=False)
    __table_args__ = (
        Index("idx_parking_records_lot_space_active", "parking_lot_id", "space_number", "is_active"),
        Index("idx_parking_records_user_entry", "user_id", "entry_time"),
    )
