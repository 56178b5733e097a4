# /core/enums.py
import enum

class UserStatus(enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELETED = "deleted"

class UserRole(enum.Enum):
    USER = "user"
    ADMIN = "admin"

class VehicleStatus(enum.Enum):
    ACTIVE = "ACTIVE"
    DELETED = "DELETED"

class VehicleType(enum.Enum):
    SMALL = "SMALL"
    MEDIUM = "MEDIUM"
    LARGE = "LARGE"
    NEW_ENERGY = "NEW_ENERGY"

class ParkingLotStatus(enum.Enum):
    OPEN = "OPEN"
    TEMP_CLOSED = "TEMP_CLOSED"
    PERMANENTLY_CLOSED = "PERMANENTLY_CLOSED"
    RENOVATING = "RENOVATING"

class SpaceStatus(enum.Enum):
    FREE = "FREE"
    OCCUPIED = "OCCUPIED"
    RESERVED = "RESERVED"
    MAINTENANCE = "MAINTENANCE"

class SpaceType(enum.Enum):
    STANDARD = "STANDARD"
    ACCESSIBLE = "ACCESSIBLE"
    CHARGING = "CHARGING"
    VIP = "VIP"

class ReservationStatus(enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    USED = "USED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (ReservationStatus.USED, ReservationStatus.EXPIRED, ReservationStatus.CANCELLED)

# 仍占用车位的预约状态
LIVE_RESERVATION_STATUSES = (ReservationStatus.PENDING, ReservationStatus.CONFIRMED)

class ReservationPaymentStatus(enum.Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"

class RecordPaymentStatus(enum.Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"
    CANCELLED = "CANCELLED"

class PaymentMethod(enum.Enum):
    BALANCE = "BALANCE"
    WECHAT_PAY = "WECHAT_PAY"
    ALIPAY = "ALIPAY"
    BANK_CARD = "BANK_CARD"
    CASH = "CASH"

class WalletTransactionType(enum.Enum):
    TOPUP = "TOPUP"
    CHARGE = "CHARGE"
    REFUND = "REFUND"

class LedgerReference(enum.Enum):
    RESERVATION = "RESERVATION"
    PARKING_RECORD = "PARKING_RECORD"
