import math
from datetime import datetime
from decimal import Decimal
from auth.core.config import settings
from auth.core.enums import VehicleType

CENT = Decimal("0.01")


def duration_minutes(entry_time: datetime, exit_time: datetime) -> int:
    seconds = (exit_time - entry_time).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / 60)


def hourly_rate_for(lot, vehicle_type: VehicleType | None) -> Decimal:
    """Per-vehicle-type override of ``lot`` when present, else its base rate."""
    for rate in getattr(lot, "rates", None) or ():
        if rate.vehicle_type == vehicle_type:
            return Decimal(str(rate.hourly_rate))
    return Decimal(str(lot.hourly_rate))


def compute_fee(entry_time: datetime, exit_time: datetime, vehicle_type: VehicleType | None, lot) -> tuple[int, Decimal]:
    minutes = duration_minutes(entry_time, exit_time)
    # 不足一小时按一小时计费
    hours = math.ceil(minutes / 60)
    fee = hourly_rate_for(lot, vehicle_type) * Decimal(hours)
    return minutes, fee.quantize(CENT)


def compute_reservation_fee(reservation_time: datetime, expiry_time: datetime, vehicle_type: VehicleType | None, lot, ratio: Decimal | None = None) -> Decimal:
    if ratio is None:
        ratio = settings.RESERVATION_FEE_RATIO
    hours = math.ceil((expiry_time - reservation_time).total_seconds() / 3600)
    fee = hourly_rate_for(lot, vehicle_type) * Decimal(max(hours, 0)) * Decimal(str(ratio))
    return fee.quantize(CENT)
