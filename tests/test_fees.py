from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

from auth.core.enums import VehicleType
from parking.fees import duration_minutes, compute_fee, compute_reservation_fee, hourly_rate_for

T0 = datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc)

def _lot(rate="10.00", **overrides):
    rates = [SimpleNamespace(vehicle_type=t, hourly_rate=Decimal(r)) for t, r in overrides.items()]
    return SimpleNamespace(hourly_rate=Decimal(rate), rates=rates)

def test_partial_hour_is_billed_as_full_hour():
    minutes, fee = compute_fee(T0, T0 + timedelta(minutes=65), VehicleType.SMALL, _lot())
    assert minutes == 65
    assert fee == Decimal("20.00")

def test_exact_hour_is_not_rounded_up():
    minutes, fee = compute_fee(T0, T0 + timedelta(hours=1), VehicleType.SMALL, _lot())
    assert minutes == 60
    assert fee == Decimal("10.00")

def test_duration_rounds_seconds_up_to_minutes():
    assert duration_minutes(T0, T0 + timedelta(seconds=61)) == 2
    assert duration_minutes(T0, T0) == 0
    assert duration_minutes(T0, T0 - timedelta(minutes=5)) == 0

def test_zero_duration_costs_nothing():
    assert compute_fee(T0, T0, VehicleType.SMALL, _lot()) == (0, Decimal("0.00"))

def test_vehicle_type_override_wins_over_base_rate():
    lot = _lot(LARGE="15.00")
    assert hourly_rate_for(lot, VehicleType.LARGE) == Decimal("15.00")
    assert hourly_rate_for(lot, VehicleType.SMALL) == Decimal("10.00")
    _, fee = compute_fee(T0, T0 + timedelta(minutes=90), VehicleType.LARGE, lot)
    assert fee == Decimal("30.00")

def test_reservation_fee_is_twenty_percent_of_rounded_hours():
    fee = compute_reservation_fee(T0, T0 + timedelta(minutes=90), VehicleType.SMALL, _lot())
    assert fee == Decimal("4.00")

def test_reservation_fee_uses_override_and_custom_ratio():
    lot = _lot(NEW_ENERGY="5.00")
    fee = compute_reservation_fee(T0, T0 + timedelta(minutes=30), VehicleType.NEW_ENERGY, lot, Decimal("0.5"))
    assert fee == Decimal("2.50")
