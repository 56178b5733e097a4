from fastapi import HTTPException, status


class ParkingError(Exception):
    """Base class of every recoverable outcome the engine reports to a caller.

    ``code`` is the stable machine-readable kind, ``message`` the text shown
    to API clients.
    """

    code = "PARKING_ERROR"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFound(ParkingError):
    code = "NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND


class Forbidden(ParkingError):
    code = "FORBIDDEN"
    http_status = status.HTTP_403_FORBIDDEN


class SpaceUnavailable(ParkingError):
    code = "SPACE_UNAVAILABLE"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, lot_id: int, space_number: str, current):
        self.lot_id = lot_id
        self.space_number = space_number
        self.current = current
        super().__init__(f"车位 {space_number} 当前状态为 {current.value}，无法执行该操作")


class SpaceConflict(ParkingError):
    code = "SPACE_CONFLICT"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, message: str = "该时间段内车位已被预约", conflicting_ids: list[int] | None = None):
        super().__init__(message)
        self.conflicting_ids = conflicting_ids or []


class ReservationMismatch(ParkingError):
    code = "RESERVATION_MISMATCH"


class InvalidState(ParkingError):
    code = "INVALID_STATE"


class InvalidInterval(ParkingError):
    code = "INVALID_INTERVAL"


class AlreadyExited(ParkingError):
    code = "ALREADY_EXITED"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, record_id: int):
        self.record_id = record_id
        super().__init__("该车辆已经出场")


class AlreadyPaid(ParkingError):
    code = "ALREADY_PAID"
    http_status = status.HTTP_409_CONFLICT


class InsufficientFunds(ParkingError):
    code = "INSUFFICIENT_FUNDS"

    def __init__(self, user_id: int, balance, amount):
        self.user_id = user_id
        self.balance = balance
        self.amount = amount
        super().__init__("钱包余额不足")


class PartialSettlement(ParkingError):
    """Exit or payment was recorded but the space could not be released.

    The record keeps ``is_active=True`` until the repair pass frees the space.
    """

    code = "PARTIAL_SETTLEMENT"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, record_id: int, cause: ParkingError | None = None):
        self.record_id = record_id
        self.cause = cause
        super().__init__(f"停车记录 {record_id} 已结算，但车位释放失败，等待对账修复")


def http_error(err: ParkingError) -> HTTPException:
    return HTTPException(status_code=err.http_status, detail=err.to_detail())
