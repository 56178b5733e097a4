"""In-process serialization of the engine's contention points.

A parking space (lot id + space number) and a user's wallet are the two
things that concurrent requests fight over. Every unit of work names the
spaces and wallets it touches, takes their locks in one global order
(spaces first, then wallets, each sorted) and only releases them after the
database session was committed or rolled back. Rows are additionally read
``FOR UPDATE`` by the callers, which covers multi-process deployments on
databases with row locks.
"""
import logging
import threading
from contextlib import contextmanager
from sqlalchemy.orm import Session
from .errors import PartialSettlement

logger = logging.getLogger(__name__)

_KIND_ORDER = {"space": 0, "wallet": 1}


def space_key(lot_id: int, space_number: str) -> tuple:
    return ("space", int(lot_id), str(space_number))


def wallet_key(user_id: int) -> tuple:
    return ("wallet", int(user_id))


class KeyedLocks:
    # 锁只增不删：每个车位、每个用户钱包各一把，总数以车位数加用户数为上限
    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[tuple, threading.RLock] = {}

    def get(self, key: tuple) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys: tuple):
        ordered = sorted(set(k for k in keys if k is not None), key=lambda k: (_KIND_ORDER[k[0]], k[1:]))
        acquired = []
        try:
            for key in ordered:
                lock = self.get(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


registry = KeyedLocks()


@contextmanager
def guarded(db: Session, *keys: tuple):
    """Run one unit of work under the given locks.

    Commits on success and rolls back on any error, so a failed operation
    leaves no partial mutation behind. ``PartialSettlement`` is the one
    outcome whose recorded fields are committed before it propagates.
    """
    with registry.hold(*keys):
        try:
            yield
            db.commit()
        except PartialSettlement:
            db.commit()
            raise
        except Exception:
            db.rollback()
            raise
