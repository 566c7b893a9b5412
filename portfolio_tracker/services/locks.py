# portfolio_tracker/services/locks.py
"""
Per-portfolio read/write locks.

Writes touching one portfolio (event append/update/delete, action
application, import commit) hold the portfolio's exclusive lock for the
whole write plus re-derivation. Reads hold it shared. The write lock is
reentrant for the owning thread, so an approval that goes on to apply
its action does not deadlock, and the owner may also take read locks.

Lock waits are bounded by the request deadline when one is armed.

Usage:
    from portfolio_tracker.services.locks import portfolio_locks

    with portfolio_locks.write(portfolio.id):
        ...
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from portfolio_tracker.services.exceptions import DeadlineExceededError
from portfolio_tracker.utils.context import get_portfolio_scope, remaining_time, set_portfolio_scope

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Writer-preferring read/write lock with a reentrant write side."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer: int | None = None
        self._write_depth = 0
        self._waiting_writers = 0

    def acquire_read(self, timeout: float | None = None) -> bool:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._readers += 1
                return True
            ok = self._cond.wait_for(
                lambda: self._writer is None and self._waiting_writers == 0,
                timeout=timeout,
            )
            if not ok:
                return False
            self._readers += 1
            return True

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self, timeout: float | None = None) -> bool:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._write_depth += 1
                return True
            self._waiting_writers += 1
            try:
                ok = self._cond.wait_for(
                    lambda: self._writer is None and self._readers == 0,
                    timeout=timeout,
                )
            finally:
                self._waiting_writers -= 1
            if not ok:
                self._cond.notify_all()
                return False
            self._writer = me
            self._write_depth = 1
            return True

    def release_write(self) -> None:
        with self._cond:
            self._write_depth -= 1
            if self._write_depth == 0:
                self._writer = None
                self._cond.notify_all()


class PortfolioLockRegistry:
    """Process-wide map of portfolio id to its ReadWriteLock."""

    def __init__(self) -> None:
        self._locks: dict[int, ReadWriteLock] = {}
        self._guard = threading.Lock()

    def get(self, portfolio_id: int) -> ReadWriteLock:
        with self._guard:
            lock = self._locks.get(portfolio_id)
            if lock is None:
                lock = ReadWriteLock()
                self._locks[portfolio_id] = lock
            return lock

    def discard(self, portfolio_id: int) -> None:
        """Forget the lock of a deleted portfolio."""
        with self._guard:
            self._locks.pop(portfolio_id, None)

    @contextmanager
    def write(self, portfolio_id: int) -> Iterator[None]:
        lock = self.get(portfolio_id)
        if not lock.acquire_write(timeout=_timeout()):
            logger.warning(f"Timed out waiting for write lock on portfolio {portfolio_id}")
            raise DeadlineExceededError(f"write lock on portfolio {portfolio_id}")

        previous = get_portfolio_scope()
        set_portfolio_scope(portfolio_id)
        try:
            yield
        finally:
            set_portfolio_scope(previous)
            lock.release_write()

    @contextmanager
    def read(self, portfolio_id: int) -> Iterator[None]:
        lock = self.get(portfolio_id)
        if not lock.acquire_read(timeout=_timeout()):
            logger.warning(f"Timed out waiting for read lock on portfolio {portfolio_id}")
            raise DeadlineExceededError(f"read lock on portfolio {portfolio_id}")
        try:
            yield
        finally:
            lock.release_read()


def _timeout() -> float | None:
    remaining = remaining_time()
    if remaining is None:
        return None
    return max(remaining, 0.0)


portfolio_locks = PortfolioLockRegistry()
