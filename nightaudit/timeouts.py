# nightaudit/timeouts.py
"""
Bounded data access.

Store and booking reads and writes run on a worker thread joined with a
deadline. A missed deadline or a connectivity failure surfaces as a
retryable TransientError. The worker is abandoned, not interrupted; the
engine's pool and statement timeouts end it on the database side.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, TypeVar

from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from nightaudit.errors import TransientError

T = TypeVar("T")

TRANSIENT_DB_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError, DisconnectionError)


def call_with_timeout(fn: Callable[[], T], timeout_seconds: float, source: str) -> T:
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"db-{source}")
    try:
        future = pool.submit(fn)
        done, _ = wait([future], timeout=timeout_seconds)
        if not done:
            print(f"[DB] {source} timed out after {timeout_seconds}s")
            raise TransientError(f"Timed out accessing {source} after {timeout_seconds:g}s", source=source)
        try:
            return future.result()
        except TRANSIENT_DB_ERRORS as e:
            print(f"[DB] {source} failed: {str(e)[:240]}")
            raise TransientError(f"Data source '{source}' is unavailable", source=source)
    finally:
        pool.shutdown(wait=False)
