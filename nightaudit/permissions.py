# nightaudit/permissions.py
from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from nightaudit import models
from nightaudit.business_date import utcnow
from nightaudit.errors import TransientError
from nightaudit.timeouts import call_with_timeout

# Roles that skip the per-module permission lookup.
SUPERUSER_ROLES = {
    models.UserRole.admin.value,
    models.UserRole.general_manager.value,
    "system_admin",
}


@dataclass(frozen=True)
class CachedValue:
    data: Any
    fetched_at: datetime

    def is_stale(self, now: datetime, ttl_seconds: float) -> bool:
        return now - self.fetched_at >= timedelta(seconds=ttl_seconds)


class RolePermissionCache:
    """
    Club role definitions with a timed refresh.

    `loader` returns {role_code: permissions_dict}. A failed refresh keeps
    serving the previous value; with nothing cached the failure surfaces.
    """

    def __init__(
        self,
        loader: Callable[[], Dict[str, dict]],
        ttl_seconds: float = 300.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._loader = loader
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._cached: Optional[CachedValue] = None
        self._lock = threading.Lock()

    def get(self) -> Dict[str, dict]:
        now = self._clock()
        with self._lock:
            current = self._cached
            if current is not None and not current.is_stale(now, self._ttl):
                return current.data
            try:
                data = self._loader()
            except (SQLAlchemyError, TransientError) as e:
                print(f"[PERMISSION] Failed to load roles: {str(e)[:240]}")
                if current is not None:
                    return current.data
                raise TransientError("Role definitions are unavailable", source="roles")
            self._cached = CachedValue(data=data, fetched_at=now)
            return data

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None

    def has_permission(self, role_code: Optional[str], module: str, action: str) -> bool:
        code = str(role_code or "").strip()
        if code in SUPERUSER_ROLES:
            return True
        if not code:
            return False
        perms = self.get().get(code)
        if perms is None:
            print(f"[PERMISSION] No active role definition for '{code}', denying {module}.{action}")
            return False
        module_perms = perms.get(module) or {}
        return bool(module_perms.get(action))


def role_loader(session_factory, club_id: str, timeout_seconds: float = 10.0) -> Callable[[], Dict[str, dict]]:
    def read() -> Dict[str, dict]:
        with session_factory() as db:
            rows = (
                db.query(models.Role)
                .filter(models.Role.club_id == club_id, models.Role.status == "active")
                .all()
            )
            return {r.code: dict(r.permissions or {}) for r in rows}

    def load() -> Dict[str, dict]:
        return call_with_timeout(read, timeout_seconds, "roles")

    return load
