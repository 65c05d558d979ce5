# nightaudit/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

load_dotenv()

# Club id that single-club deployments assumed when none was supplied.
# Migration shim only: remove once every deployment sets CLUB_ID.
LEGACY_DEFAULT_CLUB_ID = "80a8bd4f680c3bb901e1269130e92a37"

DEFAULT_TIMEZONE = "Asia/Shanghai"


def _env_flag(name: str) -> bool:
    return str(os.getenv(name, "")).strip().lower() in {"1", "true", "yes"}


def _env_float(name: str, default: float) -> float:
    raw = str(os.getenv(name, "") or "").strip()
    if not raw:
        return float(default)
    try:
        return float(raw)
    except ValueError:
        print(f"[CONFIG] Ignoring invalid {name}={raw!r}, using {default}")
        return float(default)


@dataclass(frozen=True)
class NightAuditConfig:
    club_id: str
    timezone: str = DEFAULT_TIMEZONE
    data_access_timeout_seconds: float = 10.0
    close_claim_ttl_seconds: float = 300.0
    role_cache_ttl_seconds: float = 300.0
    aggregator_max_workers: int = 4

    def __post_init__(self):
        if not str(self.club_id or "").strip():
            raise ValueError("club_id is required")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown club timezone: {self.timezone}")

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def resolve_club_id() -> str:
    club_id = str(os.getenv("CLUB_ID", "") or "").strip()
    if club_id:
        return club_id
    if _env_flag("ALLOW_LEGACY_DEFAULT_CLUB_ID"):
        print(
            "[CONFIG] WARNING: CLUB_ID is not set, falling back to the legacy default club id. "
            "This fallback is deprecated and will be removed."
        )
        return LEGACY_DEFAULT_CLUB_ID
    raise RuntimeError("CLUB_ID is not configured (set CLUB_ID, or ALLOW_LEGACY_DEFAULT_CLUB_ID=1 during migration).")


def load_config() -> NightAuditConfig:
    return NightAuditConfig(
        club_id=resolve_club_id(),
        timezone=str(os.getenv("CLUB_TIMEZONE", "") or "").strip() or DEFAULT_TIMEZONE,
        data_access_timeout_seconds=_env_float("DATA_ACCESS_TIMEOUT_SECONDS", 10.0),
        close_claim_ttl_seconds=_env_float("CLOSE_CLAIM_TTL_SECONDS", 300.0),
        role_cache_ttl_seconds=_env_float("ROLE_CACHE_TTL_SECONDS", 300.0),
        aggregator_max_workers=max(1, int(_env_float("AGGREGATOR_MAX_WORKERS", 4))),
    )
