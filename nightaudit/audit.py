# nightaudit/audit.py
from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from nightaudit import models
from nightaudit.business_date import utcnow_naive

MODULE = "daily_close"


def record_audit(
    db: Session,
    club_id: str,
    action: str,
    description: str,
    details: Optional[dict] = None,
    operator_id: Optional[str] = None,
    operator_name: Optional[str] = None,
) -> models.AuditLog:
    """Stage an audit row in the caller's transaction. The caller commits."""
    entry = models.AuditLog(
        club_id=club_id,
        module=MODULE,
        action=action,
        description=description[:500],
        details=details or {},
        operator_id=operator_id,
        operator_name=operator_name or "",
        created_at=utcnow_naive(),
    )
    db.add(entry)
    return entry
