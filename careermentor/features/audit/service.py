import logging
from collections import deque
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone

from sqlalchemy import insert, select
from sqlalchemy.exc import SQLAlchemyError

from careermentor.core.config import settings
from careermentor.core.database import audit_logs, get_db_session
from careermentor.core.logging import safe_truncate

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

AUDIT_BUFFER_MAX = 1000

# Fallback buffer when the DB write fails; oldest entries are dropped first
_memory_events: "deque[Dict[str, Any]]" = deque(maxlen=AUDIT_BUFFER_MAX)


def record_audit_event(
    *,
    action_type: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    actor: str = SYSTEM_ACTOR,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    """Append an audit entry.

    Notes:
    - Respects AUDIT_ENABLED.
    - Details are truncated; never pass secrets.
    - A failed write is logged and buffered; it never fails the caller's operation.
    """
    if not settings.AUDIT_ENABLED:
        return

    safe_details = None
    if details:
        safe_details = {
            k: v if isinstance(v, (int, float, bool)) or v is None else safe_truncate(v)
            for k, v in details.items()
        }

    record = {
        "actor": actor,
        "action_type": action_type,
        "resource_type": resource_type,
        "resource_id": resource_id,
        "details": safe_details,
        "created_at": datetime.now(timezone.utc),
    }

    try:
        with get_db_session() as session:
            session.execute(insert(audit_logs).values(**record))
    except SQLAlchemyError as exc:
        logger.warning(f"Audit event write failed: {exc}")
        _memory_events.append(record)


def list_audit_events(
    *, resource_id: Optional[str] = None, action_type: Optional[str] = None, limit: int = 100
) -> List[Dict[str, Any]]:
    stmt = select(audit_logs).order_by(audit_logs.c.id.desc()).limit(limit)
    if resource_id is not None:
        stmt = stmt.where(audit_logs.c.resource_id == resource_id)
    if action_type is not None:
        stmt = stmt.where(audit_logs.c.action_type == action_type)
    with get_db_session() as session:
        return [dict(row._mapping) for row in session.execute(stmt)]
