"""Audit logging service.

Writes audit log entries for cycle count state changes. Entries join the
caller's transaction so an audit row exists iff the change it describes
was committed.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from cyclecount.models.audit import AuditLogEntry

logger = logging.getLogger("audit")


def log_action(
    db: Session,
    action: str,
    entity_type: str = "",
    entity_id: Any = "",
    user_id: Optional[int] = None,
    user_name: str = "",
    ip_address: str = "",
    details: Optional[dict[str, Any]] = None,
) -> AuditLogEntry:
    """Add an audit log entry to the session and flush it.

    Args:
        db: The caller's session; the caller commits.
        action: The action performed (create, start, approve, ...)
        entity_type: Type of entity affected (cycle_count, stock_item, ...)
        entity_id: ID of the affected entity
        user_id: ID of the user performing the action
        user_name: Name/email of the user
        ip_address: Client IP address
        details: Additional JSON-serializable details
    """
    entry = AuditLogEntry(
        user_id=user_id,
        user_name=user_name,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id else "",
        details=details or {},
        ip_address=ip_address or "",
        created_at=datetime.now(timezone.utc),
    )
    db.add(entry)
    db.flush()
    logger.info("%s %s %s by user=%s", action, entity_type, entity_id, user_id)
    return entry
