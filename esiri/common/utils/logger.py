# esiri/common/utils/logger.py
"""Structured event logging to the process log and the audit_logs table."""

import logging
from typing import Any, Dict, Optional

from esiri.common.database.database import session_scope
from esiri.models.models import AuditLog

logger = logging.getLogger("esiri.events")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


async def log_event(
    function_name: str,
    action: str,
    level: str = "info",
    identity: Any = None,
    metadata: Optional[Dict[str, Any]] = None,
    error_message: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> None:
    """Write an event to the log and persist it. Never raises."""
    user_id = getattr(identity, "user_id", None)
    session_id = getattr(identity, "session_id", None)

    logger.log(
        _LEVELS.get(level, logging.INFO),
        "%s %s user=%s session=%s %s%s",
        function_name,
        action,
        user_id,
        session_id,
        metadata or {},
        f" error={error_message}" if error_message else "",
    )

    try:
        async with session_scope() as session:
            session.add(AuditLog(
                function_name=function_name,
                level=level,
                action=action,
                user_id=user_id,
                session_id=session_id,
                event_metadata=metadata or {},
                error_message=error_message,
                ip_address=ip_address,
            ))
            await session.commit()
    except Exception as e:
        logger.warning(f"Failed to persist audit event {function_name}/{action}: {e}")
