from __future__ import annotations

import logging
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any

from app.context import get_correlation_id

logger = logging.getLogger("app.security")

RECENT_EVENTS_LIMIT = 1000

# Recent security decisions (denials) for inspection; the log line is the durable record.
# Business audit lives in the activities table.
security_events: deque[dict[str, Any]] = deque(maxlen=RECENT_EVENTS_LIMIT)


def record(
    actor_user_id: int | None,
    entity_type: str,
    entity_id: str,
    action: str,
    details: dict[str, Any] | None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    resolved_correlation_id = correlation_id or get_correlation_id()
    entry = {
        "id": str(uuid.uuid4()),
        "actor_user_id": actor_user_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "action": action,
        "details": details,
        "correlation_id": resolved_correlation_id,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
    }
    security_events.append(entry)
    logger.warning(
        action,
        extra={
            "actor_id": actor_user_id,
            "resource": entity_type,
            "record_id": entity_id,
        },
    )
    return entry
