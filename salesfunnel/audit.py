from __future__ import annotations

import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any

from salesfunnel.context import get_correlation_id

AUDIT_TRAIL_MAXLEN = 5000
audit_entries: deque[dict[str, Any]] = deque(maxlen=AUDIT_TRAIL_MAXLEN)


def record(
    actor_user_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    correlation_id: str | None = None,
) -> None:
    """Append a mutation to the in-process audit trail.

    Quote approval decisions are persisted separately in ``revenue_quote_approval``; this trail
    covers customer, opportunity and settings changes. Only the newest ``AUDIT_TRAIL_MAXLEN``
    entries are kept.
    """
    audit_entries.append(
        {
            "id": str(uuid.uuid4()),
            "actor_user_id": actor_user_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action,
            "before": before,
            "after": after,
            "correlation_id": correlation_id or get_correlation_id(),
            "occurred_at": datetime.now(timezone.utc).isoformat(),
        }
    )


def entries_for(entity_type: str, entity_id: str) -> list[dict[str, Any]]:
    return [entry for entry in audit_entries if entry["entity_type"] == entity_type and entry["entity_id"] == entity_id]
