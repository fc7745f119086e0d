"""Audit trail subscriber — records every SystemEvent in ``audit_log``.

Wired at startup when the SQL store backend is active. Inserts are keyed by
the event id, so an event delivered twice is stored once. Recording is best
effort: a failed insert is logged and the pipeline carries on.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.dialects.postgresql import insert

from wealthdesk.db.engine import session_scope
from wealthdesk.models.audit import AuditLog
from wealthdesk.schemas.events import SystemEvent

logger = logging.getLogger(__name__)


def audit_values(event: SystemEvent) -> dict[str, Any]:
    """Column values for one event. The payload is stored JSON-safe."""
    return {
        "event_id": event.id,
        "event_type": event.event_type.value,
        "occurred_at": event.timestamp,
        "proposal_id": event.proposal_id,
        "illustration_id": event.illustration_id,
        "actor_id": event.actor_id or "system",
        "source_module": event.source_module,
        "data": event.model_dump(mode="json")["data"] or None,
    }


async def audit_on_event(event: SystemEvent) -> None:
    """Persist one event; never raises into the event bus."""
    statement = (
        insert(AuditLog)
        .values(**audit_values(event))
        .on_conflict_do_nothing(index_elements=[AuditLog.event_id])
    )
    try:
        async with session_scope() as db:
            await db.execute(statement)
    except Exception:
        logger.exception(
            "Failed to record audit event %s (proposal=%s)",
            event.event_type.value,
            event.proposal_id,
        )
