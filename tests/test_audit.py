"""Tests for the audit trail subscriber."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.dialects import postgresql

from wealthdesk.audit.logger import audit_on_event, audit_values
from wealthdesk.schemas.events import EventType, SystemEvent


def _event(**overrides) -> SystemEvent:
    fields = {
        "event_type": EventType.PAGE_RENDERED,
        "proposal_id": uuid.uuid4(),
        "data": {"page": 3},
        "source_module": "pipeline.orchestrator",
    }
    fields.update(overrides)
    return SystemEvent(**fields)


def _patch_session(session: AsyncMock):
    @asynccontextmanager
    async def fake_scope():
        yield session

    return patch("wealthdesk.audit.logger.session_scope", fake_scope)


class TestAuditValues:
    def test_maps_event(self):
        event = _event()
        values = audit_values(event)

        assert values["event_id"] == event.id
        assert values["event_type"] == "output.page_rendered"
        assert values["occurred_at"] == event.timestamp
        assert values["proposal_id"] == event.proposal_id
        assert values["actor_id"] == "system"
        assert values["source_module"] == "pipeline.orchestrator"
        assert values["data"] == {"page": 3}

    def test_payload_made_json_safe(self):
        illustration_id = uuid.uuid4()
        values = audit_values(_event(data={"illustration_ids": [illustration_id]}))
        assert values["data"] == {"illustration_ids": [str(illustration_id)]}

    def test_empty_payload_stored_as_null(self):
        assert audit_values(_event(data={}))["data"] is None


class TestAuditOnEvent:
    @pytest.mark.asyncio()
    async def test_insert_ignores_duplicates(self):
        session = AsyncMock()
        with _patch_session(session):
            await audit_on_event(_event())

        session.execute.assert_awaited_once()
        statement = session.execute.call_args.args[0]
        sql = str(statement.compile(dialect=postgresql.dialect()))
        assert "INSERT INTO audit_log" in sql
        assert "ON CONFLICT (event_id) DO NOTHING" in sql

    @pytest.mark.asyncio()
    async def test_database_failure_is_swallowed(self):
        session = AsyncMock()
        session.execute = AsyncMock(side_effect=RuntimeError("connection reset"))
        with _patch_session(session):
            await audit_on_event(_event())
