"""SQLite flow store implementation."""

import json
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Protocol

import aiosqlite

from ..config import resolve_db_path
from ..errors import FlowConflictError
from ..logging_config import get_logger
from ..models import Flow, FlowStatus, OutboundMessage, TraceEvent
from .codec import flow_from_record, flow_to_record, parse_ts

logger = get_logger(__name__)


class IFlowStore(Protocol):
    """Durable persistence for flows, the outbox and trace events."""

    async def init(self) -> None:
        """Initialize database and create tables."""
        ...

    async def close(self) -> None:
        """Close database connection."""
        ...

    # Flows
    async def save(self, flow: Flow, expected_version: int | None = None) -> None:
        """Overwrite the flow record, conditionally when a version is given."""
        ...

    async def load(self, agent_id: str, flow_id: str) -> Flow | None:
        """Load one flow."""
        ...

    async def list_flows(
        self, agent_id: str, statuses: list[FlowStatus] | None = None
    ) -> list[Flow]:
        """List an agent's flows, unordered."""
        ...

    async def list_agent_ids(self) -> list[str]:
        """Agents that own at least one flow."""
        ...

    # Outbox
    async def enqueue_outbound(self, message: OutboundMessage) -> None:
        """Queue an outbound message."""
        ...

    async def get_outbound(
        self,
        flow_id: str | None = None,
        status: str | None = None,
        limit: int = 100,
    ) -> list[OutboundMessage]:
        """Get queued messages, oldest first."""
        ...

    # TraceEvents
    async def save_trace_event(self, event: TraceEvent) -> None:
        """Save a trace event."""
        ...

    async def get_trace_events(
        self,
        after: datetime | None = None,
        event_types: list[str] | None = None,
        actor: str | None = None,
        limit: int = 100,
    ) -> list[TraceEvent]:
        """Get trace events with optional filters."""
        ...

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        ...


class FlowStore:
    """SQLite flow store."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Initialize database and create tables."""
        self._conn = await aiosqlite.connect(self._db_path)

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Storage not initialized")
        return self._conn

    # Flows
    async def save(self, flow: Flow, expected_version: int | None = None) -> None:
        """Overwrite the whole flow record.

        Without ``expected_version`` the write is unconditional and
        idempotent. With it, the write succeeds only if the stored version
        still equals ``expected_version`` (``0`` also accepts a missing
        record); ``flow.version`` is then bumped. A lost race raises
        FlowConflictError and leaves the stored record untouched.
        """
        conn = self._require_conn()
        data = json.dumps(flow_to_record(flow))
        created_at = flow.created_at.isoformat()
        updated_at = flow.updated_at.isoformat()

        if expected_version is None:
            await conn.execute(
                """
                INSERT INTO flows
                (agent_id, flow_id, status, version, data, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (agent_id, flow_id) DO UPDATE SET
                    status = excluded.status,
                    version = excluded.version,
                    data = excluded.data,
                    updated_at = excluded.updated_at
                """,
                (
                    flow.agent_id,
                    flow.id,
                    flow.status.value,
                    flow.version,
                    data,
                    created_at,
                    updated_at,
                ),
            )
            await conn.commit()
            return

        new_version = expected_version + 1
        cursor = await conn.execute(
            """
            UPDATE flows
            SET status = ?, version = ?, data = ?, updated_at = ?
            WHERE agent_id = ? AND flow_id = ? AND version = ?
            """,
            (
                flow.status.value,
                new_version,
                data,
                updated_at,
                flow.agent_id,
                flow.id,
                expected_version,
            ),
        )
        if cursor.rowcount == 0:
            if expected_version != 0:
                await conn.rollback()
                raise FlowConflictError(
                    f"Flow {flow.id} was modified concurrently "
                    f"(expected version {expected_version})",
                    flow_id=flow.id,
                )
            try:
                await conn.execute(
                    """
                    INSERT INTO flows
                    (agent_id, flow_id, status, version, data, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        flow.agent_id,
                        flow.id,
                        flow.status.value,
                        new_version,
                        data,
                        created_at,
                        updated_at,
                    ),
                )
            except sqlite3.IntegrityError as e:
                await conn.rollback()
                raise FlowConflictError(
                    f"Flow {flow.id} already exists", flow_id=flow.id
                ) from e

        await conn.commit()
        flow.version = new_version

    async def load(self, agent_id: str, flow_id: str) -> Flow | None:
        """Load one flow."""
        conn = self._require_conn()

        cursor = await conn.execute(
            """
            SELECT data, version
            FROM flows
            WHERE agent_id = ? AND flow_id = ?
            """,
            (agent_id, flow_id),
        )
        row = await cursor.fetchone()

        if not row:
            return None

        return flow_from_record(json.loads(row[0]), version=row[1])

    async def list_flows(
        self, agent_id: str, statuses: list[FlowStatus] | None = None
    ) -> list[Flow]:
        """List an agent's flows, unordered."""
        conn = self._require_conn()

        conditions = ["agent_id = ?"]
        params: list = [agent_id]
        if statuses:
            placeholders = ",".join("?" * len(statuses))
            conditions.append(f"status IN ({placeholders})")
            params.extend(FlowStatus(s).value for s in statuses)

        cursor = await conn.execute(
            f"SELECT data, version FROM flows WHERE {' AND '.join(conditions)}",
            params,
        )
        rows = await cursor.fetchall()

        flows = []
        for row in rows:
            try:
                flows.append(flow_from_record(json.loads(row[0]), version=row[1]))
            except (KeyError, ValueError) as e:
                logger.error("Skipping unreadable flow record for %s: %s", agent_id, e)
        return flows

    async def list_agent_ids(self) -> list[str]:
        """Agents that own at least one flow."""
        conn = self._require_conn()

        cursor = await conn.execute("SELECT DISTINCT agent_id FROM flows")
        rows = await cursor.fetchall()
        return [row[0] for row in rows]

    # Outbox
    async def enqueue_outbound(self, message: OutboundMessage) -> None:
        """Queue an outbound message."""
        conn = self._require_conn()

        await conn.execute(
            """
            INSERT INTO outbound_messages
            (id, flow_id, kind, sender, recipient, subject, body,
             request_id, status, attempts, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                message.id or str(uuid.uuid4()),
                message.flow_id,
                message.kind,
                message.sender,
                message.recipient,
                message.subject,
                message.body,
                message.request_id,
                message.status,
                message.attempts,
                message.created_at.isoformat(),
            ),
        )
        await conn.commit()

    async def get_outbound(
        self,
        flow_id: str | None = None,
        status: str | None = None,
        limit: int = 100,
    ) -> list[OutboundMessage]:
        """Get queued messages, oldest first."""
        conn = self._require_conn()

        conditions = []
        params: list = []
        if flow_id:
            conditions.append("flow_id = ?")
            params.append(flow_id)
        if status:
            conditions.append("status = ?")
            params.append(status)

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(limit)

        cursor = await conn.execute(
            f"""
            SELECT id, flow_id, kind, sender, recipient, subject, body,
                   request_id, status, attempts, created_at
            FROM outbound_messages
            {where_clause}
            ORDER BY created_at ASC
            LIMIT ?
            """,
            params,
        )
        rows = await cursor.fetchall()

        return [
            OutboundMessage(
                id=row[0],
                flow_id=row[1],
                kind=row[2],
                sender=row[3],
                recipient=row[4],
                subject=row[5],
                body=row[6],
                request_id=row[7],
                status=row[8],
                attempts=row[9],
                created_at=parse_ts(row[10]),
            )
            for row in rows
        ]

    # TraceEvents
    async def save_trace_event(self, event: TraceEvent) -> None:
        """Save a trace event."""
        conn = self._require_conn()

        await conn.execute(
            """
            INSERT INTO trace_events (id, event_type, actor, data, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                event.id or str(uuid.uuid4()),
                event.event_type,
                event.actor,
                json.dumps(event.data, default=str),
                event.timestamp.isoformat(),
            ),
        )
        await conn.commit()

    async def get_trace_events(
        self,
        after: datetime | None = None,
        event_types: list[str] | None = None,
        actor: str | None = None,
        limit: int = 100,
    ) -> list[TraceEvent]:
        """Get trace events with optional filters (newest first)."""
        conn = self._require_conn()

        conditions = []
        params: list = []

        if after:
            conditions.append("timestamp > ?")
            params.append(after.isoformat())
        if event_types:
            placeholders = ",".join("?" * len(event_types))
            conditions.append(f"event_type IN ({placeholders})")
            params.extend(event_types)
        if actor:
            conditions.append("actor = ?")
            params.append(actor)

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        query = f"""
            SELECT id, event_type, actor, data, timestamp
            FROM trace_events
            {where_clause}
            ORDER BY timestamp DESC
            LIMIT ?
        """
        params.append(limit)

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()

        return [
            TraceEvent(
                id=row[0],
                event_type=row[1],
                actor=row[2],
                data=json.loads(row[3]),
                timestamp=parse_ts(row[4]),
            )
            for row in rows
        ]

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        conn = self._require_conn()

        for table in ["flows", "outbound_messages", "trace_events"]:
            await conn.execute(f"DELETE FROM {table}")

        await conn.commit()
