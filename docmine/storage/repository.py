"""Persistence operations used by the scheduler, orchestrator and CLI.

``PipelineStore`` is a thin layer over sqlite. It owns four concerns:

- messages: inserted by external connectors, read in time windows
- watermarks: one cursor per stream, never moved backwards implicitly
- pipeline run logs: create-then-finalize, one row per orchestrator run
- proposals and classifications: append-only outputs of a run
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

from docmine.errors import DatabaseError
from docmine.lib.json import dumps, loads
from docmine.lib.log import get_logger
from docmine.lib.timestamps import parse_iso, to_iso, utcnow
from docmine.pipeline.models import ConversationThread, Message, Proposal, ProposalEnrichment, StepRun, UpdateType
from docmine.storage.connection import connection_context

logger = get_logger(__name__)

_WRITE_LOCK = threading.Lock()


class Watermark(BaseModel):
    model_config = ConfigDict(frozen=True)

    stream_id: str
    watermark_time: datetime
    last_processed_batch: datetime | None = None


class RunLogRecord(BaseModel):
    id: int
    instance_id: str
    batch_id: str
    pipeline_id: str
    status: str
    input_messages: int
    steps: list[dict[str, Any]]
    output_threads: int | None = None
    output_proposals: int | None = None
    total_duration_ms: int | None = None
    llm_calls: int | None = None
    llm_tokens_used: int | None = None
    error_message: str | None = None
    started_at: datetime
    completed_at: datetime | None = None


class ProposalRecord(BaseModel):
    id: int
    batch_id: str
    thread_id: str
    proposal: Proposal
    created_at: datetime


def _message_from_row(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        stream_id=row["stream_id"],
        timestamp=parse_iso(row["timestamp"]),
        author=row["author"],
        content=row["content"],
        channel=row["channel"],
        raw_data=loads(row["raw_data"]) if row["raw_data"] else {},
    )


def _run_log_from_row(row: sqlite3.Row) -> RunLogRecord:
    return RunLogRecord(
        id=row["id"],
        instance_id=row["instance_id"],
        batch_id=row["batch_id"],
        pipeline_id=row["pipeline_id"],
        status=row["status"],
        input_messages=row["input_messages"],
        steps=loads(row["steps"]) if row["steps"] else [],
        output_threads=row["output_threads"],
        output_proposals=row["output_proposals"],
        total_duration_ms=row["total_duration_ms"],
        llm_calls=row["llm_calls"],
        llm_tokens_used=row["llm_tokens_used"],
        error_message=row["error_message"],
        started_at=parse_iso(row["started_at"]),
        completed_at=parse_iso(row["completed_at"]) if row["completed_at"] else None,
    )


class PipelineStore:
    """sqlite-backed store for everything the pipeline persists."""

    def __init__(self, db_path: Path | str | None = None) -> None:
        self.db_path = Path(db_path) if db_path else None

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        try:
            with connection_context(self.db_path) as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Query failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_messages(self, messages: Iterable[Message]) -> int:
        """Insert messages, ignoring ids that already exist. Returns rows inserted."""
        rows = [
            (m.id, m.stream_id, to_iso(m.timestamp), m.author, m.content, m.channel, dumps(m.raw_data))
            for m in messages
        ]
        if not rows:
            return 0
        try:
            with _WRITE_LOCK, connection_context(self.db_path) as conn, conn:
                before = conn.total_changes
                conn.executemany(
                    """
                    INSERT OR IGNORE INTO messages (id, stream_id, timestamp, author, content, channel, raw_data)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
                return conn.total_changes - before
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to insert messages: {exc}") from exc

    def fetch_messages(
        self,
        stream_id: str,
        start: datetime,
        end: datetime,
        limit: int,
        *,
        pending_only: bool = False,
    ) -> list[Message]:
        """Messages with ``start <= timestamp < end``, oldest first, at most ``limit``."""
        if limit <= 0:
            return []
        status_clause = "AND processing_status = 'PENDING'" if pending_only else ""
        rows = self._execute(
            f"""
            SELECT * FROM messages
            WHERE stream_id = ? AND timestamp >= ? AND timestamp < ? {status_clause}
            ORDER BY timestamp ASC, id ASC
            LIMIT ?
            """,
            (stream_id, to_iso(start), to_iso(end), limit),
        )
        return [_message_from_row(row) for row in rows]

    def list_streams(self) -> list[str]:
        rows = self._execute(
            """
            SELECT stream_id FROM messages
            UNION
            SELECT stream_id FROM processing_watermarks
            ORDER BY stream_id
            """
        )
        return [row["stream_id"] for row in rows]

    def mark_messages(self, message_ids: Sequence[str], status: str) -> None:
        if not message_ids:
            return
        try:
            with _WRITE_LOCK, connection_context(self.db_path) as conn, conn:
                conn.executemany(
                    "UPDATE messages SET processing_status = ? WHERE id = ?",
                    [(status, message_id) for message_id in message_ids],
                )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to update message status: {exc}") from exc

    def message_status(self, message_id: str) -> str | None:
        rows = self._execute("SELECT processing_status FROM messages WHERE id = ?", (message_id,))
        return rows[0]["processing_status"] if rows else None

    # ------------------------------------------------------------------
    # Watermarks
    # ------------------------------------------------------------------

    def get_watermark(self, stream_id: str) -> Watermark | None:
        rows = self._execute("SELECT * FROM processing_watermarks WHERE stream_id = ?", (stream_id,))
        if not rows:
            return None
        row = rows[0]
        return Watermark(
            stream_id=row["stream_id"],
            watermark_time=parse_iso(row["watermark_time"]),
            last_processed_batch=parse_iso(row["last_processed_batch"]) if row["last_processed_batch"] else None,
        )

    def list_watermarks(self) -> list[Watermark]:
        rows = self._execute("SELECT stream_id FROM processing_watermarks ORDER BY stream_id")
        return [wm for row in rows if (wm := self.get_watermark(row["stream_id"])) is not None]

    def init_watermark(self, stream_id: str, watermark_time: datetime) -> Watermark:
        """Create the cursor if missing and return whatever is stored."""
        try:
            with _WRITE_LOCK, connection_context(self.db_path) as conn, conn:
                conn.execute(
                    """
                    INSERT OR IGNORE INTO processing_watermarks (stream_id, watermark_time, updated_at)
                    VALUES (?, ?, ?)
                    """,
                    (stream_id, to_iso(watermark_time), to_iso(utcnow())),
                )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to initialize watermark: {exc}") from exc
        watermark = self.get_watermark(stream_id)
        assert watermark is not None
        return watermark

    def advance_watermark(self, stream_id: str, watermark_time: datetime, processed_at: datetime) -> Watermark:
        """Move the cursor forward to ``watermark_time``.

        A target earlier than the stored value leaves the cursor where it is,
        so the watermark is monotonically non-decreasing.
        """
        try:
            with _WRITE_LOCK, connection_context(self.db_path) as conn, conn:
                row = conn.execute(
                    "SELECT watermark_time FROM processing_watermarks WHERE stream_id = ?", (stream_id,)
                ).fetchone()
                if row is not None and parse_iso(row["watermark_time"]) > watermark_time:
                    logger.warning(
                        "refusing to move watermark backwards",
                        stream_id=stream_id,
                        current=row["watermark_time"],
                        requested=to_iso(watermark_time),
                    )
                    target = parse_iso(row["watermark_time"])
                else:
                    target = watermark_time
                conn.execute(
                    """
                    INSERT INTO processing_watermarks (stream_id, watermark_time, last_processed_batch, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(stream_id) DO UPDATE SET
                        watermark_time = excluded.watermark_time,
                        last_processed_batch = excluded.last_processed_batch,
                        updated_at = excluded.updated_at
                    """,
                    (stream_id, to_iso(target), to_iso(processed_at), to_iso(utcnow())),
                )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to advance watermark: {exc}") from exc
        watermark = self.get_watermark(stream_id)
        assert watermark is not None
        return watermark

    def reset_watermark(self, stream_id: str, watermark_time: datetime) -> Watermark:
        """Operator override: set the cursor to any time, including an earlier one."""
        try:
            with _WRITE_LOCK, connection_context(self.db_path) as conn, conn:
                conn.execute(
                    """
                    INSERT INTO processing_watermarks (stream_id, watermark_time, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(stream_id) DO UPDATE SET
                        watermark_time = excluded.watermark_time,
                        updated_at = excluded.updated_at
                    """,
                    (stream_id, to_iso(watermark_time), to_iso(utcnow())),
                )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to reset watermark: {exc}") from exc
        logger.info("watermark reset", stream_id=stream_id, watermark=to_iso(watermark_time))
        watermark = self.get_watermark(stream_id)
        assert watermark is not None
        return watermark

    # ------------------------------------------------------------------
    # Run logs
    # ------------------------------------------------------------------

    def create_run_log(
        self,
        *,
        instance_id: str,
        batch_id: str,
        pipeline_id: str,
        input_messages: int,
        started_at: datetime,
    ) -> int:
        try:
            with _WRITE_LOCK, connection_context(self.db_path) as conn, conn:
                cursor = conn.execute(
                    """
                    INSERT INTO pipeline_run_logs (instance_id, batch_id, pipeline_id, status, input_messages, started_at)
                    VALUES (?, ?, ?, 'running', ?, ?)
                    """,
                    (instance_id, batch_id, pipeline_id, input_messages, to_iso(started_at)),
                )
                run_id = cursor.lastrowid
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to create run log: {exc}") from exc
        assert run_id is not None
        return run_id

    def finalize_run_log(
        self,
        run_id: int,
        *,
        status: str,
        steps: Sequence[StepRun],
        output_threads: int,
        output_proposals: int,
        total_duration_ms: int,
        llm_calls: int,
        llm_tokens_used: int,
        error_message: str | None,
        completed_at: datetime,
    ) -> None:
        """Finalize a running row. Rows already completed or failed are left untouched."""
        try:
            with _WRITE_LOCK, connection_context(self.db_path) as conn, conn:
                cursor = conn.execute(
                    """
                    UPDATE pipeline_run_logs SET
                        status = ?, steps = ?, output_threads = ?, output_proposals = ?,
                        total_duration_ms = ?, llm_calls = ?, llm_tokens_used = ?,
                        error_message = ?, completed_at = ?
                    WHERE id = ? AND status = 'running'
                    """,
                    (
                        status,
                        dumps([step.to_dict() for step in steps]),
                        output_threads,
                        output_proposals,
                        total_duration_ms,
                        llm_calls,
                        llm_tokens_used,
                        error_message,
                        to_iso(completed_at),
                        run_id,
                    ),
                )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to finalize run log {run_id}: {exc}") from exc
        if cursor.rowcount == 0:
            logger.warning("run log not finalized (missing or already closed)", run_id=run_id)

    def get_run_log(self, run_id: int) -> RunLogRecord | None:
        rows = self._execute("SELECT * FROM pipeline_run_logs WHERE id = ?", (run_id,))
        return _run_log_from_row(rows[0]) if rows else None

    def list_run_logs(self, *, instance_id: str | None = None, limit: int = 20) -> list[RunLogRecord]:
        if instance_id:
            rows = self._execute(
                "SELECT * FROM pipeline_run_logs WHERE instance_id = ? ORDER BY id DESC LIMIT ?",
                (instance_id, limit),
            )
        else:
            rows = self._execute("SELECT * FROM pipeline_run_logs ORDER BY id DESC LIMIT ?", (limit,))
        return [_run_log_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    def append_proposals(self, batch_id: str, thread_id: str, proposals: Sequence[Proposal]) -> int:
        """Append proposals for a thread. ``NONE`` proposals are never stored."""
        created_at = to_iso(utcnow())
        rows = [
            (
                batch_id,
                thread_id,
                p.update_type.value,
                p.page,
                p.section,
                p.suggested_text,
                p.reasoning,
                dumps(p.source_messages) if p.source_messages is not None else None,
                dumps(p.warnings),
                dumps(p.enrichment.model_dump(by_alias=True)) if p.enrichment is not None else None,
                created_at,
            )
            for p in proposals
            if p.update_type is not UpdateType.NONE
        ]
        if not rows:
            return 0
        try:
            with _WRITE_LOCK, connection_context(self.db_path) as conn, conn:
                conn.executemany(
                    """
                    INSERT INTO doc_proposals (
                        batch_id, thread_id, update_type, page, section, suggested_text,
                        reasoning, source_messages, warnings, enrichment, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to store proposals: {exc}") from exc
        return len(rows)

    def list_proposals(self, batch_id: str | None = None) -> list[ProposalRecord]:
        if batch_id:
            rows = self._execute("SELECT * FROM doc_proposals WHERE batch_id = ? ORDER BY id", (batch_id,))
        else:
            rows = self._execute("SELECT * FROM doc_proposals ORDER BY id")
        return [
            ProposalRecord(
                id=row["id"],
                batch_id=row["batch_id"],
                thread_id=row["thread_id"],
                created_at=parse_iso(row["created_at"]),
                proposal=Proposal(
                    update_type=UpdateType(row["update_type"]),
                    page=row["page"],
                    section=row["section"],
                    suggested_text=row["suggested_text"],
                    reasoning=row["reasoning"],
                    source_messages=loads(row["source_messages"]) if row["source_messages"] else None,
                    warnings=loads(row["warnings"]) if row["warnings"] else [],
                    enrichment=(
                        ProposalEnrichment.model_validate(loads(row["enrichment"])) if row["enrichment"] else None
                    ),
                ),
            )
            for row in rows
        ]

    def record_classifications(
        self,
        batch_id: str,
        threads: Sequence[ConversationThread],
        messages: Sequence[Message],
    ) -> int:
        """Store which thread each valuable message ended up in."""
        created_at = to_iso(utcnow())
        rows = [
            (messages[index].id, batch_id, thread.id, thread.category, thread.doc_value_reason, created_at)
            for thread in threads
            for index in thread.message_ids
            if 0 <= index < len(messages)
        ]
        if not rows:
            return 0
        try:
            with _WRITE_LOCK, connection_context(self.db_path) as conn, conn:
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO message_classifications
                        (message_id, batch_id, thread_id, category, doc_value_reason, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to store classifications: {exc}") from exc
        return len(rows)


__all__ = ["PipelineStore", "ProposalRecord", "RunLogRecord", "Watermark"]
