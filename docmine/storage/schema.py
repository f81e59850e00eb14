"""SQLite schema: DDL and version control."""

from __future__ import annotations

import sqlite3

from docmine.errors import DatabaseError
from docmine.lib.log import get_logger

logger = get_logger(__name__)
SCHEMA_VERSION = 1


SCHEMA_DDL = """
        CREATE TABLE IF NOT EXISTS messages (
            id TEXT PRIMARY KEY,
            stream_id TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            author TEXT NOT NULL,
            content TEXT NOT NULL,
            channel TEXT,
            raw_data TEXT NOT NULL DEFAULT '{}',
            processing_status TEXT NOT NULL DEFAULT 'PENDING'
                CHECK (processing_status IN ('PENDING', 'COMPLETED', 'FAILED'))
        );

        CREATE INDEX IF NOT EXISTS idx_messages_stream_time
        ON messages(stream_id, timestamp);

        CREATE TABLE IF NOT EXISTS processing_watermarks (
            stream_id TEXT PRIMARY KEY,
            watermark_time TEXT NOT NULL,
            last_processed_batch TEXT,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS pipeline_run_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            instance_id TEXT NOT NULL,
            batch_id TEXT NOT NULL,
            pipeline_id TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'running'
                CHECK (status IN ('running', 'completed', 'failed')),
            input_messages INTEGER NOT NULL DEFAULT 0,
            steps TEXT NOT NULL DEFAULT '[]',
            output_threads INTEGER,
            output_proposals INTEGER,
            total_duration_ms INTEGER,
            llm_calls INTEGER,
            llm_tokens_used INTEGER,
            error_message TEXT,
            started_at TEXT NOT NULL,
            completed_at TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_run_logs_instance
        ON pipeline_run_logs(instance_id, started_at);

        CREATE INDEX IF NOT EXISTS idx_run_logs_batch
        ON pipeline_run_logs(batch_id);

        CREATE TABLE IF NOT EXISTS message_classifications (
            message_id TEXT NOT NULL,
            batch_id TEXT NOT NULL,
            thread_id TEXT NOT NULL,
            category TEXT NOT NULL,
            doc_value_reason TEXT,
            created_at TEXT NOT NULL,
            PRIMARY KEY (message_id, batch_id)
        );

        CREATE TABLE IF NOT EXISTS doc_proposals (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            batch_id TEXT NOT NULL,
            thread_id TEXT NOT NULL,
            update_type TEXT NOT NULL
                CHECK (update_type IN ('INSERT', 'UPDATE', 'DELETE')),
            page TEXT NOT NULL,
            section TEXT,
            suggested_text TEXT,
            reasoning TEXT NOT NULL DEFAULT '',
            source_messages TEXT,
            warnings TEXT NOT NULL DEFAULT '[]',
            enrichment TEXT,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_proposals_batch
        ON doc_proposals(batch_id);
"""


def _apply_schema(conn: sqlite3.Connection) -> None:
    """Apply fresh schema at version SCHEMA_VERSION."""
    conn.executescript(SCHEMA_DDL)
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
    conn.commit()


def _ensure_schema(conn: sqlite3.Connection) -> None:
    """Create the schema on a fresh database and refuse unknown versions.

    Raises:
        DatabaseError: If the database was written by a newer docmine
    """
    row = conn.execute("PRAGMA user_version").fetchone()
    current_version = row[0] if row else 0

    if current_version == 0:
        _apply_schema(conn)
        logger.debug("created database schema", version=SCHEMA_VERSION)
        return

    if current_version != SCHEMA_VERSION:
        raise DatabaseError(f"Unsupported DB schema version {current_version} (expected {SCHEMA_VERSION})")


__all__ = ["SCHEMA_DDL", "SCHEMA_VERSION"]
