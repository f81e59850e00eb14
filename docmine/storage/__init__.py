"""sqlite persistence for messages, watermarks, run logs and proposals."""

from docmine.storage.connection import connection_context, default_db_path
from docmine.storage.repository import PipelineStore

__all__ = ["PipelineStore", "connection_context", "default_db_path"]
