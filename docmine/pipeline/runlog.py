"""Run-log lifecycle around one orchestrator execution.

The row is created with status ``running`` before any step executes and
finalized once the step loop ends. Both writes are best-effort: a storage
failure is logged and never aborts or fails the pipeline itself.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from docmine.errors import DatabaseError
from docmine.lib.log import get_logger
from docmine.pipeline.context import PipelineContext
from docmine.pipeline.models import PipelineError, RunStatus, StepRun
from docmine.storage.repository import PipelineStore

logger = get_logger(__name__)


def summarize_errors(errors: Sequence[PipelineError]) -> str | None:
    if not errors:
        return None
    return "; ".join(error.message for error in errors)


class RunLogRecorder:
    def __init__(self, store: PipelineStore) -> None:
        self.store = store

    def start(self, context: PipelineContext, pipeline_id: str, started_at: datetime) -> int | None:
        try:
            run_id = self.store.create_run_log(
                instance_id=context.instance_id,
                batch_id=context.batch_id,
                pipeline_id=pipeline_id,
                input_messages=len(context.messages),
                started_at=started_at,
            )
        except DatabaseError as exc:
            logger.error("failed to create run log", batch_id=context.batch_id, error=str(exc))
            return None
        logger.debug("run log created", run_id=run_id, batch_id=context.batch_id)
        return run_id

    def finish(
        self,
        run_id: int | None,
        context: PipelineContext,
        *,
        status: RunStatus,
        steps: Sequence[StepRun],
        completed_at: datetime,
    ) -> None:
        if run_id is None:
            return
        try:
            self.store.finalize_run_log(
                run_id,
                status=status.value,
                steps=steps,
                output_threads=len(context.threads),
                output_proposals=context.proposal_count(),
                total_duration_ms=context.metrics.total_duration_ms,
                llm_calls=context.metrics.llm_calls,
                llm_tokens_used=context.metrics.llm_tokens_used,
                error_message=summarize_errors(context.errors),
                completed_at=completed_at,
            )
        except DatabaseError as exc:
            logger.error("failed to finalize run log", run_id=run_id, error=str(exc))


__all__ = ["RunLogRecorder", "summarize_errors"]
