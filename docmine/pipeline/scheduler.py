"""Watermark-driven batch scheduler.

Each stream has a cursor (the watermark). One tick looks at the window
``[watermark, watermark + batchWindowHours)``:

- window still open (ends after now): nothing to do, return 0
- window empty: advance the cursor to the window end, return 0
- otherwise run the pipeline over the window's pending messages in chunks
  of ``max_batch_size``, persist outputs, mark the messages, then advance
  the cursor to the window end

Any exception before the cursor moves leaves it untouched, so the same
window is attempted again on the next tick. Messages already marked
``COMPLETED`` by an earlier chunk are not fetched again.

Runs for the same stream must be serialized. A second call that overlaps
an in-flight run in this process returns 0 immediately; callers running
several processes still need an external lock.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from docmine.lib.log import get_logger
from docmine.lib.timestamps import epoch_millis, to_iso, utcnow
from docmine.pipeline.context import DomainConfig, PipelineContext
from docmine.pipeline.models import Message, PipelineResult
from docmine.pipeline.orchestrator import PipelineOrchestrator
from docmine.pipeline.prompts import PromptRegistry
from docmine.settings import ProcessorSettings
from docmine.storage.repository import PipelineStore, Watermark

logger = get_logger(__name__)

MAX_WINDOWS_PER_TICK = 1000


@dataclass
class WindowOutcome:
    """What one ``process_batch`` call did for a stream."""

    stream_id: str
    due: bool
    window_start: datetime | None = None
    window_end: datetime | None = None
    messages_processed: int = 0
    results: list[PipelineResult] = field(default_factory=list)


class BatchScheduler:
    def __init__(
        self,
        store: PipelineStore,
        orchestrator: PipelineOrchestrator,
        settings: ProcessorSettings,
        *,
        instance_id: str,
        domain: DomainConfig | None = None,
        prompts: PromptRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.settings = settings
        self.instance_id = instance_id
        self.domain = domain or DomainConfig()
        self.prompts = prompts or PromptRegistry()
        self._clock = clock
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._last_batch_stamp = 0

    @property
    def batch_window(self) -> timedelta:
        return timedelta(hours=self.settings.batch_window_hours)

    @property
    def context_window(self) -> timedelta:
        return timedelta(hours=self.settings.context_window_hours)

    def _stream_lock(self, stream_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(stream_id, threading.Lock())

    def next_batch_stamp(self, now: datetime) -> int:
        """Epoch millis for a new batch id, strictly increasing across this scheduler's batches."""
        with self._locks_guard:
            self._last_batch_stamp = max(epoch_millis(now), self._last_batch_stamp + 1)
            return self._last_batch_stamp

    def load_watermark(self, stream_id: str, now: datetime) -> Watermark:
        watermark = self.store.get_watermark(stream_id)
        if watermark is None:
            initial = now - timedelta(days=self.settings.initial_lookback_days)
            watermark = self.store.init_watermark(stream_id, initial)
            logger.info("initialized watermark", stream_id=stream_id, watermark=to_iso(watermark.watermark_time))
        return watermark

    def process_batch(self, stream_id: str) -> int:
        """Process the next due window for ``stream_id``. Returns messages processed."""
        return self.process_window(stream_id).messages_processed

    def process_window(self, stream_id: str) -> WindowOutcome:
        lock = self._stream_lock(stream_id)
        if not lock.acquire(blocking=False):
            logger.warning("batch already running for stream, skipping", stream_id=stream_id)
            return WindowOutcome(stream_id=stream_id, due=False)
        try:
            return self._process_window(stream_id)
        finally:
            lock.release()

    def _process_window(self, stream_id: str) -> WindowOutcome:
        now = self._clock()
        watermark = self.load_watermark(stream_id, now)
        window_start = watermark.watermark_time
        window_end = window_start + self.batch_window
        log = logger.bind(stream_id=stream_id, window_start=to_iso(window_start), window_end=to_iso(window_end))

        if window_end > now:
            log.debug("window not complete yet")
            return WindowOutcome(stream_id=stream_id, due=False)

        outcome = WindowOutcome(stream_id=stream_id, due=True, window_start=window_start, window_end=window_end)
        context_messages = self.store.fetch_messages(
            stream_id,
            window_start - self.context_window,
            window_start,
            self.settings.max_context_messages,
        )

        chunk = 0
        base_id = ""
        while True:
            messages = self.store.fetch_messages(
                stream_id, window_start, window_end, self.settings.max_batch_size, pending_only=True
            )
            if not messages:
                break
            chunk += 1
            if chunk == 1:
                base_id = f"batch_{self.next_batch_stamp(now)}"
            batch_id = base_id if chunk == 1 else f"{base_id}_{chunk}"
            result = self._run_batch(stream_id, batch_id, messages, context_messages)
            outcome.results.append(result)
            outcome.messages_processed += len(messages)
            if len(messages) < self.settings.max_batch_size:
                break

        if chunk == 0:
            log.info("empty window, advancing watermark")
        self.store.advance_watermark(stream_id, window_end, processed_at=self._clock())
        log.info("window processed", messages=outcome.messages_processed, batches=chunk)
        return outcome

    def _run_batch(
        self,
        stream_id: str,
        batch_id: str,
        messages: list[Message],
        context_messages: list[Message],
    ) -> PipelineResult:
        context = PipelineContext(
            instance_id=self.instance_id,
            batch_id=batch_id,
            stream_id=stream_id,
            messages=messages,
            context_messages=context_messages,
            domain=self.domain,
            prompts=self.prompts,
        )
        logger.info(
            "running batch",
            stream_id=stream_id,
            batch_id=batch_id,
            messages=len(messages),
            context_messages=len(context_messages),
        )
        result = self.orchestrator.execute(context)

        self.store.record_classifications(batch_id, context.threads, context.filtered_messages)
        for thread_id, proposals in context.proposals.items():
            self.store.append_proposals(batch_id, thread_id, proposals)
        self.store.mark_messages([m.id for m in messages], "COMPLETED")
        return result

    def process_all(self, stream_ids: Iterable[str] | None = None) -> dict[str, int]:
        """Drain every due window of each stream. A failing stream does not stop the others."""
        totals: dict[str, int] = {}
        for stream_id in stream_ids if stream_ids is not None else self.store.list_streams():
            totals[stream_id] = 0
            try:
                for _ in range(MAX_WINDOWS_PER_TICK):
                    outcome = self.process_window(stream_id)
                    totals[stream_id] += outcome.messages_processed
                    if not outcome.due:
                        break
            except Exception:
                logger.exception("stream processing aborted", stream_id=stream_id)
        return totals


__all__ = ["BatchScheduler", "WindowOutcome"]
