"""Tests for the watermark-driven batch scheduler."""

from __future__ import annotations

from datetime import timedelta

import pytest

from docmine.lib.timestamps import epoch_millis
from docmine.pipeline.config import PipelineConfig
from docmine.pipeline.factory import create_default_registry
from docmine.pipeline.models import PipelineMetrics, PipelineResult, RunStatus
from docmine.pipeline.orchestrator import PipelineOrchestrator
from docmine.pipeline.runlog import RunLogRecorder
from docmine.pipeline.scheduler import BatchScheduler
from docmine.settings import ProcessorSettings
from docmine.storage.repository import PipelineStore
from tests.factories import (
    T0,
    classification_payload,
    classified,
    generated,
    make_doc,
    make_message,
    make_messages,
    make_proposal,
    make_services,
    make_thread,
    pipeline_payload,
    proposal_payload,
)
from tests.fakes import FakeClock, FakeModelClient, FakeRetrieval


class StubOrchestrator:
    """Records each context; optionally emits one thread with one proposal, or raises."""

    def __init__(self, *, emit=False, fail_streams=(), on_execute=None):
        self.contexts = []
        self.emit = emit
        self.fail_streams = set(fail_streams)
        self.on_execute = on_execute

    def execute(self, context):
        self.contexts.append(context)
        if self.on_execute is not None:
            self.on_execute(context)
        if context.stream_id in self.fail_streams:
            raise RuntimeError("pipeline crashed")
        if not context.filtered_messages:
            context.filtered_messages = list(context.messages)
        if self.emit:
            thread_id = f"{context.batch_id}-thread-1"
            context.threads = [make_thread(thread_id, message_ids=[0])]
            context.proposals = {thread_id: [make_proposal()]}
        return PipelineResult(
            success=True,
            status=RunStatus.COMPLETED,
            messages_processed=len(context.filtered_messages),
            threads_created=len(context.threads),
            proposals_generated=context.proposal_count(),
            errors=[],
            metrics=PipelineMetrics(),
        )


class CountingStore(PipelineStore):
    def __init__(self, db_path):
        super().__init__(db_path)
        self.fetches = 0

    def fetch_messages(self, *args, **kwargs):
        self.fetches += 1
        return super().fetch_messages(*args, **kwargs)


def _settings(db_path, **overrides):
    return ProcessorSettings(db_path=db_path, **overrides)


def _scheduler(store, orchestrator, clock, db_path, **overrides):
    return BatchScheduler(store, orchestrator, _settings(db_path, **overrides), instance_id="acme", clock=clock)


class TestWindowSelection:
    def test_open_window_does_nothing(self, db_path):
        store = CountingStore(db_path)
        store.init_watermark("stream-1", T0)
        store.add_messages(make_messages(3))
        orchestrator = StubOrchestrator()
        scheduler = _scheduler(store, orchestrator, FakeClock(T0 + timedelta(hours=12)), db_path)

        assert scheduler.process_batch("stream-1") == 0
        assert store.fetches == 0
        assert orchestrator.contexts == []
        assert store.get_watermark("stream-1").watermark_time == T0

    def test_empty_window_advances_by_exactly_one_window(self, store, db_path):
        store.init_watermark("stream-1", T0)
        clock = FakeClock(T0 + timedelta(hours=30))
        scheduler = _scheduler(store, StubOrchestrator(), clock, db_path)

        assert scheduler.process_batch("stream-1") == 0
        watermark = store.get_watermark("stream-1")
        assert watermark.watermark_time == T0 + timedelta(hours=24)
        assert watermark.last_processed_batch == clock.now

    def test_first_run_starts_from_lookback(self, store, db_path):
        scheduler = _scheduler(store, StubOrchestrator(), FakeClock(T0), db_path, initial_lookback_days=7)
        outcome = scheduler.process_window("stream-1")
        assert outcome.due
        assert outcome.window_start == T0 - timedelta(days=7)
        assert store.get_watermark("stream-1").watermark_time == T0 - timedelta(days=6)

    def test_custom_window_length(self, store, db_path):
        store.init_watermark("stream-1", T0)
        scheduler = _scheduler(store, StubOrchestrator(), FakeClock(T0 + timedelta(hours=7)), db_path, batch_window_hours=6)
        scheduler.process_batch("stream-1")
        assert store.get_watermark("stream-1").watermark_time == T0 + timedelta(hours=6)


class TestBatchExecution:
    def test_runs_pipeline_and_persists_outputs(self, store, db_path):
        store.init_watermark("stream-1", T0)
        store.add_messages(make_messages(3))
        clock = FakeClock(T0 + timedelta(days=1, minutes=5))
        orchestrator = StubOrchestrator(emit=True)
        scheduler = _scheduler(store, orchestrator, clock, db_path)

        assert scheduler.process_batch("stream-1") == 3

        [context] = orchestrator.contexts
        batch_id = f"batch_{epoch_millis(clock.now)}"
        assert context.batch_id == batch_id
        assert context.instance_id == "acme"
        assert [m.id for m in context.messages] == ["m0", "m1", "m2"]
        assert [r.thread_id for r in store.list_proposals(batch_id)] == [f"{batch_id}-thread-1"]
        assert {store.message_status(f"m{i}") for i in range(3)} == {"COMPLETED"}
        assert store.get_watermark("stream-1").watermark_time == T0 + timedelta(days=1)

    def test_context_window_messages_are_passed_separately(self, store, db_path):
        store.init_watermark("stream-1", T0)
        store.add_messages(
            [
                make_message("old", timestamp=T0 - timedelta(hours=30)),
                make_message("ctx", timestamp=T0 - timedelta(hours=2)),
                make_message("new", timestamp=T0 + timedelta(hours=1)),
                make_message("other-stream", timestamp=T0 + timedelta(hours=1), stream_id="stream-2"),
            ]
        )
        orchestrator = StubOrchestrator()
        scheduler = _scheduler(store, orchestrator, FakeClock(T0 + timedelta(days=2)), db_path)
        scheduler.process_batch("stream-1")

        [context] = orchestrator.contexts
        assert [m.id for m in context.messages] == ["new"]
        assert [m.id for m in context.context_messages] == ["ctx"]

    def test_large_window_is_processed_in_chunks(self, store, db_path):
        store.init_watermark("stream-1", T0)
        store.add_messages(make_messages(5))
        clock = FakeClock(T0 + timedelta(days=1))
        orchestrator = StubOrchestrator()
        scheduler = _scheduler(store, orchestrator, clock, db_path, max_batch_size=2)

        assert scheduler.process_batch("stream-1") == 5
        base = f"batch_{epoch_millis(clock.now)}"
        assert [c.batch_id for c in orchestrator.contexts] == [base, f"{base}_2", f"{base}_3"]
        assert [[m.id for m in c.messages] for c in orchestrator.contexts] == [["m0", "m1"], ["m2", "m3"], ["m4"]]
        assert store.get_watermark("stream-1").watermark_time == T0 + timedelta(days=1)

    def test_failure_leaves_watermark_in_place(self, store, db_path):
        store.init_watermark("stream-1", T0)
        store.add_messages(make_messages(3))
        scheduler = _scheduler(
            store, StubOrchestrator(fail_streams={"stream-1"}), FakeClock(T0 + timedelta(days=2)), db_path
        )

        with pytest.raises(RuntimeError, match="pipeline crashed"):
            scheduler.process_batch("stream-1")
        assert store.get_watermark("stream-1").watermark_time == T0
        assert store.message_status("m0") == "PENDING"

    def test_retry_after_failure_processes_the_same_window(self, store, db_path):
        store.init_watermark("stream-1", T0)
        store.add_messages(make_messages(2))
        orchestrator = StubOrchestrator(fail_streams={"stream-1"})
        scheduler = _scheduler(store, orchestrator, FakeClock(T0 + timedelta(days=2)), db_path)
        with pytest.raises(RuntimeError):
            scheduler.process_batch("stream-1")

        orchestrator.fail_streams.clear()
        assert scheduler.process_batch("stream-1") == 2
        first, retried = orchestrator.contexts
        assert [m.id for m in retried.messages] == [m.id for m in first.messages]

    def test_overlapping_run_for_same_stream_is_skipped(self, store, db_path):
        store.init_watermark("stream-1", T0)
        store.add_messages(make_messages(1))
        nested = []
        orchestrator = StubOrchestrator(on_execute=lambda context: nested.append(scheduler.process_batch("stream-1")))
        scheduler = _scheduler(store, orchestrator, FakeClock(T0 + timedelta(days=1)), db_path)

        assert scheduler.process_batch("stream-1") == 1
        assert nested == [0]
        assert len(orchestrator.contexts) == 1


class TestProcessAll:
    def test_drains_every_due_window(self, store, db_path):
        store.init_watermark("stream-1", T0)
        store.add_messages(make_messages(2, start=T0 + timedelta(hours=1)))
        store.add_messages(make_messages(3, start=T0 + timedelta(days=2, hours=1), prefix="late"))
        scheduler = _scheduler(store, StubOrchestrator(), FakeClock(T0 + timedelta(days=3, hours=1)), db_path)

        assert scheduler.process_all() == {"stream-1": 5}
        assert store.get_watermark("stream-1").watermark_time == T0 + timedelta(days=3)

    def test_windows_drained_in_one_tick_get_distinct_batch_ids(self, store, db_path):
        store.init_watermark("stream-1", T0)
        store.add_messages(make_messages(1, start=T0 + timedelta(hours=1)))
        store.add_messages(make_messages(1, start=T0 + timedelta(days=1, hours=1), prefix="late"))
        clock = FakeClock(T0 + timedelta(days=2, hours=1))
        orchestrator = StubOrchestrator(emit=True)
        scheduler = _scheduler(store, orchestrator, clock, db_path)

        assert scheduler.process_all() == {"stream-1": 2}
        stamp = epoch_millis(clock.now)
        assert [c.batch_id for c in orchestrator.contexts] == [f"batch_{stamp}", f"batch_{stamp + 1}"]
        thread_ids = [r.thread_id for c in orchestrator.contexts for r in store.list_proposals(c.batch_id)]
        assert len(set(thread_ids)) == 2

    def test_streams_sharing_a_tick_get_distinct_batch_ids(self, store, db_path):
        for stream in ("a", "b"):
            store.init_watermark(stream, T0)
            store.add_messages(make_messages(1, stream_id=stream, prefix=f"{stream}-"))
        orchestrator = StubOrchestrator()
        scheduler = _scheduler(store, orchestrator, FakeClock(T0 + timedelta(days=1)), db_path)

        scheduler.process_all(["a", "b"])
        batch_ids = [c.batch_id for c in orchestrator.contexts]
        assert len(batch_ids) == len(set(batch_ids)) == 2

    def test_one_failing_stream_does_not_block_others(self, store, db_path):
        for stream in ("bad", "good"):
            store.init_watermark(stream, T0)
            store.add_messages(make_messages(2, stream_id=stream, prefix=f"{stream}-"))
        scheduler = _scheduler(
            store, StubOrchestrator(fail_streams={"bad"}), FakeClock(T0 + timedelta(days=1)), db_path
        )

        assert scheduler.process_all() == {"bad": 0, "good": 2}
        assert store.get_watermark("bad").watermark_time == T0
        assert store.get_watermark("good").watermark_time == T0 + timedelta(days=1)

    def test_explicit_stream_list(self, store, db_path):
        store.init_watermark("a", T0)
        store.init_watermark("b", T0)
        scheduler = _scheduler(store, StubOrchestrator(), FakeClock(T0 + timedelta(hours=25)), db_path)
        assert scheduler.process_all(["b"]) == {"b": 0}
        assert store.get_watermark("a").watermark_time == T0


def test_three_message_window_end_to_end(store, db_path, sleeps):
    store.init_watermark("stream-1", T0)
    store.add_messages(
        [
            make_message("m0", "The installer crashes on Windows 11", timestamp=T0 + timedelta(hours=9)),
            make_message("m1", "Same here, error 0x80070005", timestamp=T0 + timedelta(hours=9, minutes=5)),
            make_message("m2", "Running it as admin fixed it for me", timestamp=T0 + timedelta(hours=9, minutes=9)),
        ]
    )
    client = FakeModelClient(
        [
            classification_payload(classified([0, 1, 2], summary="installer needs admin rights")),
            proposal_payload(generated("docs/install.md", text="Run the installer as administrator.")),
        ]
    )
    config = PipelineConfig.model_validate(
        pipeline_payload(
            [
                {"stepId": "keyword-filter", "stepType": "filter"},
                {"stepId": "batch-classify", "stepType": "classify"},
                {"stepId": "rag-enrich", "stepType": "enrich"},
                {"stepId": "proposal-generate", "stepType": "generate"},
            ]
        )
    )
    orchestrator = PipelineOrchestrator(
        config,
        create_default_registry(),
        make_services(client, FakeRetrieval([make_doc("docs/install.md", 0.88)])),
        run_log=RunLogRecorder(store),
        sleep=sleeps,
    )
    clock = FakeClock(T0 + timedelta(days=1, hours=1))
    scheduler = _scheduler(store, orchestrator, clock, db_path)

    outcome = scheduler.process_window("stream-1")

    [result] = outcome.results
    assert outcome.messages_processed == 3
    assert (result.threads_created, result.proposals_generated) == (1, 1)
    batch_id = f"batch_{epoch_millis(clock.now)}"
    [record] = store.list_proposals(batch_id)
    assert record.thread_id == f"{batch_id}-thread-1"
    assert record.proposal.suggested_text == "Run the installer as administrator."
    assert store.get_watermark("stream-1").watermark_time == T0 + timedelta(hours=24)
    assert store.list_run_logs(instance_id="acme")[0].batch_id == batch_id
