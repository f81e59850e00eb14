"""Tests for the shared helpers in docmine.lib, the error hierarchy and settings."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest
import structlog
from hypothesis import given
from hypothesis import strategies as st
from structlog.contextvars import get_contextvars

from docmine.errors import (
    ConfigError,
    DocmineError,
    ModelInvocationError,
    SchemaValidationError,
    StepConfigError,
    TransientModelError,
)
from docmine.lib.env import get_env
from docmine.lib.hashing import hash_text
from docmine.lib.json import JSONDecodeError, dumps, loads
from docmine.lib.log import MAX_VALUE_CHARS, bind_run, clip_long_values, configure_logging, drop_unset, get_logger
from docmine.lib.timestamps import ensure_utc, epoch_millis, parse_iso, to_iso
from docmine.retrieval.protocols import RagDocument
from docmine.settings import ProcessorSettings, load_settings


class TestHashing:
    def test_known_digest(self):
        assert hash_text("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"

    def test_unicode_normalization(self):
        assert hash_text("caf\u00e9") == hash_text("cafe\u0301")

    @given(st.text(), st.text())
    def test_digest_is_deterministic(self, a, b):
        if a == b:
            assert hash_text(a) == hash_text(b)
        assert len(hash_text(a)) == 64


class TestJson:
    def test_dumps_handles_paths_decimals_and_models(self):
        doc = RagDocument(title="t", file_path="docs/a.md", content="c", similarity=0.5)
        payload = loads(dumps({"path": Path("/tmp/x"), "n": Decimal("1.5"), "doc": doc}))
        assert payload == {
            "path": "/tmp/x",
            "n": 1.5,
            "doc": {"title": "t", "filePath": "docs/a.md", "content": "c", "similarity": 0.5},
        }

    def test_indent_produces_multiline_output(self):
        assert "\n" in dumps({"a": 1}, indent=True)
        assert dumps({"a": 1}) == '{"a":1}'

    def test_user_default_wins(self):
        class Custom:
            pass

        assert dumps({"x": Custom()}, default=lambda obj: "custom") == '{"x":"custom"}'

    def test_unknown_type_raises(self):
        with pytest.raises(TypeError):
            dumps({"x": object()})

    def test_malformed_json_is_value_error(self):
        with pytest.raises(JSONDecodeError):
            loads("{not json")
        assert issubclass(JSONDecodeError, ValueError)


class TestTimestamps:
    def test_parse_accepts_z_suffix(self):
        assert parse_iso("2025-01-01T00:00:00Z") == datetime(2025, 1, 1, tzinfo=timezone.utc)

    def test_naive_values_are_treated_as_utc(self):
        assert ensure_utc(datetime(2025, 1, 1, 12)).tzinfo == timezone.utc

    def test_offsets_are_converted(self):
        plus_two = timezone(timedelta(hours=2))
        assert to_iso(datetime(2025, 1, 1, 2, tzinfo=plus_two)) == "2025-01-01T00:00:00.000000+00:00"

    def test_epoch_millis(self):
        assert epoch_millis(datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc)) == 1000

    @given(
        st.datetimes(min_value=datetime(2000, 1, 1), max_value=datetime(2100, 1, 1)),
        st.datetimes(min_value=datetime(2000, 1, 1), max_value=datetime(2100, 1, 1)),
    )
    def test_iso_strings_sort_in_time_order(self, a, b):
        assert (to_iso(a) < to_iso(b)) == (ensure_utc(a) < ensure_utc(b))
        assert parse_iso(to_iso(a)) == ensure_utc(a)


class TestEnv:
    def test_prefixed_variable_wins(self, monkeypatch):
        monkeypatch.setenv("DOCMINE_SAMPLE", "prefixed")
        monkeypatch.setenv("SAMPLE", "plain")
        assert get_env("SAMPLE") == "prefixed"

    def test_falls_back_to_plain_then_default(self, monkeypatch):
        monkeypatch.delenv("SAMPLE", raising=False)
        assert get_env("SAMPLE", "fallback") == "fallback"
        monkeypatch.setenv("SAMPLE", "plain")
        assert get_env("SAMPLE") == "plain"


class TestLogging:
    def test_long_values_are_clipped(self):
        event = clip_long_values(None, "info", {"event": "e" * 600, "prompt": "x" * 600, "count": 3})
        assert event["prompt"] == "x" * MAX_VALUE_CHARS + "... (+100 chars)"
        assert event["event"] == "e" * 600
        assert event["count"] == 3

    def test_unset_keys_are_dropped(self):
        assert drop_unset(None, "info", {"event": "start", "run_id": None, "step": "s1"}) == {"event": "start", "step": "s1"}

    def test_bind_run_scopes_identifiers(self):
        with bind_run(instance_id="acme", batch_id="batch_1", pipeline_id="p"):
            assert get_contextvars() == {"instance_id": "acme", "batch_id": "batch_1", "pipeline_id": "p"}
        assert "batch_id" not in get_contextvars()

    def test_json_records_carry_the_run(self, capsys):
        configure_logging(json_logs=True)
        try:
            log = get_logger("docmine.test")
            with bind_run(instance_id="acme", batch_id="batch_7", pipeline_id="p"):
                log.debug("hidden")
                log.info("step finished", run_id=None, response="r" * 800)
        finally:
            structlog.reset_defaults()

        [line] = capsys.readouterr().err.strip().splitlines()
        record = loads(line)
        assert (record["event"], record["level"], record["batch_id"]) == ("step finished", "info", "batch_7")
        assert "run_id" not in record
        assert record["response"].endswith("... (+300 chars)")


class TestErrors:
    def test_hierarchy(self):
        assert issubclass(StepConfigError, ConfigError)
        assert issubclass(ConfigError, DocmineError)
        assert issubclass(SchemaValidationError, ModelInvocationError)

    def test_transient_flags(self):
        assert TransientModelError("empty").transient is True
        assert SchemaValidationError("shape").transient is False
        assert ModelInvocationError("boom").transient is False
        assert ModelInvocationError("rate limited", transient=True).transient is True

    def test_step_config_error_carries_step(self):
        exc = StepConfigError("bad", step_id="s1", step_type="filter")
        assert (exc.step_id, exc.step_type) == ("s1", "filter")


class TestSettings:
    def test_defaults(self, state_env):
        settings = ProcessorSettings()
        assert settings.batch_window_hours == 24
        assert settings.max_batch_size == 30
        assert settings.initial_lookback_days == 7
        assert settings.db_path == state_env / "data" / "docmine" / "docmine.db"
        assert settings.cache_dir == state_env / "cache" / "docmine" / "llm"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DOCMINE_BATCH_WINDOW_HOURS", "12")
        monkeypatch.setenv("DOCMINE_CACHE_ENABLED", "false")
        settings = ProcessorSettings()
        assert settings.batch_window_hours == 12
        assert settings.cache_enabled is False

    def test_load_settings_ignores_none_overrides(self, tmp_path):
        settings = load_settings(max_batch_size=None, db_path=tmp_path / "x.db")
        assert settings.max_batch_size == 30
        assert settings.db_path == tmp_path / "x.db"

    def test_paths_expand_user(self):
        settings = load_settings(cache_dir="~/docmine-cache")
        assert settings.cache_dir == Path.home() / "docmine-cache"

    def test_rejects_non_positive_window(self):
        with pytest.raises(ValueError):
            ProcessorSettings(batch_window_hours=0)
