"""Tests for the step registry and the bounded step retry helper."""

from __future__ import annotations

import pytest

from docmine.errors import ConfigError, MissingDependencyError, ModelInvocationError, StepConfigError
from docmine.pipeline.factory import StepRegistry, create_default_registry
from docmine.pipeline.retry import RetryingCall, backoff_delays, is_retryable
from docmine.pipeline.steps import KeywordFilterStep, RagEnrichStep
from docmine.pipeline.steps.base import StepServices
from tests.factories import step_config
from tests.fakes import SleepRecorder


class TestStepRegistry:
    def test_default_registry_knows_built_in_types(self):
        assert set(create_default_registry().types()) == {"filter", "classify", "enrich", "generate", "validate", "condense"}

    def test_create_returns_configured_step(self):
        step = create_default_registry().create(step_config("enrich", "rag", topK=3), StepServices())
        assert isinstance(step, RagEnrichStep)
        assert step.step_id == "rag"
        assert step.top_k == 3

    def test_unknown_type(self):
        with pytest.raises(StepConfigError, match="Unknown step type: summarize") as excinfo:
            create_default_registry().create(step_config("summarize"), StepServices())
        assert excinfo.value.step_id == "summarize-step"

    def test_rejected_config(self):
        with pytest.raises(StepConfigError, match="Invalid configuration for step enrich-step"):
            create_default_registry().create(step_config("enrich", topK=100), StepServices())

    def test_constructor_errors_become_config_errors(self):
        with pytest.raises(StepConfigError):
            create_default_registry().create(step_config("condense", defaultMaxLength="lots"), StepServices())

    def test_custom_registration(self):
        registry = StepRegistry()
        assert not registry.has("filter")
        registry.register("filter", KeywordFilterStep)
        assert registry.has("filter")
        assert isinstance(registry.create(step_config("filter"), StepServices()), KeywordFilterStep)


class TestRetryingCall:
    def test_success_needs_one_attempt(self):
        call = RetryingCall(3, 100, sleep=SleepRecorder())
        assert call(lambda: "ok") == "ok"
        assert call.attempts == 1

    def test_always_failing_call_runs_retries_plus_one(self):
        sleeps = SleepRecorder()
        call = RetryingCall(3, 100, sleep=sleeps)

        def boom():
            raise RuntimeError("nope")

        with pytest.raises(RuntimeError, match="nope"):
            call(boom)
        assert call.attempts == 4
        assert sleeps.delays == pytest.approx([0.1, 0.2, 0.4])

    def test_recovers_after_transient_failure(self):
        outcomes = [RuntimeError("flaky"), "done"]

        def flaky():
            item = outcomes.pop(0)
            if isinstance(item, Exception):
                raise item
            return item

        call = RetryingCall(2, 50, sleep=SleepRecorder())
        assert call(flaky) == "done"
        assert call.attempts == 2

    def test_zero_retries(self):
        sleeps = SleepRecorder()
        call = RetryingCall(0, 100, sleep=sleeps)
        with pytest.raises(ValueError):
            call(lambda: int("x"))
        assert call.attempts == 1
        assert sleeps.delays == []

    def test_config_errors_are_not_retried(self):
        call = RetryingCall(5, 10, sleep=SleepRecorder())

        def broken():
            raise StepConfigError("bad config")

        with pytest.raises(StepConfigError):
            call(broken)
        assert call.attempts == 1

    def test_attempts_reset_between_calls(self):
        call = RetryingCall(1, 10, sleep=SleepRecorder())

        def fail():
            raise RuntimeError("x")

        with pytest.raises(RuntimeError):
            call(fail)
        assert call.attempts == 2
        call(lambda: None)
        assert call.attempts == 1


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (RuntimeError("x"), True),
        (ConfigError("x"), False),
        (MissingDependencyError("x"), False),
        (ModelInvocationError("x", transient=True), True),
        (ModelInvocationError("x", transient=False), False),
        (KeyboardInterrupt(), False),
    ],
)
def test_is_retryable(exc, expected):
    assert is_retryable(exc) is expected


def test_backoff_delays():
    assert backoff_delays(3, 5000) == [5.0, 10.0, 20.0]
    assert backoff_delays(0, 5000) == []
